"""
Test suite for installment allocation

Equal splits must sum to the total exactly; custom amounts are accepted
verbatim only when they add up to the total within a cent.
"""

import pytest
from decimal import Decimal

from payroll_core.allocation import AllocationMode, allocate_installments
from payroll_core.errors import ValidationError


class TestEqualAllocation:
    """Test system-computed equal splits"""

    def test_last_installment_absorbs_remainder(self):
        """Test 100.00 over 3 installments"""
        amounts = allocate_installments(Decimal('100.00'), 3)
        assert amounts == [Decimal('33.33'), Decimal('33.33'), Decimal('33.34')]
        assert sum(amounts) == Decimal('100.00')

    def test_single_installment(self):
        """Test that one installment carries the full total"""
        assert allocate_installments(Decimal('250.00'), 1) == [Decimal('250.00')]

    def test_remainder_can_be_negative(self):
        """Test a split where rounding up leaves the last installment smaller"""
        amounts = allocate_installments(Decimal('200.00'), 3)
        assert amounts == [Decimal('66.67'), Decimal('66.67'), Decimal('66.66')]

    @pytest.mark.parametrize("total,count", [
        ("0.01", 1), ("0.05", 3), ("1000.00", 7), ("999.99", 12),
        ("12345.67", 36), ("1.00", 3), ("50000.00", 60), ("10.10", 9),
    ])
    def test_sum_invariant(self, total, count):
        """Test that equal splits always sum exactly to the total"""
        amounts = allocate_installments(Decimal(total), count)
        assert len(amounts) == count
        assert sum(amounts) == Decimal(total)

    @pytest.mark.parametrize("total,count", [
        ("1.00", 150), ("0.01", 2), ("0.05", 10),
    ])
    def test_total_too_small_to_split(self, total, count):
        """Test that no installment is left at zero or below"""
        with pytest.raises(ValidationError):
            allocate_installments(Decimal(total), count)

    def test_mode_accepts_string(self):
        amounts = allocate_installments("90", 3, "equal")
        assert amounts == [Decimal('30.00')] * 3


class TestCustomAllocation:
    """Test caller-supplied amounts"""

    def test_amounts_returned_verbatim(self):
        amounts = allocate_installments(
            Decimal('100.00'), 3, AllocationMode.CUSTOM, ["50", "30.00", 20]
        )
        assert amounts == [Decimal('50'), Decimal('30.00'), Decimal('20')]

    def test_sum_mismatch_rejected(self):
        """Test that 40 + 50 does not satisfy a 100.00 total"""
        with pytest.raises(ValidationError) as exc:
            allocate_installments(
                Decimal('100.00'), 2, AllocationMode.CUSTOM,
                [Decimal('40.00'), Decimal('50.00')]
            )
        assert "90.00" in str(exc.value)
        assert "100.00" in str(exc.value)

    def test_sum_within_tolerance_accepted(self):
        """Test that amounts summing to 100.009 are accepted"""
        amounts = allocate_installments(
            Decimal('100.00'), 2, AllocationMode.CUSTOM,
            [Decimal('50.005'), Decimal('50.004')]
        )
        assert amounts == [Decimal('50.005'), Decimal('50.004')]

    def test_sum_outside_tolerance_rejected(self):
        """Test that amounts summing to 100.02 are rejected"""
        with pytest.raises(ValidationError):
            allocate_installments(
                Decimal('100.00'), 2, AllocationMode.CUSTOM,
                [Decimal('50.01'), Decimal('50.01')]
            )

    def test_count_mismatch_rejected(self):
        with pytest.raises(ValidationError) as exc:
            allocate_installments(
                Decimal('100.00'), 3, AllocationMode.CUSTOM,
                [Decimal('50.00'), Decimal('50.00')]
            )
        assert "Expected 3" in str(exc.value)

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationError) as exc:
            allocate_installments(
                Decimal('100.00'), 2, AllocationMode.CUSTOM,
                [Decimal('110.00'), Decimal('-10.00')]
            )
        assert "Installment 2" in str(exc.value)

    def test_zero_amount_allowed(self):
        amounts = allocate_installments(
            Decimal('100.00'), 2, AllocationMode.CUSTOM, ["100.00", "0"]
        )
        assert amounts[1] == Decimal('0')

    def test_missing_amounts_rejected(self):
        with pytest.raises(ValidationError):
            allocate_installments(Decimal('100.00'), 2, AllocationMode.CUSTOM)

    def test_non_numeric_amount_rejected(self):
        with pytest.raises(ValidationError):
            allocate_installments(
                Decimal('100.00'), 2, AllocationMode.CUSTOM, ["fifty", "50"]
            )


class TestInputValidation:
    """Test rejection of invalid totals, counts and modes"""

    @pytest.mark.parametrize("total", [0, -5, "0.00", "-0.01"])
    def test_non_positive_total(self, total):
        with pytest.raises(ValidationError):
            allocate_installments(total, 2)

    @pytest.mark.parametrize("count", [0, -1, 2.5, True])
    def test_invalid_count(self, count):
        with pytest.raises(ValidationError):
            allocate_installments(Decimal('100.00'), count)

    def test_unknown_mode(self):
        with pytest.raises(ValidationError):
            allocate_installments(Decimal('100.00'), 2, "weighted")
