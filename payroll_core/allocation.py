"""
Installment Allocation Module

Splits a loan principal into per-installment amounts. Equal mode divides the
total evenly and lets the final installment absorb the rounding remainder;
custom mode accepts caller-supplied amounts after checking they add up.
"""

from decimal import Decimal
from enum import Enum
from typing import List, Optional, Sequence, Union

from .currency import Numeric, AMOUNT_TOLERANCE, round_money, to_decimal
from .errors import ValidationError


class AllocationMode(Enum):
    """How installment amounts are decided"""
    EQUAL = "equal"      # System computes even splits
    CUSTOM = "custom"    # Caller supplies every amount


def allocate_installments(
    total: Numeric,
    count: int,
    mode: Union[AllocationMode, str] = AllocationMode.EQUAL,
    amounts: Optional[Sequence[Numeric]] = None,
    tolerance: Decimal = AMOUNT_TOLERANCE
) -> List[Decimal]:
    """
    Produce the ordered installment amounts for a loan

    Args:
        total: Loan principal, must be positive
        count: Number of installments, at least 1
        mode: Allocation mode (equal or custom)
        amounts: Per-installment amounts, required for custom mode
        tolerance: Allowed difference between custom sum and total

    Returns:
        List of count amounts, index-aligned to sequence numbers 1..count

    Raises:
        ValidationError: If inputs are out of range or custom amounts
            do not match the count or the total
    """
    total = to_decimal(total)
    if total <= Decimal('0'):
        raise ValidationError("Total amount must be a positive number.")

    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise ValidationError("Number of installments must be at least 1.")

    try:
        mode = AllocationMode(mode)
    except ValueError:
        raise ValidationError(f"Unknown allocation mode '{mode}'.")

    if mode == AllocationMode.EQUAL:
        return _allocate_equal(total, count)
    return _allocate_custom(total, count, amounts, tolerance)


def _allocate_equal(total: Decimal, count: int) -> List[Decimal]:
    """First count-1 installments get the rounded share, the last takes the rest"""
    if count == 1:
        return [round_money(total)]

    regular = round_money(total / Decimal(count))
    last = round_money(total - regular * (count - 1))
    if regular <= Decimal('0') or last <= Decimal('0'):
        raise ValidationError(
            f"A total of {round_money(total):.2f} cannot be split into {count} "
            f"installments of at least 0.01."
        )
    return [regular] * (count - 1) + [last]


def _allocate_custom(
    total: Decimal,
    count: int,
    amounts: Optional[Sequence[Numeric]],
    tolerance: Decimal
) -> List[Decimal]:
    if amounts is None:
        raise ValidationError("Custom allocation requires an amount for every installment.")

    if len(amounts) != count:
        raise ValidationError(
            f"Expected {count} installment amounts but received {len(amounts)}."
        )

    result = []
    for number, raw in enumerate(amounts, start=1):
        try:
            amount = to_decimal(raw)
        except ValidationError:
            raise ValidationError(f"Installment {number} amount '{raw}' is not a number.")
        if amount < Decimal('0'):
            raise ValidationError(f"Installment {number} amount cannot be negative.")
        result.append(amount)

    actual = round_money(sum(result, Decimal('0')))
    if abs(actual - round_money(total)) > tolerance:
        raise ValidationError(
            f"Installment amounts add up to {actual:.2f} but the loan total is "
            f"{round_money(total):.2f}."
        )

    return result
