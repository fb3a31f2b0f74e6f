"""
Test suite for deduction schedule generation
"""

import pytest
from datetime import date, datetime

from payroll_core.errors import ValidationError
from payroll_core.schedule import add_months, generate_due_dates, parse_date


class TestGenerateDueDates:
    """Test monthly due date generation"""

    def test_monthly_roll(self):
        """Test that deductions start the month after the start date"""
        dates = generate_due_dates(date(2024, 1, 15), 3, payment_day=10)
        assert dates == [date(2024, 2, 10), date(2024, 3, 10), date(2024, 4, 10)]

    def test_year_boundary_roll(self):
        dates = generate_due_dates(date(2024, 11, 20), 3, payment_day=10)
        assert dates == [date(2024, 12, 10), date(2025, 1, 10), date(2025, 2, 10)]

    def test_start_before_payment_day_still_skips_month(self):
        """Test that a start on the 1st does not deduct in the same month"""
        dates = generate_due_dates(date(2024, 5, 1), 1, payment_day=10)
        assert dates == [date(2024, 6, 10)]

    def test_defaults_to_configured_payment_day(self):
        dates = generate_due_dates(date(2024, 1, 15), 2)
        assert [d.day for d in dates] == [10, 10]

    def test_clamps_to_end_of_short_month(self):
        """Test that day 31 lands on the last day of short months"""
        dates = generate_due_dates(date(2024, 1, 5), 4, payment_day=31)
        assert dates == [
            date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30), date(2024, 5, 31)
        ]

    def test_accepts_iso_string(self):
        dates = generate_due_dates("2023-12-01", 2, payment_day=10)
        assert dates == [date(2024, 1, 10), date(2024, 2, 10)]

    def test_long_schedule_crosses_several_years(self):
        dates = generate_due_dates(date(2024, 1, 15), 36, payment_day=10)
        assert len(dates) == 36
        assert dates[-1] == date(2027, 1, 10)
        assert dates == sorted(dates)

    @pytest.mark.parametrize("payment_day", [0, 32, -1])
    def test_invalid_payment_day(self, payment_day):
        with pytest.raises(ValidationError):
            generate_due_dates(date(2024, 1, 15), 3, payment_day=payment_day)

    def test_invalid_count(self):
        with pytest.raises(ValidationError):
            generate_due_dates(date(2024, 1, 15), 0, payment_day=10)

    def test_schedule_beyond_year_9999_rejected(self):
        with pytest.raises(ValidationError):
            generate_due_dates(date(2024, 1, 15), 120000, payment_day=10)


class TestDateHelpers:
    """Test calendar arithmetic helpers"""

    def test_add_months_keeps_day(self):
        assert add_months(date(2024, 3, 15), 1) == date(2024, 4, 15)

    def test_add_months_negative(self):
        assert add_months(date(2024, 1, 15), -1) == date(2023, 12, 15)

    def test_add_months_clamps(self):
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)

    def test_parse_date_drops_time_of_day(self):
        assert parse_date(datetime(2024, 1, 15, 9, 30)) == date(2024, 1, 15)
        assert type(parse_date(datetime(2024, 1, 15, 9, 30))) is date

    def test_add_months_past_last_supported_year(self):
        with pytest.raises(ValidationError):
            add_months(date(9999, 12, 1), 1)

    def test_parse_date_rejects_garbage(self):
        with pytest.raises(ValidationError):
            parse_date("15/01/2024")
        with pytest.raises(ValidationError):
            parse_date(20240115)
