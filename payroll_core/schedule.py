"""
Deduction Schedule Module

Generates installment due dates. Deductions fall on a fixed day of the month,
starting in the month after the loan start date and running one per calendar
month. A payment day past the end of a short month is clamped to that month's
last day rather than spilling into the next month.
"""

from datetime import MAXYEAR, MINYEAR, date, datetime
from typing import List, Optional, Union
import calendar

from .errors import ValidationError


def add_months(start_date: date, months: int, day: Optional[int] = None) -> date:
    """
    Add calendar months to a date, carrying into following years

    Args:
        start_date: Base date
        months: Number of months to add (may be negative)
        day: Day of month for the result; defaults to start_date.day

    Returns:
        Date in the target month, day clamped to the month length

    Raises:
        ValidationError: If the result falls outside the supported years
    """
    year, month_index = divmod(start_date.month - 1 + months, 12)
    year += start_date.year
    if not MINYEAR <= year <= MAXYEAR:
        raise ValidationError(f"Schedule runs past the supported year range ({MINYEAR}-{MAXYEAR}).")
    month = month_index + 1
    target_day = start_date.day if day is None else day
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(target_day, last_day))


def generate_due_dates(
    start_date: Union[date, str],
    count: int,
    payment_day: Optional[int] = None
) -> List[date]:
    """
    Generate one due date per installment

    Installment i (0-based) is due on payment_day of the month start + 1 + i.

    Args:
        start_date: Loan start date (date or ISO string)
        count: Number of installments
        payment_day: Day of month deductions are taken; defaults to the
            configured payment day

    Returns:
        Ordered list of count dates, index-aligned to sequence numbers

    Raises:
        ValidationError: On invalid count, payment day or start date
    """
    start_date = parse_date(start_date)

    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise ValidationError("Number of installments must be at least 1.")

    if payment_day is None:
        from .config import get_config
        payment_day = get_config().payment_day

    if not 1 <= payment_day <= 31:
        raise ValidationError(f"Payment day must be between 1 and 31, got {payment_day}.")

    return [add_months(start_date, 1 + i, day=payment_day) for i in range(count)]


def parse_date(value: Union[date, str]) -> date:
    """Accept a date or an ISO 'YYYY-MM-DD' string; a datetime keeps only its date"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise ValidationError(f"'{value}' is not a valid date (expected YYYY-MM-DD).")
