"""
Money Rounding Module

Currency-safe rounding and parsing for loan amounts. Every computed amount goes
through round_money() before it is stored or compared. NEVER uses float for
monetary values; floats coming from callers are converted through str().
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Union
import re

from .errors import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal('0.01')
AMOUNT_TOLERANCE = Decimal('0.01')

Numeric = Union[Decimal, int, float, str]


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert a numeric value to Decimal without rounding

    Args:
        value: Decimal, int, float or numeric string

    Returns:
        Exact Decimal value

    Raises:
        ValidationError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValidationError(f"'{value}' is not a valid amount")

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"'{value}' is not a valid amount")
    else:
        raise ValidationError(f"'{value}' is not a valid amount")

    if not result.is_finite():
        raise ValidationError(f"'{value}' is not a valid amount")
    return result


def round_money(value: Numeric) -> Decimal:
    """Round to exactly 2 decimal places, half away from zero"""
    try:
        return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # More digits than the context precision can hold at cent scale
        raise ValidationError(f"'{value}' is too large to be an amount")


def within_tolerance(actual: Numeric, expected: Numeric,
                     tolerance: Decimal = AMOUNT_TOLERANCE) -> bool:
    """Check two amounts agree to within the rounding tolerance"""
    return abs(round_money(actual) - round_money(expected)) <= tolerance


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert user-entered text to Decimal, handling common formats

    Args:
        value: String representation of number, possibly with a currency
            symbol or thousands separators

    Returns:
        Decimal value

    Raises:
        ValidationError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValidationError("Amount must be a non-empty string")

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    if ',' in clean_value and '.' in clean_value:
        # Both comma and dot - comma is the thousands separator
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 2:
            clean_value = clean_value.replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')
    elif ',' in clean_value:
        clean_value = clean_value.replace(',', '')

    return to_decimal(clean_value)


def format_amount(amount: Numeric, currency: str) -> str:
    """Format for display, e.g. 'USD 1,234.50'"""
    return f"{currency} {round_money(amount):,.2f}"
