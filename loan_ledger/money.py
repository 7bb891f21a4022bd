"""
Money Utility Module

Exact 2-decimal rounding and cent reconciliation helpers. NEVER uses float for
monetary values: every amount that crosses a module boundary is a Decimal
rounded with round2().
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Iterable, List, Optional, Union
import re

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0')
TOLERANCE = Decimal('0.01')  # Amounts closer than this are considered settled

Number = Union[Decimal, int, float, str, None]


def to_decimal(value: Number) -> Decimal:
    """
    Convert any numeric input to Decimal without binary float artifacts

    None and empty strings become zero so that nullable storage columns can
    be summed directly.
    """
    if value is None or value == '':
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value: Number) -> Decimal:
    """Round to cents, half away from zero"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def approx_zero(value: Number, epsilon: Decimal = Decimal('0.005')) -> bool:
    """Check if amount is zero within epsilon"""
    return abs(to_decimal(value)) < epsilon


def approx_equal(a: Number, b: Number, tolerance: Decimal = TOLERANCE) -> bool:
    """Check if two amounts match within tolerance"""
    return abs(to_decimal(a) - to_decimal(b)) <= tolerance


def money_sum(values: Iterable[Number]) -> Decimal:
    """Sum amounts and round the total to cents"""
    total = ZERO
    for value in values:
        total += to_decimal(value)
    return round2(total)


def reconcile_last(items: Iterable[Number], target: Number) -> List[Decimal]:
    """
    Round each share to cents and force the last one to absorb the residual

    Args:
        items: Nearly-equal shares whose naive rounding may not sum to target
        target: Exact total the rounded shares must add up to

    Returns:
        Rounded shares summing exactly to round2(target)
    """
    shares = [round2(item) for item in items]
    if not shares:
        return shares

    target = round2(target)
    shares[-1] = round2(target - sum(shares[:-1], ZERO))
    return shares


def split_evenly(total: Number, count: int) -> List[Decimal]:
    """Divide total into count cent-exact shares, residual on the last share"""
    if count <= 0:
        raise ValueError("Cannot split an amount into zero shares")

    share = round2(to_decimal(total) / Decimal(count))
    return reconcile_last([share] * count, total)


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number ("RD$ 1,250.50", "1250,5")

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    if ',' in clean_value and '.' in clean_value:
        # Both comma and dot - assume comma is thousands separator
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 2:  # Decimal separator
            clean_value = clean_value.replace(',', '.')
        else:  # Thousands separator
            clean_value = clean_value.replace(',', '')

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")


def format_money(value: Number, symbol: Optional[str] = "RD$") -> str:
    """Format for display"""
    amount = round2(value)
    if symbol:
        return f"{symbol}{amount:,.2f}"
    return f"{amount:,.2f}"
