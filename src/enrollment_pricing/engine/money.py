"""
Decimal helpers for monetary amounts.

All amounts are held as ``Decimal`` and rounded exactly once, at the point
where they are computed.
"""
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_HALF_UP, InvalidOperation

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


class AmountOutOfRange(ValueError):
    """An amount too large to hold at currency precision."""


_ROUNDING = {
    'half_even': ROUND_HALF_EVEN,
    'half_up': ROUND_HALF_UP,
}


def to_decimal(value, field_name: str = "amount") -> Decimal:
    """Parse a number or numeric string into a Decimal without float drift."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{field_name} must be numeric, got {value!r}")
    try:
        # str() first so 0.1 becomes Decimal('0.1'), not its binary expansion
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"{field_name} must be numeric, got {value!r}")
    if not result.is_finite():
        raise ValueError(f"{field_name} must be finite, got {value!r}")
    return result


def round_money(amount: Decimal, mode: str = 'half_even') -> Decimal:
    """Round to currency precision (2 dp) using the named rounding mode."""
    try:
        rounding = _ROUNDING[mode]
    except KeyError:
        raise ValueError(f"Unknown rounding mode '{mode}'")
    try:
        return amount.quantize(CENT, rounding=rounding)
    except InvalidOperation:
        raise AmountOutOfRange(f"{amount} cannot be held to 2 decimal places")


def format_money(amount: Decimal, currency: str = "USD") -> str:
    return f"{currency} {amount:,.2f}"
