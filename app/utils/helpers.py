from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Tuple


def cents_from_amount(value: Any) -> int:
    """'9.99' -> 999. Provider amounts arrive as decimal strings."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return 0
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_cents(cents: int) -> str:
    """999 -> '9.99' (PayPal wants a decimal string)."""
    return str((Decimal(int(cents)) / 100).quantize(Decimal("0.01")))


def safe_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


def fee_split(gross_cents: int, fee_percent: float) -> Tuple[int, int]:
    """Return (platform_fee_cents, seller_earnings_cents)."""
    fee = int((Decimal(gross_cents) * Decimal(str(fee_percent)) / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return fee, gross_cents - fee
