"""
Conversion between Stripe minor units and major currency units.
Stripe amounts must pass through here before being mixed with order totals.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

ZERO_DECIMAL_CURRENCIES = frozenset({
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga", "pyg",
    "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
})

_CENT = Decimal("0.01")


def is_zero_decimal(currency: Any) -> bool:
    return str(currency or "").strip().lower() in ZERO_DECIMAL_CURRENCIES


def to_stripe_amount(amount: Any, currency: str) -> Optional[int]:
    """Major units -> Stripe minor units"""
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return None
    if value != value:  # NaN
        return None
    return round(value) if is_zero_decimal(currency) else round(value * 100)


def from_stripe_amount(amount: Any, currency: str) -> float:
    """Stripe minor units -> major units; unparseable amounts become 0"""
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return 0.0
    if value != value or value in (float("inf"), float("-inf")):
        return 0.0
    return value if is_zero_decimal(currency) else value / 100


def to_cents(value: Any) -> Decimal:
    """Round half-up to 2 decimal places, as a Decimal"""
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def round_currency(value: Any) -> float:
    try:
        return float(to_cents(value or 0))
    except (ArithmeticError, ValueError):
        return 0.0
