"""
RMShop - Shared Helpers
========================
Pure utility functions with NO database or module dependencies.
"""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from config.settings import CURRENCY_PRECISION


def now_utc() -> datetime:
    """Returns current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_money(value) -> Decimal:
    """Quantize any numeric value to currency precision (2 decimals, half-up)."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CURRENCY_PRECISION, rounding=ROUND_HALF_UP)


def to_minor_units(amount) -> int:
    """Money → integer minor units (paise / cents) for gateway intents."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def percent_of(amount, percent) -> Decimal:
    """amount × percent / 100, rounded half-up to currency precision."""
    return to_money(to_money(amount) * Decimal(str(percent)) / Decimal("100"))


def safe_int(value: Optional[str]) -> Optional[int]:
    """Safely convert a string to int. Returns None on failure."""
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except (ValueError, TypeError):
        return None
