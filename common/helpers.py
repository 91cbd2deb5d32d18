"""
Plateful Checkout - Shared Helpers
===================================
Pure utility functions with NO database or module dependencies.
"""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

TWOPLACES = Decimal("0.01")


def now_utc() -> datetime:
    """Returns current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when expires_at is set and already in the past."""
    if expires_at is None:
        return False
    return as_utc(expires_at) < (now or now_utc())


def safe_int(value: Optional[str]) -> Optional[int]:
    """Safely convert a string to int. Returns None on failure."""
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except (ValueError, TypeError):
        return None


def clean_str(value, max_len: int) -> str:
    """Coerce untrusted input to a trimmed string of at most max_len chars."""
    if value is None:
        return ""
    return str(value)[:max_len].strip()


def money(value) -> Decimal:
    """Round a dollar amount to 2 decimals (half-up)."""
    if value is None or value == "":
        return Decimal("0.00")
    return Decimal(str(value)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def round_cents(value) -> int:
    """Round a (possibly fractional) cents amount to whole cents (half-up)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_cents(amount) -> int:
    """Dollars -> integer cents."""
    return round_cents(Decimal(str(amount)) * 100)


def format_usd(cents) -> str:
    """Format integer cents as a dollar string: 1958 -> '$19.58'."""
    if cents is None:
        return "$0.00"
    try:
        v = Decimal(int(cents)) / 100
        sign = "-" if v < 0 else ""
        return f"{sign}${abs(v):,.2f}"
    except (ValueError, TypeError):
        return str(cents)
