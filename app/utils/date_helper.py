from datetime import date, datetime, timezone
import calendar
import re
from typing import Optional, Tuple, Union

DateLike = Union[date, datetime, str, None]

MONTH_KEY_RE = re.compile(r"^\d{4}-\d{2}$")


def ensure_date(value: DateLike) -> Optional[date]:
    """
    Coerce a date-ish value to a plain ``date``.

    Accepts ``YYYY-MM-DD`` strings, full ISO timestamps (only the date part is
    kept), ``datetime`` and ``date`` objects. Empty values give ``None``.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    return date.fromisoformat(text[:10])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, pulling ``day`` back to the last day of short months."""
    return date(year, month, min(max(int(day), 1), days_in_month(year, month)))


def month_bounds(year: int, month: int) -> Tuple[date, date, int]:
    dim = days_in_month(year, month)
    return date(year, month, 1), date(year, month, dim), dim


def next_month(year: int, month: int) -> Tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


def month_key(value: DateLike) -> str:
    d = ensure_date(value)
    return f"{d.year:04d}-{d.month:02d}"


def is_month_key(value: str) -> bool:
    return bool(MONTH_KEY_RE.match(value or ""))


def parse_month_key(value: str) -> Tuple[int, int]:
    if not is_month_key(value):
        raise ValueError(f"Invalid month key {value!r}, expected YYYY-MM")
    year, month = value.split("-")
    if not 1 <= int(month) <= 12:
        raise ValueError(f"Invalid month in {value!r}")
    return int(year), int(month)


def days_between(start: date, end: date) -> int:
    """Whole calendar days from ``start`` to ``end`` (negative when end is earlier)."""
    return (end - start).days


def year_bounds(year: int) -> Tuple[str, str]:
    """Half-open ISO range ``[YYYY-01-01, YYYY+1-01-01)``."""
    return f"{year:04d}-01-01", f"{year + 1:04d}-01-01"


def month_range_iso(year: int, month: int) -> Tuple[str, str]:
    """Half-open ISO range for a month, used for string-compared issuedAt filters."""
    ny, nm = next_month(year, month)
    return f"{year:04d}-{month:02d}-01", f"{ny:04d}-{nm:02d}-01"


def today_utc() -> date:
    return utcnow().date()


def ensure_datetime(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time(), tzinfo=timezone.utc)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
