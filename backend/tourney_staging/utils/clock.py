"""
Naive-UTC time helpers.

The Entity Store keeps datetimes naive and in UTC (SQLite drops tzinfo), so
everything that compares against "now" goes through these helpers.
"""
from datetime import datetime, timezone
from typing import Callable, Optional, Union

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 string (trailing 'Z' allowed) into naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(text))


def format_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return to_naive_utc(value).isoformat(timespec="milliseconds") + "Z"
