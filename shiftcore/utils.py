from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional, Union
import re


Clock = Callable[[], datetime]

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_hhmm(value: Union[str, time]) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    s = str(value or "").strip()
    m = _HHMM_RE.match(s)
    if not m:
        raise ValueError(f"invalid time of day: {value!r} (expected HH:MM)")
    return time(int(m.group(1)), int(m.group(2)))


def format_hhmm(value: Union[str, time]) -> str:
    return parse_hhmm(value).strftime("%H:%M")


def format_day(d: Optional[Union[date, datetime]]) -> str:
    """Return e.g. 'Mon Jan 15 2024'; empty string for None."""
    if d is None:
        return ""
    if isinstance(d, datetime):
        d = d.date()
    return d.strftime("%a %b %d %Y")


def json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_safe(v) for v in value]
    return str(value)
