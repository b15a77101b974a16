from datetime import date, datetime, time, timezone, tzinfo
from zoneinfo import ZoneInfo

from ..config import get_settings


def local_zone() -> ZoneInfo:
    return ZoneInfo(get_settings().timezone)


def now_local() -> datetime:
    return datetime.now(local_zone())


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def slot_start(day: date, slot_time: str, tz: tzinfo | None = None) -> datetime:
    """Combine a date and a normalized HH:MM into an aware datetime."""
    hour, minute = (int(part) for part in slot_time.split(":"))
    return datetime.combine(day, time(hour, minute), tzinfo=tz or local_zone())
