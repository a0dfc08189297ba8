from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo
from typing import Callable

Clock = Callable[[], datetime]

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(dt: datetime | None) -> datetime | None:
    """Treat naive values (SQLite hands them back that way) as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def local_zone() -> ZoneInfo:
    from counselbook.core.config import settings
    return ZoneInfo(settings.TIMEZONE)

def local_datetime(day: date, hhmm: str) -> datetime:
    """Wall-clock time in the service timezone, returned in UTC."""
    hh, mm = hhmm.split(":")
    wall = datetime.combine(day, time(int(hh), int(mm)), tzinfo=local_zone())
    return wall.astimezone(timezone.utc)

def local_day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time(0, 0), tzinfo=local_zone())
    return start.astimezone(timezone.utc), (start + timedelta(days=1)).astimezone(timezone.utc)

def to_local(dt: datetime) -> datetime:
    return as_utc(dt).astimezone(local_zone())

def whole_seconds(dt: datetime) -> datetime:
    return dt.replace(microsecond=0)
