import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from functools import lru_cache
from typing import Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from crm_reminders.config.settings import settings
from crm_reminders.utils.datetime_utils import to_utc

DEFAULT_TIMEZONE = settings.DEFAULT_TIMEZONE

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2}(?:\.\d+)?)?$")


@dataclass(frozen=True)
class ZonedParts:
    """Local calendar and clock fields of an instant in a given zone."""

    year: int
    month: int
    day: int
    hour: int
    minute: int

    @property
    def date(self) -> date:
        return date(self.year, self.month, self.day)

    @property
    def minutes(self) -> int:
        return self.hour * 60 + self.minute

    @property
    def date_string(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"

    @property
    def time_string(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@lru_cache(maxsize=512)
def _load_zone(zone_id: str) -> Optional[ZoneInfo]:
    try:
        return ZoneInfo(zone_id)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def resolve_zone(value: object, default: str = DEFAULT_TIMEZONE) -> str:
    """
    Return `value` when it names a known IANA zone, otherwise `default`.

    Never raises: profiles may carry empty, stale or garbage zone strings and the
    scheduler must keep working for those users.
    """
    if not isinstance(value, str) or not value.strip():
        return default
    zone_id = value.strip()
    if _load_zone(zone_id) is None:
        return default
    return zone_id


def zoned_parts(instant: datetime, zone: str) -> ZonedParts:
    """Local date/time fields of `instant` in `zone`. Naive instants are UTC."""
    tz = _load_zone(resolve_zone(zone)) or ZoneInfo(DEFAULT_TIMEZONE)
    local = to_utc(instant).astimezone(tz)
    return ZonedParts(
        year=local.year,
        month=local.month,
        day=local.day,
        hour=local.hour,
        minute=local.minute,
    )


def local_date(instant: datetime, zone: str) -> str:
    return zoned_parts(instant, zone).date_string


def local_time(instant: datetime, zone: str) -> str:
    return zoned_parts(instant, zone).time_string


def local_date_time(instant: datetime, zone: str) -> Tuple[str, str]:
    parts = zoned_parts(instant, zone)
    return parts.date_string, parts.time_string


def time_to_minutes(value: object) -> Optional[int]:
    """
    Minutes since midnight for "HH:MM" (seconds are tolerated and ignored).

    Returns None for anything malformed or out of range.
    """
    if not isinstance(value, str):
        return None
    match = _TIME_PATTERN.match(value.strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour * 60 + minute


def parse_date(value: Union[str, date]) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        return None


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)


def format_date_label(value: Union[str, date]) -> str:
    """Render a calendar date as e.g. "Thu, Feb 5, 2026"."""
    parsed = parse_date(value)
    if parsed is None:
        return str(value)
    return f"{parsed.strftime('%a, %b')} {parsed.day}, {parsed.year}"
