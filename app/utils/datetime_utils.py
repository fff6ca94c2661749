from abc import ABC, abstractmethod
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """
    Get current UTC datetime as a timezone-aware datetime.

    Returns:
        datetime: Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def naive_utc_now() -> datetime:
    """
    Get current UTC datetime as a naive datetime (no timezone info).
    This is useful for storing in DATETIME2 fields which don't store timezone info.

    Returns:
        datetime: Current UTC datetime without timezone info
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to naive UTC (no timezone info).

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: Naive UTC datetime
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    utc_dt = dt.astimezone(timezone.utc)
    return utc_dt.replace(tzinfo=None)


def from_naive_utc(dt: datetime, zone: ZoneInfo = ZoneInfo("UTC")) -> datetime:
    """
    Convert a naive UTC datetime (no timezone info) to a timezone-aware datetime.

    Args:
        dt: Naive UTC datetime to convert
        zone: Timezone to use for the conversion (default: UTC)

    Returns:
        datetime: Timezone-aware datetime
    """
    if dt.tzinfo is not None:
        raise ValueError("Input datetime must be naive (no timezone info)")
    return dt.replace(tzinfo=timezone.utc).astimezone(zone)


def local_date_of(dt: datetime, zone: ZoneInfo) -> date:
    """Business-calendar date of a stored naive UTC timestamp."""
    return from_naive_utc(dt, zone).date()


class Clock(ABC):
    """Source of "now" for the batch workers."""

    zone: ZoneInfo

    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware, in the business timezone."""

    def today(self) -> date:
        return self.now().date()

    def naive_utc_now(self) -> datetime:
        return to_naive_utc(self.now())


class SystemClock(Clock):
    def __init__(self, zone_name: str = "Asia/Jakarta"):
        self.zone = ZoneInfo(zone_name)

    def now(self) -> datetime:
        return datetime.now(self.zone)


class FixedClock(Clock):
    """Clock frozen at a given instant; naive values are read in the clock's zone."""

    def __init__(self, instant: datetime, zone_name: str = "Asia/Jakarta"):
        self.zone = ZoneInfo(zone_name)
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self.zone)
        self._instant = instant.astimezone(self.zone)

    def now(self) -> datetime:
        return self._instant


def local_midnight_as_naive_utc(day: date, zone: ZoneInfo) -> datetime:
    """Start of a business-calendar day, expressed as a stored naive UTC timestamp."""
    return to_naive_utc(datetime.combine(day, time.min, tzinfo=zone))


def in_day_window(day: date, start: date, end: date) -> bool:
    """
    Whether ``day`` falls in the yearly window [start, end], comparing month/day only.

    A window whose start is later in the year than its end wraps over the new
    year, e.g. Dec 20 -> Jan 5.
    """
    point = (day.month, day.day)
    lower = (start.month, start.day)
    upper = (end.month, end.day)
    if lower <= upper:
        return lower <= point <= upper
    return point >= lower or point <= upper
