from datetime import datetime, timezone


def utc_now() -> datetime:
    """
    Get current UTC datetime as a timezone-aware datetime.

    Returns:
        datetime: Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to UTC timezone-aware datetime.

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: UTC timezone-aware datetime
    """
    if dt.tzinfo is None:
        # Assume naive datetime is in UTC
        return dt.replace(tzinfo=timezone.utc)
    else:
        # Convert to UTC
        return dt.astimezone(timezone.utc)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to naive UTC (no timezone info).
    Claim and notification timestamps are stored this way so that comparisons
    in SQL behave identically on every backend.

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: Naive UTC datetime
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    else:
        # Convert to UTC and remove timezone info
        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.replace(tzinfo=None)
