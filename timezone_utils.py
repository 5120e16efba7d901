"""
Timezone utilities for the mission backend.
Timestamps are stored as naive UTC; "today" and "this month" are computed in
the application timezone (APP_TIMEZONE) so daily missions and monthly ledger
statistics roll over at local midnight.
"""

import datetime
import os
import pytz
from dotenv import load_dotenv
from typing import Optional

load_dotenv()
APP_TZ = pytz.timezone(os.environ.get("APP_TIMEZONE", "Asia/Seoul"))


def utcnow() -> datetime.datetime:
    """Current time as naive UTC, the format every timestamp column uses."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def to_local(dt: datetime.datetime, tz=APP_TZ) -> datetime.datetime:
    """
    Convert a stored timestamp to the application timezone.

    Args:
        dt: naive UTC or timezone-aware datetime
        tz: target timezone (defaults to APP_TZ)

    Returns:
        datetime.datetime: aware datetime in the target timezone
    """
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(tz)


def to_naive_utc(dt: datetime.datetime) -> datetime.datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(pytz.utc).replace(tzinfo=None)


def local_start_of_day(now: Optional[datetime.datetime] = None, tz=APP_TZ) -> datetime.datetime:
    """
    Start of the local day containing `now`, returned as naive UTC for querying.
    """
    local_now = to_local(now or utcnow(), tz)
    start = tz.localize(datetime.datetime.combine(local_now.date(), datetime.time.min))
    return to_naive_utc(start)


def local_start_of_month(now: Optional[datetime.datetime] = None, tz=APP_TZ) -> datetime.datetime:
    """
    Start of the local month containing `now`, returned as naive UTC for querying.
    """
    local_now = to_local(now or utcnow(), tz)
    first = datetime.datetime(local_now.year, local_now.month, 1)
    return to_naive_utc(tz.localize(first))


def isoformat_utc(dt: Optional[datetime.datetime]) -> Optional[str]:
    if dt is None:
        return None
    return to_naive_utc(dt).isoformat() + "Z"


__all__ = [
    'APP_TZ',
    'utcnow',
    'to_local',
    'to_naive_utc',
    'local_start_of_day',
    'local_start_of_month',
    'isoformat_utc',
]
