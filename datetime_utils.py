"""
Datetime utilities for parsing the ISO timestamps returned by Supabase
and computing the relative windows used by search ranking and facets
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(dt: Optional[Union[str, datetime]]) -> Optional[datetime]:
    """
    Parse a datetime or ISO format string into an aware UTC datetime

    Args:
        dt: Datetime object or ISO format string (assumes UTC if no timezone)

    Returns:
        Timezone-aware datetime or None if input is None/invalid
    """
    if dt is None or dt == "":
        return None

    try:
        if isinstance(dt, datetime):
            dt_obj = dt
        else:
            # Supabase returns 'Z' suffixed timestamps
            dt_str = str(dt).replace('Z', '+00:00')
            try:
                dt_obj = datetime.fromisoformat(dt_str)
            except ValueError:
                # Fallback for fractional seconds Python can't parse
                dt_obj = datetime.fromisoformat(dt_str.split('.')[0])

        # Ensure datetime has timezone info (assume UTC if naive)
        if dt_obj.tzinfo is None:
            dt_obj = dt_obj.replace(tzinfo=timezone.utc)

        return dt_obj.astimezone(timezone.utc)

    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to parse datetime {dt}: {str(e)}")
        return None


def to_iso(dt: Optional[Union[str, datetime]]) -> Optional[str]:
    """Normalize a datetime value to an ISO 8601 UTC string"""
    parsed = parse_datetime(dt)
    return parsed.isoformat() if parsed else None


def days_until(dt: Optional[Union[str, datetime]], now: Optional[datetime] = None) -> Optional[int]:
    """
    Whole days from now until dt, rounded up (negative for past datetimes)

    An event 3 hours away is 1 day away, an event 7 days and 1 hour away is 8.
    """
    target = parse_datetime(dt)
    if target is None:
        return None
    now = now or utc_now()
    return math.ceil((target - now).total_seconds() / SECONDS_PER_DAY)


def hours_ago(hours: int, now: Optional[datetime] = None) -> datetime:
    return (now or utc_now()) - timedelta(hours=hours)
