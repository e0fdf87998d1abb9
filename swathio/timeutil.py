#!/usr/bin/env python3
"""
Calendar and epoch time conversion.

All epoch values are float seconds since 1970-01-01 UTC.
"""

from datetime import datetime, timedelta, timezone
from typing import Tuple

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def calendar_to_epoch(year: int, month: int, day: int,
                      hour: int = 0, minute: int = 0, second: float = 0.0) -> float:
    """Convert a UTC calendar time to epoch seconds."""
    base = datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
    return (base - EPOCH).total_seconds() + second


def epoch_to_calendar(time_d: float) -> Tuple[int, int, int, int, int, float]:
    """Convert epoch seconds to (year, month, day, hour, minute, second)."""
    whole = int(time_d // 60.0) * 60
    dt = EPOCH + timedelta(seconds=whole)
    return (dt.year, dt.month, dt.day, dt.hour, dt.minute, time_d - whole)


def simrad_to_epoch(date: int, msec: int) -> float:
    """Convert a Simrad yyyymmdd date and milliseconds of day to epoch seconds."""
    year = date // 10000
    month = (date % 10000) // 100
    day = date % 100
    return calendar_to_epoch(year, month, day) + 0.001 * msec


def epoch_to_simrad(time_d: float) -> Tuple[int, int]:
    """Convert epoch seconds to a Simrad (yyyymmdd, milliseconds of day) pair."""
    days = int(time_d // 86400.0)
    dt = EPOCH + timedelta(days=days)
    msec = int(round((time_d - days * 86400.0) * 1000.0))
    if msec >= 86400000:
        dt += timedelta(days=1)
        msec -= 86400000
    return (dt.year * 10000 + dt.month * 100 + dt.day, msec)
