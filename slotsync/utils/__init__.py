"""Utility modules."""

from slotsync.utils.time_windows import (
    at_local,
    get_timezone,
    overlaps,
    parse_hhmm,
    sunday_weekday,
)

__all__ = [
    "at_local",
    "get_timezone",
    "overlaps",
    "parse_hhmm",
    "sunday_weekday",
]
