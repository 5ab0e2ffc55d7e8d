"""
Normalisation of externally supplied working-hours configuration.

Upstream salon and employee records are loosely typed: the same schedule has
been stored with ``open``/``openTime``/``startTime`` keys, as weekday-name
mappings or as lists, sometimes serialised as a JSON string. Everything is
converted here, once, into ``WeeklyHours``. Nothing in this module raises on
bad upstream data; an unreadable day is logged and treated as closed.
"""

import json
import logging
from datetime import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .models import BreakPeriod, DayHours, WeeklyHours

logger = logging.getLogger(__name__)

OPEN_KEYS = ("open", "openTime", "startTime", "start_time")
CLOSE_KEYS = ("close", "closeTime", "endTime", "end_time")
FLAG_KEYS = ("isOpen", "is_open")

WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def parse_time(value: Any) -> Optional[time]:
    """
    Parse "HH:MM" (or "HH:MM:SS") strings and ``time`` objects.

    Returns None for anything else.
    """
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if not isinstance(value, str):
        return None

    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        return None
    try:
        hour, minute = int(parts[0]), int(parts[1])
        return time(hour=hour, minute=minute)
    except ValueError:
        return None


def weekday_index(key: Any) -> Optional[int]:
    """Map "monday"/"Mon"/0 style keys to 0=Monday ... 6=Sunday."""
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key if 0 <= key <= 6 else None
    if not isinstance(key, str):
        return None

    lowered = key.strip().lower()
    if lowered.isdigit():
        return weekday_index(int(lowered))
    for index, name in enumerate(WEEKDAY_NAMES):
        if lowered == name or (len(lowered) >= 3 and name.startswith(lowered)):
            return index
    return None


def _first_present(entry: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = entry.get(key)
        if value not in (None, ""):
            return value
    return None


def _parse_breaks(raw_breaks: Any, day_label: str) -> Tuple[BreakPeriod, ...]:
    if not raw_breaks:
        return ()
    if not isinstance(raw_breaks, (list, tuple)):
        logger.warning("Ignoring breaks for %s: expected a list, got %r", day_label, raw_breaks)
        return ()

    breaks: List[BreakPeriod] = []
    for raw in raw_breaks:
        if not isinstance(raw, Mapping):
            logger.warning("Ignoring malformed break on %s: %r", day_label, raw)
            continue
        start = parse_time(_first_present(raw, OPEN_KEYS))
        end = parse_time(_first_present(raw, CLOSE_KEYS))
        if start is None or end is None or start >= end:
            logger.warning("Ignoring malformed break on %s: %r", day_label, raw)
            continue
        breaks.append(BreakPeriod(start_time=start, end_time=end))

    return tuple(sorted(breaks, key=lambda period: period.start_time))


def normalize_day(entry: Any, day_label: str = "day") -> Optional[DayHours]:
    """
    Convert one weekday entry into ``DayHours``.

    Returns None when the day is closed or cannot be read.
    """
    if entry is None:
        return None
    if not isinstance(entry, Mapping):
        logger.warning("Treating %s as closed: unreadable entry %r", day_label, entry)
        return None

    flag = _first_present(entry, FLAG_KEYS)
    if flag is not None and not flag:
        return None

    start = parse_time(_first_present(entry, OPEN_KEYS))
    end = parse_time(_first_present(entry, CLOSE_KEYS))
    if start is None or end is None:
        if flag:
            logger.warning(
                "Treating %s as closed: marked open but no usable open/close time in %r",
                day_label,
                entry,
            )
        return None

    if start >= end:
        logger.warning(
            "Treating %s as closed: opening time %s is not before closing time %s",
            day_label,
            start,
            end,
        )
        return None

    return DayHours(
        start_time=start,
        end_time=end,
        breaks=_parse_breaks(entry.get("breaks"), day_label),
    )


def normalize_working_hours(raw: Any) -> Optional[WeeklyHours]:
    """
    Normalise a raw weekly schedule.

    Accepted shapes:
    - mapping keyed by weekday name or index: {"monday": {...}, ...}
    - list of seven entries, Monday first
    - JSON text of either of the above
    - an existing ``WeeklyHours`` (returned as-is)

    Returns None when there is no configuration at all. Callers must read
    that as "closed", never as "unrestricted".
    """
    if raw is None:
        return None
    if isinstance(raw, WeeklyHours):
        return raw

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring working hours: not valid JSON")
            return None
        if raw is None:
            return None

    days: Dict[int, DayHours] = {}

    if isinstance(raw, Mapping):
        for key, entry in raw.items():
            index = weekday_index(key)
            if index is None:
                logger.debug("Skipping unknown weekday key %r in working hours", key)
                continue
            day_hours = normalize_day(entry, day_label=WEEKDAY_NAMES[index])
            if day_hours is not None:
                days[index] = day_hours
    elif isinstance(raw, (list, tuple)):
        if len(raw) != 7:
            logger.warning(
                "Working hours list has %d entries, expected 7 (Monday first)", len(raw)
            )
        for index, entry in enumerate(raw[:7]):
            day_hours = normalize_day(entry, day_label=WEEKDAY_NAMES[index])
            if day_hours is not None:
                days[index] = day_hours
    else:
        logger.warning("Ignoring working hours of unsupported type %s", type(raw).__name__)
        return None

    return WeeklyHours(days=days)
