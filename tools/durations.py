# tools/durations.py
"""Clock-time and free-form duration text helpers.

Every parser here is total: narrative and provider text is not guaranteed to
be well formed, so bad input maps to a default instead of raising.
"""
from __future__ import annotations

import math
import re
from typing import Any, Optional

MINUTES_PER_DAY = 24 * 60

_CLOCK = re.compile(r"^(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?\s*(?P<ampm>[AaPp][Mm])?$")

_HOURS = r"(?:hours?|hrs?|h)"
_MINUTES = r"(?:minutes?|mins?|m)"
_NUMBER = r"\d+(?:\.\d+)?"

_RANGED_HOURS = re.compile(rf"({_NUMBER})\s*(?:-|–|to)\s*({_NUMBER})\s*{_HOURS}\b")
_RANGED_MINUTES = re.compile(rf"(\d+)\s*(?:-|–|to)\s*(\d+)\s*{_MINUTES}\b")
_COMPOUND = re.compile(rf"(\d+)\s*{_HOURS}\s*(?:and\s*)?(\d+)\s*{_MINUTES}\b")
_DECIMAL_HOURS = re.compile(rf"(\d+\.\d+)\s*{_HOURS}\b")
_EXPLICIT_MINUTES = re.compile(rf"(\d+)\s*{_MINUTES}\b")
_WHOLE_HOURS = re.compile(rf"(\d+)\s*{_HOURS}\b")
_BARE_INTEGER = re.compile(r"(\d+)")


def parse_clock_time(value: Any) -> Optional[int]:
    """Return minutes since midnight for ``HH:MM`` (or ``h:mm AM``), else ``None``.

    ``24:00`` is accepted so it can serve as an end-of-day bound.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return max(0, min(int(value), MINUTES_PER_DAY))
    if not isinstance(value, str):
        return None

    match = _CLOCK.match(value.strip())
    if not match:
        return None

    hour = int(match.group("hour"))
    minute = int(match.group("minute") or 0)
    ampm = match.group("ampm")
    if ampm:
        if hour < 1 or hour > 12:
            return None
        ampm = ampm.lower()
        if ampm == "pm" and hour != 12:
            hour += 12
        if ampm == "am" and hour == 12:
            hour = 0

    if minute > 59:
        return None
    if hour == 24 and minute == 0:
        return MINUTES_PER_DAY
    if hour > 23:
        return None
    return hour * 60 + minute


def format_clock_time(minutes: int) -> str:
    """Format minutes since midnight as ``HH:MM``, wrapping past 24h."""
    minutes = int(minutes) % MINUTES_PER_DAY
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _whole_minutes(value: float) -> Optional[int]:
    # Digit runs too long for a float overflow to inf.
    if not math.isfinite(value):
        return None
    return round(value)


def _match_duration(text: str) -> Optional[int]:
    lowered = text.strip().lower()
    if not lowered:
        return None

    match = _RANGED_HOURS.search(lowered)
    if match:
        low, high = float(match.group(1)), float(match.group(2))
        return _whole_minutes((low + high) / 2 * 60)

    match = _RANGED_MINUTES.search(lowered)
    if match:
        low, high = int(match.group(1)), int(match.group(2))
        return round((low + high) / 2)

    match = _COMPOUND.search(lowered)
    if match:
        return int(match.group(1)) * 60 + int(match.group(2))

    match = _DECIMAL_HOURS.search(lowered)
    if match:
        return _whole_minutes(float(match.group(1)) * 60)

    match = _EXPLICIT_MINUTES.search(lowered)
    if match:
        return int(match.group(1))

    match = _WHOLE_HOURS.search(lowered)
    if match:
        return int(match.group(1)) * 60

    match = _BARE_INTEGER.search(lowered)
    if match:
        return int(match.group(1))
    return None


def parse_duration_text(text: Any, default: Optional[int] = 60) -> Optional[int]:
    """Convert free-form duration text into whole minutes.

    Priority: ranged hours ("2-3 hours" -> 150), ranged minutes, compound
    ("1h 30m"), decimal hours ("1.5 hours"), minutes ("90 mins"), whole hours
    ("2 hours"), then any bare integer. Anything else yields ``default``.
    """
    if isinstance(text, bool):
        return default
    if isinstance(text, float) and not math.isfinite(text):
        return default
    if isinstance(text, (int, float)):
        return int(text) if text >= 0 else default
    if not isinstance(text, str):
        return default
    try:
        minutes = _match_duration(text)
    except ValueError:
        # int() refuses digit strings past sys.get_int_max_str_digits().
        minutes = None
    return default if minutes is None else minutes


def format_duration(minutes: int) -> str:
    """``45`` -> ``"45m"``, ``120`` -> ``"2h"``, ``90`` -> ``"1h 30m"``."""
    minutes = max(0, int(minutes))
    if minutes < 60:
        return f"{minutes}m"
    hours, remainder = divmod(minutes, 60)
    return f"{hours}h {remainder}m" if remainder else f"{hours}h"


def format_seconds(seconds: float) -> str:
    """Round a travel duration up to whole minutes and format it."""
    return format_duration(math.ceil(max(0.0, seconds) / 60))


def format_distance(meters: float) -> str:
    if meters >= 1000:
        return f"{meters / 1000:.1f} km"
    return f"{round(meters)} m"


__all__ = [
    "MINUTES_PER_DAY",
    "format_clock_time",
    "format_distance",
    "format_duration",
    "format_seconds",
    "parse_clock_time",
    "parse_duration_text",
]
