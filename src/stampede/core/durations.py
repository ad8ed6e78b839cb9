"""Duration parsing.

Scenario files express time the way load test scripts usually do:

- ``"500ms"``, ``"30s"``, ``"2m"``, ``"1h"``
- compound forms such as ``"1h30m"`` or ``"1m30s"``
- bare numbers (int or float) meaning seconds

Example:
    parse_duration("2m")      # 120.0
    parse_duration("1m30s")   # 90.0
    parse_duration(0.5)       # 0.5
"""

from __future__ import annotations

import math
import re

from stampede.errors import DurationSyntaxError

_UNITS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_FULL = re.compile(r"^(?:\d+(?:\.\d+)?(?:ms|s|m|h))+$")


def parse_duration(value: str | int | float) -> float:
    """Parse a duration into seconds.

    Args:
        value: Duration string or number of seconds

    Returns:
        Duration in seconds (never negative)

    Raises:
        DurationSyntaxError: If the value cannot be parsed, is negative or is not finite
    """
    if isinstance(value, bool):
        raise DurationSyntaxError(str(value))

    if isinstance(value, (int, float)):
        if value < 0 or not math.isfinite(value):
            raise DurationSyntaxError(str(value))
        return float(value)

    text = value.strip().lower().replace(" ", "")
    if not text:
        raise DurationSyntaxError(value)

    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if seconds < 0 or not math.isfinite(seconds):
            raise DurationSyntaxError(value)
        return seconds

    if not _FULL.match(text):
        raise DurationSyntaxError(value)

    return sum(float(amount) * _UNITS[unit] for amount, unit in _PART.findall(text))


def format_duration(seconds: float) -> str:
    """Render seconds compactly, e.g. ``90.0 -> "1m30s"``."""
    if seconds < 1:
        return f"{round(seconds * 1000)}ms"

    whole = int(seconds)
    minutes, secs = divmod(whole, 60)
    hours, minutes = divmod(minutes, 60)
    fraction = seconds - whole

    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or fraction or not parts:
        secs_text = f"{secs + fraction:.3f}".rstrip("0").rstrip(".")
        parts.append(f"{secs_text}s")
    return "".join(parts)
