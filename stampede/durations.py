"""Parsing of human-friendly duration strings such as ``"1m30s"`` or ``"250ms"``."""

from __future__ import annotations

import re

from stampede.exceptions import ConfigError

# Longest units first so "ms" is not read as "m" followed by garbage.
_UNIT_SECONDS = {
    "ms": 0.001,
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
}

_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")


def parse_duration(value: str | int | float) -> float:
    """
    Convert a duration into seconds.

    Plain numbers are taken as seconds.  Strings are one or more
    ``<number><unit>`` parts with units ``h``, ``m``, ``s`` and ``ms``,
    e.g. ``"30s"``, ``"1m"``, ``"1h2m3.5s"``, ``"500ms"``.

    Args:
        value: The duration as a number of seconds or a string.

    Returns:
        The duration in seconds.

    Raises:
        ConfigError: If the value is negative or cannot be parsed.
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")

    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip().lower()
        if not text:
            raise ConfigError("Duration must not be empty")
        try:
            seconds = float(text)
        except ValueError:
            seconds = _parse_compound(text)

    if seconds < 0:
        raise ConfigError(f"Duration must not be negative: {value!r}")
    return seconds


def _parse_compound(text: str) -> float:
    position = 0
    total = 0.0
    for match in _PART_RE.finditer(text):
        if match.start() != position:
            break
        number, unit = match.groups()
        total += float(number) * _UNIT_SECONDS[unit]
        position = match.end()

    if position == 0 or position != len(text):
        raise ConfigError(f"Invalid duration: {text!r}")
    return total


def format_duration(seconds: float) -> str:
    """Render seconds compactly for log lines (``"1m30s"``, ``"250ms"``)."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    minutes, secs = divmod(seconds, 60)
    if minutes >= 1:
        return f"{int(minutes)}m{secs:g}s" if secs else f"{int(minutes)}m"
    return f"{secs:g}s"
