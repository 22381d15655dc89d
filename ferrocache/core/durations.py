"""Human-readable duration parsing for recache policies.

Accepts one or more ``<number><unit>`` terms, e.g. ``"1h"``, ``"30m"``,
``"1h 30m"``, ``"2days"``. A blank value or a zero total means "no
time-based policy" and parses to ``None``.
"""

from __future__ import annotations

import re
from datetime import timedelta

_TERM = re.compile(r"\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]+)\s*")

_UNIT_SECONDS: dict[str, float] = {
    "ms": 0.001,
    "msec": 0.001,
    "millis": 0.001,
    "s": 1,
    "sec": 1,
    "secs": 1,
    "second": 1,
    "seconds": 1,
    "m": 60,
    "min": 60,
    "mins": 60,
    "minute": 60,
    "minutes": 60,
    "h": 3600,
    "hr": 3600,
    "hrs": 3600,
    "hour": 3600,
    "hours": 3600,
    "d": 86400,
    "day": 86400,
    "days": 86400,
    "w": 604800,
    "week": 604800,
    "weeks": 604800,
}


class InvalidDurationError(ValueError):
    """Raised when a duration string cannot be parsed."""


def parse_duration(text: str | None) -> timedelta | None:
    """Parse a human-readable duration.

    Returns ``None`` for blank input or a zero duration.

    Raises
    ------
    InvalidDurationError
        If ``text`` is not made up entirely of ``<number><unit>`` terms.
    """
    if text is None or not text.strip():
        return None

    total = 0.0
    pos = 0
    stripped = text.strip()
    while pos < len(stripped):
        match = _TERM.match(stripped, pos)
        if match is None:
            raise InvalidDurationError(
                f"Invalid duration {text!r}. Use e.g. '1h', '30m' or '1h 30m'."
            )
        value, unit = match.groups()
        factor = _UNIT_SECONDS.get(unit.lower())
        if factor is None:
            raise InvalidDurationError(f"Unknown duration unit {unit!r} in {text!r}.")
        total += float(value) * factor
        pos = match.end()

    if total == 0:
        return None
    return timedelta(seconds=total)


def format_duration(value: timedelta | None) -> str:
    """Render a duration compactly for logs (``"1h30m"``, ``"none"``)."""
    if value is None:
        return "none"
    seconds = int(value.total_seconds())
    parts = []
    for suffix, size in (("d", 86400), ("h", 3600), ("m", 60), ("s", 1)):
        amount, seconds = divmod(seconds, size)
        if amount:
            parts.append(f"{amount}{suffix}")
    return "".join(parts) or "0s"
