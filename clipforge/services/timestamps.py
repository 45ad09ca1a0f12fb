"""
Timestamp codec - converts between SRT-style timestamps and float seconds.

Timestamps are exchanged as ``HH:MM:SS,mmm`` strings (the format the segment
proposer and subtitle tooling use) or as float seconds (what FFmpeg wants).
"""

import math
import re
from typing import Union

# Hours may exceed two digits for very long sources; minutes and seconds may not.
_TIMESTAMP_RE = re.compile(r"^(\d{2,}):([0-5]\d):([0-5]\d),(\d{3})$")


def to_seconds(timestamp: str) -> float:
    """
    Parse an ``HH:MM:SS,mmm`` timestamp into seconds.

    Args:
        timestamp: Timestamp string, e.g. "00:01:05,250"

    Returns:
        Elapsed seconds as a float (65.25 for the example above)

    Raises:
        FormatError: If the string does not match ``HH:MM:SS,mmm``
    """
    if not isinstance(timestamp, str):
        raise FormatError(f"Timestamp must be a string, got {type(timestamp).__name__}")

    match = _TIMESTAMP_RE.match(timestamp.strip())
    if not match:
        raise FormatError(f"Malformed timestamp '{timestamp}', expected HH:MM:SS,mmm")

    hh, mm, ss, mmm = (int(group) for group in match.groups())
    return hh * 3600 + mm * 60 + ss + mmm / 1000


def to_timestamp(seconds: float) -> str:
    """
    Format seconds as an ``HH:MM:SS,mmm`` timestamp.

    Milliseconds are rounded to the nearest integer before splitting into
    fields, so 59.9996 becomes "00:01:00,000" rather than "00:00:59,1000".

    Raises:
        FormatError: If seconds is negative or not finite
    """
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        raise FormatError(f"Seconds must be numeric, got {type(seconds).__name__}")
    if not math.isfinite(seconds) or seconds < 0:
        raise FormatError(f"Cannot format {seconds!r} as a timestamp")

    total_ms = int(round(seconds * 1000))
    hh, rem = divmod(total_ms, 3_600_000)
    mm, rem = divmod(rem, 60_000)
    ss, ms = divmod(rem, 1000)
    return f"{hh:02d}:{mm:02d}:{ss:02d},{ms:03d}"


def coerce_seconds(value: Union[str, int, float]) -> float:
    """Accept either timestamp representation and return float seconds."""
    if isinstance(value, str):
        return to_seconds(value)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FormatError(f"Unsupported timestamp value: {value!r}")
    if not math.isfinite(value) or value < 0:
        raise FormatError(f"Timestamp must be finite and non-negative, got {value!r}")
    return float(value)


class FormatError(Exception):
    """Exception raised when a timestamp is malformed."""
    pass
