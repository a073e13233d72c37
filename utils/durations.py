"""
ISO-8601 duration helpers.

Recipe sources express prep and cook times as ``P[nD][T[nH][nM][nS]]``.
The pipeline stores whole minutes, so seconds are rounded up.
"""

import math
import re
from typing import Optional

_DURATION_PATTERN = re.compile(
    r'^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?$',
    re.IGNORECASE
)


def parse_duration(value: Optional[str]) -> Optional[int]:
    """
    Parse an ISO-8601 duration into integer minutes.

    Returns None for empty or malformed input ("30 minutes", "1:30", "T30M").
    A bare "P" is a valid zero-length duration.
    """
    if not value or not isinstance(value, str):
        return None

    match = _DURATION_PATTERN.match(value.strip())
    if not match:
        return None

    days, hours, minutes, seconds = match.groups()
    total_seconds = (
        int(days or 0) * 86400
        + int(hours or 0) * 3600
        + int(minutes or 0) * 60
        + float(seconds or 0)
    )
    return math.ceil(total_seconds / 60)


def format_duration(minutes: Optional[int]) -> Optional[str]:
    """Format minutes as ``PT#H#M``; parse_duration(format_duration(m)) == m."""
    if minutes is None or minutes < 0:
        return None

    hours, rest = divmod(int(minutes), 60)
    if hours and rest:
        return f"PT{hours}H{rest}M"
    if hours:
        return f"PT{hours}H"
    return f"PT{rest}M"
