"""Display formatting and severity classification for GPU telemetry.

All functions here are pure and total: they never raise on numeric input
and always return a display string or a classification.

Key conversions:
1. Sizes → binary unit ladder (Bytes, KB, MB, GB, ...)
2. Percent/temperature/power → fixed decimals with a unit suffix
3. Timestamps → local date-time or "N units ago"
4. Utilization/temperature → LOW/MEDIUM/HIGH bands and their colours
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional, Union

from .models import Severity

BYTE_UNITS = ("Bytes", "KB", "MB", "GB", "TB", "PB", "EB", "ZB", "YB")
GIB = 1024 ** 3

# Band thresholds: values below the first are LOW, below the second MEDIUM
UTILIZATION_THRESHOLDS = (30.0, 70.0)
TEMPERATURE_THRESHOLDS = (60.0, 80.0)

SEVERITY_COLORS = {
    Severity.LOW: "green",
    Severity.MEDIUM: "yellow",
    Severity.HIGH: "red",
}

TimestampLike = Union[str, int, float, datetime]


def _trim_decimals(text: str) -> str:
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


# =============================================================================
# Sizes and Units
# =============================================================================


def format_bytes(num_bytes: float, decimals: int = 2) -> str:
    """Format a byte count using the largest binary unit with a value >= 1.

    Args:
        num_bytes: Size in bytes
        decimals: Maximum decimal places (negative treated as 0)

    Returns:
        String like "1.5 KB"; zero formats as "0 Bytes"
    """
    if not num_bytes:
        return "0 Bytes"

    places = max(decimals, 0)
    scaled = float(num_bytes)
    index = 0
    while abs(scaled) >= 1024 and index < len(BYTE_UNITS) - 1:
        scaled /= 1024
        index += 1

    return f"{_trim_decimals(f'{scaled:.{places}f}')} {BYTE_UNITS[index]}"


def format_gib(gibibytes: float, decimals: int = 1) -> str:
    """Format a GiB quantity (as reported by the API) through the byte ladder."""
    return format_bytes(gibibytes * GIB, decimals)


def format_percentage(value: float, decimals: int = 1) -> str:
    return f"{value:.{max(decimals, 0)}f}%"


def format_temperature(celsius: float, decimals: int = 1) -> str:
    return f"{celsius:.{max(decimals, 0)}f}°C"


def format_power(watts: float, decimals: int = 1) -> str:
    return f"{watts:.{max(decimals, 0)}f}W"


# =============================================================================
# Time
# =============================================================================


def parse_timestamp(value: TimestampLike) -> Optional[datetime]:
    """Parse an ISO string, epoch seconds or datetime into an aware datetime.

    Returns None when the value cannot be interpreted.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # Go emits nanosecond fractions; datetime accepts at most microseconds
    text = re.sub(r"(\.\d{6})\d+", r"\1", text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_timestamp(value: TimestampLike) -> str:
    """Format a timestamp as local "MM/DD/YYYY, HH:MM:SS AM"."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return str(value)
    return parsed.astimezone().strftime("%m/%d/%Y, %I:%M:%S %p")


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count != 1 else ''}"


def format_relative_time(value: TimestampLike, now: Optional[TimestampLike] = None) -> str:
    """Describe how long ago a timestamp was, using its largest non-zero unit.

    Args:
        value: Past timestamp (ISO string, epoch seconds or datetime)
        now: Reference time; the current UTC time when absent or unparseable

    Returns:
        String like "3 minutes ago"; future timestamps count as "0 seconds ago"
    """
    parsed = parse_timestamp(value)
    if parsed is None:
        return str(value)

    reference = parse_timestamp(now) if now is not None else None
    if reference is None:
        reference = datetime.now(timezone.utc)
    elapsed = max(int((reference - parsed).total_seconds()), 0)

    days, rem = divmod(elapsed, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, seconds = divmod(rem, 60)

    if days:
        return f"{_plural(days, 'day')} ago"
    if hours:
        return f"{_plural(hours, 'hour')} ago"
    if minutes:
        return f"{_plural(minutes, 'minute')} ago"
    return f"{_plural(seconds, 'second')} ago"


# =============================================================================
# Severity Classification
# =============================================================================


def _classify(value: float, thresholds) -> Severity:
    low, high = thresholds
    if value < low:
        return Severity.LOW
    if value < high:
        return Severity.MEDIUM
    return Severity.HIGH


def classify_utilization(utilization: float) -> Severity:
    """LOW below 30%, MEDIUM below 70%, HIGH otherwise."""
    return _classify(utilization, UTILIZATION_THRESHOLDS)


def classify_temperature(celsius: float) -> Severity:
    """LOW below 60°C, MEDIUM below 80°C, HIGH otherwise."""
    return _classify(celsius, TEMPERATURE_THRESHOLDS)


def get_utilization_color(utilization: float) -> str:
    return SEVERITY_COLORS[classify_utilization(utilization)]


def get_utilization_bar_color(utilization: float) -> str:
    return f"bar-{get_utilization_color(utilization)}"


def get_temperature_color(celsius: float) -> str:
    return SEVERITY_COLORS[classify_temperature(celsius)]
