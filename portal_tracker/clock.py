from __future__ import annotations

import time
from datetime import datetime, timezone, tzinfo

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import structlog


logger = structlog.get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def load_timezone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone, falling back to UTC", timezone=name)
        return timezone.utc


def _local(ts_ms: int, tz: tzinfo) -> datetime:
    return datetime.fromtimestamp(ts_ms / 1000.0, tz=tz)


def hour_bucket(ts_ms: int, tz: tzinfo) -> int:
    """Wall-clock hour (0-23) of ``ts_ms`` in ``tz``."""
    return _local(ts_ms, tz).hour


def _format_hour(hour24: int) -> str:
    suffix = "PM" if hour24 >= 12 else "AM"
    return f"{hour24 % 12 or 12} {suffix}"


def hour_window_label(ts_ms: int, tz: tzinfo) -> str:
    """Display label of the current hour window, e.g. ``"9 AM - 10 AM"``."""
    hour24 = hour_bucket(ts_ms, tz)
    return f"{_format_hour(hour24)} - {_format_hour((hour24 + 1) % 24)}"


def clock_time(ts_ms: int, tz: tzinfo) -> str:
    """``"hh:mm AM"`` style time used in session log entries."""
    return _local(ts_ms, tz).strftime("%I:%M %p")
