"""
Timezone helpers. Sessions are stored as UTC Unix seconds; these convert them
for display in the configured zone.
"""

import os
import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_TIMEZONE = 'UTC'


def get_local_timezone() -> ZoneInfo:
    """Return the configured timezone (TZ env) or fall back to UTC."""
    tz_name = os.environ.get('TZ', DEFAULT_TIMEZONE)
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE)


def utc_now_ts() -> int:
    """Current time as Unix seconds."""
    return int(time.time())


def ts_to_local(ts: int, tz: ZoneInfo | None = None) -> datetime:
    """Convert Unix seconds to an aware datetime in the configured zone."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).astimezone(tz or get_local_timezone())


def format_hour_label(ts: int, tz: ZoneInfo | None = None) -> str:
    """Label for an hour bucket, e.g. '2024-03-01 8pm'."""
    local_dt = ts_to_local(ts, tz)
    return local_dt.strftime('%Y-%m-%d ') + local_dt.strftime('%I%p').lstrip('0').lower()
