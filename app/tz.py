"""Timezone utilities: single source of truth for all timestamp operations.

All stored timestamps use UTC with Z-suffix: "YYYY-MM-DDTHH:MM:SSZ"
Conversion to local time happens only at the display boundary (chart labels).
"""

import os
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

# Canonical UTC format used throughout the application
_UTC_FMT = "%Y-%m-%dT%H:%M:%SZ"
_LOCAL_FMT = "%Y-%m-%dT%H:%M:%S"


def utc_now():
    """Return current UTC time as 'YYYY-MM-DDTHH:MM:SSZ'."""
    return datetime.now(timezone.utc).strftime(_UTC_FMT)


def utc_cutoff(days=0, hours=0, minutes=0, seconds=0):
    """Return UTC timestamp N days/hours/minutes/seconds in the past."""
    dt = datetime.now(timezone.utc) - timedelta(
        days=days, hours=hours, minutes=minutes, seconds=seconds
    )
    return dt.strftime(_UTC_FMT)


def format_utc(dt):
    """Format an aware or naive-UTC datetime as 'YYYY-MM-DDTHH:MM:SSZ'."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime(_UTC_FMT)


def parse_utc(ts):
    """Parse a UTC timestamp string into a timezone-aware datetime.

    Handles: '2026-01-15T14:30:00Z', '2026-01-15T14:30:00',
             '2026-01-15 14:30:00', '2026-01-15T14:30:00.123Z'
    """
    ts_clean = ts.rstrip("Z").replace(" ", "T")
    if "." in ts_clean:
        ts_clean = ts_clean.split(".")[0]
    naive = datetime.strptime(ts_clean, _LOCAL_FMT)
    return naive.replace(tzinfo=timezone.utc)


def seconds_between(later, earlier):
    """Seconds elapsed between two UTC timestamp strings (may be negative)."""
    return (parse_utc(later) - parse_utc(earlier)).total_seconds()


def to_local_display(utc_ts, tz_name, fmt="%Y-%m-%d %H:%M:%S"):
    """Convert UTC timestamp to a formatted local display string.

    Args:
        utc_ts: UTC timestamp string
        tz_name: IANA timezone name, empty for UTC
        fmt: strftime format string

    Returns:
        Formatted local time string
    """
    if not utc_ts:
        return ""
    dt = parse_utc(utc_ts)
    if tz_name:
        dt = dt.astimezone(ZoneInfo(tz_name))
    return dt.strftime(fmt)


def guess_iana_timezone():
    """Best-effort guess of the current IANA timezone from the system.

    Returns an IANA name like 'Asia/Jakarta' or '' if detection fails.
    """
    try:
        link = os.readlink("/etc/localtime")
        for marker in ("/zoneinfo/",):
            if marker in link:
                return link.split(marker, 1)[1]
    except (OSError, ValueError):
        pass
    tz_env = os.environ.get("TZ", "")
    if "/" in tz_env:
        return tz_env
    return ""
