"""Time helpers for consistent UTC timestamps across services."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC datetime with timezone attached."""

    return datetime.now(timezone.utc)


def rfc3339_now() -> str:
    """Return the current UTC time as an RFC 3339 string with second precision."""

    return utc_now().isoformat(timespec="seconds").replace("+00:00", "Z")
