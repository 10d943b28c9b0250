from datetime import datetime, timedelta, timezone
from typing import Optional


def naive_utc_now() -> datetime:
    """
    Get current UTC datetime as a naive datetime (no timezone info).
    All record timestamps are stored this way.

    Returns:
        datetime: Current UTC datetime without timezone info
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc_ago(**delta) -> datetime:
    """Naive UTC datetime `timedelta(**delta)` before now."""
    return naive_utc_now() - timedelta(**delta)


def isoformat_or_none(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None
