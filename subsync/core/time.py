from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Optional


def now_ts() -> int:
    return int(time.time())


def to_epoch(value: Any) -> Optional[int]:
    """Coerce a Stripe timestamp (int, numeric string, Decimal) to epoch seconds; falsy -> None."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        ts = int(value)
    except (TypeError, ValueError):
        return None
    return ts if ts > 0 else None


def iso_from_ts(ts: Optional[int]) -> Optional[str]:
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).isoformat().replace("+00:00", "Z")


def dt_from_ts(ts: int) -> datetime:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)
