"""Time helpers.

All persisted timestamps are integer epoch milliseconds so they compare and
serialize the same way locally, on the hub, and in pending operations.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], int]


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def ms_to_datetime(value: int) -> datetime:
    """Convert epoch milliseconds to a naive UTC datetime."""
    return datetime.fromtimestamp(value / 1000, UTC).replace(tzinfo=None)


def format_ms(value: int | None) -> str:
    """Render an epoch-millisecond timestamp for humans (``"never"`` if unset)."""
    if value is None:
        return "never"
    return ms_to_datetime(value).strftime("%Y-%m-%d %H:%M:%S")
