"""Data models for windowed quota counting.

A window is ``[start, start + window_ms)``; it is active while
``now < expires_at`` and is replaced, never merged, once it has expired.
"""

import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class WindowRecord:
    """Persisted state of one quota key.

    Attributes:
        key: The quota key
        count: Usage accumulated in the current window
        expires_at: Epoch milliseconds at which the window ends
        last_updated: Epoch milliseconds of the last write
    """
    key: str
    count: int
    expires_at: int
    last_updated: int

    def is_active(self, now: int) -> bool:
        """Equality with ``expires_at`` counts as expired."""
        return self.expires_at > now

    def to_dict(self) -> dict:
        """Convert to the document shape used by the document stores."""
        return {
            "count": self.count,
            "expiresAt": self.expires_at,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, key: str, data: Mapping[str, Any]) -> "WindowRecord":
        """Create from a stored document, tolerating missing fields."""
        return cls(
            key=key,
            count=int(data.get("count") or 0),
            expires_at=int(data.get("expiresAt") or 0),
            last_updated=int(data.get("lastUpdated") or 0),
        )


def resolve_window(
    record: Optional[WindowRecord], window_ms: int, now: int
) -> tuple[int, int]:
    """Resolve the current window of a key.

    Returns:
        Tuple of (current_usage, expires_at). A missing or expired record
        resolves to zero usage and a fresh window ending at ``now + window_ms``.
    """
    if record is not None and record.is_active(now):
        return record.count, record.expires_at
    return 0, now + window_ms


def apply_increment(
    key: str,
    record: Optional[WindowRecord],
    delta: int,
    window_ms: int,
    limit: Optional[int],
    now: int,
) -> tuple[int, Optional[WindowRecord]]:
    """Compute the outcome of one increment without touching storage.

    Returns:
        Tuple of (usage, new_record). ``new_record`` is None when nothing must
        be written: for a pure read (``delta == 0``), or when the key is
        already at or over ``limit``, in which case ``usage`` is the simulated
        ``current + delta``.
    """
    usage, expires_at = resolve_window(record, window_ms, now)
    if delta == 0 or (limit is not None and usage >= limit):
        return usage + delta, None
    usage += delta
    return usage, WindowRecord(
        key=key, count=usage, expires_at=expires_at, last_updated=now
    )
