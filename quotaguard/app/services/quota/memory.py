"""In-process quota store."""

import asyncio
from typing import Optional

from quotaguard.app.services.quota.base import QuotaStore, validate_increment_args
from quotaguard.app.services.quota.models import WindowRecord, apply_increment, now_ms


class InMemoryQuotaStore(QuotaStore):
    """Quota store keeping windows in a process-local dictionary.

    The read-modify-write of each call runs under one asyncio lock, so
    concurrent tasks in the same event loop see consistent counts.

    Note: This store is not shared between processes. Each worker keeps its
    own counters, so it must not back a quota enforced across several
    instances.
    """

    name = "memory"

    def __init__(self) -> None:
        self._data: dict[str, WindowRecord] = {}
        self._lock = asyncio.Lock()

    async def increment(
        self,
        key: str,
        delta: int,
        window_ms: int,
        limit: Optional[int] = None,
    ) -> int:
        validate_increment_args(key, delta, window_ms, limit)
        async with self._lock:
            usage, record = apply_increment(
                key, self._data.get(key), delta, window_ms, limit, now_ms()
            )
            if record is not None:
                self._data[key] = record
            return usage

    async def get(self, key: str) -> WindowRecord | None:
        """Return the live window of ``key``, or None if absent or expired."""
        async with self._lock:
            record = self._data.get(key)
            if record is None or not record.is_active(now_ms()):
                return None
            return record

    async def cleanup_expired(self) -> int:
        """Remove all expired windows.

        Returns:
            Number of windows removed.
        """
        async with self._lock:
            now = now_ms()
            expired_keys = [
                key for key, record in self._data.items() if not record.is_active(now)
            ]
            for key in expired_keys:
                del self._data[key]
            return len(expired_keys)

    async def clear(self) -> None:
        """Drop every window."""
        async with self._lock:
            self._data.clear()
