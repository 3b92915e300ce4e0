"""Firebase Realtime Database quota store using optimistic transactions."""

import asyncio
import re
from typing import Any, Optional

from firebase_admin import db

from quotaguard.app.services.quota.base import QuotaStore, validate_increment_args
from quotaguard.app.services.quota.models import (
    WindowRecord,
    apply_increment,
    now_ms,
    resolve_window,
)

# Characters the Realtime Database forbids in path segments
_FORBIDDEN_KEY_CHARS = re.compile(r"[.#$/\[\]]")


def sanitize_key(key: str) -> str:
    """Replace characters forbidden in database paths with '_'.

    Deterministic but not injective: 'a.b' and 'a/b' share a node.
    """
    return _FORBIDDEN_KEY_CHARS.sub("_", key)


class _SkipWrite(Exception):
    """Aborts a transaction without writing; carries the data it saw."""

    def __init__(self, current: Any):
        self.current = current
        super().__init__("transaction aborted without write")


class RTDBQuotaStore(QuotaStore):
    """Quota store backed by Realtime Database transactions.

    The SDK runs the transaction function against its local view of the
    node and re-runs it whenever the server holds different data, so the
    function must stay pure. When nothing is to be written (a read, or a key
    already at its limit) the function aborts instead of returning a record,
    and the usage is derived from the data the aborted attempt saw.

    The SDK call blocks, so it runs in a worker thread.
    """

    name = "rtdb"

    def __init__(self, root: db.Reference) -> None:
        """Initialize the store under a root reference.

        Args:
            root: Reference under which one child per quota key is kept
        """
        self._root = root

    @classmethod
    def from_app(cls, app: Any = None, root_path: str = "quotas") -> "RTDBQuotaStore":
        """Create a store under ``root_path`` of the given (or default) app."""
        return cls(db.reference(root_path, app=app))

    async def increment(
        self,
        key: str,
        delta: int,
        window_ms: int,
        limit: Optional[int] = None,
    ) -> int:
        validate_increment_args(key, delta, window_ms, limit)
        safe_key = sanitize_key(key)
        ref = self._root.child(safe_key)

        def _update(current: Any) -> dict:
            record = WindowRecord.from_dict(safe_key, current) if current else None
            _, updated = apply_increment(
                safe_key, record, delta, window_ms, limit, now_ms()
            )
            if updated is None:
                raise _SkipWrite(current)
            return updated.to_dict()

        try:
            new_value = await asyncio.to_thread(ref.transaction, _update)
        except _SkipWrite as aborted:
            # Re-apply the window check to the data the aborted attempt saw.
            # That data may already be stale relative to the writer that
            # pushed the key over its limit.
            current = aborted.current
            record = WindowRecord.from_dict(safe_key, current) if current else None
            usage, _ = resolve_window(record, window_ms, now_ms())
            return usage + delta

        return int((new_value or {}).get("count") or 0)
