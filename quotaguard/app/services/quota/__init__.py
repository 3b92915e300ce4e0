"""Windowed quota counting over pluggable storage backends.

Every store implements ``QuotaStore.increment`` with the same fixed-window
semantics, each relying on its backend's native atomicity primitive:

- InMemoryQuotaStore: process-local dict under an asyncio lock
- SQLQuotaStore: single conditional upsert (row lock)
- FirestoreQuotaStore: read-modify-write transaction
- RedisQuotaStore: server-side Lua script
- RTDBQuotaStore: optimistic client-side transaction
"""

from .base import QuotaStore
from .factory import create_quota_store, get_quota_store, reset_quota_store
from .firestore import FirestoreQuotaStore
from .memory import InMemoryQuotaStore
from .models import WindowRecord, apply_increment, now_ms, resolve_window
from .redis_lua import INCREMENT_SCRIPT
from .redis_store import RedisQuotaStore
from .rtdb import RTDBQuotaStore, sanitize_key
from .sql import SQLQuotaStore

__all__ = [
    "QuotaStore",
    "WindowRecord",
    "apply_increment",
    "resolve_window",
    "now_ms",
    "InMemoryQuotaStore",
    "SQLQuotaStore",
    "FirestoreQuotaStore",
    "RedisQuotaStore",
    "INCREMENT_SCRIPT",
    "RTDBQuotaStore",
    "sanitize_key",
    "create_quota_store",
    "get_quota_store",
    "reset_quota_store",
]
