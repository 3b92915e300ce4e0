"""Services package for quotaguard.

This package provides:
- Windowed quota stores (in-memory, SQL, Redis, Firestore, Realtime Database)
- Construction of the configured store from settings
"""

from quotaguard.app.services.quota import (
    QuotaStore,
    WindowRecord,
    create_quota_store,
    get_quota_store,
    reset_quota_store,
)

__all__ = [
    "QuotaStore",
    "WindowRecord",
    "create_quota_store",
    "get_quota_store",
    "reset_quota_store",
]
