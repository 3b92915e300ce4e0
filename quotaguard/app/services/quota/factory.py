"""Construction of the configured quota store."""

from typing import Optional

import firebase_admin

from quotaguard.app.core.config import Settings, settings
from quotaguard.app.core.logging import get_logger
from quotaguard.app.exceptions import InvalidConfigurationError
from quotaguard.app.services.quota.base import QuotaStore
from quotaguard.app.services.quota.firestore import FirestoreQuotaStore
from quotaguard.app.services.quota.memory import InMemoryQuotaStore
from quotaguard.app.services.quota.redis_store import RedisQuotaStore
from quotaguard.app.services.quota.rtdb import RTDBQuotaStore
from quotaguard.app.services.quota.sql import SQLQuotaStore

logger = get_logger(__name__)


def _get_firebase_app(database_url: str | None) -> firebase_admin.App:
    """Return the default Firebase app, initializing it on first use."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        options = {"databaseURL": database_url} if database_url else None
        return firebase_admin.initialize_app(options=options)


def create_quota_store(config: Optional[Settings] = None) -> QuotaStore:
    """Build a quota store for ``config.quota_backend``.

    Args:
        config: Settings to read; defaults to the global settings.

    Returns:
        A new QuotaStore. Stores built here own their clients and release
        them on ``close()``.

    Raises:
        InvalidConfigurationError: If the backend or its options are invalid.
    """
    config = config or settings

    backend = config.quota_backend

    if backend == "memory":
        store: QuotaStore = InMemoryQuotaStore()
    elif backend == "sql":
        url = config.database_url
        if "sqlite" in url.lower():
            engine_kwargs = {}
        else:
            engine_kwargs = {
                "pool_size": config.db_pool_size,
                "max_overflow": config.db_max_overflow,
                "pool_recycle": config.db_pool_recycle,
                "pool_pre_ping": config.db_pool_pre_ping,
            }
        store = SQLQuotaStore.from_url(
            url,
            table_name=config.quota_table_name,
            auto_create=config.quota_auto_create,
            **engine_kwargs,
        )
    elif backend == "redis":
        store = RedisQuotaStore.from_url(config.redis_url, prefix=config.quota_key_prefix)
    elif backend == "firestore":
        store = FirestoreQuotaStore.from_project(
            project=config.firestore_project,
            database=config.firestore_database,
            collection=config.quota_collection,
        )
    elif backend == "rtdb":
        app = _get_firebase_app(config.firebase_database_url)
        store = RTDBQuotaStore.from_app(app, root_path=config.quota_rtdb_root)
    else:
        raise InvalidConfigurationError(f"Unknown quota backend: {backend}")

    logger.info(f"Using {store.name} quota store", extra={"backend": store.name})
    return store


# Global store instance (singleton pattern)
_quota_store: QuotaStore | None = None


def get_quota_store(
    config: Optional[Settings] = None, force_new: bool = False
) -> QuotaStore:
    """Get or create the global quota store instance.

    Args:
        config: Settings used when the store is created.
        force_new: If True, create a new instance even if one exists.
    """
    global _quota_store
    if _quota_store is None or force_new:
        _quota_store = create_quota_store(config)
    return _quota_store


def reset_quota_store() -> None:
    """Reset the global quota store instance.

    This is primarily useful for testing.
    """
    global _quota_store
    _quota_store = None
