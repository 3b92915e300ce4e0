"""Firestore quota store using read-modify-write transactions.

Document format (one per quota key, in a configurable collection):
- {count, expiresAt, lastUpdated} with times in epoch milliseconds
"""

import inspect
from typing import Any, Optional

from google.cloud.firestore import AsyncClient, async_transactional

from quotaguard.app.services.quota.base import QuotaStore, validate_increment_args
from quotaguard.app.services.quota.models import WindowRecord, apply_increment, now_ms


class FirestoreQuotaStore(QuotaStore):
    """Quota store backed by Firestore documents.

    Firestore retries the whole transaction when another writer commits to
    the same document first, so the transaction body may run several times
    per call. It therefore only reads the document, computes, and stages a
    write; nothing else.
    """

    name = "firestore"

    def __init__(self, client: AsyncClient, collection: str = "quotas") -> None:
        """Initialize the store around a ready client.

        Args:
            client: Firestore ``AsyncClient``
            collection: Collection holding one document per quota key
        """
        self._client = client
        self._owns_client = False
        self.collection = collection

    @classmethod
    def from_project(
        cls,
        project: str | None = None,
        database: str | None = None,
        collection: str = "quotas",
        **client_kwargs: Any,
    ) -> "FirestoreQuotaStore":
        """Create a store that owns its client; ``close()`` closes it."""
        client = AsyncClient(project=project, database=database, **client_kwargs)
        store = cls(client, collection=collection)
        store._owns_client = True
        return store

    async def increment(
        self,
        key: str,
        delta: int,
        window_ms: int,
        limit: Optional[int] = None,
    ) -> int:
        validate_increment_args(key, delta, window_ms, limit)
        doc_ref = self._client.collection(self.collection).document(key)

        async def _apply(transaction: Any) -> int:
            snapshot = await doc_ref.get(transaction=transaction)
            record = None
            if snapshot.exists:
                record = WindowRecord.from_dict(key, snapshot.to_dict() or {})
            usage, updated = apply_increment(
                key, record, delta, window_ms, limit, now_ms()
            )
            # At the limit: leave the hot document untouched
            if updated is not None:
                transaction.set(doc_ref, updated.to_dict())
            return usage

        return await async_transactional(_apply)(self._client.transaction())

    async def close(self) -> None:
        """Close the client if this store created it."""
        if self._owns_client:
            result = self._client.close()
            if inspect.isawaitable(result):
                await result
