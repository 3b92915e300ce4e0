"""Relational quota store built on a single conditional upsert.

Rows are ``key TEXT PRIMARY KEY, count INTEGER, expires_at BIGINT``. Each
increment is one ``INSERT ... ON CONFLICT DO UPDATE`` statement; the row
lock the database takes on the conflicting key serialises concurrent
callers, so no application-side locking is needed.
"""

import asyncio
import re
from typing import Any, Optional

from sqlalchemy import (
    BigInteger,
    Column,
    Integer,
    MetaData,
    Table,
    Text,
    case,
    delete,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from quotaguard.app.core.logging import get_logger
from quotaguard.app.exceptions import InvalidConfigurationError
from quotaguard.app.services.quota.base import QuotaStore, validate_increment_args
from quotaguard.app.services.quota.models import now_ms

logger = get_logger(__name__)

TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SQLQuotaStore(QuotaStore):
    """Quota store persisting windows as rows of a relational table.

    Supports PostgreSQL (asyncpg) and SQLite (aiosqlite) engines.

    Example:
        >>> store = SQLQuotaStore.from_url("postgresql+asyncpg://localhost/app")
        >>> await store.increment("user:1", 1, 60_000, limit=100)
    """

    name = "sql"

    def __init__(
        self,
        engine: AsyncEngine,
        table_name: str = "quotas",
        auto_create: bool = True,
    ) -> None:
        """Initialize the store around a ready engine.

        Args:
            engine: Async SQLAlchemy engine
            table_name: Table holding the windows; letters, digits and '_' only
            auto_create: Create the table on first use. Set to False when the
                schema is managed by migrations.

        Raises:
            InvalidConfigurationError: If the table name is unsafe or the
                engine's dialect has no upsert support here.
        """
        if not TABLE_NAME_PATTERN.match(table_name or ""):
            raise InvalidConfigurationError(f"Invalid table name: {table_name!r}")
        dialect = engine.dialect.name
        if dialect not in _DIALECT_INSERTS:
            raise InvalidConfigurationError(
                f"Unsupported database dialect for quotas: {dialect}"
            )

        self._engine = engine
        self._insert = _DIALECT_INSERTS[dialect]
        self._owns_engine = False
        self._auto_create = auto_create
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self.table_name = table_name

        self._metadata = MetaData()
        self.table = Table(
            table_name,
            self._metadata,
            Column("key", Text, primary_key=True),
            Column("count", Integer, nullable=False),
            Column("expires_at", BigInteger, nullable=False),
        )

    @classmethod
    def from_url(
        cls,
        database_url: str,
        table_name: str = "quotas",
        auto_create: bool = True,
        **engine_kwargs: Any,
    ) -> "SQLQuotaStore":
        """Create a store that owns its engine; ``close()`` disposes it."""
        engine = create_async_engine(database_url, **engine_kwargs)
        store = cls(engine, table_name=table_name, auto_create=auto_create)
        store._owns_engine = True
        return store

    async def ensure_schema(self) -> None:
        """Create the quota table if it does not exist yet.

        Runs at most once per store; concurrent first callers wait on the
        same lock instead of issuing duplicate DDL.
        """
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            async with self._engine.begin() as conn:
                await conn.run_sync(self._metadata.create_all, checkfirst=True)
            self._initialized = True
            logger.info(f"Quota table '{self.table_name}' is ready")

    async def increment(
        self,
        key: str,
        delta: int,
        window_ms: int,
        limit: Optional[int] = None,
    ) -> int:
        validate_increment_args(key, delta, window_ms, limit)
        if self._auto_create:
            await self.ensure_schema()

        now = now_ms()

        async with self._engine.begin() as conn:
            # Pure reads never write; fresh windows start at zero, which
            # already meets a zero limit
            if delta == 0 or limit == 0:
                return await self._read_usage(conn, key, now) + delta

            stmt = self._upsert_statement(key, delta, window_ms, limit, now)
            usage = (await conn.execute(stmt)).scalar_one_or_none()
            if usage is not None:
                return usage

            # The update was skipped because the active window is at the
            # limit; the conflicting row stays locked until commit.
            return await self._read_usage(conn, key, now) + delta

    def _upsert_statement(
        self, key: str, delta: int, window_ms: int, limit: Optional[int], now: int
    ) -> Any:
        """Build the conditional upsert returning the new count.

        An expired row is overwritten with a fresh window. With a limit, the
        update only applies while the active count is below it; otherwise no
        row is returned.
        """
        table = self.table
        expired = table.c.expires_at <= now
        stmt = self._insert(table).values(
            key=key, count=delta, expires_at=now + window_ms
        )
        return stmt.on_conflict_do_update(
            index_elements=[table.c.key],
            set_={
                "count": case((expired, delta), else_=table.c.count + delta),
                "expires_at": case(
                    (expired, now + window_ms), else_=table.c.expires_at
                ),
            },
            where=(
                case((expired, 0), else_=table.c.count) < limit
                if limit is not None
                else None
            ),
        ).returning(table.c.count)

    async def _read_usage(self, conn: AsyncConnection, key: str, now: int) -> int:
        """Usage of ``key`` in its active window, 0 if absent or expired."""
        row = (
            await conn.execute(
                select(self.table.c.count, self.table.c.expires_at).where(
                    self.table.c.key == key
                )
            )
        ).first()
        if row is None or row[1] <= now:
            return 0
        return row[0]

    async def cleanup_expired(self) -> int:
        """Delete rows whose window has ended.

        Expired rows are already ignored by ``increment``; this only reclaims
        storage.

        Returns:
            Number of rows deleted.
        """
        if self._auto_create:
            await self.ensure_schema()
        async with self._engine.begin() as conn:
            result = await conn.execute(
                delete(self.table).where(self.table.c.expires_at <= now_ms())
            )
        removed = result.rowcount or 0
        if removed:
            logger.debug(f"Removed {removed} expired quota rows from '{self.table_name}'")
        return removed

    async def close(self) -> None:
        """Dispose the engine if this store created it."""
        if self._owns_engine:
            await self._engine.dispose()
