"""Tests for settings and quota store construction."""

from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from quotaguard.app.core.config import CLIENT_QUOTA_KEY, Settings
from quotaguard.app.exceptions import InvalidConfigurationError
from quotaguard.app.services.quota import (
    FirestoreQuotaStore,
    InMemoryQuotaStore,
    RTDBQuotaStore,
    RedisQuotaStore,
    SQLQuotaStore,
    create_quota_store,
    get_quota_store,
    reset_quota_store,
)

FACTORY = "quotaguard.app.services.quota.factory"


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("QUOTA_BACKEND", "QUOTA_LIMIT", "QUOTA_WINDOW_MS", "QUOTA_KEY"):
            monkeypatch.delenv(name, raising=False)
        config = Settings(_env_file=None)
        assert config.quota_backend == "memory"
        assert config.quota_limit == 60
        assert config.quota_window_ms == 60_000
        assert config.quota_key == CLIENT_QUOTA_KEY
        assert config.quota_log_only is False
        assert config.quota_fail_open is False

    def test_no_unused_fields(self):
        assert "debug" not in Settings.model_fields

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("QUOTA_BACKEND", "redis")
        monkeypatch.setenv("QUOTA_LIMIT", "5")
        monkeypatch.setenv("QUOTA_FAIL_OPEN", "true")
        config = Settings(_env_file=None)
        assert config.quota_backend == "redis"
        assert config.quota_limit == 5
        assert config.quota_fail_open is True

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("Memory", "memory"),
            ("in-memory", "memory"),
            ("postgres", "sql"),
            ("sqlite", "sql"),
            ("firebase", "rtdb"),
            (" REDIS ", "redis"),
            ("firestore", "firestore"),
        ],
    )
    def test_backend_aliases(self, value, expected):
        assert Settings(quota_backend=value).quota_backend == expected

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError, match="quota_backend"):
            Settings(quota_backend="dynamo")

    @pytest.mark.parametrize(
        "field,value",
        [
            ("quota_limit", -1),
            ("quota_window_ms", 0),
            ("quota_key", "  "),
            ("db_pool_size", 0),
            ("log_format", "xml"),
        ],
    )
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            Settings(**{field: value})

    def test_zero_limit_allowed(self):
        assert Settings(quota_limit=0).quota_limit == 0

    def test_log_format_lowercased(self):
        assert Settings(log_format="JSON").log_format == "json"


class TestCreateQuotaStore:
    def test_memory(self):
        assert isinstance(create_quota_store(Settings(quota_backend="memory")), InMemoryQuotaStore)

    @pytest.mark.asyncio
    async def test_sqlite_skips_pool_options(self, tmp_path):
        config = Settings(
            quota_backend="sql",
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'q.db'}",
            quota_table_name="limits",
        )
        store = create_quota_store(config)
        try:
            assert isinstance(store, SQLQuotaStore)
            assert store.table_name == "limits"
            assert store._owns_engine is True
        finally:
            await store.close()

    def test_postgres_gets_pool_options(self):
        config = Settings(
            quota_backend="sql",
            database_url="postgresql+asyncpg://u:p@db/app",
            db_pool_size=3,
            quota_auto_create=False,
        )
        with patch(f"{FACTORY}.SQLQuotaStore.from_url") as from_url:
            from_url.return_value = MagicMock(name="sql_store")
            create_quota_store(config)

        from_url.assert_called_once_with(
            "postgresql+asyncpg://u:p@db/app",
            table_name="quotas",
            auto_create=False,
            pool_size=3,
            max_overflow=5,
            pool_recycle=300,
            pool_pre_ping=True,
        )

    def test_invalid_table_name_raises_eagerly(self, tmp_path):
        config = Settings(
            quota_backend="sql",
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'q.db'}",
            quota_table_name="quotas; DROP TABLE users",
        )
        with pytest.raises(InvalidConfigurationError):
            create_quota_store(config)

    def test_redis(self):
        config = Settings(quota_backend="redis", redis_url="redis://cache:6379/2", quota_key_prefix="rl:")
        with patch(f"{FACTORY}.RedisQuotaStore.from_url") as from_url:
            create_quota_store(config)
        from_url.assert_called_once_with("redis://cache:6379/2", prefix="rl:")

    def test_redis_store_type(self):
        store = create_quota_store(Settings(quota_backend="redis"))
        assert isinstance(store, RedisQuotaStore)
        assert store.prefix == "quota:"

    def test_firestore(self):
        config = Settings(
            quota_backend="firestore",
            firestore_project="demo",
            quota_collection="limits",
        )
        with patch(f"{FACTORY}.FirestoreQuotaStore.from_project") as from_project:
            from_project.return_value = MagicMock(spec=FirestoreQuotaStore)
            create_quota_store(config)
        from_project.assert_called_once_with(
            project="demo", database=None, collection="limits"
        )

    def test_rtdb_initializes_default_app_once(self):
        config = Settings(
            quota_backend="rtdb",
            firebase_database_url="https://demo.firebaseio.com",
            quota_rtdb_root="limits",
        )
        app = MagicMock()
        with patch(f"{FACTORY}.firebase_admin") as firebase_admin, patch(
            f"{FACTORY}.RTDBQuotaStore.from_app"
        ) as from_app:
            firebase_admin.get_app.side_effect = ValueError("no app")
            firebase_admin.initialize_app.return_value = app
            from_app.return_value = MagicMock(spec=RTDBQuotaStore)
            create_quota_store(config)

        firebase_admin.initialize_app.assert_called_once_with(
            options={"databaseURL": "https://demo.firebaseio.com"}
        )
        from_app.assert_called_once_with(app, root_path="limits")

    def test_rtdb_reuses_existing_app(self):
        app = MagicMock()
        with patch(f"{FACTORY}.firebase_admin") as firebase_admin, patch(
            f"{FACTORY}.RTDBQuotaStore.from_app"
        ) as from_app:
            firebase_admin.get_app.return_value = app
            from_app.return_value = MagicMock(spec=RTDBQuotaStore)
            create_quota_store(Settings(quota_backend="rtdb"))

        firebase_admin.initialize_app.assert_not_called()
        from_app.assert_called_once_with(app, root_path="quotas")

    def test_unknown_backend_raises(self):
        config = Settings()
        config.quota_backend = "dynamo"
        with pytest.raises(InvalidConfigurationError, match="dynamo"):
            create_quota_store(config)


class TestGetQuotaStore:
    def test_singleton(self):
        config = Settings(quota_backend="memory")
        assert get_quota_store(config) is get_quota_store(config)

    def test_force_new(self):
        config = Settings(quota_backend="memory")
        first = get_quota_store(config)
        assert get_quota_store(config, force_new=True) is not first

    def test_reset(self):
        config = Settings(quota_backend="memory")
        first = get_quota_store(config)
        reset_quota_store()
        assert get_quota_store(config) is not first
