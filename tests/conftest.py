"""Shared fixtures for quota store tests.

Redis runs in-process through fakeredis; the Firestore and Realtime
Database clients are replaced by the fakes below. They all read time from
the same ``clock`` fixture, which also replaces ``now_ms`` in every store
module, so window expiry is driven explicitly by ``clock.advance(ms)``.
"""

import copy
import time

import fakeredis
import pytest
import pytest_asyncio

from quotaguard.app.services.quota import (
    FirestoreQuotaStore,
    InMemoryQuotaStore,
    RTDBQuotaStore,
    RedisQuotaStore,
    SQLQuotaStore,
    reset_quota_store,
)

STORE_MODULES = (
    "quotaguard.app.services.quota.memory",
    "quotaguard.app.services.quota.sql",
    "quotaguard.app.services.quota.firestore",
    "quotaguard.app.services.quota.rtdb",
)


class FakeClock:
    """Epoch-millisecond clock advanced by hand."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock(monkeypatch):
    """Patch the wall clock of every store module."""
    fake = FakeClock()
    for module in STORE_MODULES:
        monkeypatch.setattr(f"{module}.now_ms", fake)
    return fake


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset global state before each test."""
    reset_quota_store()
    yield
    reset_quota_store()


# ============================================================================
# Redis
# ============================================================================

class RecordingRedis:
    """Redis double that only records ``eval`` calls.

    Used to check the arguments sent with the script; script behaviour is
    covered against ``fakeredis``.
    """

    def __init__(self, result=1):
        self.result = result
        self.eval_calls: list[tuple] = []
        self.closed = False

    async def eval(self, script, num_keys, *args):
        self.eval_calls.append((script, args[:num_keys], args[num_keys:]))
        return self.result

    async def aclose(self):
        self.closed = True


@pytest.fixture
def recording_redis():
    return RecordingRedis()


def make_redis_client(clock, monkeypatch):
    """In-process Redis server running scripts with a real Lua interpreter.

    The server reads ``time.time()`` for key expiry, so it is tied to the
    same fake clock as the other stores.
    """
    monkeypatch.setattr(time, "time", lambda: clock.now / 1000)
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())


@pytest_asyncio.fixture
async def redis_client(clock, monkeypatch):
    client = make_redis_client(clock, monkeypatch)
    yield client
    await client.aclose()


# ============================================================================
# Firestore
# ============================================================================

class FakeSnapshot:
    def __init__(self, data):
        self._data = copy.deepcopy(data)

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data)


class FakeDocumentReference:
    def __init__(self, db: "FakeFirestore", collection: str, doc_id: str):
        self.db = db
        self.collection = collection
        self.id = doc_id

    @property
    def path(self) -> tuple[str, str]:
        return (self.collection, self.id)

    async def get(self, transaction=None):
        self.db.reads.append((self.path, transaction))
        return FakeSnapshot(self.db.docs.get(self.path))


class FakeCollectionReference:
    def __init__(self, db: "FakeFirestore", name: str):
        self.db = db
        self.name = name

    def document(self, doc_id: str) -> FakeDocumentReference:
        return FakeDocumentReference(self.db, self.name, doc_id)


class FakeTransaction:
    def __init__(self):
        self.writes: list[tuple[FakeDocumentReference, dict]] = []

    def set(self, reference, data):
        self.writes.append((reference, copy.deepcopy(data)))


class FakeFirestore:
    """AsyncClient double holding documents in a dict keyed by (collection, id)."""

    def __init__(self):
        self.docs: dict[tuple[str, str], dict] = {}
        self.reads: list = []
        self.transactions: list[FakeTransaction] = []
        self.closed = False

    def collection(self, name: str) -> FakeCollectionReference:
        return FakeCollectionReference(self, name)

    def transaction(self) -> FakeTransaction:
        transaction = FakeTransaction()
        self.transactions.append(transaction)
        return transaction

    def close(self):
        self.closed = True


def fake_async_transactional(fn):
    """Run the transaction body once, then commit its staged writes."""

    async def run(transaction, *args, **kwargs):
        result = await fn(transaction, *args, **kwargs)
        for reference, data in transaction.writes:
            reference.db.docs[reference.path] = data
        return result

    return run


@pytest.fixture
def fake_firestore(clock, monkeypatch):
    monkeypatch.setattr(
        "quotaguard.app.services.quota.firestore.async_transactional",
        fake_async_transactional,
    )
    return FakeFirestore()


# ============================================================================
# Realtime Database
# ============================================================================

class FakeRealtimeDatabase:
    """Realtime Database double storing node values by path.

    ``stale_reads`` makes the next transactions first run against an empty
    local view, as the SDK does before it has fetched the node, and then
    retry against the stored value.
    """

    def __init__(self):
        self.data: dict[str, object] = {}
        self.stale_reads = 0
        self.update_calls = 0

    def reference(self, path: str) -> "FakeReference":
        return FakeReference(self, path)


class FakeReference:
    def __init__(self, db: FakeRealtimeDatabase, path: str):
        self.db = db
        self.path = path

    def child(self, name: str) -> "FakeReference":
        return FakeReference(self.db, f"{self.path}/{name}")

    def get(self):
        return copy.deepcopy(self.db.data.get(self.path))

    def transaction(self, transaction_update):
        stored = self.db.data.get(self.path)
        if self.db.stale_reads and stored is not None:
            self.db.stale_reads -= 1
            self.db.update_calls += 1
            # Result computed against the stale view is discarded
            try:
                transaction_update(None)
            except Exception:
                pass
        self.db.update_calls += 1
        new_value = transaction_update(copy.deepcopy(stored))
        self.db.data[self.path] = copy.deepcopy(new_value)
        return new_value


@pytest.fixture
def fake_rtdb(clock):
    return FakeRealtimeDatabase()


# ============================================================================
# Stores
# ============================================================================

@pytest_asyncio.fixture
async def sql_store(clock, tmp_path):
    store = SQLQuotaStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'quota.db'}")
    yield store
    await store.close()


@pytest_asyncio.fixture(params=["memory", "sql", "redis", "firestore", "rtdb"])
async def any_store(request, clock, tmp_path, monkeypatch):
    """Every backend, each over its own clean storage."""
    backend = request.param
    if backend == "memory":
        store = InMemoryQuotaStore()
    elif backend == "sql":
        store = SQLQuotaStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'quota.db'}")
    elif backend == "redis":
        store = RedisQuotaStore(make_redis_client(clock, monkeypatch))
    elif backend == "firestore":
        monkeypatch.setattr(
            "quotaguard.app.services.quota.firestore.async_transactional",
            fake_async_transactional,
        )
        store = FirestoreQuotaStore(FakeFirestore())
    else:
        store = RTDBQuotaStore(FakeRealtimeDatabase().reference("quotas"))
    yield store
    await store.close()
    if backend == "redis":
        await store._redis.aclose()
