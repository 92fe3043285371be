"""
Test suite for DocumentStore adapters.

The same contract is exercised against the in-memory adapter and the
SQLAlchemy adapter on in-memory SQLite. The Redis adapter is checked for
its error mapping with a mocked client.

System role: Verification of the persistence port
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from auth_sessions.storage import (
    ConflictError,
    InMemoryDocumentStore,
    StorageBackend,
    StorageError,
    StorageSettings,
    create_storage,
    settings_from_env,
)
from auth_sessions.storage.redis import RedisDocumentStore
from auth_sessions.storage.sqlalchemy import SqlAlchemyDocumentStore


@pytest.fixture(params=["memory", "sqlite"])
async def document_store(request, sqlite_bundle):
    """Provide each adapter in turn."""
    if request.param == "memory":
        return InMemoryDocumentStore()
    return sqlite_bundle.documents


class TestDocumentStoreContract:
    """Test suite shared by every adapter."""

    @pytest.mark.asyncio
    async def test_insert_then_find_one(self, document_store) -> None:
        await document_store.insert("sessions", {"id": "s1", "views": [], "data": {"a": 1}})

        found = await document_store.find_one("sessions", {"id": "s1"})

        assert found == {"id": "s1", "views": [], "data": {"a": 1}}

    @pytest.mark.asyncio
    async def test_insert_duplicate_should_conflict(self, document_store) -> None:
        await document_store.insert("sessions", {"id": "s1"})

        with pytest.raises(ConflictError):
            await document_store.insert("sessions", {"id": "s1"})

    @pytest.mark.asyncio
    async def test_find_one_should_return_none_when_unmatched(self, document_store) -> None:
        assert await document_store.find_one("sessions", {"id": "missing"}) is None

    @pytest.mark.asyncio
    async def test_collections_should_be_isolated(self, document_store) -> None:
        await document_store.insert("sessions", {"id": "s1"})

        assert await document_store.find("other", {}) == []

    @pytest.mark.asyncio
    async def test_conditional_update_should_report_matches(self, document_store) -> None:
        """Test a stale revision condition matches nothing and writes nothing."""
        await document_store.insert("sessions", {"id": "s1", "revision": 1, "views": []})

        missed = await document_store.update(
            "sessions",
            {"id": "s1", "revision": 0},
            {"$set": {"views": [{"id": "v1"}], "revision": 1}},
        )
        hit = await document_store.update(
            "sessions",
            {"id": "s1", "revision": 1},
            {"$set": {"views": [{"id": "v2"}], "revision": 2}},
        )

        assert (missed, hit) == (0, 1)
        found = await document_store.find_one("sessions", {"id": "s1"})
        assert found == {"id": "s1", "revision": 2, "views": [{"id": "v2"}]}

    @pytest.mark.asyncio
    async def test_update_should_upsert_when_requested(self, document_store) -> None:
        matched = await document_store.update(
            "sessions",
            {"id": "s1"},
            {"id": "s1", "userId": "alice"},
            upsert=True,
        )

        assert matched == 1
        assert await document_store.find_one("sessions", {"userId": "alice"}) == {
            "id": "s1",
            "userId": "alice",
        }

    @pytest.mark.asyncio
    async def test_update_multi_should_touch_every_match(self, document_store) -> None:
        for doc_id in ("s1", "s2", "s3"):
            await document_store.insert("sessions", {"id": doc_id, "stale": doc_id != "s3"})

        matched = await document_store.update(
            "sessions",
            {"stale": True},
            {"$set": {"views": []}},
            multi=True,
        )

        assert matched == 2
        assert len(await document_store.find("sessions", {"views": {"$exists": True}})) == 2

    @pytest.mark.asyncio
    async def test_find_should_apply_projection(self, document_store) -> None:
        await document_store.insert("sessions", {"id": "s1", "data": {"a": 1, "b": 2}})

        found = await document_store.find_one("sessions", {"id": "s1"}, {"id": 1, "data.b": 1})

        assert found == {"id": "s1", "data": {"b": 2}}

    @pytest.mark.asyncio
    async def test_delete_should_return_removed_count(self, document_store) -> None:
        for doc_id in ("s1", "s2", "s3"):
            await document_store.insert("sessions", {"id": doc_id})

        assert await document_store.delete("sessions", {"id": {"$in": ["s1", "s3"]}}) == 2
        assert [doc["id"] for doc in await document_store.find("sessions", {})] == ["s2"]
        assert await document_store.delete("sessions", {}) == 1


class TestStorageFactory:
    """Test suite for adapter selection."""

    @pytest.mark.asyncio
    async def test_create_storage_should_build_memory_store(self) -> None:
        bundle = await create_storage(StorageSettings())

        assert isinstance(bundle.documents, InMemoryDocumentStore)
        await bundle.close()

    @pytest.mark.asyncio
    async def test_create_sqlite_storage_should_build_sqlalchemy_store(self, sqlite_bundle) -> None:
        assert isinstance(sqlite_bundle.documents, SqlAlchemyDocumentStore)

    @pytest.mark.asyncio
    async def test_sql_backend_without_url_should_raise(self) -> None:
        with pytest.raises(ValueError):
            await create_storage(StorageSettings(backend=StorageBackend.POSTGRESQL))

    def test_settings_from_env_should_detect_backend_from_url(self, monkeypatch) -> None:
        monkeypatch.delenv("SESSIONS_STORAGE_BACKEND", raising=False)
        monkeypatch.delenv("SESSIONS_REDIS_URL", raising=False)
        monkeypatch.setenv("SESSIONS_DATABASE_URL", "postgresql://db/sessions")

        settings = settings_from_env()

        assert settings.backend == StorageBackend.POSTGRESQL

    def test_settings_from_env_should_default_to_memory(self, monkeypatch) -> None:
        for name in ("SESSIONS_STORAGE_BACKEND", "SESSIONS_DATABASE_URL", "SESSIONS_REDIS_URL"):
            monkeypatch.delenv(name, raising=False)

        assert settings_from_env().backend == StorageBackend.MEMORY


class TestRedisDocumentStore:
    """Test suite for the Redis adapter's error mapping."""

    @pytest.mark.asyncio
    async def test_insert_existing_id_should_conflict(self) -> None:
        redis = MagicMock()
        redis.hsetnx = AsyncMock(return_value=0)
        store = RedisDocumentStore(redis)

        with pytest.raises(ConflictError):
            await store.insert("sessions", {"id": "s1"})
        redis.hsetnx.assert_awaited_once()
        assert redis.hsetnx.await_args.args[:2] == ("sessions:sessions", "s1")

    @pytest.mark.asyncio
    async def test_find_should_use_hget_for_id_lookup(self) -> None:
        redis = MagicMock()
        redis.hget = AsyncMock(return_value=b'{"id": "s1", "views": []}')
        store = RedisDocumentStore(redis, key_prefix="test")

        found = await store.find_one("sessions", {"id": "s1"})

        assert found == {"id": "s1", "views": []}
        redis.hget.assert_awaited_once_with("test:sessions", "s1")

    @pytest.mark.asyncio
    async def test_redis_failure_should_raise_storage_error(self) -> None:
        redis = MagicMock()
        redis.hgetall = AsyncMock(side_effect=RedisConnectionError("down"))
        store = RedisDocumentStore(redis)

        with pytest.raises(StorageError):
            await store.find("sessions", {})
