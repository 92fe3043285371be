"""
Storage Factory

Builds the document store the session manager runs on, from explicit
settings or from SESSIONS_* environment variables.

Backends:
- memory: process-local, lost on restart (development, tests)
- sqlite: aiosqlite, one node
- postgresql: asyncpg, shared by several nodes
- redis: one hash per collection, shared by several nodes

    bundle = await create_storage_from_env()
    manager = SessionManager(store=bundle.documents, events=...)
    ...
    await bundle.close()
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from .memory import InMemoryDocumentStore
from .models import Base
from .ports import DocumentStore, StorageBundle
from .sqlalchemy import SqlAlchemyDocumentStore


class StorageBackend(str, Enum):
    MEMORY = "memory"
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    REDIS = "redis"


@dataclass
class StorageSettings:
    """
    Where and how sessions are persisted.

    Attributes:
        backend: Which adapter to build
        database_url: SQLAlchemy URL; the async driver is added when missing
        redis_url: Redis URL for the redis backend
        pool_size: SQL connection pool size (postgresql)
        pool_max_overflow: Extra SQL connections allowed under load (postgresql)
        echo_sql: Log every SQL statement
        create_tables: Create the documents table at startup
        key_prefix: Namespace of the Redis keys
        max_write_attempts: Conditional-write retries inside the adapter
    """
    backend: StorageBackend = StorageBackend.MEMORY
    database_url: str | None = None
    redis_url: str | None = None
    pool_size: int = 5
    pool_max_overflow: int = 10
    echo_sql: bool = False
    create_tables: bool = True
    key_prefix: str = "sessions"
    max_write_attempts: int = 10


@dataclass
class StorageBundleImpl(StorageBundle):
    """Bundle that owns the engine or Redis client behind its store."""
    documents: DocumentStore
    _engine: AsyncEngine | None = field(default=None, repr=False)
    _redis: Any = field(default=None, repr=False)  # redis.asyncio.Redis

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        if self._redis is not None:
            await self._redis.aclose()


def _backend_for_url(url: str) -> StorageBackend:
    scheme = url.split(":", 1)[0].split("+", 1)[0]
    if scheme == "sqlite":
        return StorageBackend.SQLITE
    if scheme in ("postgresql", "postgres"):
        return StorageBackend.POSTGRESQL
    raise ValueError(f"Unsupported database URL scheme: {url}")


def settings_from_env() -> StorageSettings:
    """
    Read StorageSettings from the environment.

    Environment variables:
        SESSIONS_STORAGE_BACKEND: memory | sqlite | postgresql | redis
        SESSIONS_DATABASE_URL: SQL URL (selects sqlite/postgresql when no backend is set)
        SESSIONS_REDIS_URL: Redis URL (selects redis when neither of the above is set)
        SESSIONS_POOL_SIZE, SESSIONS_POOL_MAX_OVERFLOW: SQL pool sizing
        SESSIONS_ECHO_SQL: "true" to log SQL
        SESSIONS_CREATE_TABLES: "false" to skip table creation
        SESSIONS_KEY_PREFIX: Redis key namespace
        SESSIONS_MAX_WRITE_ATTEMPTS: Adapter-level write retries
    """
    database_url = os.getenv("SESSIONS_DATABASE_URL")
    redis_url = os.getenv("SESSIONS_REDIS_URL")
    explicit = os.getenv("SESSIONS_STORAGE_BACKEND")

    if explicit:
        backend = StorageBackend(explicit)
    elif database_url:
        backend = _backend_for_url(database_url)
    elif redis_url:
        backend = StorageBackend.REDIS
    else:
        backend = StorageBackend.MEMORY

    return StorageSettings(
        backend=backend,
        database_url=database_url,
        redis_url=redis_url,
        pool_size=int(os.getenv("SESSIONS_POOL_SIZE", "5")),
        pool_max_overflow=int(os.getenv("SESSIONS_POOL_MAX_OVERFLOW", "10")),
        echo_sql=os.getenv("SESSIONS_ECHO_SQL", "").lower() == "true",
        create_tables=os.getenv("SESSIONS_CREATE_TABLES", "true").lower() != "false",
        key_prefix=os.getenv("SESSIONS_KEY_PREFIX", "sessions"),
        max_write_attempts=int(os.getenv("SESSIONS_MAX_WRITE_ATTEMPTS", "10")),
    )


def _async_url(backend: StorageBackend, url: str) -> str:
    """Force the async driver into a SQL URL."""
    scheme, rest = url.split("://", 1)
    if "+" in scheme:
        return url
    driver = "sqlite+aiosqlite" if backend == StorageBackend.SQLITE else "postgresql+asyncpg"
    return f"{driver}://{rest}"


def _create_engine(settings: StorageSettings) -> AsyncEngine:
    url = _async_url(settings.backend, settings.database_url)

    if settings.backend == StorageBackend.POSTGRESQL:
        return create_async_engine(
            url,
            pool_size=settings.pool_size,
            max_overflow=settings.pool_max_overflow,
            echo=settings.echo_sql,
        )
    if ":memory:" in url:
        # Every connection would otherwise open its own empty database
        return create_async_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=settings.echo_sql,
        )
    return create_async_engine(url, echo=settings.echo_sql)


async def _create_sql_storage(settings: StorageSettings) -> StorageBundle:
    engine = _create_engine(settings)

    if settings.create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    store = SqlAlchemyDocumentStore(
        async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False),
        max_write_attempts=settings.max_write_attempts,
    )
    return StorageBundleImpl(documents=store, _engine=engine)


def _create_redis_storage(settings: StorageSettings) -> StorageBundle:
    from redis.asyncio import Redis
    from .redis import RedisDocumentStore

    client = Redis.from_url(settings.redis_url, decode_responses=False)
    store = RedisDocumentStore(
        redis=client,
        key_prefix=settings.key_prefix,
        max_write_attempts=settings.max_write_attempts,
    )
    return StorageBundleImpl(documents=store, _redis=client)


async def create_storage(settings: StorageSettings) -> StorageBundle:
    """
    Build the storage bundle described by settings.

    Raises:
        ValueError: If the backend's URL is missing
    """
    if settings.backend == StorageBackend.MEMORY:
        return StorageBundleImpl(documents=InMemoryDocumentStore())

    if settings.backend == StorageBackend.REDIS:
        if not settings.redis_url:
            raise ValueError("redis_url required for backend redis")
        return _create_redis_storage(settings)

    if not settings.database_url:
        raise ValueError(f"database_url required for backend {settings.backend.value}")
    return await _create_sql_storage(settings)


async def create_storage_from_env() -> StorageBundle:
    """Build the storage bundle configured by SESSIONS_* variables."""
    return await create_storage(settings_from_env())


async def create_sqlite_storage(path: str = ":memory:") -> StorageBundle:
    """SQLite storage at `path`, in memory by default."""
    return await create_storage(StorageSettings(
        backend=StorageBackend.SQLITE,
        database_url=f"sqlite+aiosqlite:///{path}",
    ))
