"""
Shared test fixtures and configuration for entire test suite.

Provides: document stores, event manager, session manager, store fakes
Dependencies: pytest, pytest-asyncio, sqlalchemy, aiosqlite
System role: Test infrastructure and fixture management
"""

import asyncio
from datetime import timedelta

import pytest

from auth_sessions.config import SessionSettings
from auth_sessions.events import EventManager
from auth_sessions.session import Session, SessionManager, View, utcnow
from auth_sessions.storage import (
    InMemoryDocumentStore,
    StorageError,
    create_sqlite_storage,
)

OFFLINE_TOPIC = "sessions:event:user.offline"


class SlowDocumentStore(InMemoryDocumentStore):
    """In-memory store whose reads never finish in time."""

    def __init__(self, delay: float = 5.0):
        super().__init__()
        self.delay = delay

    async def find_one(self, collection, matcher, projection=None):
        await asyncio.sleep(self.delay)
        return await super().find_one(collection, matcher, projection)


class BrokenDocumentStore(InMemoryDocumentStore):
    """In-memory store whose reads and deletes fail."""

    async def find_one(self, collection, matcher, projection=None):
        raise StorageError("connection refused")

    async def find(self, collection, matcher, projection=None):
        raise StorageError("connection refused")

    async def delete(self, collection, matcher):
        raise StorageError("connection refused")


@pytest.fixture
def settings() -> SessionSettings:
    """Settings without background work, so tests control every purge."""
    return SessionSettings(purge_on_startup=False, purge_interval_seconds=0)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Provide an empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def events() -> EventManager:
    """Provide an in-process event manager that records history."""
    return EventManager()


@pytest.fixture
def manager(store, events, settings) -> SessionManager:
    """Provide a session manager over the in-memory adapters."""
    return SessionManager(store=store, events=events, settings=settings)


@pytest.fixture
async def sqlite_bundle():
    """
    Create in-memory SQLite storage for testing.

    Yields:
        StorageBundle: bundle backed by aiosqlite, disposed afterwards
    """
    bundle = await create_sqlite_storage()
    yield bundle
    await bundle.close()


async def offline_events(events: EventManager) -> list:
    """Payloads of every published offline notification, oldest first."""
    return [message.payload for message in await events.get_history(topic=OFFLINE_TOPIC)]


async def insert_session(
    store,
    device_classes: list[str] = (),
    idle_minutes: float = 0,
    collection: str = "sessions",
    **fields,
) -> Session:
    """Store a session directly, last active `idle_minutes` ago."""
    session = Session(
        last_activity=utcnow() - timedelta(minutes=idle_minutes),
        views=[View(device_class=device_class) for device_class in device_classes],
        **fields,
    )
    await store.insert(collection, session.to_document())
    return session
