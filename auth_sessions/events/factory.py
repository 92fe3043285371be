"""
Event Publisher Factory

Environment-based selection of the publish transport.

Supported backends:
- memory: In-process EventManager (development/testing, single node)
- redis: Redis pub/sub (other services subscribe to the topics)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum

from .manager import EventManager
from .ports import EventPublisher


class EventBackend(str, Enum):
    """Supported event transports."""
    MEMORY = "memory"
    REDIS = "redis"


@dataclass
class EventSettings:
    """
    Configuration for event publishing.

    Attributes:
        backend: Event transport
        redis_url: Redis connection URL (for the redis backend)
        max_history: History kept by the in-process manager
    """
    backend: EventBackend = EventBackend.MEMORY
    redis_url: str | None = None
    max_history: int = 1000


def event_settings_from_env() -> EventSettings:
    """
    Create EventSettings from environment variables.

    Environment variables:
        SESSIONS_EVENT_BACKEND: "memory" or "redis"
        SESSIONS_EVENT_REDIS_URL: Redis URL (defaults to SESSIONS_REDIS_URL)
        SESSIONS_EVENT_HISTORY: History size for the memory backend
    """
    return EventSettings(
        backend=EventBackend(os.getenv("SESSIONS_EVENT_BACKEND", "memory")),
        redis_url=os.getenv("SESSIONS_EVENT_REDIS_URL") or os.getenv("SESSIONS_REDIS_URL"),
        max_history=int(os.getenv("SESSIONS_EVENT_HISTORY", "1000")),
    )


def create_event_publisher(settings: EventSettings) -> EventPublisher:
    """
    Create the publish transport from settings.

    Raises:
        ValueError: If settings are invalid
    """
    if settings.backend == EventBackend.REDIS:
        if not settings.redis_url:
            raise ValueError("redis_url required for event backend redis")
        from .redis import RedisEventPublisher
        return RedisEventPublisher.from_url(settings.redis_url)

    return EventManager(max_history=settings.max_history)
