"""
Redis Event Publisher

Publishes notifications over Redis pub/sub so other services can react to
devices going offline. Payloads are JSON-encoded; topics map 1:1 to Redis
channels.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from redis.asyncio import Redis

from .ports import EventPublisher

logger = logging.getLogger(__name__)


class RedisEventPublisher(EventPublisher):
    """
    Redis pub/sub implementation of the publish port.

    Fire-and-forget: the number of receiving subscribers is only logged.
    """

    def __init__(self, redis: Redis, owns_client: bool = False) -> None:
        """
        Args:
            redis: Redis async client
            owns_client: Close the client on close()
        """
        self._redis = redis
        self._owns_client = owns_client

    @classmethod
    def from_url(cls, url: str) -> "RedisEventPublisher":
        """Create a publisher with its own client."""
        return cls(Redis.from_url(url, decode_responses=False), owns_client=True)

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        receivers = await self._redis.publish(topic, json.dumps(payload, default=str))
        logger.debug(f"Published {topic} to {receivers} Redis subscribers")

    async def close(self) -> None:
        if self._owns_client:
            await self._redis.aclose()
