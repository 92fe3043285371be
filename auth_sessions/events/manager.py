"""
Event Manager

In-process implementation of the publish port. Fans notifications out to
subscribers of the event stream and keeps a bounded history so late
subscribers and test code can look back at what went out.

Features:
- Typed events published on prefixed topics
- A filtered queue per subscriber
- Bounded history, searchable by topic or session
"""

import asyncio
import logging
from collections import deque
from typing import Any
from uuid import uuid4

from auth_sessions.events.models import BaseEvent, DEFAULT_TOPIC_PREFIX
from auth_sessions.events.ports import EventPublisher
from auth_sessions.events.stream import (
    EventStream,
    EventSubscription,
    EventFilter,
    PublishedMessage,
    create_session_filter,
)

logger = logging.getLogger(__name__)


class EventManager(EventPublisher):
    """
    Publisher that stays inside the process.

    Responsibilities:
    - Fan each message out to matching subscriptions
    - Turn typed events into topic and payload
    - Remember recent messages for replay
    """

    def __init__(
        self,
        max_history: int = 1000,
        topic_prefix: str = DEFAULT_TOPIC_PREFIX,
    ):
        """
        Set up an empty stream and history.

        Args:
            max_history: Max messages kept in history
            topic_prefix: Prefix used when publishing typed events
        """
        self._stream = EventStream()
        self._history: deque[PublishedMessage] = deque(maxlen=max_history)
        self._topic_prefix = topic_prefix
        self._lock = asyncio.Lock()

    @property
    def stream(self) -> EventStream:
        """Stream the subscriptions live on."""
        return self._stream

    @property
    def stats(self) -> dict[str, Any]:
        """Subscriber and history counts."""
        return {
            "subscriber_count": len(self._stream),
            "history_size": len(self._history),
        }

    # =========================================================================
    # Publishing APIs
    # =========================================================================

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        """
        Publish a payload on a topic.

        Also stores the message in history.
        """
        message = PublishedMessage(topic=topic, payload=dict(payload))
        async with self._lock:
            self._history.append(message)
        delivered = await self._stream.publish(message)
        logger.debug(f"Published {topic} to {delivered} subscribers")

    async def publish_event(self, event: BaseEvent) -> None:
        """Publish a typed event on its topic."""
        await self.publish(event.topic(self._topic_prefix), event.to_payload())

    # =========================================================================
    # Subscription APIs
    # =========================================================================

    async def subscribe(
        self,
        filter: EventFilter | None = None,
        subscription_id: str | None = None,
    ) -> EventSubscription:
        """Create a subscription (all messages when no filter is given)."""
        return await self._stream.subscribe(
            subscription_id=subscription_id or str(uuid4()),
            filter=filter,
        )

    async def subscribe_session(
        self,
        session_id: str,
        include_history: bool = True,
    ) -> EventSubscription:
        """
        Follow every message about one session.

        Args:
            session_id: Session to subscribe to
            include_history: Queue matching history before live messages
        """
        subscription = await self.subscribe(filter=create_session_filter(session_id))

        if include_history:
            for message in await self.get_history(session_id=session_id):
                subscription.deliver(message)

        return subscription

    async def unsubscribe(self, subscription_id: str) -> bool:
        """Close the subscription with this id; False if unknown."""
        return await self._stream.unsubscribe(subscription_id)

    # =========================================================================
    # History APIs
    # =========================================================================

    async def get_history(
        self,
        topic: str | None = None,
        session_id: str | None = None,
    ) -> list[PublishedMessage]:
        """
        Recorded messages, oldest first.

        Args:
            topic: Only messages on this topic
            session_id: Only messages for this session
        """
        async with self._lock:
            history = list(self._history)

        if topic is not None:
            history = [m for m in history if m.topic == topic]

        if session_id is not None:
            history = [m for m in history if m.session_id == session_id]

        return history

    async def clear_history(self) -> int:
        """
        Forget every recorded message.

        Returns:
            How many messages were forgotten
        """
        async with self._lock:
            cleared = len(self._history)
            self._history.clear()
            return cleared

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def close(self) -> None:
        """Close every subscription and drop the history."""
        await self._stream.close_all()
        await self.clear_history()
