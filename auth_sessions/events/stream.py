"""
In-process Notification Stream

Lets code running next to the session manager (tests, the demo script,
an embedding application) follow published notifications without a broker.

- PublishedMessage: a topic/payload pair as published
- EventFilter: topic / topic prefix / session criteria, ANDed
- EventSubscription: bounded queue of the messages one consumer wants
- EventStream: fan-out to every open subscription
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class PublishedMessage(BaseModel):
    """A topic/payload pair as it went through the stream."""
    model_config = ConfigDict(frozen=True)

    topic: str = Field(..., description="Topic the payload was published on")
    payload: dict[str, Any] = Field(default_factory=dict, description="Event fields")
    published_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the stream accepted the message"
    )

    @property
    def session_id(self) -> str | None:
        return self.payload.get("sessionId")


class EventFilter(BaseModel):
    """
    Which messages a subscription receives.

    Unset criteria match everything; set criteria must all hold.
    """
    topics: set[str] | None = Field(
        default=None,
        description="Exact topics"
    )
    topic_prefixes: list[str] | None = Field(
        default=None,
        description="Topic prefixes, any of which may match"
    )
    session_ids: set[str] | None = Field(
        default=None,
        description="Sessions the payload must belong to"
    )

    def matches(self, message: PublishedMessage) -> bool:
        if self.topics is not None and message.topic not in self.topics:
            return False
        if self.topic_prefixes is not None and not message.topic.startswith(tuple(self.topic_prefixes)):
            return False
        if self.session_ids is not None and message.session_id not in self.session_ids:
            return False
        return True


class EventSubscription:
    """
    One consumer's view of the stream.

    Iterate with `async for`; iteration ends once the subscription is closed
    and drained. A full queue drops new messages rather than blocking the
    publisher.
    """

    def __init__(
        self,
        subscription_id: str,
        filter: EventFilter | None = None,
        max_queue_size: int = 1000,
    ):
        self.subscription_id = subscription_id
        self.filter = filter or EventFilter()
        self.dropped = 0
        self._queue: asyncio.Queue[PublishedMessage | None] = asyncio.Queue(maxsize=max_queue_size)
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def deliver(self, message: PublishedMessage) -> bool:
        """Queue a message if the filter accepts it; returns whether it was queued."""
        if self._closed or not self.filter.matches(message):
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Subscription {self.subscription_id} is full, dropped {message.topic}"
            )
            return False
        return True

    async def get(self, timeout: float | None = None) -> PublishedMessage | None:
        """
        Next message, or None once closed or after `timeout` seconds.
        """
        if self._closed and self._queue.empty():
            return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def __aiter__(self) -> AsyncIterator[PublishedMessage]:
        while True:
            message = await self.get()
            if message is None:
                return
            yield message

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Wake a consumer blocked in get()
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass


class EventStream:
    """Fan-out of published messages to open subscriptions."""

    def __init__(self):
        self._subscriptions: dict[str, EventSubscription] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._subscriptions)

    async def subscribe(
        self,
        subscription_id: str,
        filter: EventFilter | None = None,
        max_queue_size: int = 1000,
    ) -> EventSubscription:
        """
        Open a subscription.

        Raises:
            ValueError: If the id is already subscribed
        """
        async with self._lock:
            if subscription_id in self._subscriptions:
                raise ValueError(f"Subscription {subscription_id} already exists")
            subscription = EventSubscription(subscription_id, filter, max_queue_size)
            self._subscriptions[subscription_id] = subscription
        logger.debug(f"Subscription opened: {subscription_id}")
        return subscription

    async def unsubscribe(self, subscription_id: str) -> bool:
        """Close and forget a subscription; False if it was unknown."""
        async with self._lock:
            subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return False
        subscription.close()
        logger.debug(f"Subscription closed: {subscription_id}")
        return True

    async def publish(self, message: PublishedMessage) -> int:
        """Offer a message to every subscription; returns how many queued it."""
        async with self._lock:
            subscriptions = list(self._subscriptions.values())
        return sum(1 for subscription in subscriptions if subscription.deliver(message))

    async def close_all(self) -> None:
        async with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.close()


def create_session_filter(session_id: str) -> EventFilter:
    """Messages about one session."""
    return EventFilter(session_ids={session_id})


def create_topic_filter(topic: str) -> EventFilter:
    """Messages on one topic."""
    return EventFilter(topics={topic})
