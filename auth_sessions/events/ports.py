"""
Event Port Interface

The session service only ever publishes: fire-and-forget notifications on
a topic with a JSON-compatible payload. Delivery and acknowledgment are
the transport's concern.
"""

from abc import ABC, abstractmethod
from typing import Any


class EventPublisher(ABC):
    """Publish contract consumed by the session manager."""

    @abstractmethod
    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        """
        Publish a notification.

        Args:
            topic: Topic namespaced by event type
            payload: JSON-compatible event fields
        """
        ...

    async def close(self) -> None:
        """Release transport resources."""
        pass
