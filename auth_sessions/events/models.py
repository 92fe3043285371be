"""
Event Models

Defines the notifications the session service emits to the rest of the
system. Events are published on a topic namespaced by event type, with a
flat JSON payload.

Design Principles:
- Events are immutable records
- Each event type has a well-defined payload structure
- Events are correlated by session_id
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_TOPIC_PREFIX = "sessions:event:"


class EventType(str, Enum):
    """Categories of published events."""
    USER_OFFLINE = "user.offline"  # A view was removed from a session


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseEvent(BaseModel):
    """
    Base class for all published events.

    Provides common identification, timing, and correlation fields.
    """
    model_config = ConfigDict(frozen=True)

    # Identity
    event_id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique event identifier"
    )
    event_type: EventType = Field(
        ...,
        description="Type/category of the event"
    )

    # Timing
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred"
    )

    # Correlation
    session_id: str = Field(
        ...,
        description="Session this event belongs to"
    )

    def topic(self, prefix: str = DEFAULT_TOPIC_PREFIX) -> str:
        """Topic the event is published on."""
        return f"{prefix}{self.event_type.value}"

    def to_payload(self) -> dict[str, Any]:
        """Convert to publish payload format."""
        return {
            "eventId": self.event_id,
            "eventType": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "sessionId": self.session_id,
        }


class UserOfflineEvent(BaseEvent):
    """
    A device went offline: one of the session's views was removed.
    """
    event_type: EventType = Field(
        default=EventType.USER_OFFLINE,
        description="Always user.offline"
    )
    user_id: str | None = Field(
        default=None,
        description="Owner of the session, if established"
    )
    view_id: str = Field(
        ...,
        description="The removed view"
    )

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["userId"] = self.user_id
        payload["viewId"] = self.view_id
        return payload


def create_user_offline(
    session_id: str,
    user_id: str | None,
    view_id: str,
) -> UserOfflineEvent:
    """Create a user.offline event."""
    return UserOfflineEvent(
        session_id=session_id,
        user_id=user_id,
        view_id=view_id,
    )
