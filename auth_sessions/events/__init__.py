# Event Publishing Module
# Notifications emitted on session state transitions

from auth_sessions.events.models import (
    DEFAULT_TOPIC_PREFIX,
    EventType,
    BaseEvent,
    UserOfflineEvent,
    create_user_offline,
)
from auth_sessions.events.ports import EventPublisher
from auth_sessions.events.stream import (
    EventStream,
    EventSubscription,
    EventFilter,
    PublishedMessage,
    create_session_filter,
    create_topic_filter,
)
from auth_sessions.events.manager import EventManager
from auth_sessions.events.factory import (
    EventBackend,
    EventSettings,
    create_event_publisher,
    event_settings_from_env,
)

__all__ = [
    # Event Models
    "DEFAULT_TOPIC_PREFIX",
    "EventType",
    "BaseEvent",
    "UserOfflineEvent",
    "create_user_offline",
    # Port
    "EventPublisher",
    # Event Stream
    "EventStream",
    "EventSubscription",
    "EventFilter",
    "PublishedMessage",
    "create_session_filter",
    "create_topic_filter",
    # Event Manager
    "EventManager",
    # Factory
    "EventBackend",
    "EventSettings",
    "create_event_publisher",
    "event_settings_from_env",
]
