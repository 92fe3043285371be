"""
Session Service Configuration

Settings injected into the session manager at construction. Nothing reads
configuration globally; the application entry point builds these from the
environment (optionally populated from a .env file) and passes them down.

Environment variables:
    SESSIONS_COLLECTION: Document collection holding sessions
    SESSIONS_DEBUG: "true" to log every published notification
    SESSIONS_PERSISTENCE_TIMEOUT: Seconds per store call ("none" disables)
    SESSIONS_MAX_WRITE_RETRIES: Conditional-write retries per operation
    SESSIONS_PURGE_CONCURRENCY: Max view removals in flight during purge
    SESSIONS_DELETE_EMPTY: "false" to keep stale sessions without views
    SESSIONS_PURGE_ON_STARTUP: "false" to keep sessions from a previous run
    SESSIONS_IDLE_TIMEOUT: Seconds of inactivity before a session is purged
    SESSIONS_PURGE_INTERVAL: Seconds between background purges (0 disables)
    SESSIONS_EVENT_TOPIC_PREFIX: Prefix of published topics
"""

import os
from dataclasses import dataclass

from auth_sessions.events.models import DEFAULT_TOPIC_PREFIX


@dataclass
class SessionSettings:
    """
    Configuration for the session manager.

    Attributes:
        collection: Document collection holding sessions
        debug: Log every published notification
        persistence_timeout_seconds: Bound on each store call (None = unbounded)
        max_write_retries: Conditional-write retries before giving up
        purge_concurrency: Max view removals in flight during a purge
        delete_empty_sessions: Purge deletes stale sessions that have no views
        purge_on_startup: Delete every stored session when the manager starts
        session_idle_timeout_seconds: Inactivity before background purge
        purge_interval_seconds: Background purge period (0 disables)
        event_topic_prefix: Prefix of published topics
    """
    collection: str = "sessions"
    debug: bool = False
    persistence_timeout_seconds: float | None = 10.0
    max_write_retries: int = 10
    purge_concurrency: int = 16
    delete_empty_sessions: bool = True
    purge_on_startup: bool = True
    session_idle_timeout_seconds: float = 1800.0
    purge_interval_seconds: float = 60.0
    event_topic_prefix: str = DEFAULT_TOPIC_PREFIX

    def __post_init__(self) -> None:
        if self.max_write_retries < 1:
            raise ValueError("max_write_retries must be at least 1")
        if self.purge_concurrency < 1:
            raise ValueError("purge_concurrency must be at least 1")
        if self.persistence_timeout_seconds is not None and self.persistence_timeout_seconds <= 0:
            raise ValueError("persistence_timeout_seconds must be positive")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


def session_settings_from_env() -> SessionSettings:
    """Create SessionSettings from environment variables."""
    timeout_str = os.getenv("SESSIONS_PERSISTENCE_TIMEOUT", "10")
    timeout = None if timeout_str.lower() in ("", "none", "0") else float(timeout_str)

    return SessionSettings(
        collection=os.getenv("SESSIONS_COLLECTION", "sessions"),
        debug=_env_bool("SESSIONS_DEBUG", False),
        persistence_timeout_seconds=timeout,
        max_write_retries=int(os.getenv("SESSIONS_MAX_WRITE_RETRIES", "10")),
        purge_concurrency=int(os.getenv("SESSIONS_PURGE_CONCURRENCY", "16")),
        delete_empty_sessions=_env_bool("SESSIONS_DELETE_EMPTY", True),
        purge_on_startup=_env_bool("SESSIONS_PURGE_ON_STARTUP", True),
        session_idle_timeout_seconds=float(os.getenv("SESSIONS_IDLE_TIMEOUT", "1800")),
        purge_interval_seconds=float(os.getenv("SESSIONS_PURGE_INTERVAL", "60")),
        event_topic_prefix=os.getenv("SESSIONS_EVENT_TOPIC_PREFIX", DEFAULT_TOPIC_PREFIX),
    )
