# Auth Sessions
# Multi-device session management with pluggable storage and event publishing

from auth_sessions.config import SessionSettings, session_settings_from_env
from auth_sessions.session import (
    Session,
    SessionManager,
    View,
    DeviceClass,
    SessionError,
    SessionNotFoundError,
    DeviceConflictError,
    DuplicateViewError,
    PersistenceError,
    PersistenceTimeoutError,
)

__version__ = "0.1.0"

__all__ = [
    "SessionSettings",
    "session_settings_from_env",
    "Session",
    "SessionManager",
    "View",
    "DeviceClass",
    "SessionError",
    "SessionNotFoundError",
    "DeviceConflictError",
    "DuplicateViewError",
    "PersistenceError",
    "PersistenceTimeoutError",
]
