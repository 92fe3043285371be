# Session Management Module
# Multi-device login sessions: views, session data and idle purge

from auth_sessions.session.errors import (
    SessionError,
    SessionNotFoundError,
    DeviceConflictError,
    DuplicateViewError,
    PersistenceError,
    PersistenceTimeoutError,
    ConcurrentModificationError,
)
from auth_sessions.session.session import (
    Session,
    SessionStatus,
    View,
    DeviceClass,
    format_timestamp,
    parse_timestamp,
    utcnow,
)
from auth_sessions.session.locks import KeyedLock
from auth_sessions.session.manager import SessionManager

__all__ = [
    # Errors
    "SessionError",
    "SessionNotFoundError",
    "DeviceConflictError",
    "DuplicateViewError",
    "PersistenceError",
    "PersistenceTimeoutError",
    "ConcurrentModificationError",
    # Models
    "Session",
    "SessionStatus",
    "View",
    "DeviceClass",
    "format_timestamp",
    "parse_timestamp",
    "utcnow",
    # Manager
    "KeyedLock",
    "SessionManager",
]
