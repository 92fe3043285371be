"""
Session Errors

Typed failures raised by the session manager. Callers distinguish:
- SessionNotFoundError: the session is gone ("session expired")
- DeviceConflictError, DuplicateViewError: business-rule violations, never retried
- PersistenceError (and subclasses): store failure, retryable
"""


class SessionError(Exception):
    """Base exception for session manager errors."""
    retryable = False


class SessionNotFoundError(SessionError):
    """No session matches the requested id or user."""

    def __init__(self, session_id: str | None = None, user_id: str | None = None):
        self.session_id = session_id
        self.user_id = user_id
        if user_id is not None:
            message = f"No session found for user {user_id}"
        else:
            message = f"Session {session_id} not found"
        super().__init__(message)


class DeviceConflictError(SessionError):
    """A view of the same device class is already active in the session."""

    def __init__(self, session_id: str, device_class: str):
        self.session_id = session_id
        self.device_class = device_class
        super().__init__(
            f"A view of device class '{device_class}' is already active "
            f"in session {session_id}"
        )


class DuplicateViewError(SessionError):
    """A view with the same id is already attached to the session."""

    def __init__(self, session_id: str, view_id: str):
        self.session_id = session_id
        self.view_id = view_id
        super().__init__(f"View {view_id} is already attached to session {session_id}")


class PersistenceError(SessionError):
    """The document store failed."""
    retryable = True


class PersistenceTimeoutError(PersistenceError):
    """A document store call did not complete in time."""
    pass


class ConcurrentModificationError(PersistenceError):
    """The session kept changing underneath a conditional write."""
    pass
