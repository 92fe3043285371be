"""
Session Manager

Manages login sessions shared by a user's devices: creation, view
registration and removal, per-session data, and time-based purge.

The document store is the only source of truth. The manager keeps no
session state between calls; every operation re-reads the stored record or
mutates it with a single conditional update.

Concurrency:
- Operations on one session id are serialized inside a manager (KeyedLock).
- View writes are compare-and-swap on the session revision, so managers in
  different processes sharing one store cannot lose each other's updates.
- Data operations address disjoint "data.<field>" paths and need neither.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import ValidationError

from auth_sessions.config import SessionSettings
from auth_sessions.events.models import create_user_offline
from auth_sessions.events.ports import EventPublisher
from auth_sessions.session.errors import (
    ConcurrentModificationError,
    PersistenceError,
    PersistenceTimeoutError,
    SessionError,
    SessionNotFoundError,
)
from auth_sessions.session.locks import KeyedLock
from auth_sessions.session.session import (
    Session,
    View,
    format_timestamp,
    parse_timestamp,
    utcnow,
)
from auth_sessions.storage.ports import (
    ConflictError,
    Document,
    DocumentStore,
    Matcher,
    StorageError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _validate_field_names(field_names: Any) -> list[str]:
    """Data field names must be plain, non-empty keys."""
    names = list(field_names)
    for name in names:
        if not isinstance(name, str) or not name or "." in name or name.startswith("$"):
            raise ValueError(f"Invalid data field name: {name!r}")
    return names


def _revision_matcher(session_id: str, document: Document) -> Matcher:
    """Matcher that only hits the document if its revision is unchanged."""
    if "revision" in document:
        return {"id": session_id, "revision": document["revision"]}
    return {"id": session_id, "revision": {"$exists": False}}


class SessionManager:
    """
    Manages the lifecycle of multi-device login sessions.

    All operations are coroutines that either return their result or raise
    a SessionError subclass:
    - SessionNotFoundError: no such session
    - DeviceConflictError: a view of that device class is already active
    - DuplicateViewError: a view with that id is already attached
    - ConcurrentModificationError: the session changed under a conditional write
    - PersistenceError / PersistenceTimeoutError: the store failed
    """

    def __init__(
        self,
        store: DocumentStore,
        events: EventPublisher,
        settings: SessionSettings | None = None,
    ):
        """
        Initialize the session manager.

        Args:
            store: Document store holding the sessions
            events: Publisher for offline notifications
            settings: Manager configuration (defaults when omitted)
        """
        self._store = store
        self._events = events
        self._settings = settings or SessionSettings()
        self._collection = self._settings.collection

        # Serializes mutations of the same session id
        self._locks = KeyedLock()

        # Background tasks
        self._startup_task: asyncio.Task | None = None
        self._purge_task: asyncio.Task | None = None

    @property
    def settings(self) -> SessionSettings:
        return self._settings

    # =========================================================================
    # Background tasks
    # =========================================================================

    async def start(self) -> None:
        """
        Start background work without waiting for it.

        Schedules the startup purge of sessions left by a previous run and
        the periodic purge of idle sessions.
        """
        if self._settings.purge_on_startup and self._startup_task is None:
            self._startup_task = asyncio.create_task(self._purge_previous_run(utcnow()))

        if self._settings.purge_interval_seconds > 0 and self._purge_task is None:
            self._purge_task = asyncio.create_task(self._purge_loop())
            logger.info("Session manager purge task started")

    async def stop(self) -> None:
        """Stop background tasks."""
        for task in (self._startup_task, self._purge_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        if self._purge_task:
            logger.info("Session manager purge task stopped")
        self._startup_task = None
        self._purge_task = None

    async def _purge_previous_run(self, started_at: datetime) -> None:
        """Best-effort removal of sessions older than this manager."""
        # Only records last active before start are dropped. Sessions written
        # since, by this node or another one sharing the store, are kept.
        try:
            purged = await self.purge_all_sessions(before=started_at)
            if purged > 0:
                logger.debug(f"Purged {purged} old sessions.")
        except SessionError as e:
            logger.warning(f"Failed to purge old sessions: {e}")

    async def _purge_loop(self) -> None:
        """Periodically purge idle sessions."""
        while True:
            try:
                await asyncio.sleep(self._settings.purge_interval_seconds)
                cutoff = utcnow() - timedelta(seconds=self._settings.session_idle_timeout_seconds)
                purged = await self.purge_old_sessions(cutoff)
                if purged:
                    logger.info(f"Purged {purged} idle sessions")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in session purge loop: {e}")

    # =========================================================================
    # Store access
    # =========================================================================

    async def _call(self, operation: str, call: Awaitable[T]) -> T:
        """Await a store call with the configured timeout and typed failures."""
        timeout = self._settings.persistence_timeout_seconds
        try:
            if timeout is None:
                return await call
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise PersistenceTimeoutError(
                f"{operation} timed out after {timeout}s"
            ) from e
        except StorageError as e:
            raise PersistenceError(f"{operation} failed: {e}") from e

    async def _load_document(self, session_id: str, operation: str) -> Document:
        document = await self._call(
            operation,
            self._store.find_one(self._collection, {"id": session_id}),
        )
        if document is None:
            raise SessionNotFoundError(session_id)
        return document

    async def _stamp(self, session: Session, operation: str) -> Session:
        """Persist a new last activity for a session that was just read."""
        stamp = format_timestamp(session.touch())
        await self._call(
            operation,
            self._store.update(
                self._collection,
                {"id": session.id},
                {"$set": {"lastActivity": stamp}},
            ),
        )
        return session

    # =========================================================================
    # Creation & retrieval
    # =========================================================================

    async def create_session(self) -> Session:
        """
        Create and store an empty session.

        Returns:
            The created Session

        Raises:
            PersistenceError: If the store write fails
        """
        session = Session()
        await self._call(
            "create_session",
            self._store.insert(self._collection, session.to_document()),
        )
        logger.info(f"Session created: {session.id}")
        return session

    async def get_session(self, session_id: str) -> Session:
        """
        Get a session by ID.

        Every read counts as activity and extends the session's life.

        Raises:
            SessionNotFoundError: If no session has this id
        """
        document = await self._load_document(session_id, "get_session")
        return await self._stamp(Session.from_document(document), "get_session")

    async def get_session_for_user(self, user_id: str) -> Session:
        """
        Get the session owned by a user.

        Raises:
            SessionNotFoundError: If the user has no session
        """
        document = await self._call(
            "get_session_for_user",
            self._store.find_one(self._collection, {"userId": user_id}),
        )
        if document is None:
            raise SessionNotFoundError(user_id=user_id)
        return await self._stamp(Session.from_document(document), "get_session_for_user")

    async def touch_session(self, session_id: str) -> None:
        """
        Record activity on a session without reading it.

        Raises:
            SessionNotFoundError: If no session has this id
        """
        matched = await self._call(
            "touch_session",
            self._store.update(
                self._collection,
                {"id": session_id},
                {"$set": {"lastActivity": format_timestamp(utcnow())}},
            ),
        )
        if matched == 0:
            raise SessionNotFoundError(session_id)

    async def store_session(self, session: Session) -> Session:
        """
        Store a full session document, creating it if needed.

        Used to persist state built outside the manager, e.g. the user id
        established by the login step. The write replaces the stored
        session only if it is still at the revision `session` was loaded
        at, so a stale copy cannot erase views registered since.

        Returns:
            The stored session, with its new last activity and revision

        Raises:
            DeviceConflictError: If two views share a device class
            DuplicateViewError: If two views share an id
            ConcurrentModificationError: If the stored session has moved
                past `session.revision`
        """
        session.check_views()
        expected = session.revision

        async with self._locks.hold(session.id):
            for attempt in range(self._settings.max_write_retries):
                current = await self._call(
                    "store_session",
                    self._store.find_one(self._collection, {"id": session.id}, {"revision": 1}),
                )
                if current is not None and current.get("revision", 0) != expected:
                    session.revision = expected
                    raise ConcurrentModificationError(
                        f"Session {session.id} is at revision "
                        f"{current.get('revision', 0)}, not {expected}"
                    )
                session.touch()

                if current is None:
                    session.revision = expected + 1
                    try:
                        await self._call(
                            "store_session",
                            self._store.insert(self._collection, session.to_document()),
                        )
                        return session
                    except PersistenceError as e:
                        if not isinstance(e.__cause__, ConflictError):
                            raise
                else:
                    session.revision = expected + 1
                    matched = await self._call(
                        "store_session",
                        self._store.update(
                            self._collection,
                            _revision_matcher(session.id, current),
                            session.to_document(),
                        ),
                    )
                    if matched:
                        return session

                logger.debug(
                    f"Session {session.id} changed during store_session, "
                    f"retrying (attempt {attempt + 1})"
                )

        session.revision = expected
        raise ConcurrentModificationError(
            f"store_session gave up on session {session.id} after "
            f"{self._settings.max_write_retries} attempts"
        )

    async def delete_session(self, session_id: str) -> int:
        """
        Delete a session outright.

        No offline notifications are sent: the session is discarded as a
        whole, not view by view.

        Returns:
            Number of deleted sessions (0 or 1)
        """
        async with self._locks.hold(session_id):
            deleted = await self._call(
                "delete_session",
                self._store.delete(self._collection, {"id": session_id}),
            )
        if deleted:
            logger.info(f"Session deleted: {session_id}")
        return deleted

    # =========================================================================
    # Views
    # =========================================================================

    async def _modify_views(
        self,
        session_id: str,
        mutate: Callable[[Session], bool],
        operation: str,
        match_activity: bool = False,
    ) -> tuple[Session, bool]:
        """
        Read, mutate and conditionally write a session's views.

        The caller must hold the session's lock. `mutate` returns False when
        there is nothing to write and may raise to abort without writing.
        With `match_activity` the write also misses when the session was
        touched after the read.

        Returns:
            Tuple of (session, written)
        """
        for attempt in range(self._settings.max_write_retries):
            document = await self._load_document(session_id, operation)
            session = Session.from_document(document)

            if not mutate(session):
                return session, False

            matcher = _revision_matcher(session_id, document)
            if match_activity:
                matcher["lastActivity"] = document.get("lastActivity")

            session.touch()
            session.revision = document.get("revision", 0) + 1
            matched = await self._call(
                operation,
                self._store.update(
                    self._collection,
                    matcher,
                    {"$set": {
                        "views": [view.to_document() for view in session.views],
                        "lastActivity": format_timestamp(session.last_activity),
                        "revision": session.revision,
                    }},
                ),
            )
            if matched:
                return session, True

            logger.debug(
                f"Session {session_id} changed during {operation}, "
                f"retrying (attempt {attempt + 1})"
            )

        raise ConcurrentModificationError(
            f"{operation} gave up on session {session_id} after "
            f"{self._settings.max_write_retries} attempts"
        )

    async def register_view(self, session_id: str, view: View) -> Session:
        """
        Register a view in a session.

        Args:
            session_id: Session the view joins
            view: View to register

        Returns:
            The updated Session

        Raises:
            SessionNotFoundError: If the session does not exist
            DuplicateViewError: If a view with the same id is attached
            DeviceConflictError: If a view of the same device class is active
        """
        def add(session: Session) -> bool:
            session.register_view(view)
            return True

        async with self._locks.hold(session_id):
            session, _ = await self._modify_views(session_id, add, "register_view")

        logger.info(
            f"View registered: {view.id} ({view.device_class}) in session {session_id}"
        )
        return session

    async def remove_view(self, session_id: str, view_id: str) -> Session:
        """
        Remove a view from a session.

        Publishes one offline notification once the removal is stored.
        Removing an unknown view changes nothing and publishes nothing.

        Returns:
            The updated Session

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session, _ = await self._remove_view(session_id, view_id)
        return session

    async def _remove_view(
        self,
        session_id: str,
        view_id: str,
        last_seen: datetime | None = None,
    ) -> tuple[Session, bool]:
        """
        Remove a view, optionally only from a session that stayed idle.

        With `last_seen`, a session active after that instant keeps its
        view, judged on the record that the removal would replace.

        Returns:
            Tuple of (session, removed)
        """
        def drop(session: Session) -> bool:
            if last_seen is not None and session.last_activity > last_seen:
                return False
            return session.remove_view(view_id) is not None

        async with self._locks.hold(session_id):
            session, removed = await self._modify_views(
                session_id,
                drop,
                "remove_view",
                match_activity=last_seen is not None,
            )

        if removed:
            logger.info(f"View removed: {view_id} from session {session_id}")
            await self._send_offline_event(session, view_id)
        return session, removed

    async def _send_offline_event(self, session: Session, view_id: str) -> None:
        event = create_user_offline(session.id, session.user_id, view_id)
        try:
            await self._events.publish(
                event.topic(self._settings.event_topic_prefix),
                event.to_payload(),
            )
        except Exception as e:
            logger.warning(
                f"Failed to publish offline event for view {view_id} "
                f"of session {session.id}: {e}"
            )
            return

        if self._settings.debug:
            logger.debug(f"User offline event published: {event.to_payload()}")

    # =========================================================================
    # Session data
    # =========================================================================

    async def store_data(self, session_id: str, fields: dict[str, Any]) -> None:
        """
        Merge fields into the session's data.

        Existing fields with the same name are overwritten, others are kept.

        Raises:
            SessionNotFoundError: If the session does not exist
            ValueError: If a field name is not a plain key
        """
        names = _validate_field_names(fields)
        if not names:
            await self._load_document(session_id, "store_data")
            return

        matched = await self._call(
            "store_data",
            self._store.update(
                self._collection,
                {"id": session_id},
                {"$set": {f"data.{name}": fields[name] for name in names}},
            ),
        )
        if matched == 0:
            raise SessionNotFoundError(session_id)

    async def get_data(self, session_id: str, field_names: list[str]) -> dict[str, Any]:
        """
        Get selected fields of the session's data.

        Returns:
            The requested fields that are present

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        names = _validate_field_names(field_names)
        projection = {"id": 1, **{f"data.{name}": 1 for name in names}}
        document = await self._call(
            "get_data",
            self._store.find_one(self._collection, {"id": session_id}, projection),
        )
        if document is None:
            raise SessionNotFoundError(session_id)
        return dict(document.get("data", {}))

    async def delete_data(self, session_id: str, field_names: list[str]) -> None:
        """
        Remove selected fields from the session's data.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        names = _validate_field_names(field_names)
        if not names:
            await self._load_document(session_id, "delete_data")
            return

        matched = await self._call(
            "delete_data",
            self._store.update(
                self._collection,
                {"id": session_id},
                {"$unset": {f"data.{name}": "" for name in names}},
            ),
        )
        if matched == 0:
            raise SessionNotFoundError(session_id)

    # =========================================================================
    # Purge
    # =========================================================================

    async def purge_old_sessions(self, cutoff: datetime) -> int:
        """
        Expire sessions inactive since before the cutoff.

        Every view of a stale session is removed as remove_view would, so
        each one publishes its offline notification. Sessions are expired
        concurrently up to the configured bound; a failed removal is logged
        and does not stop the purge. Stale sessions without views are
        deleted outright when delete_empty_sessions is set. A session touched
        between the scan and its removal keeps its views and is not counted.

        Returns:
            Number of stale sessions whose views were expired
        """
        cutoff = parse_timestamp(cutoff)
        documents = await self._call(
            "purge_old_sessions",
            self._store.find(self._collection, {}, {"data": 0}),
        )

        expiring: list[Session] = []
        empty: list[tuple[Session, Document]] = []
        for document in documents:
            try:
                session = Session.from_document(document)
            except ValidationError as e:
                logger.warning(f"Skipping unreadable session {document.get('id')}: {e}")
                continue
            if not session.is_idle_since(cutoff):
                continue
            if session.has_view():
                expiring.append(session)
            else:
                empty.append((session, document))

        semaphore = asyncio.Semaphore(self._settings.purge_concurrency)

        async def expire(session: Session) -> bool:
            """Remove the session's views; False if it turned active first."""
            # Each removal stamps the session, so the next one expects that stamp
            last_seen = session.last_activity
            attempted = False
            for view in session.views:
                try:
                    async with semaphore:
                        updated, removed = await self._remove_view(
                            session.id, view.id, last_seen=last_seen
                        )
                except Exception as e:
                    logger.warning(
                        f"Failed to remove view {view.id} of expiring session "
                        f"{session.id}: {e}"
                    )
                    attempted = True
                    continue
                if removed:
                    last_seen = updated.last_activity
                    attempted = True
                elif updated.last_activity > last_seen:
                    break
            return attempted

        results = await asyncio.gather(*(expire(session) for session in expiring))
        expired = [session for session, result in zip(expiring, results) if result]

        if self._settings.delete_empty_sessions:
            await self._delete_empty(empty)

        if expired:
            logger.info(
                f"Expired {len(expired)} sessions "
                f"({sum(len(session.views) for session in expired)} views) "
                f"inactive since {format_timestamp(cutoff)}"
            )
        return len(expired)

    async def _delete_empty(self, empty: list[tuple[Session, Document]]) -> None:
        """Delete stale view-less sessions unless they changed since read."""
        for session, document in empty:
            matcher = _revision_matcher(session.id, document)
            matcher["lastActivity"] = document.get("lastActivity")
            try:
                async with self._locks.hold(session.id):
                    deleted = await self._call(
                        "purge_old_sessions",
                        self._store.delete(self._collection, matcher),
                    )
            except PersistenceError as e:
                logger.warning(f"Failed to delete empty session {session.id}: {e}")
                continue
            if deleted:
                logger.debug(f"Deleted empty stale session {session.id}")

    async def purge_all_sessions(self, before: datetime | None = None) -> int:
        """
        Delete stored sessions in bulk, without notifications.

        Args:
            before: Only sessions last active before this time (None = all)

        Returns:
            Number of deleted sessions
        """
        if before is None:
            return await self._call(
                "purge_all_sessions",
                self._store.delete(self._collection, {}),
            )

        before = parse_timestamp(before)
        documents = await self._call(
            "purge_all_sessions",
            self._store.find(self._collection, {}, {"id": 1, "lastActivity": 1}),
        )
        doomed = []
        for document in documents:
            try:
                last_activity = parse_timestamp(document["lastActivity"])
            except (KeyError, TypeError, ValueError):
                doomed.append(document.get("id"))
                continue
            if last_activity < before:
                doomed.append(document.get("id"))

        if not doomed:
            return 0
        return await self._call(
            "purge_all_sessions",
            self._store.delete(self._collection, {"id": {"$in": doomed}}),
        )
