"""
Session Model

Represents one logical user presence: the views (devices) attached to it
and an open mapping of application data.

Session Lifecycle:
1. CREATED - No views yet
2. ACTIVE - At least one view registered
3. Deleted - Removed explicitly or by purge (no longer stored)

Invariant: no two views of a session share an id or a device class.

Persisted shape (camelCase):
    {id, userId?, lastActivity, views: [{id, deviceClass, ...}], data, revision}
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from auth_sessions.session.errors import DeviceConflictError, DuplicateViewError


def utcnow() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """
    Serialize a datetime to the stored ISO-8601 profile.

    Always UTC with microseconds, so every stored value has the same width.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SessionStatus(str, Enum):
    """Derived lifecycle state."""
    CREATED = "created"  # No views
    ACTIVE = "active"    # At least one view


class DeviceClass(str, Enum):
    """
    Well-known device classes.

    Device classes are free-form; these values are only the common ones.
    """
    DESKTOP = "desktop"
    TABLET = "tablet"
    MOBILE = "mobile"
    WEARABLE = "wearable"
    SMARTGLASS = "smartglass"


class View(BaseModel):
    """
    One device/tab instance attached to a session.

    Attributes beyond id and device class are kept as-is.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        min_length=1,
        description="View identifier, unique within its session"
    )
    device_class: str = Field(
        ...,
        alias="deviceClass",
        min_length=1,
        description="Device category, at most one view per class"
    )

    @field_validator("device_class", mode="before")
    @classmethod
    def _device_class_value(cls, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        return value

    def to_document(self) -> dict[str, Any]:
        """Serialize for storage."""
        return self.model_dump(by_alias=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "View":
        """Deserialize from storage."""
        return cls.model_validate(document)


class Session(BaseModel):
    """
    A login session shared by the user's devices.
    """
    model_config = ConfigDict(populate_by_name=True)

    # === Identity ===
    id: str = Field(
        default_factory=lambda: str(uuid4()),
        min_length=1,
        description="Unique session identifier"
    )
    user_id: str | None = Field(
        default=None,
        alias="userId",
        description="Owning user, absent until the login step establishes it"
    )

    # === Lifecycle ===
    last_activity: datetime = Field(
        default_factory=utcnow,
        alias="lastActivity",
        description="Last read or write of the session"
    )
    revision: int = Field(
        default=0,
        ge=0,
        description="Write counter used for conditional updates"
    )

    # === Content ===
    views: list[View] = Field(
        default_factory=list,
        description="Attached views, in registration order"
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Application-level session data"
    )

    @field_validator("last_activity", mode="before")
    @classmethod
    def _parse_last_activity(cls, value: Any) -> Any:
        if isinstance(value, (str, datetime)):
            return parse_timestamp(value)
        return value

    @field_serializer("last_activity")
    def _serialize_last_activity(self, value: datetime) -> str:
        return format_timestamp(value)

    @model_validator(mode="after")
    def _unique_views(self) -> "Session":
        try:
            self.check_views()
        except (DuplicateViewError, DeviceConflictError) as e:
            raise ValueError(str(e)) from e
        return self

    def check_views(self) -> None:
        """
        Verify that view ids and device classes are unique.

        Raises:
            DuplicateViewError: If two views share an id
            DeviceConflictError: If two views share a device class
        """
        view_ids: set[str] = set()
        device_classes: set[str] = set()
        for view in self.views:
            if view.id in view_ids:
                raise DuplicateViewError(self.id, view.id)
            if view.device_class in device_classes:
                raise DeviceConflictError(self.id, view.device_class)
            view_ids.add(view.id)
            device_classes.add(view.device_class)

    @property
    def status(self) -> SessionStatus:
        """Derived lifecycle state."""
        return SessionStatus.ACTIVE if self.views else SessionStatus.CREATED

    def has_view(self) -> bool:
        """Check if at least one view is registered."""
        return bool(self.views)

    def get_view(self, view_id: str) -> View | None:
        """Get a view by ID."""
        for view in self.views:
            if view.id == view_id:
                return view
        return None

    def has_device_class(self, device_class: str) -> bool:
        """Check if a view of this device class is registered."""
        return any(view.device_class == device_class for view in self.views)

    def register_view(self, view: View) -> None:
        """
        Append a view.

        Raises:
            DuplicateViewError: If the view id is already attached
            DeviceConflictError: If the device class is already taken
        """
        if self.get_view(view.id) is not None:
            raise DuplicateViewError(self.id, view.id)
        if self.has_device_class(view.device_class):
            raise DeviceConflictError(self.id, view.device_class)
        self.views.append(view)

    def remove_view(self, view_id: str) -> View | None:
        """Remove a view; returns it, or None if it wasn't there."""
        view = self.get_view(view_id)
        if view is not None:
            self.views = [v for v in self.views if v.id != view_id]
        return view

    def touch(self, now: datetime | None = None) -> datetime:
        """
        Advance last activity.

        Strictly increases even when the clock hasn't moved.
        """
        now = parse_timestamp(now) if now is not None else utcnow()
        floor = self.last_activity + timedelta(microseconds=1)
        self.last_activity = now if now > floor else floor
        return self.last_activity

    def is_idle_since(self, cutoff: datetime) -> bool:
        """Check if the last activity precedes the cutoff."""
        return self.last_activity < parse_timestamp(cutoff)

    def to_document(self) -> dict[str, Any]:
        """Serialize for storage."""
        document = self.model_dump(by_alias=True)
        if document.get("userId") is None:
            document.pop("userId", None)
        return document

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "Session":
        """Deserialize from storage."""
        return cls.model_validate(document)

    def to_summary_dict(self) -> dict[str, Any]:
        """Return a summary for logging/debugging."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status.value,
            "view_count": len(self.views),
            "device_classes": [view.device_class for view in self.views],
            "last_activity": format_timestamp(self.last_activity),
        }
