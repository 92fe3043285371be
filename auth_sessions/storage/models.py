"""
SQLAlchemy Models for Session Storage

Async-compatible SQLAlchemy 2.0 ORM model holding JSON documents.

Designed to work with:
- SQLite (via aiosqlite)
- PostgreSQL (via asyncpg)

JSON column handling:
- PostgreSQL: Native JSONB
- SQLite: TEXT with JSON serialization

Each row carries a version counter that every write increments, so
conditional updates can be expressed as compare-and-swap on the row.
"""

from datetime import datetime, timezone
import json

from sqlalchemy import (
    String,
    Text,
    Integer,
    DateTime,
    Index,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator


# =============================================================================
# Custom Types
# =============================================================================

class JSONType(TypeDecorator):
    """
    Platform-agnostic JSON column.

    Uses JSONB on PostgreSQL, TEXT+JSON on SQLite.
    """
    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == "postgresql":
            return value
        return json.dumps(value, separators=(",", ":"))

    def process_result_value(self, value, dialect):
        # JSONB comes back decoded
        if isinstance(value, str):
            return json.loads(value)
        return value


# =============================================================================
# Base
# =============================================================================

class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# =============================================================================
# Document Model
# =============================================================================

class DocumentModel(Base):
    """
    A stored document.

    Collections share one table; (collection, doc_id) is the primary key.
    """
    __tablename__ = "session_documents"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    doc_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    body: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)

    # Incremented by every write
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_session_documents_collection", "collection"),
    )
