"""
Storage Port Interfaces

Abstract base classes defining the persistence contract for the session service.
All persistence APIs are async. No sync DB calls allowed.

These ports follow the hexagonal architecture pattern:
- Session code depends only on these interfaces
- Adapters (in-memory, SQLAlchemy, Redis) implement these interfaces
- Storage is injected via dependency inversion

Documents are plain JSON-compatible dicts grouped in named collections and
addressed by field matchers (see storage.documents for the matcher,
projection and update-operator semantics every adapter shares).

Thread-safety: All implementations must be safe for concurrent async usage.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


Document = dict[str, Any]
Matcher = dict[str, Any]
Projection = dict[str, int]


# =============================================================================
# Document Store
# =============================================================================

class DocumentStore(ABC):
    """
    Storage interface for collections of structured documents.

    A single update against a single document is atomic: the matcher is
    evaluated and the modification applied without interleaving with other
    writers. This is what makes conditional (compare-and-swap) updates safe.
    """

    @abstractmethod
    async def insert(self, collection: str, document: Document) -> None:
        """
        Insert a new document.

        Args:
            collection: Target collection
            document: Document to store (must carry an "id" field)

        Raises:
            ConflictError: If a document with the same id exists
            StorageError: If the write fails
        """
        ...

    @abstractmethod
    async def update(
        self,
        collection: str,
        matcher: Matcher,
        document: Document,
        upsert: bool = False,
        multi: bool = False,
    ) -> int:
        """
        Update documents matching a matcher.

        The document is either a full replacement or a set of update
        operators ("$set", "$unset") on dotted field paths.

        Args:
            collection: Target collection
            matcher: Field matcher selecting documents
            document: Replacement document or update operators
            upsert: Insert when nothing matches
            multi: Update every match instead of the first one

        Returns:
            Number of matched documents (an upsert that inserts counts 1)

        Raises:
            StorageError: If the write fails
        """
        ...

    @abstractmethod
    async def find_one(
        self,
        collection: str,
        matcher: Matcher,
        projection: Projection | None = None,
    ) -> Document | None:
        """
        Get the first document matching a matcher.

        Returns:
            Projected copy of the document, or None if nothing matched
        """
        ...

    @abstractmethod
    async def find(
        self,
        collection: str,
        matcher: Matcher,
        projection: Projection | None = None,
    ) -> list[Document]:
        """
        Get every document matching a matcher.

        Returns:
            Projected copies of the matching documents
        """
        ...

    @abstractmethod
    async def delete(self, collection: str, matcher: Matcher) -> int:
        """
        Delete every document matching a matcher.

        Returns:
            Number of deleted documents
        """
        ...


# =============================================================================
# Storage Bundle
# =============================================================================

@dataclass
class StorageBundle:
    """
    Container for the storage adapter.

    Injected into the session manager via dependency inversion.
    """
    documents: DocumentStore

    async def close(self) -> None:
        """
        Close all storage connections.

        Called during shutdown.
        """
        # Implementations should override to close DB connections, etc.
        pass


# =============================================================================
# Exceptions
# =============================================================================

class StorageError(Exception):
    """Base exception for storage errors."""
    pass


class ConflictError(StorageError):
    """Duplicate id on insert, or a write that kept losing to concurrent writers."""
    pass
