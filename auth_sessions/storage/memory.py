"""
In-Memory Storage Adapters

Thread-safe implementations for development and testing.
Uses asyncio locks for concurrent async safety.

These adapters store everything in memory and are lost on restart.
Use for:
- Local development
- Unit/integration testing
- Single-node deployments without persistence requirements
"""

import asyncio

from auth_sessions.storage.documents import (
    ID_FIELD,
    apply_update,
    ensure_id,
    matches,
    project,
    upsert_document,
)
from auth_sessions.storage.ports import (
    ConflictError,
    Document,
    DocumentStore,
    Matcher,
    Projection,
)


class InMemoryDocumentStore(DocumentStore):
    """
    In-memory document storage.

    Uses dict with asyncio.Lock for thread-safety. Documents are deep-copied
    on the way in and out so callers never share state with the store.
    """

    def __init__(self):
        # collection -> document id -> document (insertion ordered)
        self._collections: dict[str, dict[str, Document]] = {}
        self._lock = asyncio.Lock()

    def _collection(self, name: str) -> dict[str, Document]:
        return self._collections.setdefault(name, {})

    async def insert(self, collection: str, document: Document) -> None:
        async with self._lock:
            stored = ensure_id(project(document, None))
            docs = self._collection(collection)
            if stored[ID_FIELD] in docs:
                raise ConflictError(
                    f"Document {stored[ID_FIELD]} already exists in {collection}"
                )
            docs[stored[ID_FIELD]] = stored

    async def update(
        self,
        collection: str,
        matcher: Matcher,
        document: Document,
        upsert: bool = False,
        multi: bool = False,
    ) -> int:
        async with self._lock:
            docs = self._collection(collection)
            matched = 0
            for doc_id, stored in list(docs.items()):
                if not matches(stored, matcher):
                    continue
                docs[doc_id] = apply_update(stored, document)
                matched += 1
                if not multi:
                    break

            if matched == 0 and upsert:
                created = upsert_document(matcher, document)
                docs[created[ID_FIELD]] = created
                matched = 1

            return matched

    async def find_one(
        self,
        collection: str,
        matcher: Matcher,
        projection: Projection | None = None,
    ) -> Document | None:
        async with self._lock:
            for stored in self._collection(collection).values():
                if matches(stored, matcher):
                    return project(stored, projection)
            return None

    async def find(
        self,
        collection: str,
        matcher: Matcher,
        projection: Projection | None = None,
    ) -> list[Document]:
        async with self._lock:
            return [
                project(stored, projection)
                for stored in self._collection(collection).values()
                if matches(stored, matcher)
            ]

    async def delete(self, collection: str, matcher: Matcher) -> int:
        async with self._lock:
            docs = self._collection(collection)
            doomed = [doc_id for doc_id, stored in docs.items() if matches(stored, matcher)]
            for doc_id in doomed:
                del docs[doc_id]
            return len(doomed)

    @property
    def document_count(self) -> int:
        """Total number of stored documents across collections."""
        return sum(len(docs) for docs in self._collections.values())

