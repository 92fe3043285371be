"""
Redis Storage Adapter

Redis-based implementation of the DocumentStore.
Ideal for:
- Multi-node deployments sharing session state
- Short-lived session documents that benefit from Redis speed

Uses redis.asyncio for async operations.

Key patterns:
- {prefix}:{collection} -> HASH of doc_id -> JSON-encoded document

Writes run inside WATCH/MULTI transactions so a document changed between
read and write aborts the transaction and the write is retried.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from .documents import (
    ID_FIELD,
    apply_update,
    ensure_id,
    matches,
    project,
    upsert_document,
)
from .ports import (
    ConflictError,
    Document,
    DocumentStore,
    Matcher,
    Projection,
    StorageError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Serialization Helpers
# =============================================================================

def _decode(value: bytes | str) -> str:
    """Decode a Redis reply that may be bytes."""
    if isinstance(value, bytes):
        return value.decode()
    return value


def _serialize(document: Document) -> str:
    """Serialize a document to JSON."""
    return json.dumps(document)


def _deserialize(data: bytes | str) -> Document:
    """Deserialize JSON to a document."""
    return json.loads(_decode(data))


# =============================================================================
# Redis Document Store
# =============================================================================

class RedisDocumentStore(DocumentStore):
    """
    Redis-based document store.

    Each collection is one hash, so a collection-wide scan is a single
    HGETALL and an "id" lookup is a single HGET.
    """

    def __init__(
        self,
        redis: Redis,
        key_prefix: str = "sessions",
        max_write_attempts: int = 10,
    ) -> None:
        """
        Initialize Redis document store.

        Args:
            redis: Redis async client
            key_prefix: Prefix for all keys (multi-tenant isolation)
            max_write_attempts: WATCH retries before giving up
        """
        self._redis = redis
        self._prefix = key_prefix
        self._max_write_attempts = max_write_attempts

    def _collection_key(self, collection: str) -> str:
        """Key for a collection hash."""
        return f"{self._prefix}:{collection}"

    async def _load(self, client: Any, key: str, matcher: Matcher | None) -> dict[str, Document]:
        """Load candidate documents, pushing an "id" equality down to HGET."""
        doc_id = (matcher or {}).get(ID_FIELD)
        if isinstance(doc_id, str):
            raw = await client.hget(key, doc_id)
            return {doc_id: _deserialize(raw)} if raw is not None else {}

        raw_all = await client.hgetall(key)
        return {
            _decode(field): _deserialize(value)
            for field, value in sorted(raw_all.items())
        }

    async def insert(self, collection: str, document: Document) -> None:
        stored = ensure_id(project(document, None))
        try:
            created = await self._redis.hsetnx(
                self._collection_key(collection),
                stored[ID_FIELD],
                _serialize(stored),
            )
        except RedisError as e:
            raise StorageError(f"Insert into {collection} failed: {e}") from e

        if not created:
            raise ConflictError(
                f"Document {stored[ID_FIELD]} already exists in {collection}"
            )

    async def update(
        self,
        collection: str,
        matcher: Matcher,
        document: Document,
        upsert: bool = False,
        multi: bool = False,
    ) -> int:
        key = self._collection_key(collection)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for attempt in range(self._max_write_attempts):
                    try:
                        await pipe.watch(key)
                        candidates = await self._load(pipe, key, matcher)

                        changes: dict[str, str] = {}
                        for doc_id, stored in candidates.items():
                            if matches(stored, matcher):
                                changes[doc_id] = _serialize(apply_update(stored, document))
                                if not multi:
                                    break
                        matched = len(changes)

                        if not changes and upsert:
                            created = upsert_document(matcher, document)
                            changes[created[ID_FIELD]] = _serialize(created)
                            matched = 1

                        if not changes:
                            await pipe.unwatch()
                            return 0

                        pipe.multi()
                        pipe.hset(key, mapping=changes)
                        await pipe.execute()
                        return matched
                    except WatchError:
                        logger.debug(
                            f"Concurrent write on {collection}, retrying update "
                            f"(attempt {attempt + 1})"
                        )
                        continue
        except RedisError as e:
            raise StorageError(f"Update of {collection} failed: {e}") from e

        raise ConflictError(
            f"Update of {collection} gave up after {self._max_write_attempts} attempts"
        )

    async def find_one(
        self,
        collection: str,
        matcher: Matcher,
        projection: Projection | None = None,
    ) -> Document | None:
        found = await self.find(collection, matcher, projection)
        return found[0] if found else None

    async def find(
        self,
        collection: str,
        matcher: Matcher,
        projection: Projection | None = None,
    ) -> list[Document]:
        try:
            candidates = await self._load(self._redis, self._collection_key(collection), matcher)
        except RedisError as e:
            raise StorageError(f"Query on {collection} failed: {e}") from e

        return [
            project(stored, projection)
            for stored in candidates.values()
            if matches(stored, matcher)
        ]

    async def delete(self, collection: str, matcher: Matcher) -> int:
        key = self._collection_key(collection)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for attempt in range(self._max_write_attempts):
                    try:
                        await pipe.watch(key)
                        candidates = await self._load(pipe, key, matcher)
                        doomed = [
                            doc_id for doc_id, stored in candidates.items()
                            if matches(stored, matcher)
                        ]
                        if not doomed:
                            await pipe.unwatch()
                            return 0

                        pipe.multi()
                        pipe.hdel(key, *doomed)
                        await pipe.execute()
                        return len(doomed)
                    except WatchError:
                        logger.debug(
                            f"Concurrent write on {collection}, retrying delete "
                            f"(attempt {attempt + 1})"
                        )
                        continue
        except RedisError as e:
            raise StorageError(f"Delete from {collection} failed: {e}") from e

        raise ConflictError(
            f"Delete from {collection} gave up after {self._max_write_attempts} attempts"
        )
