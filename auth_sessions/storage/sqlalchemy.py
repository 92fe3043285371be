"""
SQLAlchemy Storage Adapter

Async SQLAlchemy 2.0 implementation of the document store.
Uses async engine and session for all operations.

Compatible with:
- SQLite (aiosqlite)
- PostgreSQL (asyncpg)

Matchers are evaluated in Python against the JSON body (an "id" equality
is pushed down to the primary key). Writes are compare-and-swap on the row
version: a row changed between read and write is re-read and retried.

All operations are async. No sync DB calls.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
)

from auth_sessions.storage.documents import (
    ID_FIELD,
    apply_update,
    ensure_id,
    matches,
    project,
    upsert_document,
)
from auth_sessions.storage.models import DocumentModel
from auth_sessions.storage.ports import (
    ConflictError,
    Document,
    DocumentStore,
    Matcher,
    Projection,
    StorageError,
)

logger = logging.getLogger(__name__)


class SqlAlchemyDocumentStore(DocumentStore):
    """
    SQLAlchemy implementation of document storage.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_write_attempts: int = 10,
    ):
        self._session_factory = session_factory
        self._max_write_attempts = max_write_attempts

    def _select_rows(self, collection: str, matcher: Matcher | None) -> Any:
        stmt = select(
            DocumentModel.doc_id,
            DocumentModel.body,
            DocumentModel.version,
        ).where(DocumentModel.collection == collection)

        doc_id = (matcher or {}).get(ID_FIELD)
        if isinstance(doc_id, str):
            stmt = stmt.where(DocumentModel.doc_id == doc_id)

        return stmt.order_by(DocumentModel.doc_id)

    async def insert(self, collection: str, document: Document) -> None:
        stored = ensure_id(project(document, None))
        try:
            async with self._session_factory() as session:
                session.add(DocumentModel(
                    collection=collection,
                    doc_id=stored[ID_FIELD],
                    body=stored,
                    version=1,
                    updated_at=datetime.now(timezone.utc),
                ))
                await session.commit()
        except IntegrityError as e:
            raise ConflictError(
                f"Document {stored[ID_FIELD]} already exists in {collection}"
            ) from e
        except SQLAlchemyError as e:
            raise StorageError(f"Insert into {collection} failed: {e}") from e

    async def update(
        self,
        collection: str,
        matcher: Matcher,
        document: Document,
        upsert: bool = False,
        multi: bool = False,
    ) -> int:
        try:
            for attempt in range(self._max_write_attempts):
                matched = await self._try_update(collection, matcher, document, upsert, multi)
                if matched is not None:
                    return matched
                logger.debug(
                    f"Concurrent write on {collection}, retrying update "
                    f"(attempt {attempt + 1})"
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Update of {collection} failed: {e}") from e

        raise ConflictError(
            f"Update of {collection} gave up after {self._max_write_attempts} attempts"
        )

    async def _try_update(
        self,
        collection: str,
        matcher: Matcher,
        document: Document,
        upsert: bool,
        multi: bool,
    ) -> int | None:
        """One read-compare-write round. Returns None when a row moved underneath."""
        async with self._session_factory() as session:
            rows = (await session.execute(self._select_rows(collection, matcher))).all()
            targets = [row for row in rows if matches(row.body, matcher)]
            if not multi:
                targets = targets[:1]

            now = datetime.now(timezone.utc)
            for row in targets:
                result = await session.execute(
                    update(DocumentModel)
                    .where(
                        DocumentModel.collection == collection,
                        DocumentModel.doc_id == row.doc_id,
                        DocumentModel.version == row.version,
                    )
                    .values(
                        body=apply_update(row.body, document),
                        version=row.version + 1,
                        updated_at=now,
                    )
                )
                if result.rowcount == 0:
                    await session.rollback()
                    return None

            if not targets and upsert:
                created = upsert_document(matcher, document)
                session.add(DocumentModel(
                    collection=collection,
                    doc_id=created[ID_FIELD],
                    body=created,
                    version=1,
                    updated_at=now,
                ))
                try:
                    await session.commit()
                except IntegrityError:
                    # Someone inserted the same id first; re-evaluate the matcher
                    await session.rollback()
                    return None
                return 1

            await session.commit()
            return len(targets)

    async def find_one(
        self,
        collection: str,
        matcher: Matcher,
        projection: Projection | None = None,
    ) -> Document | None:
        found = await self.find(collection, matcher, projection, limit=1)
        return found[0] if found else None

    async def find(
        self,
        collection: str,
        matcher: Matcher,
        projection: Projection | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(self._select_rows(collection, matcher))).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Query on {collection} failed: {e}") from e

        results: list[Document] = []
        for row in rows:
            if matches(row.body, matcher):
                results.append(project(row.body, projection))
                if limit is not None and len(results) >= limit:
                    break
        return results

    async def delete(self, collection: str, matcher: Matcher) -> int:
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(self._select_rows(collection, matcher))).all()
                deleted = 0
                for row in rows:
                    if not matches(row.body, matcher):
                        continue
                    # A row written since the read may no longer match; leave it
                    result = await session.execute(
                        delete(DocumentModel).where(
                            DocumentModel.collection == collection,
                            DocumentModel.doc_id == row.doc_id,
                            DocumentModel.version == row.version,
                        )
                    )
                    deleted += result.rowcount
                if deleted:
                    await session.commit()
                return deleted
        except SQLAlchemyError as e:
            raise StorageError(f"Delete from {collection} failed: {e}") from e
