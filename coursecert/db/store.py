"""
Document store adapter over SQLAlchemy async sessions.

Collections map onto ORM tables; documents are plain dicts keyed by column
name. ``AtomicBatch`` applies a list of insert/update/delete descriptors inside
a single transaction, so either every write lands or none does.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy import delete, insert, inspect as sa_inspect, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursecert.core.error_handling import StoreConflictError, StoreTransientError
from coursecert.db import models

logger = logging.getLogger(__name__)

COLLECTIONS = {
    "interviews": models.Interview,
    "feedback": models.Feedback,
    "courses": models.Course,
}

Filter = Tuple[str, str, Any]
OrderBy = Tuple[str, str]


@dataclass
class BatchOperation:
    kind: str  # insert | update | update_where | delete
    collection: str
    document_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    filters: List[Filter] = field(default_factory=list)
    expect: Optional[Dict[str, Any]] = None


class AtomicBatch:
    """Collects writes and commits them all-or-nothing."""

    def __init__(self, store: "SqlDocumentStore"):
        self._store = store
        self.operations: List[BatchOperation] = []

    def insert(self, collection: str, data: Dict[str, Any]) -> str:
        doc = dict(data)
        doc.setdefault("id", uuid4().hex)
        self.operations.append(BatchOperation("insert", collection, doc["id"], doc))
        return doc["id"]

    def update(
        self,
        collection: str,
        document_id: str,
        data: Dict[str, Any],
        expect: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Update one document; ``expect`` turns it into a conditional write."""
        self.operations.append(BatchOperation("update", collection, document_id, dict(data), expect=expect))

    def update_where(self, collection: str, filters: Sequence[Filter], data: Dict[str, Any]) -> None:
        self.operations.append(BatchOperation("update_where", collection, data=dict(data), filters=list(filters)))

    def delete(self, collection: str, document_id: str) -> None:
        self.operations.append(BatchOperation("delete", collection, document_id))

    async def commit(self) -> None:
        await self._store.commit_batch(self.operations)


class SqlDocumentStore:
    # A failed batch leaves no partial writes behind.
    atomic_batches = True

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # --- helpers -------------------------------------------------------

    def _model(self, collection: str):
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise ValueError(f"Unknown collection: {collection}") from None

    def _column(self, model, name: str):
        if name not in sa_inspect(model).columns:
            raise ValueError(f"Unknown field {name!r} for {model.__tablename__}")
        return getattr(model, name)

    def _condition(self, model, flt: Filter):
        name, op, value = flt
        column = self._column(model, name)
        if op == "==":
            return column.is_(None) if value is None else column == value
        if op == "!=":
            return column.is_not(None) if value is None else column != value
        if op == "in":
            return column.in_(list(value))
        raise ValueError(f"Unsupported filter operator: {op}")

    def _values(self, model, data: Dict[str, Any]) -> Dict[str, Any]:
        for key in data:
            self._column(model, key)
        return data

    def _to_document(self, model, row) -> Dict[str, Any]:
        return {attr.key: getattr(row, attr.key) for attr in sa_inspect(model).column_attrs}

    @asynccontextmanager
    async def _translate_errors(
        self,
        operation: str,
        collection: str,
        document_id: Optional[str] = None,
    ) -> AsyncIterator[None]:
        try:
            yield
        except IntegrityError as exc:
            raise StoreConflictError(collection, f"{operation} violated a constraint: {exc.orig}", document_id) from exc
        except (OperationalError, InterfaceError, PoolTimeoutError, OSError) as exc:
            raise StoreTransientError(operation, f"Store unavailable during {operation}: {exc}") from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                raise StoreTransientError(operation, f"Connection lost during {operation}") from exc
            raise

    # --- single-document operations -----------------------------------

    async def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        model = self._model(collection)
        async with self._translate_errors("get", collection, document_id):
            async with self._session_factory() as session:
                row = await session.get(model, document_id)
                return self._to_document(model, row) if row is not None else None

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        model = self._model(collection)
        stmt = select(model).where(*[self._condition(model, f) for f in filters])
        if order_by is not None:
            name, direction = order_by
            column = self._column(model, name)
            stmt = stmt.order_by(column.desc() if direction == "desc" else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._translate_errors("query", collection):
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
                return [self._to_document(model, row) for row in rows]

    async def insert(self, collection: str, data: Dict[str, Any]) -> str:
        batch = self.batch()
        document_id = batch.insert(collection, data)
        await batch.commit()
        return document_id

    async def update(self, collection: str, document_id: str, data: Dict[str, Any]) -> bool:
        model = self._model(collection)
        stmt = (
            update(model)
            .where(model.id == document_id)
            .values(**self._values(model, data))
            .execution_options(synchronize_session=False)
        )
        async with self._translate_errors("update", collection, document_id):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                return result.rowcount > 0

    async def delete(self, collection: str, document_id: str) -> bool:
        model = self._model(collection)
        stmt = delete(model).where(model.id == document_id).execution_options(synchronize_session=False)
        async with self._translate_errors("delete", collection, document_id):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                return result.rowcount > 0

    # --- atomic batches --------------------------------------------------

    def batch(self) -> AtomicBatch:
        return AtomicBatch(self)

    async def commit_batch(self, operations: Sequence[BatchOperation]) -> None:
        if not operations:
            return
        first = operations[0]
        async with self._translate_errors("batch_commit", first.collection, first.document_id):
            async with self._session_factory() as session:
                async with session.begin():
                    for op in operations:
                        await self._apply(session, op)
        logger.debug(f"Committed batch of {len(operations)} writes", extra={"operation": "batch_commit"})

    async def _apply(self, session: AsyncSession, op: BatchOperation) -> None:
        model = self._model(op.collection)
        if op.kind == "insert":
            await session.execute(insert(model).values(**self._values(model, op.data)))
            return

        if op.kind == "delete":
            await session.execute(
                delete(model).where(model.id == op.document_id).execution_options(synchronize_session=False)
            )
            return

        if op.kind == "update_where":
            conditions = [self._condition(model, f) for f in op.filters]
        elif op.kind == "update":
            conditions = [model.id == op.document_id]
            for name, value in (op.expect or {}).items():
                conditions.append(self._condition(model, (name, "==", value)))
        else:
            raise ValueError(f"Unsupported batch operation: {op.kind}")

        result = await session.execute(
            update(model)
            .where(*conditions)
            .values(**self._values(model, op.data))
            .execution_options(synchronize_session=False)
        )
        if op.kind == "update" and result.rowcount != 1:
            raise StoreConflictError(
                op.collection,
                f"Conditional update of {op.collection}/{op.document_id} matched no document",
                op.document_id,
            )
