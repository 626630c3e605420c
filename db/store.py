"""
Generic row store.

The core talks to persistence only through these primitives: insert,
upsert on a conflict key, filtered/ordered query, plus update and delete
for user-owned entities. Rows travel as plain dicts keyed by column name.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
import asyncio
import logging

from sqlalchemy.orm import Session

from db.database import SessionLocal, session_scope_factory
from db.models import TABLES

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class RowStore(ABC):
    """Abstract persistence interface. Every call is a suspension point."""

    @abstractmethod
    async def insert(self, table: str, row: Row) -> Row:
        raise NotImplementedError

    @abstractmethod
    async def upsert(self, table: str, row: Row, conflict_keys: Sequence[str]) -> Row:
        raise NotImplementedError

    @abstractmethod
    async def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        raise NotImplementedError

    @abstractmethod
    async def update(self, table: str, filters: Dict[str, Any], values: Row) -> int:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, table: str, filters: Dict[str, Any]) -> int:
        raise NotImplementedError


def _to_dict(obj) -> Row:
    return {c.name: getattr(obj, c.name) for c in obj.__table__.columns}


class SqlRowStore(RowStore):
    """
    RowStore over the SQLAlchemy ORM models in `db.models`.
    Session work runs in a worker thread so the event loop stays free.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._scope = session_scope_factory(session_factory)

    @staticmethod
    def _model(table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}")

    @staticmethod
    def _apply_filters(q, model, filters: Optional[Dict[str, Any]]):
        for key, value in (filters or {}).items():
            column = getattr(model, key)
            if isinstance(value, (list, tuple, set, frozenset)):
                q = q.filter(column.in_(list(value)))
            elif value is None:
                q = q.filter(column.is_(None))
            else:
                q = q.filter(column == value)
        return q

    async def insert(self, table: str, row: Row) -> Row:
        return await asyncio.to_thread(self._insert, table, row)

    def _insert(self, table: str, row: Row) -> Row:
        model = self._model(table)
        with self._scope() as db:
            obj = model(**row)
            db.add(obj)
            db.flush()
            return _to_dict(obj)

    async def upsert(self, table: str, row: Row, conflict_keys: Sequence[str]) -> Row:
        return await asyncio.to_thread(self._upsert, table, row, conflict_keys)

    def _upsert(self, table: str, row: Row, conflict_keys: Sequence[str]) -> Row:
        model = self._model(table)
        with self._scope() as db:
            keys = {k: row[k] for k in conflict_keys}
            obj = self._apply_filters(db.query(model), model, keys).one_or_none()
            if obj is None:
                obj = model(**row)
                db.add(obj)
            else:
                for key, value in row.items():
                    setattr(obj, key, value)
            db.flush()
            return _to_dict(obj)

    async def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        return await asyncio.to_thread(self._query, table, filters, order_by, descending, limit)

    def _query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]],
        order_by: Optional[str],
        descending: bool,
        limit: Optional[int],
    ) -> List[Row]:
        model = self._model(table)
        with self._scope() as db:
            q = self._apply_filters(db.query(model), model, filters)
            if order_by:
                column = getattr(model, order_by)
                q = q.order_by(column.desc() if descending else column.asc())
            if limit is not None:
                q = q.limit(limit)
            return [_to_dict(obj) for obj in q.all()]

    async def update(self, table: str, filters: Dict[str, Any], values: Row) -> int:
        return await asyncio.to_thread(self._update, table, filters, values)

    def _update(self, table: str, filters: Dict[str, Any], values: Row) -> int:
        model = self._model(table)
        with self._scope() as db:
            rows = self._apply_filters(db.query(model), model, filters).all()
            for obj in rows:
                for key, value in values.items():
                    setattr(obj, key, value)
            return len(rows)

    async def delete(self, table: str, filters: Dict[str, Any]) -> int:
        return await asyncio.to_thread(self._delete, table, filters)

    def _delete(self, table: str, filters: Dict[str, Any]) -> int:
        model = self._model(table)
        with self._scope() as db:
            rows = self._apply_filters(db.query(model), model, filters).all()
            for obj in rows:
                db.delete(obj)
            return len(rows)

    async def insert_many(self, table: str, rows: Iterable[Row]) -> int:
        return await asyncio.to_thread(self._insert_many, table, list(rows))

    def _insert_many(self, table: str, rows: List[Row]) -> int:
        model = self._model(table)
        count = 0
        with self._scope() as db:
            for row in rows:
                db.add(model(**row))
                count += 1
        logger.debug(f"Inserted {count} rows into {table}")
        return count
