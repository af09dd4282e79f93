"""``TableStore`` backed directly by the SQLModel tables.

Database work runs in a worker thread so callers on the event loop are never
blocked by it.
"""
import asyncio
import functools
import logging
import threading
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import delete as sa_delete, update as sa_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from pydantic import TypeAdapter, ValidationError
from sqlmodel import Session, SQLModel, select

from ..models import Notification, Profile, ProjectMember, ProjectRecord, TaskRecord
from .base import Filters, Order, RemoteError, Row, TableStore, UniqueViolation, UnknownTable

logger = logging.getLogger(__name__)

MODELS: Dict[str, Type[SQLModel]] = {
    "projects": ProjectRecord,
    "tasks": TaskRecord,
    "project_members": ProjectMember,
    "profiles": Profile,
    "notifications": Notification,
}

# Never handed out through the tabular interface
HIDDEN_COLUMNS = {"profiles": {"hashed_password"}}


@functools.lru_cache(maxsize=None)
def _adapter(model: Type[SQLModel], name: str) -> TypeAdapter:
    return TypeAdapter(model.model_fields[name].annotation)


def _is_unique_violation(exc: IntegrityError) -> bool:
    if getattr(exc.orig, "pgcode", None) == "23505":
        return True
    return "UNIQUE constraint failed" in str(exc.orig)


class SQLTableStore(TableStore):
    def __init__(self, engine=None, channel=None):
        super().__init__(channel)
        if engine is None:
            from ..database import engine
        self.engine = engine
        # One statement batch at a time; in-memory SQLite shares a connection
        self._lock = threading.Lock()

    # -- helpers -------------------------------------------------------------

    def _model(self, table: str) -> Type[SQLModel]:
        model = MODELS.get(table)
        if model is None:
            raise UnknownTable(table)
        return model

    def _column(self, model: Type[SQLModel], name: str):
        if name not in model.model_fields:
            raise RemoteError(f'column "{name}" does not exist', code="42703")
        return getattr(model, name)

    def _coerce(self, model: Type[SQLModel], name: str, value: Any) -> Any:
        """Convert wire values (e.g. query-string text) to the column type."""
        try:
            return _adapter(model, name).validate_python(value)
        except ValidationError as exc:
            raise RemoteError(f'invalid value for column "{name}"', code="22P02") from exc

    def _where(self, model: Type[SQLModel], filters: Optional[Filters]) -> list:
        clauses = []
        for name, value in (filters or {}).items():
            column = self._column(model, name)
            if isinstance(value, (list, tuple, set)):
                clauses.append(column.in_([self._coerce(model, name, v) for v in value]))
            elif value is None:
                clauses.append(column.is_(None))
            else:
                clauses.append(column == self._coerce(model, name, value))
        return clauses

    def _dump(self, table: str, record: SQLModel) -> Row:
        return record.model_dump(exclude=HIDDEN_COLUMNS.get(table, set()))

    def _check_columns(self, model: Type[SQLModel], values: Row) -> Row:
        for name in values:
            self._column(model, name)
        return {name: self._coerce(model, name, value) for name, value in values.items()}

    def _locked(self, fn, *args) -> Any:
        with self._lock:
            return fn(*args)

    async def _run(self, fn, *args) -> Any:
        try:
            return await asyncio.to_thread(self._locked, fn, *args)
        except IntegrityError as exc:
            if _is_unique_violation(exc):
                raise UniqueViolation(str(exc.orig)) from exc
            raise RemoteError(str(exc.orig), code=getattr(exc.orig, "pgcode", None)) from exc
        except SQLAlchemyError as exc:
            raise RemoteError(str(exc)) from exc

    # -- sync workers --------------------------------------------------------

    def _select(self, table, filters, order, limit) -> List[Row]:
        model = self._model(table)
        statement = select(model).where(*self._where(model, filters))
        for name, descending in order or ():
            column = self._column(model, name)
            statement = statement.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            statement = statement.limit(limit)
        with Session(self.engine) as session:
            return [self._dump(table, record) for record in session.exec(statement).all()]

    def _insert(self, table, row) -> Row:
        model = self._model(table)
        record = model.model_validate(self._check_columns(model, row))
        with Session(self.engine) as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            return self._dump(table, record)

    def _update(self, table, filters, values) -> None:
        model = self._model(table)
        values = self._check_columns(model, values)
        statement = sa_update(model).where(*self._where(model, filters)).values(**values)
        with Session(self.engine) as session:
            session.execute(statement)
            session.commit()

    def _delete(self, table, filters) -> None:
        model = self._model(table)
        if not filters:
            raise RemoteError("DELETE requires a filter", code="21000")
        statement = sa_delete(model).where(*self._where(model, filters))
        with Session(self.engine) as session:
            session.execute(statement)
            session.commit()

    # -- TableStore ----------------------------------------------------------

    async def select(self, table: str, filters: Optional[Filters] = None,
                     order: Optional[Order] = None, limit: Optional[int] = None) -> List[Row]:
        return await self._run(self._select, table, filters, order, limit)

    async def insert(self, table: str, row: Row) -> Row:
        inserted = await self._run(self._insert, table, row)
        logger.debug("Inserted row", extra={"table": table, "operation": "insert"})
        self.channel.publish(table, inserted)
        return inserted

    async def update(self, table: str, filters: Filters, values: Row) -> None:
        if not values:
            return
        await self._run(self._update, table, filters, values)

    async def delete(self, table: str, filters: Filters) -> None:
        await self._run(self._delete, table, filters)
