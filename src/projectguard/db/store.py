"""
projectguard.db.store

Generic entity-keyed store.

Responsibilities:
- Define the `Store` protocol the scoped repository decorates.
- Implement it over an `AsyncSession` for the ORM models in `projectguard.db.models`.

Records cross this boundary as plain dicts keyed by column name.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol

from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from projectguard.db.base import Base
from projectguard.db.models import BudgetItem, Contact, Procurement, Project, Task, User
from projectguard.errors import InternalError, NotFoundError, ValidationError

Record = dict[str, Any]

ENTITY_MODELS: Mapping[str, type[Base]] = {
    "task": Task,
    "budget_item": BudgetItem,
    "procurement": Procurement,
    "contact": Contact,
    "project": Project,
    "user": User,
}

_AGGREGATES = {"sum": func.sum, "avg": func.avg, "min": func.min, "max": func.max}


class Store(Protocol):
    async def find_many(
        self,
        entity: str,
        *,
        where: Mapping[str, Any] | None = None,
        order_by: Sequence[str] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Record]: ...

    async def find_first(
        self, entity: str, *, where: Mapping[str, Any] | None = None, order_by: Sequence[str] = ()
    ) -> Record | None: ...

    async def find_unique(self, entity: str, id: str) -> Record | None: ...

    async def create(self, entity: str, data: Mapping[str, Any]) -> Record: ...

    async def update(self, entity: str, id: str, data: Mapping[str, Any]) -> Record: ...

    async def delete(self, entity: str, id: str) -> Record: ...

    async def count(self, entity: str, *, where: Mapping[str, Any] | None = None) -> int: ...

    async def aggregate(
        self,
        entity: str,
        *,
        functions: Mapping[str, Sequence[str]],
        where: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]: ...

    async def group_by(
        self, entity: str, by: Sequence[str], *, where: Mapping[str, Any] | None = None
    ) -> list[Record]: ...

    async def execute_raw(self, sql: str, params: Mapping[str, Any]) -> list[Record] | int: ...

    def transaction(self) -> AbstractAsyncContextManager[Any]: ...


class SqlAlchemyStore:
    def __init__(
        self, session: AsyncSession, *, models: Mapping[str, type[Base]] = ENTITY_MODELS
    ) -> None:
        self._session = session
        self._models = models

    def _model(self, entity: str) -> type[Base]:
        try:
            return self._models[entity]
        except KeyError as e:
            raise InternalError(f"Invalid entity: {entity}") from e

    def _column(self, model: type[Base], name: str):
        try:
            return model.__table__.c[name]
        except KeyError as e:
            raise ValidationError(f"Unknown field '{name}' on {model.__tablename__}") from e

    async def _flush(self, model: type[Base]) -> None:
        try:
            await self._session.flush()
        except IntegrityError as e:
            # NOT NULL / FK / unique violations are bad input, not server faults.
            raise ValidationError(f"Invalid values for {model.__tablename__}") from e

    def _conditions(self, model: type[Base], where: Mapping[str, Any] | None) -> list[Any]:
        conditions = []
        for name, value in (where or {}).items():
            col = self._column(model, name)
            if isinstance(value, (list, tuple, set, frozenset)):
                conditions.append(col.in_(list(value)))
            elif value is None:
                conditions.append(col.is_(None))
            else:
                conditions.append(col == value)
        return conditions

    def _ordering(self, model: type[Base], order_by: Sequence[str]) -> list[Any]:
        # "-field" sorts descending.
        clauses = []
        for name in order_by:
            if name.startswith("-"):
                clauses.append(self._column(model, name[1:]).desc())
            else:
                clauses.append(self._column(model, name).asc())
        return clauses

    @staticmethod
    def _record(obj: Base) -> Record:
        return {c.key: getattr(obj, c.key) for c in obj.__table__.columns}

    async def find_many(
        self,
        entity: str,
        *,
        where: Mapping[str, Any] | None = None,
        order_by: Sequence[str] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Record]:
        model = self._model(entity)
        stmt = select(model).where(*self._conditions(model, where))
        stmt = stmt.order_by(*self._ordering(model, order_by))
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset is not None:
            stmt = stmt.offset(offset)
        return [self._record(o) for o in (await self._session.execute(stmt)).scalars().all()]

    async def find_first(
        self, entity: str, *, where: Mapping[str, Any] | None = None, order_by: Sequence[str] = ()
    ) -> Record | None:
        rows = await self.find_many(entity, where=where, order_by=order_by, limit=1)
        return rows[0] if rows else None

    async def find_unique(self, entity: str, id: str) -> Record | None:
        obj = await self._session.get(self._model(entity), id)
        return self._record(obj) if obj is not None else None

    async def create(self, entity: str, data: Mapping[str, Any]) -> Record:
        model = self._model(entity)
        for name in data:
            self._column(model, name)
        obj = model(**dict(data))
        self._session.add(obj)
        await self._flush(model)
        return self._record(obj)

    async def update(self, entity: str, id: str, data: Mapping[str, Any]) -> Record:
        model = self._model(entity)
        obj = await self._session.get(model, id)
        if obj is None:
            raise NotFoundError("Resource not found")
        for name, value in data.items():
            self._column(model, name)
            setattr(obj, name, value)
        await self._flush(model)
        return self._record(obj)

    async def delete(self, entity: str, id: str) -> Record:
        obj = await self._session.get(self._model(entity), id)
        if obj is None:
            raise NotFoundError("Resource not found")
        snapshot = self._record(obj)
        await self._session.delete(obj)
        await self._session.flush()
        return snapshot

    async def count(self, entity: str, *, where: Mapping[str, Any] | None = None) -> int:
        model = self._model(entity)
        stmt = select(func.count()).select_from(model).where(*self._conditions(model, where))
        return int((await self._session.execute(stmt)).scalar_one())

    async def aggregate(
        self,
        entity: str,
        *,
        functions: Mapping[str, Sequence[str]],
        where: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        model = self._model(entity)
        labels: list[tuple[str, str]] = []
        columns = [func.count().label("count")]
        for fn_name, fields in functions.items():
            fn = _AGGREGATES.get(fn_name)
            if fn is None:
                raise ValidationError(f"Unsupported aggregate: {fn_name}")
            for name in fields:
                label = f"{fn_name}__{name}"
                columns.append(fn(self._column(model, name)).label(label))
                labels.append((fn_name, name))

        stmt = select(*columns).select_from(model).where(*self._conditions(model, where))
        row = (await self._session.execute(stmt)).one()._mapping
        result: dict[str, Any] = {"count": int(row["count"])}
        for fn_name, name in labels:
            result.setdefault(fn_name, {})[name] = row[f"{fn_name}__{name}"]
        return result

    async def group_by(
        self, entity: str, by: Sequence[str], *, where: Mapping[str, Any] | None = None
    ) -> list[Record]:
        model = self._model(entity)
        cols = [self._column(model, name) for name in by]
        stmt = (
            select(*cols, func.count().label("count"))
            .where(*self._conditions(model, where))
            .group_by(*cols)
        )
        return [dict(r._mapping) for r in (await self._session.execute(stmt)).all()]

    async def execute_raw(self, sql: str, params: Mapping[str, Any]) -> list[Record] | int:
        result = await self._session.execute(text(sql), dict(params))
        if result.returns_rows:
            return [dict(r._mapping) for r in result.all()]
        return int(result.rowcount)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlAlchemyStore]:
        try:
            yield self
        except BaseException:
            await self._session.rollback()
            raise
        await self._session.commit()


# --- Module Notes -----------------------------------------------------------
# Outside `transaction()` the store only flushes; the request owner decides when
# to commit (see the API routers).
