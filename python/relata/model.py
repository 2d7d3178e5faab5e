"""Per-record facade: find, create, update and delete through Params."""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import structlog

from relata.exceptions import MappingError, MissingWhereError, StatementError
from relata.marshal import check_payload, decode_result, encode_create, encode_update
from relata.params import Condition, Params, render_conditions
from relata.query import QueryBuilder, build_select, resolve_column
from relata.relations import (
    Relation,
    RelationLoader,
    primary_key_column,
    register_relation,
    required_columns,
)

if TYPE_CHECKING:
    from relata.base import Record
    from relata.engine import Executor, QueryResult, Transaction

T = TypeVar("T", bound="Record")
R = TypeVar("R", bound="Record")


class Model(Generic[T]):
    """CRUD operations for one record class on one executor.

    Pass a ConnectionPool to run each statement on its own connection, or a
    Transaction (directly or through :meth:`with_tx`) to run the main query
    and every relation query on the same connection.

    Example:
        >>> users = Model(pool, User)
        >>> alice = await users.create(Params(data=User(name="Alice")))
        >>> found = await users.find_many(Params(
        ...     where=where(like("name", "A%")),
        ...     include={"posts": Params(order_by=["id DESC"])},
        ... ))
        >>> await users.update(Params(data=User(name="Alicia"), where=where(eq("id", alice.id))))
    """

    def __init__(self, executor: Executor, record_cls: type[T], *, logger: Any = None) -> None:
        self._executor = executor
        self._record_cls = record_cls
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def executor(self) -> Executor:
        return self._executor

    @property
    def record_cls(self) -> type[T]:
        return self._record_cls

    @property
    def table(self) -> str:
        return self._record_cls.__tablename__

    def with_tx(self, tx: Transaction) -> Model[T]:
        """The same facade bound to a transaction."""
        return Model(tx, self._record_cls, logger=self._logger)

    def builder(self) -> QueryBuilder:
        """A fresh QueryBuilder on this facade's executor."""
        return QueryBuilder(self._executor, pk_column=self._pk_column(), logger=self._logger)

    def register_relation(self, relation: Relation) -> Model[T]:
        """Register a relation on the record class and return the facade."""
        register_relation(self._record_cls, relation)
        return self

    # ========== Reads ==========

    async def find_many(self, params: Params[T] | None = None) -> list[T]:
        """Fetch every matching record, then eager load ``params.include``.

        Raises:
            StatementError: If the main query fails
            RelationLoadError: If a relation query fails
        """
        params = params or Params()
        sql, args = build_select(
            self._executor.dialect,
            self._record_cls,
            params,
            required=self._required_columns(params),
        )
        result = await self._run("find", sql, args)
        records: list[T] = decode_result(self._record_cls, result)  # type: ignore[assignment]

        if params.include and records:
            loader = RelationLoader(self._executor, logger=self._logger)
            await loader.load(self._record_cls, records, params.include)  # type: ignore[arg-type]
        return records

    async def find_first(self, params: Params[T] | None = None) -> T | None:
        """Like :meth:`find_many` with ``LIMIT 1``; None when nothing matches."""
        records = await self.find_many(replace(params or Params(), limit=1))
        return records[0] if records else None

    def _required_columns(self, params: Params[T]) -> list[str]:
        """Key columns kept under a narrow select: the primary key and relation keys."""
        if not params.select:
            return []
        return [self._pk_column(), *required_columns(self._record_cls, params)]

    # ========== Writes ==========

    async def create(self, params: Params[T]) -> T:
        """Insert ``params.data`` and write the generated key back onto it.

        Raises:
            MappingError: If the payload is missing or of another record type
            StatementError: If the INSERT fails
        """
        record = params.data
        check_payload(record, self._record_cls)
        assert record is not None

        dialect = self._executor.dialect
        assignments = encode_create(record, dialect)
        if not assignments:
            raise MappingError(f"create {self.table}: no columns to insert")

        columns = ", ".join(a.column for a in assignments)
        marks = ", ".join(a.placeholder for a in assignments)
        sql = f"INSERT INTO {self.table} ({columns}) VALUES ({marks})"

        pk = self._record_cls.__primary_key__
        pk_info = self._record_cls.__columns__[pk] if pk else None
        generated = pk_info is not None and bool(pk_info.auto_increment)
        use_returning = generated and dialect.supports_returning
        if use_returning:
            sql += f" RETURNING {self._pk_column()}"

        result = await self._run("create", sql, [a.value for a in assignments])

        if generated:
            key = result.rows[0][0] if use_returning and result.rows else result.lastrowid
            if key is not None:
                object.__setattr__(record, pk, key)  # type: ignore[arg-type]
        return record

    async def update(self, params: Params[T]) -> int:
        """Set the non-zero fields of ``params.data`` on every matching row.

        Returns:
            Number of affected rows

        Raises:
            MissingWhereError: If ``params.where`` is empty; no SQL is issued
            MappingError: If the payload is invalid or sets nothing
            StatementError: If the UPDATE fails
        """
        if not params.where:
            raise MissingWhereError(f"update {self.table}: refusing to update without a WHERE")
        record = params.data
        check_payload(record, self._record_cls)
        assert record is not None

        dialect = self._executor.dialect
        assignments = encode_update(record, dialect)
        if not assignments:
            raise MappingError(f"update {self.table}: no non-zero fields to set")

        where_sql, where_args = render_conditions(
            self._conditions(params.where), dialect, start=len(assignments) + 1
        )
        sets = ", ".join(f"{a.column} = {a.placeholder}" for a in assignments)
        sql = f"UPDATE {self.table} SET {sets} WHERE {where_sql}"

        result = await self._run("update", sql, [a.value for a in assignments] + where_args)
        return result.rowcount

    async def delete(self, params: Params[T]) -> int:
        """Delete every matching row.

        Returns:
            Number of deleted rows

        Raises:
            MissingWhereError: If ``params.where`` is empty; no SQL is issued
            StatementError: If the DELETE fails
        """
        if not params.where:
            raise MissingWhereError(f"delete {self.table}: refusing to delete without a WHERE")

        where_sql, args = render_conditions(
            self._conditions(params.where), self._executor.dialect
        )
        sql = f"DELETE FROM {self.table} WHERE {where_sql}"
        result = await self._run("delete", sql, args)
        return result.rowcount

    # ========== Helpers ==========

    def _pk_column(self) -> str:
        return primary_key_column(self._record_cls)

    def _conditions(self, conditions: list[Condition]) -> list[Condition]:
        return [
            replace(c, field=resolve_column(self._record_cls, c.field)) for c in conditions
        ]

    async def _run(self, verb: str, sql: str, args: list[Any]) -> QueryResult:
        self._logger.debug("model.statement", verb=verb, table=self.table, sql=sql, args=args)
        try:
            return await self._executor.execute(sql, args)
        except StatementError as exc:
            raise StatementError(f"{verb} {self.table}: {exc}", sql=sql, params=args) from exc

    def __repr__(self) -> str:
        return f"<Model {self._record_cls.__name__} table={self.table}>"


class DB:
    """Holds one executor and hands out facades bound to it.

    Example:
        >>> db = DB(pool)
        >>> users = await db.model(User).find_many()
        >>> async with pool.transaction() as tx:
        ...     await db.with_tx(tx).model(Post).delete(Params(where=where(eq("id", 3))))
    """

    def __init__(self, executor: Executor, *, logger: Any = None) -> None:
        self._executor = executor
        self._logger = logger
        self._models: dict[type[Record], Model[Any]] = {}

    @property
    def executor(self) -> Executor:
        return self._executor

    def model(self, record_cls: type[R]) -> Model[R]:
        """The facade for ``record_cls``, created once and cached."""
        facade = self._models.get(record_cls)
        if facade is None:
            facade = Model(self._executor, record_cls, logger=self._logger)
            self._models[record_cls] = facade
        return facade

    def builder(self) -> QueryBuilder:
        return QueryBuilder(self._executor, logger=self._logger)

    def with_tx(self, tx: Transaction) -> DB:
        return DB(tx, logger=self._logger)
