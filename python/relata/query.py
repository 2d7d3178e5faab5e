"""Query builder for constructing SQL statements."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from relata.dialects import supports_returning
from relata.exceptions import ReturningEmulationError, RollbackError
from relata.marshal import decode_result
from relata.params import Params, render_conditions
from relata.sqltext import extract_where, qualify_condition, qualify_fields

if TYPE_CHECKING:
    from relata.base import Record
    from relata.dialects import Dialect
    from relata.engine import Executor, QueryResult
    from relata.params import Condition

R = TypeVar("R", bound="Record")


def resolve_column(record_cls: type[Record], name: str) -> str:
    """Column name for a field or column name of ``record_cls``."""
    info = record_cls.__columns__.get(name)
    if info is not None and info.column:
        return info.column
    return name


def build_select(
    dialect: Dialect,
    record_cls: type[Record],
    params: Params[Any],
    *,
    scope: Condition | None = None,
    required: Iterable[str] = (),
) -> tuple[str, list[Any]]:
    """Render a SELECT for ``record_cls`` from a Params bundle.

    Args:
        dialect: Dialect providing placeholder syntax
        record_cls: Record class to select from
        params: Filter, selection, ordering and pagination
        scope: Extra condition ANDed in front of ``params.where``
        required: Columns selected even when ``params.select`` omits them

    Returns:
        Tuple of (SQL, args)

    Example:
        >>> build_select(PostgresDialect(), Post, Params(where=where(eq("published", True))),
        ...              scope=in_("user_id", [1, 2]))
        ('SELECT id, title, published, user_id FROM posts WHERE user_id IN ($1, $2) AND (published = $3)',
         [1, 2, True])
    """
    table = record_cls.__tablename__
    wanted = {resolve_column(record_cls, name) for name in params.select}
    wanted.update(required)

    columns = [
        info.column
        for attr_name, info in record_cls.__columns__.items()
        if info.column and (not params.select or attr_name in wanted or info.column in wanted)
    ]
    sql = f"SELECT {', '.join(columns) if columns else '*'} FROM {table}"

    args: list[Any] = []
    clauses: list[str] = []
    if scope is not None:
        text, args = render_conditions([scope], dialect)
        clauses.append(text)
    if params.where:
        conditions = [
            _with_field(c, resolve_column(record_cls, c.field)) for c in params.where
        ]
        text, where_args = render_conditions(conditions, dialect, start=len(args) + 1)
        clauses.append(f"({text})" if clauses else text)
        args.extend(where_args)
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)

    if params.order_by:
        order = []
        for entry in params.order_by:
            name, _, direction = entry.strip().partition(" ")
            column = resolve_column(record_cls, name)
            order.append(f"{column} {direction.strip()}".rstrip())
        sql += " ORDER BY " + ", ".join(order)
    if params.limit > 0:
        sql += f" LIMIT {int(params.limit)}"
    if params.offset > 0:
        sql += f" OFFSET {int(params.offset)}"

    return sql, args


def _with_field(condition: Condition, column: str) -> Condition:
    if condition.field == column:
        return condition
    return replace(condition, field=column)


class QueryBuilder:
    """Fluent SQL builder with positional parameters.

    Each method appends a fragment and returns the builder. Parameterized
    methods (``where``, ``and_``, ``or_``, ``not_``, ``having``, ``values``,
    ``set``, ``raw``) bind their arguments; the comparison helpers (``like``,
    ``in_``, ``between``, ``is_null`` and their negations) inline values as
    SQL literals and must never receive untrusted input.

    The builder is mutable and is not safe for concurrent use. Build one
    statement, run it, then call :meth:`reset` before building the next;
    without a reset new fragments are appended to the old statement.

    Placeholders are not renumbered across calls: ``values`` and ``set``
    each number from 1, and conditions passed to ``where`` carry whatever
    placeholders the caller wrote.

    Example:
        >>> qb = QueryBuilder(pool)
        >>> await qb.select("id", "name").from_("users").where("id = $1", 1).scan(User)
        >>> qb.reset()
        >>> qb.insert_into("users").columns("name").values("Bob").returning("id")
    """

    def __init__(self, executor: Executor, *, pk_column: str = "id", logger: Any = None) -> None:
        self._executor = executor
        self._dialect = executor.dialect
        self._pk_column = pk_column
        self._logger = logger or structlog.get_logger(__name__)
        self.reset()

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def args(self) -> list[Any]:
        """Bound arguments in placeholder order."""
        return list(self._params)

    def reset(self) -> QueryBuilder:
        """Clear all accumulated state so the builder can be reused."""
        self._parts: list[str] = []
        self._params: list[Any] = []
        self._operations: list[str] = []
        self._table = ""
        self._returning: list[str] = []
        self._select_index: int | None = None
        self._select_fields: list[str] = []
        self._select_keyword = "SELECT"
        self._where_param_start: int | None = None
        self._in_case = False
        return self

    # ========== SELECT ==========

    def select(self, *fields: str) -> QueryBuilder:
        """Start a SELECT. No fields means ``SELECT *``.

        Bare field names are qualified with the table once :meth:`from_`
        names it.
        """
        return self._select("SELECT", fields)

    def select_distinct(self, *fields: str) -> QueryBuilder:
        return self._select("SELECT DISTINCT", fields)

    def _select(self, keyword: str, fields: tuple[str, ...]) -> QueryBuilder:
        if not fields:
            self._parts.append(f"{keyword} *")
            return self
        self._select_fields = [f.strip() for f in fields]
        self._select_keyword = keyword
        self._select_index = len(self._parts)
        self._operations.append(keyword)
        self._parts.append(f"{keyword} {', '.join(self._select_fields)}")
        return self

    def from_(self, table: str) -> QueryBuilder:
        """Add FROM and qualify the bare fields of an earlier SELECT.

        Example:
            >>> qb.select("id", "COUNT(*) AS n").from_("users").get_sql()
            'SELECT users.id, COUNT(*) AS n FROM users;'
        """
        table = table.strip()
        if not table:
            return self
        self._set_table(table)
        self._operations.append("FROM")

        if self._select_index is not None:
            fields = qualify_fields(self._select_fields, self._table)
            self._parts[self._select_index] = f"{self._select_keyword} {', '.join(fields)}"

        self._parts.append(f" FROM {table}")
        return self

    def _set_table(self, table: str) -> None:
        name = table.split()[0]
        self._table = name.rsplit(".", 1)[-1]

    # ========== Conditions ==========

    def where(self, condition: str, *args: Any) -> QueryBuilder:
        """Add ``WHERE <condition>`` and bind ``args``.

        Bare column names in the condition are qualified with the active
        table.

        Example:
            >>> qb.select("id").from_("users").where("id = $1 AND name = $2", 1, "John")
        """
        if not condition:
            return self
        if self._where_param_start is None:
            self._where_param_start = len(self._params)
        self._operations.append("WHERE")
        self._params.extend(args)
        self._parts.append(f" WHERE {self._qualify(condition)}")
        return self

    def and_(self, condition: str, *args: Any) -> QueryBuilder:
        return self._clause("AND", condition, args)

    def or_(self, condition: str, *args: Any) -> QueryBuilder:
        return self._clause("OR", condition, args)

    def not_(self, condition: str, *args: Any) -> QueryBuilder:
        return self._clause("NOT", condition, args)

    def having(self, condition: str, *args: Any) -> QueryBuilder:
        return self._clause("HAVING", condition, args)

    def _clause(self, keyword: str, condition: str, args: tuple[Any, ...]) -> QueryBuilder:
        if not condition:
            return self
        self._operations.append(keyword)
        self._params.extend(args)
        self._parts.append(f" {keyword} {self._qualify(condition)}")
        return self

    def _qualify(self, condition: str) -> str:
        if not self._table:
            return condition
        return qualify_condition(condition, self._table)

    # Inlining helpers. Values are rendered with Dialect.literal() and not bound.

    def like(self, column: str, pattern: str) -> QueryBuilder:
        return self._predicate(f"{self._column(column)} LIKE {self._literal(pattern)}")

    def not_like(self, column: str, pattern: str) -> QueryBuilder:
        return self._predicate(f"{self._column(column)} NOT LIKE {self._literal(pattern)}")

    def in_(self, column: str, *values: Any) -> QueryBuilder:
        """Add ``<column> IN (...)`` with inlined values.

        Example:
            >>> qb.select().from_("users").in_("id", [1, 2, 3])
        """
        return self._predicate(self._membership(column, "IN", values))

    def not_in(self, column: str, *values: Any) -> QueryBuilder:
        return self._predicate(self._membership(column, "NOT IN", values))

    def between(self, column: str, low: Any, high: Any) -> QueryBuilder:
        return self._predicate(
            f"{self._column(column)} BETWEEN {self._literal(low)} AND {self._literal(high)}"
        )

    def not_between(self, column: str, low: Any, high: Any) -> QueryBuilder:
        return self._predicate(
            f"{self._column(column)} NOT BETWEEN {self._literal(low)} AND {self._literal(high)}"
        )

    def is_null(self, column: str) -> QueryBuilder:
        return self._predicate(f"{self._column(column)} IS NULL")

    def is_not_null(self, column: str) -> QueryBuilder:
        return self._predicate(f"{self._column(column)} IS NOT NULL")

    def exists(self, query: QueryBuilder | str) -> QueryBuilder:
        """Add ``EXISTS (<subquery>)``, merging the subquery's arguments."""
        return self._predicate(f"EXISTS ({self._embed(query)})")

    def not_exists(self, query: QueryBuilder | str) -> QueryBuilder:
        return self._predicate(f"NOT EXISTS ({self._embed(query)})")

    def _membership(self, column: str, keyword: str, values: tuple[Any, ...]) -> str:
        if len(values) == 1 and isinstance(values[0], list | tuple | set | frozenset):
            values = tuple(values[0])
        if not values:
            return "1 = 0" if keyword == "IN" else "1 = 1"
        rendered = ", ".join(self._literal(v) for v in values)
        return f"{self._column(column)} {keyword} ({rendered})"

    def _predicate(self, text: str) -> QueryBuilder:
        keyword = "AND" if "WHERE" in self._operations else "WHERE"
        self._operations.append(keyword)
        self._parts.append(f" {keyword} {text}")
        return self

    def _column(self, column: str) -> str:
        return qualify_fields([column.strip()], self._table)[0]

    def _literal(self, value: Any) -> str:
        return self._dialect.literal(value)

    # ========== DML ==========

    def insert_into(self, table: str) -> QueryBuilder:
        self._set_table(table)
        self._operations.append("INSERT")
        self._parts.append(f"INSERT INTO {table}")
        return self

    def columns(self, *columns: str) -> QueryBuilder:
        self._parts.append(f" ({', '.join(c.strip() for c in columns)})")
        return self

    def values(self, *values: Any) -> QueryBuilder:
        """Add ``VALUES (...)`` with placeholders numbered from 1."""
        marks = [self._dialect.placeholder(i) for i in range(1, len(values) + 1)]
        self._params.extend(values)
        self._operations.append("VALUES")
        self._parts.append(f" VALUES ({', '.join(marks)})")
        return self

    def update(self, table: str) -> QueryBuilder:
        self._set_table(table)
        self._operations.append("UPDATE")
        self._parts.append(f"UPDATE {table}")
        return self

    def set(self, values: Mapping[str, Any]) -> QueryBuilder:
        """Add ``SET col = <placeholder>, ...`` numbered from 1.

        A following ``where`` must use placeholders that continue after
        these; the builder does not renumber.

        Example:
            >>> qb.update("users").set({"name": "Bob"}).where("id = $2", 1)
        """
        assignments = []
        for position, (column, value) in enumerate(values.items(), start=1):
            assignments.append(f"{column} = {self._dialect.placeholder(position)}")
            self._params.append(value)
        self._operations.append("SET")
        self._parts.append(f" SET {', '.join(assignments)}")
        return self

    def delete(self, table: str | None = None) -> QueryBuilder:
        """Start a DELETE. Name the table here or with :meth:`from_`."""
        self._operations.append("DELETE")
        if table:
            self._set_table(table)
            self._parts.append(f"DELETE FROM {table}")
        else:
            self._parts.append("DELETE")
        return self

    def returning(self, *fields: str) -> QueryBuilder:
        """Request columns back from INSERT, UPDATE or DELETE.

        Rendered as RETURNING where the dialect supports it and emulated
        with a follow-up SELECT in a transaction elsewhere. Emulated UPDATEs
        collect the matching primary keys first and re-select by key, so a
        SET that changes the primary key itself returns no rows.
        """
        self._returning.extend(fields or ("*",))
        return self

    # ========== Grouping, ordering, paging ==========

    def group_by(self, *fields: str) -> QueryBuilder:
        self._parts.append(f" GROUP BY {', '.join(fields)}")
        return self

    def order_by(self, *fields: str) -> QueryBuilder:
        self._parts.append(f" ORDER BY {', '.join(fields)}")
        return self

    def limit(self, n: int) -> QueryBuilder:
        self._parts.append(f" LIMIT {int(n)}")
        return self

    def offset(self, n: int) -> QueryBuilder:
        self._parts.append(f" OFFSET {int(n)}")
        return self

    # ========== Joins ==========

    def join(self, table: str, on: str) -> QueryBuilder:
        return self._join("", table, on)

    def inner_join(self, table: str, on: str) -> QueryBuilder:
        return self._join("INNER", table, on)

    def left_join(self, table: str, on: str) -> QueryBuilder:
        return self._join("LEFT", table, on)

    def right_join(self, table: str, on: str) -> QueryBuilder:
        return self._join("RIGHT", table, on)

    def full_join(self, table: str, on: str) -> QueryBuilder:
        return self._join("FULL", table, on)

    def cross_join(self, table: str) -> QueryBuilder:
        self._parts.append(f" CROSS JOIN {table}")
        return self

    def _join(self, kind: str, table: str, on: str) -> QueryBuilder:
        prefix = f" {kind} JOIN" if kind else " JOIN"
        self._operations.append("JOIN")
        self._parts.append(f"{prefix} {table} ON {on}")
        return self

    # ========== Subqueries and CASE ==========

    def sub_query(self, query: QueryBuilder | str, alias: str | None = None) -> QueryBuilder:
        """Append ``(<subquery>)``, merging the subquery's arguments.

        Example:
            >>> inner = QueryBuilder(pool).select("user_id").from_("posts")
            >>> qb.select("name").from_("users").where("id IN").sub_query(inner)
        """
        text = f" ({self._embed(query)})"
        if alias:
            text += f" AS {alias}"
        self._parts.append(text)
        return self

    def _embed(self, query: QueryBuilder | str) -> str:
        if isinstance(query, QueryBuilder):
            self._params.extend(query._params)
            return query._text().rstrip(";")
        return query.strip().rstrip(";")

    def case_when(self, condition: str, result: str) -> QueryBuilder:
        """Add a ``WHEN ... THEN ...`` branch, opening CASE on the first call.

        Condition and result are SQL text, written into the statement as is.

        Example:
            >>> (qb.select("name").case_when("age >= 18", "'adult'")
            ...    .else_("'minor'").end("bracket").from_("users"))
        """
        if self._in_case:
            self._parts.append(f" WHEN {condition} THEN {result}")
            return self
        self._in_case = True
        lead = "," if self._operations and self._operations[-1].startswith("SELECT") else ""
        self._parts.append(f"{lead} CASE WHEN {condition} THEN {result}")
        return self

    def else_(self, result: str) -> QueryBuilder:
        self._parts.append(f" ELSE {result}")
        return self

    def end(self, alias: str | None = None) -> QueryBuilder:
        self._in_case = False
        self._parts.append(f" END AS {alias}" if alias else " END")
        return self

    # ========== DDL and raw text ==========

    def drop_table(self, table: str) -> QueryBuilder:
        self._parts.append(f"DROP TABLE {table}")
        return self

    def drop_column(self, table: str, column: str) -> QueryBuilder:
        self._parts.append(f"ALTER TABLE {table} DROP COLUMN {column}")
        return self

    def truncate(self, table: str) -> QueryBuilder:
        self._parts.append(f"TRUNCATE TABLE {table}")
        return self

    def cascade(self) -> QueryBuilder:
        self._parts.append(" CASCADE")
        return self

    def restart_identity(self) -> QueryBuilder:
        self._parts.append(" RESTART IDENTITY")
        return self

    def raw(self, text: str, *args: Any) -> QueryBuilder:
        """Append ``text`` verbatim and bind ``args``."""
        self._params.extend(args)
        self._parts.append(text)
        return self

    # ========== Terminal operations ==========

    def _text(self) -> str:
        return "".join(self._parts).strip()

    def get_sql(self) -> str:
        """Render the statement.

        RETURNING is appended only when requested and supported by the
        dialect; bare returning fields are qualified with the active table.
        """
        sql = self._text()
        if self._returning and supports_returning(self._dialect):
            fields = [
                f if "." in f or f == "*" or not self._table else f"{self._table}.{f}"
                for f in self._returning
            ]
            sql = sql.rstrip(";") + " RETURNING " + ", ".join(fields)
        if not sql.endswith(";"):
            sql += ";"
        return sql

    async def execute(self) -> QueryResult:
        """Run the statement with the bound arguments.

        Raises:
            StatementError: If the database rejects the statement
            ReturningEmulationError: If RETURNING cannot be emulated for it
            RollbackError: If the emulation failed and so did its rollback
        """
        sql = self.get_sql()
        args = list(self._params)
        self._logger.debug("query.execute", sql=sql, args=args)

        if self._returning and not supports_returning(self._dialect):
            return await self._emulate_returning(args)
        return await self._executor.execute(sql, args)

    async def fetch(self) -> list[dict[str, Any]]:
        """Run the statement and return the rows as dictionaries."""
        return (await self.execute()).all()

    async def scan(self, record_cls: type[R]) -> list[R]:
        """Run the statement and decode every row into ``record_cls``."""
        return decode_result(record_cls, await self.execute())  # type: ignore[return-value]

    async def scan_one(self, record_cls: type[R]) -> R | None:
        """Run the statement and decode the first row, or None."""
        records = await self.scan(record_cls)
        return records[0] if records else None

    async def _emulate_returning(self, args: list[Any]) -> QueryResult:
        statement = self._text().rstrip(";") + ";"
        kind = statement.split(None, 1)[0].upper()
        fields = ", ".join(self._returning)

        if kind not in ("INSERT", "UPDATE", "DELETE"):
            raise ReturningEmulationError(f"cannot emulate RETURNING for {kind} statements")
        if not self._table:
            raise ReturningEmulationError("cannot emulate RETURNING without a table")

        condition = ""
        select_args: list[Any] = []
        if kind != "INSERT":
            condition = extract_where(statement)
            if self._where_param_start is not None:
                select_args = args[self._where_param_start:]

        async def run(executor: Executor) -> QueryResult:
            if kind == "DELETE":
                rows = await executor.execute(
                    f"SELECT {fields} FROM {self._table} WHERE {condition};", select_args
                )
                await executor.execute(statement, args)
                return rows

            if kind == "UPDATE":
                return await self._update_by_key(executor, statement, args, condition, select_args)

            result = await executor.execute(statement, args)
            if result.lastrowid is None:
                raise ReturningEmulationError("driver reported no generated id for INSERT")
            placeholder = self._dialect.placeholder(1)
            return await executor.execute(
                f"SELECT {fields} FROM {self._table} WHERE {self._pk_column} = {placeholder};",
                [result.lastrowid],
            )

        self._logger.debug("query.returning_emulated", kind=kind, table=self._table)
        if self._executor.in_transaction:
            return await run(self._executor)

        tx = await self._executor.begin()  # type: ignore[attr-defined]
        try:
            rows = await run(tx)
        except BaseException as exc:
            try:
                await tx.rollback()
            except Exception as rollback_exc:
                raise RollbackError(
                    f"rollback after failed RETURNING emulation: {rollback_exc}", exc
                ) from rollback_exc
            raise
        await tx.commit()
        return rows

    async def _update_by_key(
        self,
        executor: Executor,
        statement: str,
        args: list[Any],
        condition: str,
        condition_args: list[Any],
    ) -> QueryResult:
        keys = await executor.execute(
            f"SELECT {self._pk_column} FROM {self._table} WHERE {condition};", condition_args
        )
        await executor.execute(statement, args)
        if not keys.rows:
            return keys

        values = [row[0] for row in keys.rows]
        placeholders = ", ".join(self._dialect.placeholder(i) for i in range(1, len(values) + 1))
        fields = ", ".join(self._returning)
        return await executor.execute(
            f"SELECT {fields} FROM {self._table} WHERE {self._pk_column} IN ({placeholders});",
            values,
        )
