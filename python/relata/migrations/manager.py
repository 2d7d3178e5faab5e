"""Compare record classes against the live schema and apply or script the difference."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from relata.exceptions import SchemaError
from relata.migrations.builder import build_migration, build_table, sort_tables
from relata.migrations.render import render_migration

if TYPE_CHECKING:
    from relata.base import Record
    from relata.dialects import Dialect
    from relata.engine import ConnectionPool, Executor


# Groups of type names that describe the same storage
_TYPE_EQUIVALENCES = [
    {"INTEGER", "INT", "INT4", "SERIAL"},
    {"BIGINT", "INT8", "BIGSERIAL"},
    {"TEXT", "VARCHAR", "CHARACTER VARYING"},
    {"DOUBLE PRECISION", "FLOAT8", "REAL", "FLOAT", "DOUBLE"},
    {"BOOLEAN", "BOOL", "TINYINT"},
    {"TIMESTAMP", "DATETIME"},
    {"NUMERIC", "DECIMAL"},
    {"BYTEA", "BLOB"},
    {"JSONB", "JSON"},
]


def types_match(model_type: str, db_type: str) -> bool:
    """Whether a declared column type and a live column type are compatible.

    Example:
        >>> types_match("VARCHAR(255)", "character varying")
        True
        >>> types_match("INTEGER", "text")
        False
    """
    model_upper = model_type.upper()
    db_upper = db_type.upper()
    if model_upper == db_upper:
        return True

    for group in _TYPE_EQUIVALENCES:
        model_in = any(t in model_upper for t in group)
        db_in = any(t in db_upper for t in group)
        if model_in and db_in:
            return True
    return False


class SchemaManager:
    """Brings a database schema in line with a set of record classes.

    :meth:`plan` lists the DDL statements needed, :meth:`push` applies them
    in one transaction and :meth:`migrate` writes a SQL migration script
    instead. Tables and columns are only ever added; nothing is dropped.

    Example:
        >>> manager = SchemaManager(pool, [User, Post])
        >>> await manager.push()
        >>> manager.migrate("add posts", "migrations")
    """

    def __init__(
        self,
        pool: ConnectionPool,
        records: Sequence[type[Record]],
        *,
        alter_columns: bool = False,
        logger: Any = None,
    ) -> None:
        """Initialize the schema manager.

        Args:
            pool: Connection pool of the target database
            records: Record classes describing the wanted schema
            alter_columns: Also emit type changes for existing columns
            logger: structlog logger (default: module logger)
        """
        self._pool = pool
        self._records = list(records)
        self._alter_columns = alter_columns
        self._logger = logger or structlog.get_logger(__name__)

    async def plan(self, executor: Executor | None = None) -> list[str]:
        """DDL statements needed to create or extend every table.

        Foreign keys that the dialect cannot add to an existing table are
        skipped with a warning.
        """
        executor = executor or self._pool
        dialect = executor.dialect
        known = {r.__tablename__ for r in self._records}
        tables = sort_tables([build_table(r, dialect, known) for r in self._records])
        statements: list[str] = []

        for table in tables:
            if not await dialect.table_exists(executor, table.name):
                statements.append(dialect.create_table_sql(table))
                statements.extend(dialect.create_index_sql(table.name, i) for i in table.indexes)
                continue

            current = await dialect.get_columns(executor, table.name)
            added: set[str] = set()
            for column in table.columns:
                existing = current.get(column.name)
                if existing is None:
                    statements.append(dialect.add_column_sql(table.name, column))
                    added.add(column.name)
                elif self._alter_columns and not types_match(column.type_, existing.type_):
                    try:
                        statements.append(dialect.modify_column_sql(table.name, column))
                    except SchemaError as exc:
                        self._logger.warning(
                            "schema.column_change_skipped",
                            table=table.name,
                            column=column.name,
                            reason=str(exc),
                        )

            for index in table.indexes:
                if set(index.columns) & added:
                    statements.append(dialect.create_index_sql(table.name, index))

            current_fks = await dialect.get_foreign_keys(executor, table.name)
            linked = {fk.column for fk in current_fks.values()}
            for fk in table.foreign_keys:
                if fk.name in current_fks or fk.column in linked:
                    continue
                try:
                    statements.append(dialect.add_foreign_key_sql(table.name, fk))
                except SchemaError as exc:
                    self._logger.warning(
                        "schema.foreign_key_skipped",
                        table=table.name,
                        constraint=fk.name,
                        reason=str(exc),
                    )

        return statements

    async def push(self) -> list[str]:
        """Apply :meth:`plan` inside one transaction and return the statements run.

        Raises:
            StatementError: If a statement fails; the transaction is rolled back
        """
        async with self._pool.transaction() as tx:
            statements = await self.plan(tx)
            for sql in statements:
                self._logger.info("schema.apply", sql=sql)
                await tx.execute(sql)
        self._logger.info("schema.pushed", statements=len(statements))
        return statements

    def migrate(
        self,
        name: str,
        directory: Path | str = "migrations",
        *,
        now: datetime | None = None,
    ) -> Path:
        """Write a migration script for every record table.

        Returns:
            Path of the written ``<YYYYmmddHHMMSS>_<name>.sql`` file
        """
        path = write_migration(name, self._records, self._pool.dialect, directory, now=now)
        self._logger.info("schema.migration_written", path=str(path))
        return path


def write_migration(
    name: str,
    records: Sequence[type[Record]],
    dialect: Dialect,
    directory: Path | str = "migrations",
    *,
    now: datetime | None = None,
) -> Path:
    """Render the migration for ``records`` into ``directory`` and return its path."""
    migration = build_migration(name, records, dialect, now)
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / migration.name
    path.write_text(render_migration(migration, dialect))
    return path
