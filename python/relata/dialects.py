"""SQL dialects: placeholder syntax, quoting, type mapping and DDL text.

Each dialect is a small strategy object. The query builder only ever calls
the methods defined on :class:`Dialect`; nothing outside this module
branches on the concrete database.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime, time
from decimal import Decimal
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar
from urllib.parse import urlsplit

from relata.exceptions import ConfigurationError, SchemaError
from relata.schema import (
    ColumnDef,
    ExistingColumn,
    ForeignKeyDef,
    IndexDef,
    TableDef,
    foreign_key_name,
)
from relata.sqltext import literal as sql_literal

if TYPE_CHECKING:
    from relata.engine import Executor
    from relata.fields import ColumnInfo


class Driver(StrEnum):
    """Closed set of supported database drivers."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"

    @classmethod
    def from_url(cls, url: str) -> Driver:
        """Pick the driver from a connection URL scheme.

        Raises:
            ConfigurationError: If the scheme is not a supported database
        """
        scheme = url.split(":", 1)[0].lower() if ":" in url else ""
        scheme = scheme.split("+", 1)[0]
        if scheme in ("postgres", "postgresql", "pgx"):
            return cls.POSTGRES
        if scheme == "mysql":
            return cls.MYSQL
        if scheme == "sqlite":
            return cls.SQLITE
        raise ConfigurationError(f"unsupported database url scheme: {urlsplit(url).scheme!r}")


class Dialect(ABC):
    """Per-database strategy for SQL text generation and introspection."""

    name: ClassVar[Driver]
    supports_returning: ClassVar[bool] = False
    quote_char: ClassVar[str] = '"'
    auto_increment_type: ClassVar[str] = "INTEGER"
    auto_increment_clause: ClassVar[str] = ""
    type_map: ClassVar[dict[type, str]] = {}
    declared_types: ClassVar[dict[str, str]] = {}

    @abstractmethod
    def placeholder(self, index: int) -> str:
        """Positional parameter marker for the 1-based ``index``."""

    def quote(self, identifier: str) -> str:
        return f"{self.quote_char}{identifier}{self.quote_char}"

    def literal(self, value: Any) -> str:
        """Inline SQL literal for ``value``, escaped for the driver."""
        return self.escape_literal(sql_literal(value))

    def escape_literal(self, text: str) -> str:
        return text

    def sql_type(self, python_type: type | None) -> str:
        """Map a Python type to this dialect's column type."""
        if python_type is None:
            return "TEXT"
        for candidate in python_type.__mro__ if isinstance(python_type, type) else ():
            if candidate in self.type_map:
                return self.type_map[candidate]
        return "TEXT"

    def convert_type(self, declared: str) -> str:
        """Normalise a ``type:`` annotation value."""
        return self.declared_types.get(declared.lower(), declared.upper())

    def column_type(self, info: ColumnInfo) -> str:
        """SQL type for a mapped column, honouring ``type:`` and ``length:``."""
        if info.type_:
            declared = self.convert_type(info.type_)
            return f"{declared}({info.length})" if info.length else declared
        if info.length:
            return f"VARCHAR({info.length})"
        if info.primary_key and info.auto_increment:
            return self.auto_increment_type
        return self.sql_type(info.python_type)

    def column_options(self, info: ColumnInfo) -> str:
        """Trailing column options (PRIMARY KEY, NOT NULL, DEFAULT, CHECK, ...)."""
        options: list[str] = []
        if info.primary_key:
            options.append("PRIMARY KEY")
            if info.auto_increment and self.auto_increment_clause:
                options.append(self.auto_increment_clause)
        if info.not_null and not info.primary_key:
            options.append("NOT NULL")
        if info.unique and not info.primary_key:
            options.append("UNIQUE")
        if info.server_default is not None:
            options.append(f"DEFAULT {info.server_default}")
        if info.check:
            options.append(f"CHECK ({info.check})")
        return " ".join(options)

    def column_def(self, info: ColumnInfo) -> ColumnDef:
        assert info.column is not None
        return ColumnDef(info.column, self.column_type(info), self.column_options(info))

    # ========== DDL ==========

    def create_table_sql(self, table: TableDef) -> str:
        lines = [f"  {column.to_sql(self.quote_char)}" for column in table.columns]
        for fk in table.foreign_keys:
            line = (
                f"  CONSTRAINT {fk.name} FOREIGN KEY ({self.quote(fk.column)}) "
                f"REFERENCES {self.quote(fk.ref_table)} ({self.quote(fk.ref_column)})"
            )
            if fk.options:
                line += f" {fk.options}"
            lines.append(line)
        body = ",\n".join(lines)
        return f"CREATE TABLE IF NOT EXISTS {self.quote(table.name)} (\n{body}\n)"

    def create_index_sql(self, table: str, index: IndexDef) -> str:
        unique = "UNIQUE " if index.unique else ""
        columns = ", ".join(self.quote(c) for c in index.columns)
        return (
            f"CREATE {unique}INDEX IF NOT EXISTS {self.quote(index.name)} "
            f"ON {self.quote(table)} ({columns})"
        )

    def add_column_sql(self, table: str, column: ColumnDef) -> str:
        return f"ALTER TABLE {self.quote(table)} ADD COLUMN {column.to_sql(self.quote_char)}"

    @abstractmethod
    def modify_column_sql(self, table: str, column: ColumnDef) -> str:
        """Change the type/options of an existing column."""

    def add_foreign_key_sql(self, table: str, fk: ForeignKeyDef) -> str:
        sql = (
            f"ALTER TABLE {self.quote(table)} ADD CONSTRAINT {fk.name} "
            f"FOREIGN KEY ({self.quote(fk.column)}) "
            f"REFERENCES {self.quote(fk.ref_table)} ({self.quote(fk.ref_column)})"
        )
        if fk.options:
            sql += f" {fk.options}"
        return sql

    @abstractmethod
    def drop_foreign_key_sql(self, table: str, name: str) -> str:
        """Remove a named foreign key constraint."""

    # ========== Introspection ==========

    @abstractmethod
    async def table_exists(self, executor: Executor, table: str) -> bool:
        """Whether ``table`` exists in the connected database."""

    @abstractmethod
    async def get_columns(self, executor: Executor, table: str) -> dict[str, ExistingColumn]:
        """Live columns of ``table`` keyed by name."""

    @abstractmethod
    async def get_foreign_keys(self, executor: Executor, table: str) -> dict[str, ForeignKeyDef]:
        """Live foreign keys of ``table`` keyed by constraint name."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


class PostgresDialect(Dialect):
    """PostgreSQL: ``$n`` placeholders and native RETURNING."""

    name = Driver.POSTGRES
    supports_returning = True
    auto_increment_type = "SERIAL"
    type_map = {
        bool: "BOOLEAN",
        int: "INTEGER",
        float: "DOUBLE PRECISION",
        Decimal: "NUMERIC",
        str: "VARCHAR(255)",
        bytes: "BYTEA",
        datetime: "TIMESTAMP",
        date: "DATE",
        time: "TIME",
        dict: "JSONB",
    }
    declared_types = {
        "serial": "SERIAL",
        "int": "INTEGER",
        "varchar": "VARCHAR",
        "text": "TEXT",
        "boolean": "BOOLEAN",
        "timestamp": "TIMESTAMP",
    }

    def placeholder(self, index: int) -> str:
        return f"${index}"

    def modify_column_sql(self, table: str, column: ColumnDef) -> str:
        sql = (
            f"ALTER TABLE {self.quote(table)} ALTER COLUMN {self.quote(column.name)} "
            f"TYPE {column.type_}"
        )
        if "NOT NULL" in column.options.upper():
            sql += f", ALTER COLUMN {self.quote(column.name)} SET NOT NULL"
        return sql

    def drop_foreign_key_sql(self, table: str, name: str) -> str:
        return f"ALTER TABLE {self.quote(table)} DROP CONSTRAINT {name}"

    async def table_exists(self, executor: Executor, table: str) -> bool:
        result = await executor.execute(
            "SELECT EXISTS (SELECT 1 FROM pg_tables "
            "WHERE schemaname = 'public' AND tablename = $1)",
            [table],
        )
        return bool(result.rows and result.rows[0][0])

    async def get_columns(self, executor: Executor, table: str) -> dict[str, ExistingColumn]:
        result = await executor.execute(
            "SELECT column_name, data_type, is_nullable, column_default, "
            "CASE WHEN is_identity = 'YES' THEN 'auto_increment' ELSE '' END "
            "FROM information_schema.columns "
            "WHERE table_name = $1 AND table_schema = 'public' "
            "ORDER BY ordinal_position",
            [table],
        )
        return {
            name: ExistingColumn(name, type_, nullable == "YES", default, extra or "")
            for name, type_, nullable, default, extra in result.rows
        }

    async def get_foreign_keys(self, executor: Executor, table: str) -> dict[str, ForeignKeyDef]:
        result = await executor.execute(
            "SELECT tc.constraint_name, kcu.column_name, "
            "ccu.table_name, ccu.column_name "
            "FROM information_schema.table_constraints AS tc "
            "JOIN information_schema.key_column_usage AS kcu "
            "ON tc.constraint_name = kcu.constraint_name "
            "AND tc.table_schema = kcu.table_schema "
            "JOIN information_schema.constraint_column_usage AS ccu "
            "ON ccu.constraint_name = tc.constraint_name "
            "AND ccu.table_schema = tc.table_schema "
            "WHERE tc.constraint_type = 'FOREIGN KEY' AND tc.table_name = $1",
            [table],
        )
        return {
            name: ForeignKeyDef(name, column, ref_table, ref_column)
            for name, column, ref_table, ref_column in result.rows
        }


class MySQLDialect(Dialect):
    """MySQL: ``%s`` placeholders (aiomysql paramstyle), backtick quoting."""

    name = Driver.MYSQL
    quote_char = "`"
    auto_increment_type = "INT"
    auto_increment_clause = "AUTO_INCREMENT"
    type_map = {
        bool: "BOOLEAN",
        int: "INT",
        float: "DOUBLE",
        Decimal: "DECIMAL(20, 6)",
        str: "VARCHAR(255)",
        bytes: "BLOB",
        datetime: "DATETIME",
        date: "DATE",
        time: "TIME",
        dict: "JSON",
    }
    declared_types = {
        "serial": "INT",
        "int": "INT",
        "varchar": "VARCHAR",
        "text": "TEXT",
        "boolean": "BOOLEAN",
        "timestamp": "TIMESTAMP",
    }

    def placeholder(self, index: int) -> str:
        return "%s"

    def escape_literal(self, text: str) -> str:
        # aiomysql always interpolates with the format paramstyle
        return text.replace("%", "%%")

    def create_index_sql(self, table: str, index: IndexDef) -> str:
        # MySQL has no CREATE INDEX IF NOT EXISTS
        unique = "UNIQUE " if index.unique else ""
        columns = ", ".join(self.quote(c) for c in index.columns)
        return f"CREATE {unique}INDEX {self.quote(index.name)} ON {self.quote(table)} ({columns})"

    def modify_column_sql(self, table: str, column: ColumnDef) -> str:
        return f"ALTER TABLE {self.quote(table)} MODIFY COLUMN {column.to_sql(self.quote_char)}"

    def drop_foreign_key_sql(self, table: str, name: str) -> str:
        return f"ALTER TABLE {self.quote(table)} DROP FOREIGN KEY {name}"

    async def table_exists(self, executor: Executor, table: str) -> bool:
        result = await executor.execute(
            "SELECT COUNT(*) FROM information_schema.tables "
            "WHERE table_schema = DATABASE() AND table_name = %s",
            [table],
        )
        return bool(result.rows and result.rows[0][0])

    async def get_columns(self, executor: Executor, table: str) -> dict[str, ExistingColumn]:
        result = await executor.execute(
            "SELECT column_name, column_type, is_nullable, column_default, extra "
            "FROM information_schema.columns "
            "WHERE table_schema = DATABASE() AND table_name = %s "
            "ORDER BY ordinal_position",
            [table],
        )
        return {
            name: ExistingColumn(name, type_, nullable == "YES", default, extra or "")
            for name, type_, nullable, default, extra in result.rows
        }

    async def get_foreign_keys(self, executor: Executor, table: str) -> dict[str, ForeignKeyDef]:
        result = await executor.execute(
            "SELECT constraint_name, column_name, referenced_table_name, referenced_column_name "
            "FROM information_schema.key_column_usage "
            "WHERE table_schema = DATABASE() AND table_name = %s "
            "AND referenced_table_name IS NOT NULL",
            [table],
        )
        return {
            name: ForeignKeyDef(name, column, ref_table, ref_column)
            for name, column, ref_table, ref_column in result.rows
        }


class SQLiteDialect(Dialect):
    """SQLite: ``?`` placeholders; ALTER TABLE support is limited to ADD COLUMN."""

    name = Driver.SQLITE
    auto_increment_type = "INTEGER"
    auto_increment_clause = "AUTOINCREMENT"
    type_map = {
        bool: "BOOLEAN",
        int: "INTEGER",
        float: "REAL",
        Decimal: "NUMERIC",
        str: "TEXT",
        bytes: "BLOB",
        datetime: "TIMESTAMP",
        date: "DATE",
        time: "TIME",
        dict: "TEXT",
    }
    declared_types = {
        "serial": "INTEGER",
        "int": "INTEGER",
        "varchar": "VARCHAR",
        "text": "TEXT",
        "boolean": "BOOLEAN",
        "timestamp": "TIMESTAMP",
    }

    def placeholder(self, index: int) -> str:
        return "?"

    def column_type(self, info: ColumnInfo) -> str:
        # AUTOINCREMENT is only accepted on INTEGER PRIMARY KEY
        if info.primary_key and info.auto_increment:
            return "INTEGER"
        return super().column_type(info)

    def modify_column_sql(self, table: str, column: ColumnDef) -> str:
        raise SchemaError(f"sqlite cannot modify column {table}.{column.name} in place")

    def add_foreign_key_sql(self, table: str, fk: ForeignKeyDef) -> str:
        raise SchemaError(f"sqlite cannot add foreign key {fk.name} to existing table {table}")

    def drop_foreign_key_sql(self, table: str, name: str) -> str:
        raise SchemaError(f"sqlite cannot drop foreign key {name} from table {table}")

    async def table_exists(self, executor: Executor, table: str) -> bool:
        result = await executor.execute(
            "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = ?",
            [table],
        )
        return bool(result.rows and result.rows[0][0])

    async def get_columns(self, executor: Executor, table: str) -> dict[str, ExistingColumn]:
        result = await executor.execute(f"PRAGMA table_info({self.quote(table)})", [])
        columns: dict[str, ExistingColumn] = {}
        for _cid, name, type_, notnull, default, pk in result.rows:
            columns[name] = ExistingColumn(
                name,
                type_,
                nullable=not notnull,
                default=default,
                extra="primary key" if pk else "",
            )
        return columns

    async def get_foreign_keys(self, executor: Executor, table: str) -> dict[str, ForeignKeyDef]:
        result = await executor.execute(f"PRAGMA foreign_key_list({self.quote(table)})", [])
        fks: dict[str, ForeignKeyDef] = {}
        for row in result.rows:
            ref_table, column, ref_column = row[2], row[3], row[4]
            name = foreign_key_name(table, column, ref_table)
            fks[name] = ForeignKeyDef(name, column, ref_table, ref_column or "id")
        return fks


_DIALECTS: dict[Driver, type[Dialect]] = {
    Driver.POSTGRES: PostgresDialect,
    Driver.MYSQL: MySQLDialect,
    Driver.SQLITE: SQLiteDialect,
}


def get_dialect(driver: Driver | str) -> Dialect:
    """Return a new dialect for ``driver``.

    Raises:
        ConfigurationError: If the driver is unknown
    """
    try:
        return _DIALECTS[Driver(driver)]()
    except ValueError as exc:
        raise ConfigurationError(f"unsupported dialect: {driver!r}") from exc


def supports_returning(dialect: Dialect) -> bool:
    return dialect.supports_returning
