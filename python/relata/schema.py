"""Structured table descriptions shared by the dialects and the schema tool."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ColumnDef:
    """A column as it appears in DDL: name, SQL type and trailing options."""

    name: str
    type_: str
    options: str = ""

    def to_sql(self, quote: str = '"') -> str:
        """Render the column definition for CREATE TABLE / ADD COLUMN."""
        sql = f"{quote}{self.name}{quote} {self.type_}"
        if self.options:
            sql += f" {self.options}"
        return sql


@dataclass
class IndexDef:
    """A single index on one table."""

    name: str
    columns: list[str]
    unique: bool = False


@dataclass
class ForeignKeyDef:
    """A foreign key constraint."""

    name: str
    column: str
    ref_table: str
    ref_column: str = "id"
    options: str = ""


@dataclass
class TableDef:
    """A table built from a record class."""

    name: str
    columns: list[ColumnDef] = field(default_factory=list)
    indexes: list[IndexDef] = field(default_factory=list)
    foreign_keys: list[ForeignKeyDef] = field(default_factory=list)

    def column(self, name: str) -> ColumnDef | None:
        return next((c for c in self.columns if c.name == name), None)


@dataclass
class ExistingColumn:
    """A column read back from the live database."""

    name: str
    type_: str
    nullable: bool = True
    default: str | None = None
    extra: str = ""


@dataclass
class IndexOrder:
    """An index to create after all tables of a migration exist."""

    name: str
    table: str
    columns: list[str]
    unique: bool = False


@dataclass
class Migration:
    """Render input for a migration script."""

    name: str
    timestamp: str
    tables: list[TableDef] = field(default_factory=list)
    drop_order: list[str] = field(default_factory=list)
    index_order: list[IndexOrder] = field(default_factory=list)


def foreign_key_name(table: str, column: str, ref_table: str) -> str:
    """Constraint name used for generated foreign keys: ``fk_<table>_<ref>``."""
    ref = column[: -len("_id")] if column.endswith("_id") else ref_table
    return f"fk_{table}_{ref}"


def index_name(table: str, column: str) -> str:
    return f"idx_{table}_{column}"
