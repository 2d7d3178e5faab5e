"""Derive table descriptions and migrations from record classes."""

from __future__ import annotations

import re
from collections.abc import Collection, Sequence
from datetime import datetime
from typing import TYPE_CHECKING

from relata.schema import (
    ForeignKeyDef,
    IndexDef,
    IndexOrder,
    Migration,
    TableDef,
    foreign_key_name,
    index_name,
)

if TYPE_CHECKING:
    from relata.base import Record
    from relata.dialects import Dialect
    from relata.fields import ColumnInfo


def build_table(
    record_cls: type[Record],
    dialect: Dialect,
    known_tables: Collection[str] | None = None,
) -> TableDef:
    """Describe the table for ``record_cls``.

    Columns come from the mapping table in declaration order. Columns marked
    ``index`` and every ``*_id`` column get an index. Foreign keys come from
    an explicit ``ForeignKey`` or, for ``<name>_id`` columns, from the naming
    convention when ``<name>s`` is one of ``known_tables`` (any table when
    ``known_tables`` is None).

    Example:
        >>> table = build_table(Post, PostgresDialect(), {"users", "posts"})
        >>> [fk.name for fk in table.foreign_keys]
        ['fk_posts_user']
    """
    table = TableDef(record_cls.__tablename__)
    seen: set[str] = set()

    for info in record_cls.__columns__.values():
        column = info.column
        if not column or column in seen:
            continue
        seen.add(column)
        table.columns.append(dialect.column_def(info))

        if info.index or (column.endswith("_id") and not info.primary_key):
            table.indexes.append(
                IndexDef(index_name(table.name, column), [column], unique=info.unique)
            )

        fk = _foreign_key(table.name, info, known_tables)
        if fk is not None:
            table.foreign_keys.append(fk)

    return table


def _foreign_key(
    table: str,
    info: ColumnInfo,
    known_tables: Collection[str] | None,
) -> ForeignKeyDef | None:
    assert info.column is not None
    if info.foreign_key is not None:
        ref_table = info.foreign_key.table
        options = f"ON DELETE {info.foreign_key.ondelete}" if info.foreign_key.ondelete else ""
        return ForeignKeyDef(
            foreign_key_name(table, info.column, ref_table),
            info.column,
            ref_table,
            info.foreign_key.column,
            options,
        )

    if not info.column.endswith("_id") or info.primary_key:
        return None
    ref_table = info.column[: -len("_id")] + "s"
    if known_tables is not None and ref_table not in known_tables:
        return None
    return ForeignKeyDef(
        foreign_key_name(table, info.column, ref_table),
        info.column,
        ref_table,
        "id",
        "ON DELETE CASCADE",
    )


def sort_tables(tables: Sequence[TableDef]) -> list[TableDef]:
    """Order tables so that referenced tables come before their referrers.

    Cycles are broken by declaration order.
    """
    by_name = {t.name: t for t in tables}
    ordered: list[TableDef] = []
    done: set[str] = set()
    visiting: set[str] = set()

    def visit(table: TableDef) -> None:
        if table.name in done or table.name in visiting:
            return
        visiting.add(table.name)
        for fk in table.foreign_keys:
            dependency = by_name.get(fk.ref_table)
            if dependency is not None and dependency is not table:
                visit(dependency)
        visiting.discard(table.name)
        done.add(table.name)
        ordered.append(table)

    for table in tables:
        visit(table)
    return ordered


def slugify(text: str, max_length: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^a-zA-Z0-9]+", "_", text.lower()).strip("_")
    if len(slug) > max_length:
        slug = slug[:max_length].rstrip("_")
    return slug or "migration"


def build_migration(
    name: str,
    records: Sequence[type[Record]],
    dialect: Dialect,
    now: datetime | None = None,
) -> Migration:
    """Collect every table, index and drop step for a migration script.

    Args:
        name: Human readable migration name, slugified into the filename
        records: Record classes to include
        dialect: Dialect for column types
        now: Creation time (default: now)

    Returns:
        Migration named ``<YYYYmmddHHMMSS>_<slug>.sql``
    """
    now = now or datetime.now()
    known = {r.__tablename__ for r in records}
    tables = sort_tables([build_table(r, dialect, known) for r in records])

    migration = Migration(
        name=f"{now:%Y%m%d%H%M%S}_{slugify(name)}.sql",
        timestamp=now.strftime("%Y-%m-%d %H:%M:%S"),
    )
    for table in tables:
        migration.tables.append(table)
        for index in table.indexes:
            migration.index_order.append(
                IndexOrder(index.name, table.name, list(index.columns), index.unique)
            )
        migration.drop_order.insert(0, table.name)
    return migration
