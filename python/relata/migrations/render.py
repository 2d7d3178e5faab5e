"""Render a Migration as a SQL script."""

from __future__ import annotations

from typing import TYPE_CHECKING

from relata.schema import IndexDef

if TYPE_CHECKING:
    from relata.dialects import Dialect
    from relata.schema import Migration


def render_migration(migration: Migration, dialect: Dialect) -> str:
    """Render the forward script with a commented-out rollback block.

    Example output:
        -- Migration: 20240101120000_init.sql
        -- Created at: 2024-01-01 12:00:00

        CREATE TABLE IF NOT EXISTS "users" (
          ...
        );

        -- Create indexes
        CREATE INDEX IF NOT EXISTS "idx_posts_user_id" ON "posts" ("user_id");

        -- Rollback SQL
        /*
        DROP TABLE IF EXISTS "posts";
        ...
        */
    """
    lines = [
        f"-- Migration: {migration.name}",
        f"-- Created at: {migration.timestamp}",
        "",
    ]
    for table in migration.tables:
        lines.append(dialect.create_table_sql(table) + ";")
        lines.append("")

    lines.append("-- Create indexes")
    for order in migration.index_order:
        index = IndexDef(order.name, order.columns, order.unique)
        lines.append(dialect.create_index_sql(order.table, index) + ";")
    lines.append("")

    lines.append("-- Rollback SQL")
    lines.append("/*")
    for table_name in migration.drop_order:
        lines.append(f"DROP TABLE IF EXISTS {dialect.quote(table_name)};")
    if migration.index_order:
        lines.append("")
    for order in migration.index_order:
        lines.append(f"DROP INDEX IF EXISTS {dialect.quote(order.name)};")
    lines.append("*/")

    return "\n".join(lines) + "\n"

