"""Schema tool: build table descriptions from records, diff, push and script them."""

from __future__ import annotations

from relata.migrations.builder import build_migration, build_table, sort_tables
from relata.migrations.manager import SchemaManager, types_match, write_migration
from relata.migrations.render import render_migration

__all__ = [
    "SchemaManager",
    "build_migration",
    "build_table",
    "render_migration",
    "sort_tables",
    "types_match",
    "write_migration",
]
