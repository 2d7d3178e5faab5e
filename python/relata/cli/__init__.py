"""relata CLI - push record schemas to a database or write migration scripts."""

from __future__ import annotations

import argparse
import asyncio
import importlib
from typing import Any

from relata.base import Record
from relata.config import RelataConfig
from relata.dialects import Driver, get_dialect
from relata.engine import create_engine
from relata.exceptions import RelataError
from relata.logging import configure_logging
from relata.migrations import SchemaManager, write_migration


def main(args: list[str] | None = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Command-line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success)
    """
    parser = argparse.ArgumentParser(
        prog="relata",
        description="relata - record mapping, query building and schema tooling",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    push_parser = subparsers.add_parser(
        "push", help="Create missing tables, columns and foreign keys"
    )
    _add_common_options(push_parser)

    migrate_parser = subparsers.add_parser(
        "migrate", help="Write a SQL migration script for the record classes"
    )
    migrate_parser.add_argument("name", help="Migration name")
    migrate_parser.add_argument(
        "-d", "--directory",
        help="Directory for migration files (default: from config, else ./migrations)",
    )
    _add_common_options(migrate_parser)

    parsed = parser.parse_args(args)

    if parsed.command is None:
        parser.print_help()
        return 1

    try:
        config = _load_config(parsed)
    except (RelataError, FileNotFoundError) as e:
        print(f"Error: {e}")
        return 1

    configure_logging("DEBUG" if parsed.verbose else config.log_level)

    records = _load_models(parsed.models or config.models)
    if not records:
        print("Error: No records found. Use --models to specify the models module.")
        return 1

    try:
        if parsed.command == "push":
            return asyncio.run(_push(parsed, config, records))
        return _migrate(parsed, config, records)
    except RelataError as e:
        print(f"Error: {e}")
        return 1


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--url",
        help="Database URL (overrides config)",
    )
    parser.add_argument(
        "-m", "--models",
        help="Python module containing record classes (e.g., 'app.models')",
    )
    parser.add_argument(
        "-c", "--config",
        help="Path to relata.ini",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log every statement",
    )


def _load_config(args: Any) -> RelataConfig:
    """Config from --config, else relata.ini found upwards, else the environment."""
    if args.config:
        return RelataConfig.from_ini(args.config)
    return RelataConfig.auto_detect() or RelataConfig.from_env()


async def _push(args: Any, config: RelataConfig, records: list[type[Record]]) -> int:
    url = config.get_url(args.url)
    pool = await create_engine(
        url,
        min_connections=config.min_connections,
        max_connections=config.max_connections,
    )
    try:
        statements = await SchemaManager(pool, records).push()
    finally:
        await pool.close()

    if not statements:
        print("Schema is up to date.")
        return 0
    print(f"Applied {len(statements)} statement(s):")
    for sql in statements:
        print(f"  {sql.splitlines()[0]}")
    return 0


def _migrate(args: Any, config: RelataConfig, records: list[type[Record]]) -> int:
    url = config.get_url(args.url)
    dialect = get_dialect(Driver.from_url(url))
    directory = args.directory or config.migrations_dir
    path = write_migration(args.name, records, dialect, directory)
    print(f"Created migration: {path}")
    print(f"  {len(records)} table(s)")
    return 0


def _load_models(models_path: str | None) -> list[type[Record]]:
    """Load record classes from a Python module path, in definition order.

    Args:
        models_path: Module path like 'app.models'

    Returns:
        List of record classes
    """
    if not models_path:
        return []

    try:
        module = importlib.import_module(models_path)
    except ImportError as e:
        print(f"Error importing models: {e}")
        return []

    records = []
    for obj in vars(module).values():
        if (
            isinstance(obj, type)
            and issubclass(obj, Record)
            and obj is not Record
            and hasattr(obj, "__tablename__")
        ):
            records.append(obj)
    return records
