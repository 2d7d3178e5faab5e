"""relata - async record mapping, query building and schema tooling for SQL databases."""

from __future__ import annotations

from relata.base import Record
from relata.config import RelataConfig
from relata.dialects import (
    Dialect,
    Driver,
    MySQLDialect,
    PostgresDialect,
    SQLiteDialect,
    get_dialect,
)
from relata.engine import (
    ConnectionPool,
    MySQLPool,
    PostgresPool,
    QueryResult,
    SQLitePool,
    Transaction,
    create_engine,
)
from relata.exceptions import (
    ConfigurationError,
    MappingError,
    MissingWhereError,
    RelataError,
    RelationLoadError,
    ReturningEmulationError,
    RollbackError,
    SchemaError,
    StatementError,
    TransactionError,
)
from relata.fields import ForeignKey, Mapped, mapped_column
from relata.logging import configure_logging
from relata.model import DB, Model
from relata.params import (
    Condition,
    Logic,
    Op,
    Params,
    and_,
    eq,
    gt,
    gte,
    in_,
    like,
    lt,
    lte,
    not_eq,
    or_,
    where,
)
from relata.query import QueryBuilder, build_select
from relata.relations import (
    Relation,
    RelationKind,
    RelationLoader,
    register_relation,
    relationship,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "create_engine",
    "ConnectionPool",
    "SQLitePool",
    "PostgresPool",
    "MySQLPool",
    "Transaction",
    "QueryResult",
    "DB",
    "Model",
    # Record definition
    "Record",
    "Mapped",
    "mapped_column",
    "ForeignKey",
    "relationship",
    "Relation",
    "RelationKind",
    "register_relation",
    "RelationLoader",
    # Parameters
    "Params",
    "Condition",
    "Op",
    "Logic",
    "eq",
    "not_eq",
    "gt",
    "lt",
    "gte",
    "lte",
    "like",
    "in_",
    "where",
    "and_",
    "or_",
    # Query building
    "QueryBuilder",
    "build_select",
    # Dialects
    "Driver",
    "Dialect",
    "PostgresDialect",
    "MySQLDialect",
    "SQLiteDialect",
    "get_dialect",
    # Errors
    "RelataError",
    "ConfigurationError",
    "StatementError",
    "RelationLoadError",
    "MappingError",
    "MissingWhereError",
    "TransactionError",
    "ReturningEmulationError",
    "RollbackError",
    "SchemaError",
    # Setup
    "RelataConfig",
    "configure_logging",
]
