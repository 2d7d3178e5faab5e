"""Exception hierarchy for relata.

Statement and configuration failures are raised; best-effort resolution
(missing relations, unmatched columns) is logged and skipped instead.
"""

from __future__ import annotations

from typing import Any


class RelataError(Exception):
    """Base class for every error raised by relata."""


class ConfigurationError(RelataError, ValueError):
    """Unknown driver, malformed URL or missing configuration."""


class StatementError(RelataError):
    """A statement failed inside the database driver.

    Args:
        message: Human readable context, e.g. ``"update users"``
        sql: The SQL text that was executed, when known
        params: The bound parameters, when known
    """

    def __init__(self, message: str, *, sql: str | None = None, params: Any = None) -> None:
        super().__init__(message)
        self.sql = sql
        self.params = params


class RelationLoadError(StatementError):
    """Eager loading of a named relation failed."""


class MappingError(RelataError, TypeError):
    """A record could not be encoded or decoded."""


class MissingWhereError(RelataError, ValueError):
    """Update or Delete was called without any WHERE condition."""


class TransactionError(RelataError):
    """A transaction was used after it finished, or failed to commit."""


class ReturningEmulationError(TransactionError):
    """RETURNING could not be emulated for the statement."""


class RollbackError(TransactionError):
    """Rolling back failed after another error.

    ``original`` holds the error that triggered the rollback; the rollback
    failure itself is the ``__cause__``.
    """

    def __init__(self, message: str, original: BaseException) -> None:
        super().__init__(f"{message}: {original}")
        self.original = original


class SchemaError(RelataError):
    """A schema change cannot be expressed for the active dialect."""
