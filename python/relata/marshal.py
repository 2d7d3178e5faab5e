"""Conversion between records and SQL arguments / result rows.

Both directions go through the mapping table the metaclass builds for each
record class (``__columns__`` and ``__column_map__``).
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, NamedTuple

import structlog

from relata.exceptions import MappingError
from relata.sqltext import singular

if TYPE_CHECKING:
    from relata.base import Record
    from relata.dialects import Dialect
    from relata.engine import QueryResult

logger = structlog.get_logger(__name__)

SKIP = object()
"""Returned by :func:`coerce` when a value cannot be stored in a field."""

_TRUE = frozenset({"1", "t", "T", "true", "TRUE", "True"})
_FALSE = frozenset({"0", "f", "F", "false", "FALSE", "False"})


class Assignment(NamedTuple):
    """One column of an INSERT or UPDATE: column name, placeholder, value."""

    column: str
    placeholder: str
    value: Any


def is_zero(value: Any) -> bool:
    """Whether ``value`` is the zero value of its type.

    None, False, numeric zero and empty strings/bytes/collections are zero.
    """
    if value is None:
        return True
    if isinstance(value, bool):
        return not value
    if isinstance(value, int | float | Decimal):
        return value == 0
    if isinstance(value, str | bytes | list | tuple | dict | set | frozenset):
        return len(value) == 0
    return False


def check_payload(record: Any, record_cls: type[Record]) -> None:
    """Raise MappingError unless ``record`` is an instance of ``record_cls``."""
    if not isinstance(record, record_cls):
        raise MappingError(
            f"expected {record_cls.__name__} payload, got {type(record).__name__}"
        )


def encode_create(record: Record, dialect: Dialect) -> list[Assignment]:
    """Columns, placeholders and values for inserting ``record``.

    Auto-increment columns are left to the database.
    """
    assignments: list[Assignment] = []
    for attr_name, info in type(record).__columns__.items():
        if info.auto_increment:
            continue
        assert info.column is not None
        position = len(assignments) + 1
        assignments.append(
            Assignment(info.column, dialect.placeholder(position), getattr(record, attr_name))
        )
    return assignments


def encode_update(record: Record, dialect: Dialect, start: int = 1) -> list[Assignment]:
    """Like :func:`encode_create`, but only for fields holding a non-zero value.

    Example:
        >>> encode_update(User(name="Bob"), PostgresDialect())
        [Assignment(column='name', placeholder='$1', value='Bob')]
    """
    assignments: list[Assignment] = []
    for attr_name, info in type(record).__columns__.items():
        if info.auto_increment:
            continue
        value = getattr(record, attr_name)
        if is_zero(value):
            continue
        assert info.column is not None
        position = start + len(assignments)
        assignments.append(Assignment(info.column, dialect.placeholder(position), value))
    return assignments


# ========== Decoding ==========


def _text(value: bytes | bytearray | memoryview | str) -> str:
    if isinstance(value, str):
        return value
    return bytes(value).decode("utf-8")


def coerce(value: Any, target: type | None) -> Any:
    """Convert a driver value for a field of type ``target``.

    Text and bytes are parsed into int, bool, float and str; SQLite's 0/1
    integers become bools. Returns :data:`SKIP` for combinations that are
    not understood.

    Raises:
        MappingError: If text cannot be parsed as the target type
    """
    if value is None or target is None or target is Any:
        return value

    textual = isinstance(value, str | bytes | bytearray | memoryview)
    try:
        if target is bool:
            if isinstance(value, bool):
                return value
            if isinstance(value, int):
                return bool(value)
            if textual:
                text = _text(value).strip()
                if text in _TRUE:
                    return True
                if text in _FALSE:
                    return False
                raise ValueError(f"invalid boolean {text!r}")
            return SKIP

        if target is int:
            if isinstance(value, int):
                return int(value)
            if isinstance(value, float | Decimal) and value == int(value):
                return int(value)
            if textual:
                return int(_text(value).strip())
            return SKIP

        if target is float:
            if isinstance(value, int | float | Decimal) and not isinstance(value, bool):
                return float(value)
            if textual:
                return float(_text(value).strip())
            return SKIP

        if target is str:
            if textual:
                return _text(value)
            return SKIP

        if target is bytes:
            if isinstance(value, bytes | bytearray | memoryview):
                return bytes(value)
            if isinstance(value, str):
                return value.encode("utf-8")
            return SKIP

        if isinstance(target, type) and isinstance(value, target):
            return value
        if target is Decimal and (textual or isinstance(value, int | float)):
            return Decimal(_text(value) if textual else str(value))
        if target in (datetime, date, time) and textual:
            return target.fromisoformat(_text(value))
    except (ValueError, OverflowError, InvalidOperation, UnicodeDecodeError) as exc:
        raise MappingError(f"cannot convert {value!r} to {target.__name__}: {exc}") from exc

    if isinstance(target, type):
        return SKIP
    return value


def _assign(record: Record, attr_name: str, value: Any) -> bool:
    info = type(record).__columns__[attr_name]
    coerced = coerce(value, info.python_type)
    if coerced is SKIP:
        logger.debug(
            "marshal.value_skipped",
            record=type(record).__name__,
            field=attr_name,
            value_type=type(value).__name__,
        )
        return False
    object.__setattr__(record, attr_name, coerced)
    return True


def _nested_prefixes(field_name: str, target: type[Record]) -> list[str]:
    candidates = [
        target.__tablename__,
        singular(target.__tablename__),
        field_name,
        singular(field_name),
    ]
    return list(dict.fromkeys(candidates))


def decode_row(
    record_cls: type[Record],
    columns: Sequence[str],
    values: Sequence[Any],
) -> Record:
    """Build a record from one result row.

    Matching order for each column: the exact column name, then
    ``<table>_<column>`` for the record's own table, then the text after the
    last underscore for fields not yet filled. Unmatched columns are
    ignored. Single relation fields are filled from ``<relation>_<column>``
    sub-columns and stay None when none are present.
    """
    from relata.relations import get_record

    record = record_cls._blank()
    column_map = record_cls.__column_map__
    own_prefix = record_cls.__tablename__ + "_"
    assigned: set[str] = set()
    unmatched: list[tuple[str, Any]] = []

    for name, value in zip(columns, values, strict=False):
        attr_name = column_map.get(name)
        if attr_name is None and name.startswith(own_prefix):
            attr_name = column_map.get(name[len(own_prefix):])
        if attr_name is None:
            unmatched.append((name, value))
            continue
        if _assign(record, attr_name, value):
            assigned.add(attr_name)

    for name, value in unmatched:
        attr_name = column_map.get(name.rsplit("_", 1)[-1]) if "_" in name else None
        if attr_name is None or attr_name in assigned:
            continue
        if _assign(record, attr_name, value):
            assigned.add(attr_name)

    for field_name, rel_field in record_cls.__relation_fields__.items():
        if rel_field.uselist or rel_field.target is None:
            continue
        target = get_record(rel_field.target)
        if target is None:
            continue
        nested = _decode_nested(
            target, _nested_prefixes(field_name, target), columns, values, column_map
        )
        object.__setattr__(record, field_name, nested)

    return record


def _decode_nested(
    target: type[Record],
    prefixes: list[str],
    columns: Sequence[str],
    values: Sequence[Any],
    own_columns: dict[str, str],
) -> Record | None:
    found: dict[str, Any] = {}
    for name, value in zip(columns, values, strict=False):
        if name in own_columns:
            continue
        for prefix in prefixes:
            if not name.startswith(prefix + "_"):
                continue
            attr_name = target.__column_map__.get(name[len(prefix) + 1:])
            if attr_name is not None and attr_name not in found:
                found[attr_name] = value
            break

    if not found:
        return None
    nested = target._blank()
    for attr_name, value in found.items():
        _assign(nested, attr_name, value)
    return nested


def decode_result(record_cls: type[Record], result: QueryResult) -> list[Record]:
    """Decode every row of ``result`` into ``record_cls`` instances."""
    return [decode_row(record_cls, result.columns, row) for row in result.rows]
