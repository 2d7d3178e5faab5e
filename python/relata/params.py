"""Query parameters: WHERE conditions and the Params bundle."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from relata.base import Record
    from relata.dialects import Dialect

T = TypeVar("T", bound="Record")


class Op(StrEnum):
    EQ = "="
    NOT_EQ = "!="
    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    LIKE = "LIKE"
    IN = "IN"


class Logic(StrEnum):
    AND = "AND"
    OR = "OR"


@dataclass(frozen=True)
class Condition:
    """One WHERE predicate.

    ``logic`` joins this condition to the previous one; it is ignored on the
    first condition of a sequence.
    """

    field: str
    op: Op
    value: Any
    logic: Logic = Logic.AND


def eq(field: str, value: Any) -> Condition:
    return Condition(field, Op.EQ, value)


def not_eq(field: str, value: Any) -> Condition:
    return Condition(field, Op.NOT_EQ, value)


def gt(field: str, value: Any) -> Condition:
    return Condition(field, Op.GT, value)


def lt(field: str, value: Any) -> Condition:
    return Condition(field, Op.LT, value)


def gte(field: str, value: Any) -> Condition:
    return Condition(field, Op.GTE, value)


def lte(field: str, value: Any) -> Condition:
    return Condition(field, Op.LTE, value)


def like(field: str, pattern: str) -> Condition:
    return Condition(field, Op.LIKE, pattern)


def in_(field: str, *values: Any) -> Condition:
    """Membership test; a single list/tuple/set argument is expanded."""
    if len(values) == 1 and isinstance(values[0], list | tuple | set | frozenset):
        values = tuple(values[0])
    return Condition(field, Op.IN, list(values))


def where(*conditions: Condition) -> list[Condition]:
    """Conditions joined with AND.

    Example:
        >>> Params(where=where(eq("name", "Alice"), gt("age", 18)))
    """
    return and_(*conditions)


def and_(*conditions: Condition) -> list[Condition]:
    return [replace(c, logic=Logic.AND) for c in conditions]


def or_(*conditions: Condition) -> list[Condition]:
    """Conditions joined with OR.

    Combine with other groups by concatenation; the connective of a
    condition always applies between it and the one before it.

    Example:
        >>> where(eq("role", "admin")) + or_(eq("role", "owner"))
    """
    return [replace(c, logic=Logic.OR) for c in conditions]


@dataclass
class Params(Generic[T]):
    """Everything a facade call needs besides the record type.

    Attributes:
        data: Payload for create/update
        where: Filter conditions
        select: Field (or column) names to fetch; empty means all columns
        limit: Maximum number of rows, 0 for no limit
        offset: Rows to skip
        order_by: ``"name"`` or ``"name DESC"`` entries
        include: Relation name -> nested Params for eager loading
    """

    data: T | None = None
    where: list[Condition] = field(default_factory=list)
    select: set[str] = field(default_factory=set)
    limit: int = 0
    offset: int = 0
    order_by: list[str] = field(default_factory=list)
    include: dict[str, Params[Any]] = field(default_factory=dict)


def render_conditions(
    conditions: list[Condition],
    dialect: Dialect,
    start: int = 1,
) -> tuple[str, list[Any]]:
    """Render conditions as WHERE text with numbered placeholders.

    IN conditions get one placeholder per element; an empty IN list renders
    as the always-false ``1 = 0``.

    Args:
        conditions: Conditions in order
        dialect: Dialect providing placeholder syntax
        start: Number of the first placeholder

    Returns:
        Tuple of (condition text without the WHERE keyword, args)

    Example:
        >>> render_conditions(where(eq("id", 1)) + or_(in_("id", 2, 3)), PostgresDialect())
        ('id = $1 OR id IN ($2, $3)', [1, 2, 3])
    """
    parts: list[str] = []
    args: list[Any] = []
    position = start

    for i, condition in enumerate(conditions):
        if condition.op is Op.IN:
            values = list(condition.value or [])
            if values:
                marks = []
                for value in values:
                    marks.append(dialect.placeholder(position))
                    args.append(value)
                    position += 1
                text = f"{condition.field} IN ({', '.join(marks)})"
            else:
                text = "1 = 0"
        else:
            text = f"{condition.field} {condition.op} {dialect.placeholder(position)}"
            args.append(condition.value)
            position += 1

        if i > 0:
            parts.append(str(condition.logic))
        parts.append(text)

    return " ".join(parts), args
