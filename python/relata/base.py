"""Declarative base for records.

The metaclass builds the mapping table of each record class once, at class
creation: attribute -> ColumnInfo, column name -> attribute, and the
relation fields with their shape.
"""

from __future__ import annotations

import inspect
import sys
import types
import typing
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, ClassVar

from relata.fields import ColumnInfo, Mapped
from relata.sqltext import to_snake_case

if typing.TYPE_CHECKING:
    from relata.relations import Relation, RelationInfo

_BUILTIN_TYPES: dict[str, type] = {
    "int": int,
    "str": str,
    "float": float,
    "bool": bool,
    "bytes": bytes,
    "dict": dict,
    "datetime": datetime,
    "date": date,
    "time": time,
    "Decimal": Decimal,
}


@dataclass
class RelationField:
    """A record attribute that holds related records instead of a column."""

    name: str
    uselist: bool
    target: str | None
    declaration: RelationInfo | None = None


@dataclass
class _Shape:
    python_type: type | None
    type_name: str | None
    nullable: bool
    uselist: bool


class RecordMeta(type):
    """Metaclass for records that processes field definitions."""

    def __new__(
        mcs,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        **kwargs: Any,
    ) -> RecordMeta:
        cls = super().__new__(mcs, name, bases, namespace, **kwargs)

        # Skip processing for the Record class itself
        if not any(isinstance(b, RecordMeta) for b in bases):
            return cls

        from relata.relations import RelationInfo, register_record

        tablename = namespace.get("__tablename__") or to_snake_case(name) + "s"
        cls.__tablename__ = tablename  # type: ignore[attr-defined]

        columns: dict[str, ColumnInfo] = {}
        relation_fields: dict[str, RelationField] = {}

        # Inherited columns first, copied so subclasses never share state
        for base in reversed(cls.__mro__[1:]):
            for attr_name, info in getattr(base, "__columns__", {}).items():
                columns[attr_name] = _copy_column(info)
            relation_fields.update(getattr(base, "__relation_fields__", {}))

        module = sys.modules.get(cls.__module__)
        globalns = dict(getattr(module, "__dict__", {}))

        for attr_name, annotation in _class_annotations(cls).items():
            if attr_name.startswith("_"):
                continue
            value = namespace.get(attr_name)
            shape = _parse_annotation(annotation, globalns)
            if shape is None:
                continue

            if isinstance(value, RelationInfo):
                relation_fields[attr_name] = RelationField(
                    attr_name, shape.uselist, shape.type_name, declaration=value
                )
                delattr(cls, attr_name)
                continue

            if not isinstance(value, ColumnInfo) and _looks_like_relation(shape):
                relation_fields[attr_name] = RelationField(attr_name, shape.uselist, shape.type_name)
                continue

            if isinstance(value, ColumnInfo):
                info = value
                delattr(cls, attr_name)
            else:
                info = ColumnInfo(default=value)
                if attr_name in namespace:
                    delattr(cls, attr_name)

            info.name = attr_name
            info.column = info.column or attr_name
            info.python_type = shape.python_type
            info.nullable = shape.nullable and not (info.primary_key or info.not_null)
            if info.auto_increment is None:
                info.auto_increment = info.primary_key and shape.python_type is int
            columns[attr_name] = info

        cls.__columns__ = columns  # type: ignore[attr-defined]
        cls.__column_map__ = {  # type: ignore[attr-defined]
            info.column: attr_name for attr_name, info in columns.items()
        }
        cls.__relation_fields__ = relation_fields  # type: ignore[attr-defined]
        cls.__relations__ = dict(getattr(cls, "__relations__", {}))  # type: ignore[attr-defined]
        cls.__primary_key__ = next(  # type: ignore[attr-defined]
            (attr for attr, info in columns.items() if info.primary_key), None
        )

        register_record(cls)  # type: ignore[arg-type]
        return cls


def _copy_column(info: ColumnInfo) -> ColumnInfo:
    return ColumnInfo(**{**info.__dict__, "extra": list(info.extra)})


def _class_annotations(cls: type) -> dict[str, Any]:
    """Own annotations of ``cls``, as objects or as strings."""
    try:
        return dict(inspect.get_annotations(cls))
    except NameError:
        # Forward references on interpreters with lazily evaluated annotations
        import annotationlib

        return dict(annotationlib.get_annotations(cls, format=annotationlib.Format.STRING))


def _parse_annotation(annotation: Any, globalns: dict[str, Any]) -> _Shape | None:
    """Describe a ``Mapped[...]`` annotation, or return None for anything else."""
    if isinstance(annotation, str):
        try:
            annotation = eval(annotation, globalns, {"Mapped": Mapped})  # noqa: S307
        except (NameError, SyntaxError, TypeError, AttributeError):
            return _parse_annotation_text(annotation)

    if typing.get_origin(annotation) is not Mapped:
        return None
    args = typing.get_args(annotation)
    if not args:
        return _Shape(None, None, True, False)
    return _shape_of(args[0])


def _shape_of(inner: Any, nullable: bool = False) -> _Shape:
    if isinstance(inner, str):
        shape = _parse_inner_text(inner)
        shape.nullable = shape.nullable or nullable
        return shape
    if isinstance(inner, typing.ForwardRef):
        return _shape_of(inner.__forward_arg__, nullable)

    origin = typing.get_origin(inner)
    if origin is list:
        args = typing.get_args(inner)
        target = _shape_of(args[0]) if args else _Shape(None, None, False, False)
        return _Shape(list, target.type_name, nullable, True)
    if origin in (typing.Union, types.UnionType):
        args = [a for a in typing.get_args(inner) if a is not type(None)]
        has_none = len(args) < len(typing.get_args(inner))
        if len(args) == 1:
            return _shape_of(args[0], nullable or has_none)
        return _Shape(None, None, True, False)
    if origin is not None:
        return _Shape(origin if isinstance(origin, type) else None, None, nullable, False)
    if isinstance(inner, type):
        return _Shape(inner, inner.__name__, nullable, False)
    return _Shape(None, None, nullable, False)


def _parse_annotation_text(text: str) -> _Shape | None:
    text = text.strip()
    if not (text.startswith("Mapped[") and text.endswith("]")):
        return None
    return _parse_inner_text(text[len("Mapped["):-1])


def _parse_inner_text(text: str) -> _Shape:
    text = text.strip().strip("'\"")
    nullable = False
    if text.startswith("Optional[") and text.endswith("]"):
        text, nullable = text[len("Optional["):-1], True
    parts = [p.strip().strip("'\"") for p in text.split("|")]
    if "None" in parts:
        nullable = True
        parts = [p for p in parts if p != "None"]
    text = parts[0] if parts else ""

    if text.startswith(("list[", "List[")) and text.endswith("]"):
        inner = text[text.index("[") + 1:-1].strip().strip("'\"")
        return _Shape(list, inner, nullable, True)
    return _Shape(_BUILTIN_TYPES.get(text), text or None, nullable, False)


def _looks_like_relation(shape: _Shape) -> bool:
    if shape.uselist:
        return shape.type_name is not None and shape.type_name not in _BUILTIN_TYPES
    if shape.python_type is not None:
        return isinstance(shape.python_type, RecordMeta)
    return shape.type_name is not None and shape.type_name not in _BUILTIN_TYPES


class Record(metaclass=RecordMeta):
    """Base class for all records.

    Example:
        >>> class User(Record):
        ...     __tablename__ = "users"
        ...     id: Mapped[int] = mapped_column("id", "primary key,auto_increment")
        ...     name: Mapped[str] = mapped_column("name", "not null")
        ...     posts: Mapped[list["Post"]] = relationship()
    """

    __tablename__: ClassVar[str]
    __columns__: ClassVar[dict[str, ColumnInfo]]
    __column_map__: ClassVar[dict[str, str]]
    __relation_fields__: ClassVar[dict[str, RelationField]]
    __relations__: ClassVar[dict[str, Relation]]
    __primary_key__: ClassVar[str | None]

    def __init__(self, **kwargs: Any) -> None:
        """Initialize a record with the given column and relation values."""
        for key in kwargs:
            if key not in self.__columns__ and key not in self.__relation_fields__:
                raise TypeError(f"Unknown column or relation: {key}")

        for attr_name, info in self.__columns__.items():
            value = kwargs[attr_name] if attr_name in kwargs else info.python_default()
            object.__setattr__(self, attr_name, value)

        for attr_name, rel_field in self.__relation_fields__.items():
            if attr_name in kwargs:
                value = kwargs[attr_name]
            else:
                value = [] if rel_field.uselist else None
            object.__setattr__(self, attr_name, value)

    @classmethod
    def _blank(cls) -> Record:
        """Instance with every column and relation at its default, for decoding."""
        instance = object.__new__(cls)
        for attr_name, info in cls.__columns__.items():
            object.__setattr__(instance, attr_name, info.python_default())
        for attr_name, rel_field in cls.__relation_fields__.items():
            object.__setattr__(instance, attr_name, [] if rel_field.uselist else None)
        return instance

    def __repr__(self) -> str:
        pk = self.__primary_key__
        if pk and hasattr(self, pk):
            return f"<{self.__class__.__name__} {pk}={getattr(self, pk)!r}>"
        return f"<{self.__class__.__name__}>"

    def to_dict(self, include_relations: bool = False) -> dict[str, Any]:
        """Convert the record to a dictionary keyed by attribute name."""
        result = {name: getattr(self, name) for name in self.__columns__}

        if include_relations:
            for rel_name in self.__relation_fields__:
                value = getattr(self, rel_name)
                if isinstance(value, list):
                    result[rel_name] = [item.to_dict() for item in value]
                elif value is not None:
                    result[rel_name] = value.to_dict()
                else:
                    result[rel_name] = None

        return result
