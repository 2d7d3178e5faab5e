"""Column and field definitions for records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from relata.sqltext import split_fields

T = TypeVar("T")


# Type alias for Mapped - indicates a database column
class Mapped(Generic[T]):
    """Type annotation wrapper indicating a database-mapped column.

    Only ``Mapped[...]`` attributes take part in generated SQL; plain class
    attributes are ignored.

    Example:
        >>> class User(Record):
        ...     id: Mapped[int] = mapped_column("id", "primary key,auto_increment")
        ...     name: Mapped[str] = mapped_column("name", "not null,length:100")
        ...     age: Mapped[int | None]
    """

    pass


@dataclass
class ForeignKey:
    """Defines a foreign key reference to another table.

    Args:
        target: The target column in format "table.column"
        ondelete: Action on delete (CASCADE, SET NULL, RESTRICT, NO ACTION)

    Example:
        >>> class Post(Record):
        ...     user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    """

    target: str
    ondelete: str | None = "CASCADE"

    @property
    def table(self) -> str:
        """Get the target table name."""
        return self.target.split(".")[0]

    @property
    def column(self) -> str:
        """Get the target column name."""
        parts = self.target.split(".")
        return parts[1] if len(parts) > 1 else "id"


@dataclass
class ColumnInfo:
    """Stores metadata about a database column.

    ``name`` is the Python attribute, ``column`` the SQL column name.
    """

    name: str | None = None
    column: str | None = None
    python_type: type | None = None
    nullable: bool = True
    primary_key: bool = False
    auto_increment: bool | None = None
    not_null: bool = False
    unique: bool = False
    index: bool = False
    default: Any = None
    server_default: str | None = None
    check: str | None = None
    type_: str | None = None
    length: int | None = None
    foreign_key: ForeignKey | None = None
    options: str = ""
    extra: list[str] = field(default_factory=list)

    def python_default(self) -> Any:
        """Value a fresh instance gets when the column is not supplied."""
        if callable(self.default):
            return self.default()
        return self.default


def parse_constraints(options: str) -> dict[str, Any]:
    """Parse a constraint annotation string into keyword flags.

    Recognised clauses: ``primary key``, ``auto_increment``, ``not null``,
    ``unique``, ``index``, ``default:<value>``, ``check:(<expr>)``,
    ``type:<sqltype>`` and ``length:<n>``. Anything else is collected under
    ``"extra"`` and otherwise ignored.

    Example:
        >>> parse_constraints("primary key,auto_increment")
        {'primary_key': True, 'auto_increment': True}
        >>> parse_constraints("default:0,check:(age >= 0)")
        {'server_default': '0', 'check': 'age >= 0'}
    """
    flags: dict[str, Any] = {}
    extra: list[str] = []

    for part in split_fields(options):
        if ":" in part:
            key, _, value = part.partition(":")
            key = key.strip().lower()
            value = value.strip()
            if key == "default":
                flags["server_default"] = value
            elif key == "check":
                if value.startswith("(") and value.endswith(")"):
                    value = value[1:-1]
                flags["check"] = value.strip()
            elif key == "type":
                flags["type_"] = value
            elif key == "length":
                try:
                    flags["length"] = int(value)
                except ValueError:
                    extra.append(part)
            else:
                extra.append(part)
            continue

        clause = " ".join(part.lower().split())
        if clause == "primary key":
            flags["primary_key"] = True
        elif clause == "auto_increment":
            flags["auto_increment"] = True
        elif clause == "not null":
            flags["not_null"] = True
        elif clause == "unique":
            flags["unique"] = True
        elif clause == "index":
            flags["index"] = True
        else:
            extra.append(part)

    if extra:
        flags["extra"] = extra
    return flags


def mapped_column(
    name_or_fk: str | ForeignKey | None = None,
    options: str = "",
    /,
    *,
    primary_key: bool | None = None,
    auto_increment: bool | None = None,
    not_null: bool | None = None,
    unique: bool | None = None,
    index: bool | None = None,
    default: Any = None,
    length: int | None = None,
    type_: str | None = None,
    foreign_key: ForeignKey | None = None,
) -> Any:
    """Define a database column.

    Args:
        name_or_fk: SQL column name, or a ForeignKey (column name then
            defaults to the attribute name)
        options: Constraint annotation string, e.g. ``"primary key,auto_increment"``
        primary_key: Whether this is a primary key column
        auto_increment: Whether the database generates the value; integer
            primary keys auto-increment unless this is False
        not_null: Emit NOT NULL in DDL
        unique: Whether values must be unique
        index: Whether to create an index on this column
        default: Python-side default for new instances (can be callable)
        length: Length for string columns
        type_: Explicit SQL type
        foreign_key: Foreign key reference when ``name_or_fk`` is a name

    Returns:
        A ColumnInfo descriptor

    Example:
        >>> id: Mapped[int] = mapped_column("id", "primary key,auto_increment")
        >>> email: Mapped[str] = mapped_column("email", "unique,not null")
        >>> user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    """
    column = None
    if isinstance(name_or_fk, ForeignKey):
        foreign_key = name_or_fk
    elif name_or_fk is not None:
        column = name_or_fk

    flags = parse_constraints(options)
    explicit = {
        "primary_key": primary_key,
        "auto_increment": auto_increment,
        "not_null": not_null,
        "unique": unique,
        "index": index,
        "length": length,
        "type_": type_,
    }
    flags.update({k: v for k, v in explicit.items() if v is not None})

    info = ColumnInfo(
        column=column,
        default=default,
        foreign_key=foreign_key,
        options=options,
        **flags,
    )
    if info.primary_key or info.not_null:
        info.nullable = False
    return info
