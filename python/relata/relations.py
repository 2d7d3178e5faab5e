"""Relation descriptors and the batched relation loader."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from relata.exceptions import ConfigurationError, MappingError, RelationLoadError, StatementError
from relata.marshal import decode_result
from relata.params import Params, in_
from relata.sqltext import singular

if TYPE_CHECKING:
    from relata.base import Record, RelationField
    from relata.engine import Executor


# Global record registry - maps table names and class names to record classes
_record_registry: dict[str, type[Record]] = {}


def register_record(record_cls: type[Record]) -> None:
    """Register a record class for relation resolution."""
    _record_registry[record_cls.__tablename__] = record_cls
    _record_registry[record_cls.__name__] = record_cls


def get_record(name: str) -> type[Record] | None:
    """Get a record class by table name or class name."""
    return _record_registry.get(name)


def primary_key_column(record_cls: type[Record]) -> str:
    """SQL column of the primary key, ``id`` when none is declared."""
    pk = record_cls.__primary_key__
    if pk is None:
        return "id"
    return record_cls.__columns__[pk].column or pk


def required_columns(record_cls: type[Record], params: Params[Any]) -> list[str]:
    """Key columns the loader needs for ``params.include`` under a narrow select."""
    if not params.select or not params.include:
        return []
    required = [primary_key_column(record_cls)]
    for name in params.include:
        relation = get_relation(record_cls, name)
        if relation is None:
            continue
        if relation.kind is RelationKind.BELONGS_TO:
            required.append(relation.foreign_key)
        else:
            required.append(relation.references)
    return required


class RelationKind(StrEnum):
    HAS_ONE = "has one"
    HAS_MANY = "has many"
    BELONGS_TO = "belongs to"


@dataclass(frozen=True)
class Relation:
    """Typed relation descriptor.

    For HAS_ONE and HAS_MANY, ``foreign_key`` is a column of the target
    table and ``references`` a column of the parent. For BELONGS_TO it is
    the other way round: ``foreign_key`` lives on the parent and
    ``references`` is the target's key.
    """

    name: str
    kind: RelationKind
    target: type[Record] | str
    foreign_key: str
    references: str = "id"

    def target_record(self) -> type[Record] | None:
        if isinstance(self.target, str):
            return get_record(self.target)
        return self.target


@dataclass
class RelationInfo:
    """Declaration made with :func:`relationship`, resolved on first use."""

    kind: RelationKind | None = None
    foreign_key: str | None = None
    references: str | None = None

    def resolve(self, owner: type[Record], rel_field: RelationField) -> Relation | None:
        """Build the descriptor once the target class exists."""
        target = get_record(rel_field.target) if rel_field.target else None
        if target is None:
            return None

        kind = self.kind
        if kind is None:
            if rel_field.uselist:
                kind = RelationKind.HAS_MANY
            elif (self.foreign_key and self.foreign_key in owner.__column_map__) or _find_fk(
                owner, target
            ):
                kind = RelationKind.BELONGS_TO
            else:
                kind = RelationKind.HAS_ONE

        if kind is RelationKind.BELONGS_TO:
            foreign_key = (
                self.foreign_key
                or _find_fk(owner, target)
                or f"{singular(target.__tablename__)}_id"
            )
            references = self.references or primary_key_column(target)
        else:
            foreign_key = (
                self.foreign_key
                or _find_fk(target, owner)
                or f"{singular(owner.__tablename__)}_id"
            )
            references = self.references or primary_key_column(owner)

        return Relation(rel_field.name, kind, target, foreign_key, references)


def _find_fk(holder: type[Record], referenced: type[Record]) -> str | None:
    """Column of ``holder`` that points at ``referenced``."""
    for info in holder.__columns__.values():
        if info.foreign_key and info.foreign_key.table == referenced.__tablename__:
            return info.column
    conventional = f"{singular(referenced.__tablename__)}_id"
    if conventional in holder.__column_map__:
        return conventional
    return None


def relationship(
    kind: RelationKind | None = None,
    *,
    foreign_key: str | None = None,
    references: str | None = None,
) -> Any:
    """Declare a relation field.

    The target comes from the annotation. When ``kind`` is omitted, a list
    annotation means HAS_MANY; a single record is BELONGS_TO if the parent
    holds a foreign key to the target, otherwise HAS_ONE.

    Args:
        kind: Relation cardinality
        foreign_key: Foreign key column (on the target, or on the parent for
            BELONGS_TO)
        references: Referenced column (on the parent, or on the target for
            BELONGS_TO)

    Returns:
        A RelationInfo declaration

    Example:
        >>> class User(Record):
        ...     posts: Mapped[list["Post"]] = relationship()
        ...     profile: Mapped["Profile | None"] = relationship(RelationKind.HAS_ONE)
        ...
        >>> class Post(Record):
        ...     user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
        ...     user: Mapped["User | None"] = relationship()
    """
    return RelationInfo(kind=kind, foreign_key=foreign_key, references=references)


def register_relation(record_cls: type[Record], relation: Relation) -> None:
    """Register a relation descriptor on ``record_cls``.

    Raises:
        ConfigurationError: If a different relation is already registered
            under the same name
    """
    existing = record_cls.__relations__.get(relation.name)
    if existing is not None and existing != relation:
        raise ConfigurationError(
            f"relation {relation.name!r} already registered on {record_cls.__name__}"
        )
    record_cls.__relations__[relation.name] = relation


def get_relation(record_cls: type[Record], name: str) -> Relation | None:
    """Look up a relation by name, resolving declared relation fields lazily."""
    relation = record_cls.__relations__.get(name)
    if relation is not None:
        return relation
    rel_field = record_cls.__relation_fields__.get(name)
    if rel_field is None or rel_field.declaration is None:
        return None
    relation = rel_field.declaration.resolve(record_cls, rel_field)
    if relation is not None:
        record_cls.__relations__[name] = relation
    return relation


class RelationLoader:
    """Eager loads relations onto an already fetched list of parents.

    Each requested relation costs exactly one query, whatever the number of
    parents. Relations are loaded one after another on the given executor;
    pass a Transaction to read every relation from the same snapshot.

    Example:
        >>> loader = RelationLoader(pool)
        >>> await loader.load(User, users, {"posts": Params(where=where(eq("published", True)))})
    """

    def __init__(self, executor: Executor, *, logger: Any = None) -> None:
        self._executor = executor
        self._logger = logger or structlog.get_logger(__name__)

    async def load(
        self,
        record_cls: type[Record],
        parents: list[Record],
        include: dict[str, Params[Any]],
    ) -> None:
        """Load every relation named in ``include``, in order.

        Raises:
            RelationLoadError: On the first failing relation query
        """
        for name, nested in include.items():
            await self.load_relation(record_cls, parents, name, nested or Params())

    async def load_relation(
        self,
        record_cls: type[Record],
        parents: list[Record],
        name: str,
        nested: Params[Any],
    ) -> None:
        relation = get_relation(record_cls, name)
        if relation is None:
            self._skip(record_cls, name, "relation not registered")
            return
        if not parents:
            return

        rel_field = record_cls.__relation_fields__.get(relation.name)
        wants_list = relation.kind is RelationKind.HAS_MANY
        if rel_field is None or rel_field.uselist != wants_list:
            self._skip(record_cls, name, "no matching relation field")
            return

        target = relation.target_record()
        if target is None:
            self._skip(record_cls, name, "target record not found")
            return

        if relation.kind is RelationKind.BELONGS_TO:
            await self._load_belongs_to(record_cls, parents, relation, target, nested)
        else:
            await self._load_has(record_cls, parents, relation, target, nested)

    async def _load_has(
        self,
        record_cls: type[Record],
        parents: list[Record],
        relation: Relation,
        target: type[Record],
        nested: Params[Any],
    ) -> None:
        ref_attr = record_cls.__column_map__.get(relation.references)
        fk_attr = target.__column_map__.get(relation.foreign_key)
        if ref_attr is None or fk_attr is None:
            self._skip(record_cls, relation.name, "reference field missing")
            return

        ids = [v for v in (getattr(p, ref_attr, None) for p in parents) if v is not None]
        if not ids:
            return

        children = await self._fetch(relation, target, nested, relation.foreign_key, ids)

        if relation.kind is RelationKind.HAS_MANY:
            groups: dict[Any, list[Record]] = {}
            for child in children:
                groups.setdefault(getattr(child, fk_attr), []).append(child)
            for parent in parents:
                key = getattr(parent, ref_attr, None)
                setattr(parent, relation.name, list(groups.get(key, [])))
            return

        first: dict[Any, Record] = {}
        for child in children:
            first.setdefault(getattr(child, fk_attr), child)
        for parent in parents:
            key = getattr(parent, ref_attr, None)
            if key in first:
                setattr(parent, relation.name, first[key])

    async def _load_belongs_to(
        self,
        record_cls: type[Record],
        parents: list[Record],
        relation: Relation,
        target: type[Record],
        nested: Params[Any],
    ) -> None:
        fk_attr = record_cls.__column_map__.get(relation.foreign_key)
        ref_attr = target.__column_map__.get(relation.references)
        if fk_attr is None or ref_attr is None:
            self._skip(record_cls, relation.name, "reference field missing")
            return

        ids = list(
            dict.fromkeys(
                v for v in (getattr(p, fk_attr, None) for p in parents) if v is not None
            )
        )
        if not ids:
            return

        rows = await self._fetch(relation, target, nested, relation.references, ids)
        by_key = {getattr(row, ref_attr): row for row in rows}
        for parent in parents:
            key = getattr(parent, fk_attr, None)
            if key in by_key:
                setattr(parent, relation.name, by_key[key])

    async def _fetch(
        self,
        relation: Relation,
        target: type[Record],
        nested: Params[Any],
        key_column: str,
        ids: list[Any],
    ) -> list[Record]:
        from relata.query import build_select

        sql, args = build_select(
            self._executor.dialect,
            target,
            nested,
            scope=in_(key_column, ids),
            required=(key_column, *required_columns(target, nested)),
        )
        self._logger.debug(
            "relation.load",
            relation=relation.name,
            kind=str(relation.kind),
            sql=sql,
            args=args,
        )
        try:
            result = await self._executor.execute(sql, args)
            children = decode_result(target, result)
        except (StatementError, MappingError) as exc:
            raise RelationLoadError(
                f"load {relation.kind} relation {relation.name}: {exc}", sql=sql, params=args
            ) from exc

        if nested.include:
            await self.load(target, children, nested.include)
        return children

    def _skip(self, record_cls: type[Record], name: str, reason: str) -> None:
        self._logger.debug(
            "relation.skipped", record=record_cls.__name__, relation=name, reason=reason
        )
