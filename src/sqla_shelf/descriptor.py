from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Final, Literal, get_args

from .datastructures import frozendict
from .errors import ConfigurationError, UnknownMorphTypeError
from .tools import foreign_key_name


if TYPE_CHECKING:
    import sqlalchemy as sa

    from .model import Model
    from .registry import Registry


RelationKind = Literal[
    "has_one",
    "has_many",
    "belongs_to",
    "belongs_to_many",
    "morph_one",
    "morph_many",
    "morph_to",
]

RELATION_KINDS: Final[frozenset[str]] = frozenset(get_args(RelationKind))
_SINGLE_KINDS: Final[frozenset[str]] = frozenset({"has_one", "belongs_to", "morph_one", "morph_to"})
_INVERSE_KINDS: Final[frozenset[str]] = frozenset({"belongs_to", "morph_to"})
_MORPH_KINDS: Final[frozenset[str]] = frozenset({"morph_one", "morph_many"})
_THROUGH_KINDS: Final[frozenset[str]] = frozenset(
    {"has_one", "has_many", "belongs_to", "belongs_to_many"}
)


@dataclass(slots=True, frozen=True)
class ThroughDescriptor:
    """The interim entity a relation is routed through."""

    target: type[Model]
    table_name: str
    id_attribute: str
    foreign_key: str


@dataclass(slots=True, frozen=True)
class RelationDescriptor:
    """Everything needed to constrain and pair one declared association.

    Built by ``RelationDescriptor.create`` (which fills in the conventional
    key names) once per relation-accessor call, and never mutated:
    ``through`` and ``route`` return new descriptors.
    """

    kind: RelationKind
    parent: type[Model]
    target: type[Model] | None
    foreign_key: str
    other_key: str | None = None
    join_table_name: str | None = None
    morph_name: str | None = None
    morph_key: str | None = None
    morph_value: str | None = None
    candidates: frozendict[str, type[Model]] = field(default_factory=frozendict)
    interim: ThroughDescriptor | None = None

    @classmethod
    def create(
        cls,
        kind: RelationKind,
        parent: type[Model],
        target: type[Model] | str | None,
        *,
        foreign_key: str | None = None,
        other_key: str | None = None,
        join_table_name: str | None = None,
        morph_name: str | None = None,
        column_names: Sequence[str] | None = None,
        morph_value: str | None = None,
        candidates: Iterable[type[Model] | str] | Mapping[str, type[Model] | str] = (),
    ) -> RelationDescriptor:
        """Validate a relation declaration and compute its default key names.

        Args:
            kind: Relation kind.
            parent: Declaring model class.
            target: Related model class or registry name (``None`` for ``morph_to``).
            foreign_key: Explicit foreign key column.
            other_key: Explicit target-side key on the join table (``belongs_to_many``).
            join_table_name: Explicit join table (``belongs_to_many`` only).
            morph_name: Polymorphic name, required for the morph kinds.
            column_names: Custom ``(type_column, id_column)`` for the morph kinds.
            morph_value: Discriminator stored for this parent (``morph_one``/``morph_many``).
            candidates: ``morph_to`` targets, as classes (keyed by table name) or
                an explicit ``{discriminator: class}`` mapping.

        Raises:
            ConfigurationError: On any missing or inconsistent piece.
        """
        if kind not in RELATION_KINDS:
            raise ConfigurationError(f"Unknown relation kind {kind!r}")

        shelf = parent.shelf
        singularize = shelf.singularize
        parent_table = parent.__tablename__

        if column_names is not None and len(column_names) != 2:  # noqa: PLR2004
            raise ConfigurationError(
                f"`column_names` must be a (type_column, id_column) pair, got {column_names!r}"
            )
        if join_table_name is not None and kind != "belongs_to_many":
            raise ConfigurationError("`join_table_name` is only valid for belongs_to_many")

        if kind == "morph_to":
            if not morph_name:
                raise ConfigurationError("The `morph_to` name must be specified.")
            resolved = _resolve_candidates(shelf.registry, candidates)
            if not resolved:
                raise ConfigurationError(
                    f"`morph_to` {morph_name!r} needs at least one candidate target"
                )
            return cls(
                kind=kind,
                parent=parent,
                target=None,
                foreign_key=foreign_key
                or (column_names[1] if column_names else f"{morph_name}_id"),
                morph_name=morph_name,
                morph_key=column_names[0] if column_names else f"{morph_name}_type",
                candidates=resolved,
            )

        if target is None:
            raise ConfigurationError(f"A target model is required for {kind}")
        target_cls = shelf.registry.resolve(target)
        target_table = target_cls.__tablename__

        if kind in _MORPH_KINDS:
            if not morph_name:
                raise ConfigurationError("The polymorphic `name` and `target` are required.")
            return cls(
                kind=kind,
                parent=parent,
                target=target_cls,
                foreign_key=foreign_key
                or (column_names[1] if column_names else f"{morph_name}_id"),
                morph_name=morph_name,
                morph_key=column_names[0] if column_names else f"{morph_name}_type",
                morph_value=morph_value or parent_table,
            )

        if kind == "belongs_to":
            key = foreign_key or foreign_key_name(
                target_table, target_cls.id_attribute, singularize
            )
        else:
            key = foreign_key or foreign_key_name(parent_table, parent.id_attribute, singularize)

        if kind != "belongs_to_many":
            return cls(kind=kind, parent=parent, target=target_cls, foreign_key=key)

        other = other_key or foreign_key_name(target_table, target_cls.id_attribute, singularize)
        if other == key:
            raise ConfigurationError(
                f"belongs_to_many {parent.__name__} -> {target_cls.__name__}: "
                f"foreign key and other key are both {key!r}"
            )

        return cls(
            kind=kind,
            parent=parent,
            target=target_cls,
            foreign_key=key,
            other_key=other,
            join_table_name=join_table_name or "_".join(sorted((parent_table, target_table))),
        )

    def through(
        self,
        interim: type[Model] | str,
        *,
        through_foreign_key: str | None = None,
        other_key: str | None = None,
    ) -> RelationDescriptor:
        """Route this relation through an interim model.

        Args:
            interim: Interim model class or registry name.
            through_foreign_key: Key pointing at the interim row, on the target
                (has_one/has_many) or on this model (belongs_to).
            other_key: Key on the interim table pointing at the owner
                (has_one/has_many) or at the target (belongs_to); the
                target-side join key for belongs_to_many.

        Raises:
            ConfigurationError: For kinds other than has_one, has_many,
                belongs_to and belongs_to_many.
        """
        if self.kind not in _THROUGH_KINDS:
            raise ConfigurationError(
                "`through` is only chainable from has_one, belongs_to, has_many, "
                f"or belongs_to_many (got {self.kind})"
            )

        shelf = self.parent.shelf
        interim_cls = shelf.registry.resolve(interim)
        table_name = interim_cls.__tablename__
        if self.kind == "belongs_to_many":
            keys = {"other_key": other_key or self.other_key}
        else:
            keys = {"foreign_key": other_key or self.foreign_key}

        return replace(
            self,
            **keys,
            interim=ThroughDescriptor(
                target=interim_cls,
                table_name=table_name,
                id_attribute=interim_cls.id_attribute,
                foreign_key=through_foreign_key
                or foreign_key_name(table_name, interim_cls.id_attribute, shelf.singularize),
            ),
        )

    def route(self, discriminator: str | None) -> RelationDescriptor:
        """Pick the ``morph_to`` target registered for *discriminator*.

        ``None`` leaves the descriptor unrouted (``target is None``).

        Raises:
            UnknownMorphTypeError: If *discriminator* has no candidate.
        """
        if self.kind != "morph_to" or discriminator is None:
            return self

        try:
            target = self.candidates[discriminator]
        except KeyError:
            raise UnknownMorphTypeError(
                f"The target polymorphic model for {self.morph_name!r} was not found: "
                f"{discriminator!r} is not one of {sorted(self.candidates)}"
            ) from None

        return replace(self, target=target, morph_value=discriminator)

    @property
    def is_single(self) -> bool:
        return self.kind in _SINGLE_KINDS

    @property
    def is_inverse(self) -> bool:
        return self.kind in _INVERSE_KINDS

    @property
    def is_morph(self) -> bool:
        return self.kind in _MORPH_KINDS

    @property
    def is_through(self) -> bool:
        return self.interim is not None

    @property
    def is_joined(self) -> bool:
        return self.kind == "belongs_to_many" or self.interim is not None

    @property
    def parent_id_attribute(self) -> str:
        return self.parent.id_attribute

    @property
    def target_id_attribute(self) -> str:
        if self.target is None:
            raise ConfigurationError(f"`morph_to` {self.morph_name!r} has not been routed")

        return self.target.id_attribute

    @property
    def join_table_name_resolved(self) -> str | None:
        """Name of the pivot table (``belongs_to_many``) or interim table (through)."""
        if self.interim is not None:
            return self.interim.table_name

        return self.join_table_name

    @property
    def join_table(self) -> sa.Table:
        name = self.join_table_name_resolved
        if name is None:
            raise ConfigurationError(f"{self.kind} relation has no join table")

        return self.parent.shelf.table(name)

    @property
    def target_table(self) -> sa.Table:
        if self.target is None:
            raise ConfigurationError(f"`morph_to` {self.morph_name!r} has not been routed")

        return self.target.__table__

    @property
    def parent_table(self) -> sa.Table:
        return self.parent.__table__


def _resolve_candidates(
    registry: Registry,
    candidates: Iterable[type[Model] | str] | Mapping[str, type[Model] | str],
) -> frozendict[str, type[Model]]:
    if isinstance(candidates, Mapping):
        return frozendict({key: registry.resolve(value) for key, value in candidates.items()})

    resolved = (registry.resolve(candidate) for candidate in candidates)
    return frozendict({model.__tablename__: model for model in resolved})
