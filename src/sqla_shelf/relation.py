from __future__ import annotations

import sys
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Final

import sqlalchemy as sa

from .base import ModelBase, Pivot
from .tools import PIVOT_PREFIX, get_column, split_pivot, unique_keys


if sys.version_info >= (3, 11):
    from typing import Unpack
else:
    from typing_extensions import Unpack

if TYPE_CHECKING:
    from .collection import Collection
    from .descriptor import RelationDescriptor
    from .model import Model
    from .sync import FetchOptions


Constraint = Callable[[sa.Select[Any]], sa.Select[Any]]
_NO_SAVE_CONSTRAINT_KINDS: Final = frozenset({"belongs_to", "belongs_to_many", "morph_to"})


class Relation:
    """A ``RelationDescriptor`` bound to one owner instance.

    Knows how to build the constrained SELECT for the related rows, both
    for a single owner (``key = parent_fk``) and for an eager batch of
    owners (``key IN (...)``), and how to turn the returned rows back into
    the right shape: one instance (or ``None``) for the single kinds, an
    ordered ``Collection`` for the many kinds, with pivot attributes split
    off for the join-table and through kinds.

    A ``Relation`` built without an owner (``parent=None``) is what eager
    loading uses: it only ever constrains on the batched keys.
    """

    __slots__ = ("descriptor", "parent", "parent_fk", "parent_id")

    def __init__(self, descriptor: RelationDescriptor, parent: Model | None = None) -> None:
        attributes = parent.format(dict(parent.attributes)) if parent is not None else {}
        if parent is not None and descriptor.kind == "morph_to":
            descriptor = descriptor.route(attributes.get(descriptor.morph_key))

        self.descriptor = descriptor
        self.parent = parent
        self.parent_id = parent.id if parent is not None else None

        if parent is None:
            self.parent_fk = None
        elif descriptor.is_inverse and not descriptor.is_through:
            self.parent_fk = attributes.get(descriptor.foreign_key)
        else:
            self.parent_fk = self.parent_id

    def through(
        self,
        interim: type[Model] | str,
        through_foreign_key: str | None = None,
        other_key: str | None = None,
    ) -> Relation:
        """Return this relation routed through *interim* (see ``RelationDescriptor.through``)."""
        descriptor = self.descriptor.through(
            interim, through_foreign_key=through_foreign_key, other_key=other_key
        )
        return type(self)(descriptor, self.parent)

    def bind(self, parent: Model) -> Relation:
        return type(self)(self.descriptor, parent)

    # Query construction

    def select_constraints(
        self,
        *,
        columns: Sequence[str] | None = None,
        parent_rows: Sequence[Mapping[str, Any]] | None = None,
        before: Constraint | None = None,
    ) -> sa.Select[Any]:
        """Build the SELECT for this relation's rows.

        Args:
            columns: Target columns to select (default: the whole target table).
            parent_rows: Raw rows of every owner in an eager batch. When given,
                the key constraint becomes an IN-list over all of them and no
                LIMIT is applied; otherwise the query is for ``self.parent``.
            before: Per-path constraint applied after the joins.

        Returns:
            The constrained ``sa.Select``.
        """
        descriptor = self.descriptor
        target = descriptor.target_table
        if columns:
            query = sa.select(*(get_column(target, name) for name in columns))
        else:
            query = sa.select(target)

        if descriptor.is_joined:
            query = self._join_clauses(query)

        if before is not None:
            query = before(query)

        if descriptor.is_joined:
            query = query.add_columns(*self._join_columns())

        if descriptor.is_single and parent_rows is None:
            query = query.limit(1)

        return self._where_clauses(query, parent_rows)

    def _join_clauses(self, query: sa.Select[Any]) -> sa.Select[Any]:
        descriptor = self.descriptor
        join_table = descriptor.join_table
        target = descriptor.target_table
        interim = descriptor.interim

        if descriptor.kind in ("belongs_to", "belongs_to_many"):
            target_key = (
                descriptor.foreign_key if descriptor.kind == "belongs_to" else descriptor.other_key
            )
            assert target_key is not None
            query = query.join(
                join_table,
                get_column(join_table, target_key)
                == get_column(target, descriptor.target_id_attribute),
            )
            # belongs_to -> through needs the owner table as a second hop.
            if descriptor.kind == "belongs_to":
                assert interim is not None
                parent = descriptor.parent_table
                query = query.join(
                    parent,
                    get_column(join_table, interim.id_attribute)
                    == get_column(parent, interim.foreign_key),
                )
            return query

        assert interim is not None
        return query.join(
            join_table,
            get_column(join_table, interim.id_attribute)
            == get_column(target, interim.foreign_key),
        )

    def _join_columns(self) -> list[sa.Label[Any]]:
        descriptor = self.descriptor
        join_table = descriptor.join_table
        keys: list[str] = []
        if descriptor.interim is not None:
            keys.append(descriptor.interim.id_attribute)
        keys.append(descriptor.foreign_key)
        if descriptor.kind == "belongs_to_many" and descriptor.other_key:
            keys.append(descriptor.other_key)

        names = dict.fromkeys([*keys, *(column.key for column in join_table.c)])
        return [get_column(join_table, name).label(f"{PIVOT_PREFIX}{name}") for name in names]

    def _where_clauses(
        self,
        query: sa.Select[Any],
        parent_rows: Sequence[Mapping[str, Any]] | None,
    ) -> sa.Select[Any]:
        descriptor = self.descriptor
        if descriptor.is_joined and descriptor.kind == "belongs_to":
            key = get_column(descriptor.parent_table, descriptor.parent_id_attribute)
        elif descriptor.is_joined:
            key = get_column(descriptor.join_table, descriptor.foreign_key)
        elif descriptor.is_inverse:
            key = get_column(descriptor.target_table, descriptor.target_id_attribute)
        else:
            key = get_column(descriptor.target_table, descriptor.foreign_key)

        if parent_rows is None and self.parent_fk is None:
            # An owner without a key has no related rows; never match on NULL.
            query = query.where(sa.false())
        elif parent_rows is None:
            query = query.where(key == self.parent_fk)
        else:
            query = query.where(key.in_(self.eager_keys(parent_rows)))

        if descriptor.is_morph:
            assert descriptor.morph_key is not None
            query = query.where(
                get_column(descriptor.target_table, descriptor.morph_key) == descriptor.morph_value
            )

        return query

    def eager_keys(self, rows: Iterable[Mapping[str, Any]]) -> list[Any]:
        """Distinct, non-null owner keys to batch an eager query on."""
        descriptor = self.descriptor
        if descriptor.is_inverse and not descriptor.is_through:
            key = descriptor.foreign_key
        else:
            key = descriptor.parent_id_attribute

        return unique_keys(row.get(key) for row in rows)

    # Result shaping

    def prototype(self) -> Model:
        """Empty target instance carrying this relation, used to sync eager queries."""
        target = self.descriptor.target
        assert target is not None
        model = target()
        model.related_data = self
        return model

    def create_model(self, row: Mapping[str, Any]) -> Model:
        target = self.descriptor.target
        assert target is not None
        return target(dict(row))

    def related_instance(self) -> Model | Collection | None:
        """Empty bound target for direct resolution.

        A model for the single kinds, a collection for the many kinds, and
        ``None`` for a ``morph_to`` whose owner has no discriminator yet.
        """
        descriptor = self.descriptor
        if descriptor.target is None:
            return None

        if descriptor.is_single:
            return self.prototype()

        return descriptor.target.collection(related_data=self)

    def parse_pivot(self, models: Iterable[ModelBase]) -> None:
        """Move ``_pivot_*`` attributes off each model onto ``model.pivot``."""
        descriptor = self.descriptor
        for model in models:
            own, pivot = split_pivot(model.attributes)
            model.attributes = own
            model._reset()
            if not pivot:
                continue

            if descriptor.interim is not None:
                model.pivot = descriptor.interim.target(pivot)
            else:
                model.pivot = Pivot(pivot, table_name=descriptor.join_table_name or "")

    def eager_pair(
        self,
        name: str,
        related: list[Model],
        parents: Sequence[Model],
    ) -> list[Model]:
        """Attach *related* to each owner in *parents* under ``relations[name]``.

        Every owner gets an entry: the first matching instance or ``None``
        for the single kinds, a (possibly empty) collection in row order for
        the many kinds. Instances are shared between owners that match the
        same row.
        """
        descriptor = self.descriptor
        if descriptor.kind == "morph_to":
            parents = [
                parent
                for parent in parents
                if parent.format(dict(parent.attributes)).get(descriptor.morph_key)
                == descriptor.morph_value
            ]

        if descriptor.is_joined:
            self.parse_pivot(related)

        grouped: dict[Any, list[Model]] = {}
        for model in related:
            grouped.setdefault(self._related_key(model), []).append(model)

        for parent in parents:
            bound = self.bind(parent)
            parent.relations[name] = bound._shape(grouped.get(self._parent_key(parent), []))

        for model in related:
            model.attributes = model.parse(model.attributes)
            model._reset()

        return related

    def _related_key(self, model: Model) -> Any:
        descriptor = self.descriptor
        if model.pivot is not None:
            if descriptor.is_inverse and descriptor.is_through:
                return model.pivot.id
            return model.pivot.get(descriptor.foreign_key)

        return model.id if descriptor.is_inverse else model.get(descriptor.foreign_key)

    def _parent_key(self, parent: Model) -> Any:
        descriptor = self.descriptor
        if not descriptor.is_inverse:
            return parent.id

        attributes = parent.format(dict(parent.attributes))
        if descriptor.interim is not None:
            return attributes.get(descriptor.interim.foreign_key)

        return attributes.get(descriptor.foreign_key)

    def _shape(self, models: list[Model]) -> Model | Collection | None:
        descriptor = self.descriptor
        if descriptor.is_single:
            # More than one match is tolerated: the first row wins.
            if not models:
                return None
            models[0].related_data = self
            return models[0]

        assert descriptor.target is not None
        return descriptor.target.collection(models, related_data=self)

    # Direct resolution

    async def resolve_one(self, **options: Unpack[FetchOptions]) -> Model | None:
        """Fetch the single related instance for ``self.parent``."""
        if not self.descriptor.is_single:
            raise TypeError(f"{self.descriptor.kind} resolves to a collection; use resolve_many()")

        instance = self.related_instance()
        if instance is None:
            return None

        return await instance.fetch(**options)  # type: ignore[return-value]

    async def resolve_many(self, **options: Unpack[FetchOptions]) -> Collection:
        """Fetch the related collection for ``self.parent``."""
        if self.descriptor.is_single:
            raise TypeError(f"{self.descriptor.kind} resolves to one instance; use resolve_one()")

        collection = self.related_instance()
        assert collection is not None
        return await collection.fetch(**options)  # type: ignore[return-value]

    # Writes

    def save_constraints(self, model: Model) -> Model:
        """Set the owner's key (and morph type) on a model saved through this relation."""
        descriptor = self.descriptor
        if descriptor.is_through or descriptor.kind in _NO_SAVE_CONSTRAINT_KINDS:
            return model

        data = {
            descriptor.foreign_key: self.parent_fk
            if self.parent_fk is not None
            else model.get(descriptor.foreign_key)
        }
        if descriptor.is_morph:
            assert descriptor.morph_key is not None
            data[descriptor.morph_key] = descriptor.morph_value

        return model.set(model.parse(data))

    def pivot_insert(self, item: Any) -> sa.Insert:
        data = self._pivot_data(item, extend=True)
        return sa.insert(self.descriptor.join_table).values(data)

    def pivot_delete(self, item: Any = None) -> sa.Delete:
        data = self._pivot_data(item, extend=True)
        table = self.descriptor.join_table
        return sa.delete(table).where(
            *(get_column(table, key) == value for key, value in data.items())
        )

    def pivot_update(self, values: Mapping[str, Any], item: Any = None) -> sa.Update:
        data = self._pivot_data(item, extend=False)
        table = self.descriptor.join_table
        return (
            sa.update(table)
            .where(*(get_column(table, key) == value for key, value in data.items()))
            .values(dict(values))
        )

    def _pivot_data(self, item: Any, *, extend: bool) -> dict[str, Any]:
        descriptor = self.descriptor
        if descriptor.kind != "belongs_to_many" or descriptor.is_through:
            raise ValueError(
                "Pivot rows can only be written for a belongs_to_many relation "
                f"without `through` (got {descriptor.kind})"
            )

        assert descriptor.other_key is not None
        data: dict[str, Any] = {descriptor.foreign_key: self.parent_fk}
        if isinstance(item, ModelBase):
            data[descriptor.other_key] = item.id
        elif isinstance(item, Mapping):
            if extend:
                data.update(item)
        elif item is not None:
            data[descriptor.other_key] = item

        return data

    def __repr__(self) -> str:
        descriptor = self.descriptor
        target = descriptor.target.__name__ if descriptor.target else descriptor.morph_name
        return f"<{type(self).__name__} {descriptor.parent.__name__}.{descriptor.kind}({target})>"
