from __future__ import annotations

import sys
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from typing import TYPE_CHECKING, Any, ClassVar, overload

import sqlalchemy as sa

from . import errors
from .base import ModelBase
from .eager import EagerRelation
from .events import Events
from .sync import FetchOptions, QuerySync, SaveOptions, SyncOptions, WithRelated
from .tools import get_column


if sys.version_info >= (3, 11):
    from typing import Self, Unpack
else:
    from typing_extensions import Self, Unpack

if TYPE_CHECKING:
    from .model import Model
    from .relation import Relation
    from .shelf import Shelf


class Collection(Events):
    """Ordered list of models of one class, optionally bound to a relation.

    A collection reached through ``related()`` or produced by eager loading
    carries the relation in ``related_data``: fetching it is constrained to
    the owner, ``create`` sets the owner's key, and for ``belongs_to_many``
    the pivot helpers (``attach``, ``detach``, ``update_pivot``) write the
    join table.
    """

    EmptyError: ClassVar[type[errors.EmptyResponseError]] = errors.EmptyResponseError

    def __init__(
        self,
        models: Iterable[ModelBase | Mapping[str, Any]] = (),
        *,
        model: type[Model],
        related_data: Relation | None = None,
    ) -> None:
        self.model = model
        self.related_data = related_data
        self.models: list[Model] = []
        self._where: list[Any] = []
        self._modifiers: list[Callable[[sa.Select[Any]], sa.Select[Any]]] = []
        self.add(models)

    @property
    def shelf(self) -> Shelf:
        return self.model.shelf

    @property
    def __table__(self) -> sa.Table:
        return self.model.__table__

    # Container API

    def _prepare_model(self, item: ModelBase | Mapping[str, Any]) -> Model:
        if isinstance(item, ModelBase):
            return item  # type: ignore[return-value]

        return self.model(item)

    def add(self, models: ModelBase | Mapping[str, Any] | Iterable[Any]) -> Self:
        """Append models (or attribute mappings) not already in the collection."""
        for item in _as_list(models):
            model = self._prepare_model(item)
            if model not in self.models:
                self.models.append(model)

        return self

    def remove(self, models: ModelBase | Iterable[ModelBase]) -> Self:
        for model in _as_list(models):
            if model in self.models:
                self.models.remove(model)

        return self

    def reset(self, models: Iterable[ModelBase | Mapping[str, Any]] = ()) -> Self:
        self.models = []
        return self.add(models)

    def get(self, model_id: Any) -> Model | None:
        """The first model whose id equals *model_id*."""
        return next((model for model in self.models if model.id == model_id), None)

    def pluck(self, attr: str) -> list[Any]:
        return [model.get(attr) for model in self.models]

    def to_dict(self, *, shallow: bool = False, omit_pivot: bool = False) -> list[dict[str, Any]]:
        return [model.to_dict(shallow=shallow, omit_pivot=omit_pivot) for model in self.models]

    def __len__(self) -> int:
        return len(self.models)

    def __iter__(self) -> Iterator[Model]:
        return iter(self.models)

    @overload
    def __getitem__(self, index: int) -> Model: ...

    @overload
    def __getitem__(self, index: slice) -> list[Model]: ...

    def __getitem__(self, index: int | slice) -> Model | list[Model]:
        return self.models[index]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} of {self.model.__name__} ({len(self.models)})>"

    # Query constraints

    def where(self, *clauses: sa.ColumnExpressionArgument[bool], **equals: Any) -> Self:
        table = self.__table__
        self._where.extend(clauses)
        self._where.extend(get_column(table, key) == value for key, value in equals.items())
        return self

    def query(self, modifier: Callable[[sa.Select[Any]], sa.Select[Any]]) -> Self:
        self._modifiers.append(modifier)
        return self

    def _reset_query(self) -> tuple[list[Any], list[Any]]:
        where, modifiers = self._where, self._modifiers
        self._where, self._modifiers = [], []
        return where, modifiers

    # Sync

    async def fetch(self, **options: Unpack[FetchOptions]) -> Self:
        """Replace the contents with every row matching the pending constraints.

        Raises:
            EmptyResponseError: With ``require=True`` and no rows
                (``Collection.EmptyError``).
        """
        rows = await QuerySync(self, options).select()
        if not rows:
            if options.get("require"):
                raise self.EmptyError("EmptyResponse")
            self.reset()
            return self

        self._handle_response(rows)
        if options.get("with_related"):
            await EagerRelation(self.models, rows, self.model()).fetch(**options)

        await self.trigger("fetched", self, rows, options)
        return self

    def _handle_response(self, rows: Sequence[Mapping[str, Any]]) -> None:
        models = []
        for row in rows:
            model = self.model()
            model.set(model.parse(dict(row)))
            model._reset()
            models.append(model)

        self.reset(models)
        relation = self.related_data
        if relation is not None and relation.descriptor.is_joined:
            relation.parse_pivot(self.models)

    async def fetch_one(self, **options: Unpack[FetchOptions]) -> Model | None:
        """Fetch a single model with this collection's constraints."""
        model = self.model()
        model._where, model._modifiers = self._reset_query()
        model.related_data = self.related_data
        return await model.fetch(**options)

    async def load(self, relations: WithRelated, **options: Unpack[FetchOptions]) -> Self:
        """Eager-load *relations* onto every model already in the collection."""
        rows = [model.format(dict(model.attributes)) for model in self.models]
        await EagerRelation(self.models, rows, self.model()).fetch(
            **{**options, "with_related": relations}  # type: ignore[typeddict-item]
        )
        return self

    async def create(
        self,
        attributes: ModelBase | Mapping[str, Any],
        /,
        **options: Unpack[SaveOptions],
    ) -> Model:
        """Save a new model through this collection's relation and add it."""
        model = self._prepare_model(attributes)
        relation = self.related_data
        if relation is not None:
            relation.save_constraints(model)

        await model.save(None, **options)

        descriptor = relation.descriptor if relation is not None else None
        if (
            descriptor is not None
            and descriptor.kind == "belongs_to_many"
            and not descriptor.is_through
        ):
            sync_options: SyncOptions = {}
            if "transacting" in options:
                sync_options["transacting"] = options["transacting"]
            await self.attach(model, **sync_options)
        else:
            self.add(model)

        return model

    async def attach(self, items: Any, **options: Unpack[SyncOptions]) -> Self:
        """Insert join-table rows linking the owner to *items*.

        *items* may be models, ids or mappings of extra join-table columns,
        singly or as a list. Attached models are added to the collection.
        """
        relation = self._pivot_relation()
        sync = QuerySync(self, options)
        for item in _as_list(items):
            await sync.execute(relation.pivot_insert(item))
            if isinstance(item, ModelBase):
                self.add(item)

        return self

    async def detach(self, items: Any = None, **options: Unpack[SyncOptions]) -> Self:
        """Delete join-table rows for *items*, or every row of the owner when omitted."""
        relation = self._pivot_relation()
        sync = QuerySync(self, options)
        if items is None:
            await sync.execute(relation.pivot_delete())
            return self.reset()

        for item in _as_list(items):
            await sync.execute(relation.pivot_delete(item))
            model = self.get(item.id if isinstance(item, ModelBase) else item)
            if model is not None:
                self.remove(model)

        return self

    async def update_pivot(
        self,
        values: Mapping[str, Any],
        /,
        *,
        require: bool = False,
        **options: Unpack[SyncOptions],
    ) -> int:
        """Update the owner's join-table rows and return the row count.

        Raises:
            NoRowsUpdatedError: With ``require=True`` and nothing updated.
        """
        relation = self._pivot_relation()
        updated = await QuerySync(self, options).execute(relation.pivot_update(values))
        if require and updated == 0:
            raise errors.NoRowsUpdatedError("No rows were updated")

        return updated

    def _pivot_relation(self) -> Relation:
        if self.related_data is None:
            raise ValueError(f"{self!r} is not bound to a belongs_to_many relation")

        return self.related_data


def _as_list(items: Any) -> list[Any]:
    if isinstance(items, (ModelBase, Mapping, str, bytes)) or not isinstance(items, Iterable):
        return [items]

    return list(items)
