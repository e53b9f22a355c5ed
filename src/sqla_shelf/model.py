from __future__ import annotations

import sys
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime, timezone
from functools import partial
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

import sqlalchemy as sa

from . import errors
from .base import ModelBase
from .collection import Collection
from .datastructures import frozendict
from .descriptor import RelationDescriptor, RelationKind
from .eager import EagerRelation
from .errors import ConfigurationError, UnknownRelationError
from .relation import Relation
from .sync import DestroyOptions, FetchOptions, QuerySync, SaveOptions, WithRelated
from .tools import get_column


if sys.version_info >= (3, 11):
    from typing import Self, Unpack
else:
    from typing_extensions import Self, Unpack

if TYPE_CHECKING:
    from .shelf import Shelf


M = TypeVar("M", bound="Model")
RelationAccessor = Callable[[Any], Relation]
_DEFAULT_TIMESTAMPS: tuple[str, str] = ("created_at", "updated_at")


def relationship(accessor: Callable[[M], Relation]) -> Callable[[M], Relation]:
    """Mark a model method as a relation accessor.

    Marked methods are collected into ``Model.__relations__`` when the class
    is created; that mapping is what ``related()`` and eager paths resolve
    names against.

    Example:
        >>> class Book(shelf.Model):
        ...     __tablename__ = "books"
        ...
        ...     @relationship
        ...     def author(self):
        ...         return self.belongs_to("Author")
    """
    accessor.__shelf_relationship__ = True  # type: ignore[attr-defined]
    return accessor


def _subclass_error(cls: type, base: type[errors.ShelfError]) -> type[errors.ShelfError]:
    return type(
        base.__name__,
        (base,),
        {"__module__": cls.__module__, "__qualname__": f"{cls.__qualname__}.{base.__name__}"},
    )


class Model(ModelBase):
    """A persisted record bound to one table of a ``Shelf``.

    Subclass ``shelf.Model`` (never this class directly) and set
    ``__tablename__``; the table is looked up in the shelf's metadata and the
    class is registered under its class name and table name.
    """

    __abstract__: ClassVar[bool] = True
    __tablename__: ClassVar[str]
    __table__: ClassVar[sa.Table]
    __relations__: ClassVar[frozendict[str, RelationAccessor]] = frozendict()

    shelf: ClassVar[Shelf]
    has_timestamps: ClassVar[bool | Sequence[str | None]] = False
    defaults: ClassVar[Mapping[str, Any] | None] = None
    collection_class: ClassVar[type[Collection]] = Collection

    NotFoundError: ClassVar[type[errors.NotFoundError]] = errors.NotFoundError
    NoRowsUpdatedError: ClassVar[type[errors.NoRowsUpdatedError]] = errors.NoRowsUpdatedError
    NoRowsDeletedError: ClassVar[type[errors.NoRowsDeletedError]] = errors.NoRowsDeletedError

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls.NotFoundError = _subclass_error(cls, cls.NotFoundError)  # type: ignore[assignment]
        cls.NoRowsUpdatedError = _subclass_error(cls, cls.NoRowsUpdatedError)  # type: ignore[assignment]
        cls.NoRowsDeletedError = _subclass_error(cls, cls.NoRowsDeletedError)  # type: ignore[assignment]

        accessors = dict(cls.__relations__)
        accessors.update(
            (name, value)
            for name, value in vars(cls).items()
            if getattr(value, "__shelf_relationship__", False)
        )
        cls.__relations__ = frozendict(accessors)

        if cls.__dict__.get("__abstract__", False):
            return

        if getattr(cls, "shelf", None) is None:
            raise ConfigurationError(f"{cls.__name__} must derive from a Shelf's Model base")
        if not getattr(cls, "__tablename__", None):
            raise ConfigurationError(f"{cls.__name__} must define __tablename__")

        cls.__table__ = cls.shelf.table(cls.__tablename__)
        cls.shelf.registry.add(cls)

    def __init__(self, attributes: Mapping[str, Any] | None = None, /, **kwargs: Any) -> None:
        self._where: list[sa.ColumnElement[bool]] = []
        self._modifiers: list[Callable[[sa.Select[Any]], sa.Select[Any]]] = []
        super().__init__(attributes, **kwargs)

    @classmethod
    def forge(cls, attributes: Mapping[str, Any] | None = None, /, **kwargs: Any) -> Self:
        """Alternate constructor, ``Book.forge(title="Dune")``."""
        return cls(attributes, **kwargs)

    @classmethod
    def collection(
        cls,
        models: Iterable[ModelBase | Mapping[str, Any]] = (),
        *,
        related_data: Relation | None = None,
    ) -> Collection:
        return cls.collection_class(models, model=cls, related_data=related_data)

    # Relations

    def relation(
        self,
        kind: RelationKind,
        target: type[Model] | str | None,
        **options: Any,
    ) -> Relation:
        """Declare a relation of any kind bound to this instance.

        The specific builders below are thin wrappers around this one.
        """
        return Relation(RelationDescriptor.create(kind, type(self), target, **options), self)

    def has_one(self, target: type[Model] | str, foreign_key: str | None = None) -> Relation:
        return self.relation("has_one", target, foreign_key=foreign_key)

    def has_many(self, target: type[Model] | str, foreign_key: str | None = None) -> Relation:
        return self.relation("has_many", target, foreign_key=foreign_key)

    def belongs_to(self, target: type[Model] | str, foreign_key: str | None = None) -> Relation:
        return self.relation("belongs_to", target, foreign_key=foreign_key)

    def belongs_to_many(
        self,
        target: type[Model] | str,
        join_table_name: str | None = None,
        foreign_key: str | None = None,
        other_key: str | None = None,
    ) -> Relation:
        """Many-to-many through a join table.

        Args:
            target: Related model class or registry name.
            join_table_name: Join table; defaults to both table names, sorted
                and joined with ``_`` (``books_tags``).
            foreign_key: Join-table column pointing at this model.
            other_key: Join-table column pointing at *target*.
        """
        return self.relation(
            "belongs_to_many",
            target,
            join_table_name=join_table_name,
            foreign_key=foreign_key,
            other_key=other_key,
        )

    def morph_one(
        self,
        target: type[Model] | str,
        name: str,
        column_names: Sequence[str] | None = None,
        morph_value: str | None = None,
    ) -> Relation:
        return self.relation(
            "morph_one", target, morph_name=name, column_names=column_names, morph_value=morph_value
        )

    def morph_many(
        self,
        target: type[Model] | str,
        name: str,
        column_names: Sequence[str] | None = None,
        morph_value: str | None = None,
    ) -> Relation:
        return self.relation(
            "morph_many",
            target,
            morph_name=name,
            column_names=column_names,
            morph_value=morph_value,
        )

    def morph_to(
        self,
        name: str,
        *candidates: type[Model] | str | Mapping[str, type[Model] | str],
        column_names: Sequence[str] | None = None,
    ) -> Relation:
        """Polymorphic inverse: the target class is picked per row by ``<name>_type``.

        Candidates are keyed by their table name, or pass one explicit
        ``{discriminator: model}`` mapping.
        """
        if len(candidates) == 1 and isinstance(candidates[0], Mapping):
            resolved: Any = candidates[0]
        else:
            resolved = candidates

        return self.relation(
            "morph_to", None, morph_name=name, column_names=column_names, candidates=resolved
        )

    def relation_for(self, name: str) -> Relation:
        """Call the accessor declared under *name* and return its bound relation.

        Raises:
            UnknownRelationError: If no accessor is declared under *name*.
            TypeError: If the accessor does not return a ``Relation``.
        """
        accessor = type(self).__relations__.get(name)
        if accessor is None:
            raise UnknownRelationError(
                f"{name!r} is not defined on the model {type(self).__name__}"
            )

        relation = accessor(self)
        if not isinstance(relation, Relation):
            raise TypeError(
                f"Relationship accessor {type(self).__name__}.{name} must return a Relation, "
                f"got {type(relation).__name__}"
            )

        return relation

    def related(self, name: str) -> ModelBase | Collection | None:
        """Loaded relation result, or an empty bound target ready to ``fetch()``."""
        if name in self.relations:
            return self.relations[name]

        instance = self.relation_for(name).related_instance()
        if instance is not None:
            self.relations[name] = instance

        return instance

    # Query constraints

    def where(self, *clauses: sa.ColumnExpressionArgument[bool], **equals: Any) -> Self:
        """Add WHERE conditions consumed by the next fetch, update or delete."""
        table = self.__table__
        self._where.extend(clauses)  # type: ignore[arg-type]
        self._where.extend(get_column(table, key) == value for key, value in equals.items())
        return self

    def query(self, modifier: Callable[[sa.Select[Any]], sa.Select[Any]]) -> Self:
        """Add a ``select -> select`` modifier consumed by the next fetch."""
        self._modifiers.append(modifier)
        return self

    def _reset_query(self) -> tuple[list[Any], list[Any]]:
        where, modifiers = self._where, self._modifiers
        self._where, self._modifiers = [], []
        return where, modifiers

    # Sync

    async def fetch(self, **options: Unpack[FetchOptions]) -> Self | None:
        """Fetch the first row matching the current attributes.

        Args:
            **options: ``require``, ``columns``, ``with_related`` and ``transacting``.

        Returns:
            ``self`` populated from the row, or ``None`` when nothing matched.

        Raises:
            NotFoundError: With ``require=True`` and no matching row
                (``type(self).NotFoundError``).
        """
        rows = await QuerySync(self, options).first()
        if not rows:
            if options.get("require"):
                raise type(self).NotFoundError("EmptyResponse")
            return None

        self._handle_response(rows)
        if options.get("with_related"):
            await self._handle_eager(rows, options)

        await self.trigger("fetched", self, rows, options)
        return self

    def _handle_response(self, rows: Sequence[Mapping[str, Any]]) -> None:
        self.set(self.parse(dict(rows[0])))
        self._reset()
        relation = self.related_data
        if relation is not None and relation.descriptor.is_joined:
            relation.parse_pivot([self])

    async def _handle_eager(
        self, rows: Sequence[Mapping[str, Any]], options: Mapping[str, Any]
    ) -> None:
        await EagerRelation([self], rows, self).fetch(**options)  # type: ignore[misc]

    async def fetch_all(self, **options: Unpack[FetchOptions]) -> Collection:
        """Fetch every row matching the pending constraints into a collection."""
        collection = type(self).collection(related_data=self.related_data)
        collection._where, collection._modifiers = self._reset_query()
        collection.on("fetching", partial(self.trigger, "fetching:collection"))
        collection.on("fetched", partial(self.trigger, "fetched:collection"))
        return await collection.fetch(**options)

    async def load(self, relations: WithRelated, **options: Unpack[FetchOptions]) -> Self:
        """Eager-load *relations* onto this already-populated model."""
        rows = [self.format(dict(self.attributes))]
        await EagerRelation([self], rows, self).fetch(
            **{**options, "with_related": relations}  # type: ignore[typeddict-item]
        )
        return self

    def timestamp(self, method: str | None = None) -> dict[str, Any]:
        """Set the update (and on insert, the create) timestamp attributes."""
        now = datetime.now(timezone.utc)
        created_key, updated_key = self._timestamp_keys()
        values: dict[str, Any] = {}
        if updated_key:
            values[updated_key] = now
        if created_key and self.is_new() and method != "update":
            values[created_key] = now

        self.set(values)
        return values

    def _timestamp_keys(self) -> tuple[str | None, str | None]:
        if self.has_timestamps is True:
            return _DEFAULT_TIMESTAMPS
        if not self.has_timestamps:
            return None, None

        created_key, updated_key = self.has_timestamps  # type: ignore[misc]
        return created_key, updated_key

    def save_method(self, options: Mapping[str, Any]) -> str:
        method = (options.get("method") or ("insert" if self.is_new() else "update")).lower()
        if method not in ("insert", "update"):
            raise ValueError(f"Save method must be 'insert' or 'update', got {method!r}")

        return method

    async def save(
        self,
        attributes: Mapping[str, Any] | None = None,
        /,
        **options: Unpack[SaveOptions],
    ) -> Self:
        """Insert or update this model.

        ``creating``/``updating`` and ``saving`` listeners run first; any of
        them raising aborts the save before SQL is issued. On insert the
        database-assigned key is stored unless an id was already set.

        Args:
            attributes: Values to set before saving.
            **options: ``method``, ``patch`` (update only *attributes*),
                ``defaults`` (merge ``defaults`` on update as well),
                ``require`` and ``transacting``.

        Raises:
            NoRowsUpdatedError: When an update matches nothing and
                ``require`` is not ``False``.
        """
        opts: dict[str, Any] = dict(options)
        values = dict(attributes or {})
        method = opts["method"] = self.save_method(opts)

        if (method == "insert" or opts.get("defaults")) and self.defaults:
            values = {**self.defaults, **self.attributes, **values}

        self.set(values)

        if self.has_timestamps:
            values.update(self.timestamp(method))

        relation = self.related_data
        if relation is not None:
            relation.save_constraints(self)

        await self.trigger(
            "creating saving" if method == "insert" else "updating saving", self, values, opts
        )

        sync = QuerySync(self, opts)
        if method == "insert":
            response = await sync.insert()
            if self.id is None:
                self.attributes[self.id_attribute] = response
        else:
            response = await sync.update(values if opts.get("patch") else self.attributes)
            if response == 0 and opts.get("require") is not False:
                raise type(self).NoRowsUpdatedError("No Rows Updated")

        opts["previous_attributes"] = self.previous_attributes()
        self._reset()

        await self.trigger(
            "created saved" if method == "insert" else "updated saved", self, response, opts
        )
        return self

    async def destroy(self, **options: Unpack[DestroyOptions]) -> Self:
        """Delete this model's row.

        Raises:
            NoRowsDeletedError: With ``require=True`` and nothing deleted; the
                attributes are left as they were.
        """
        opts: dict[str, Any] = dict(options)
        await self.trigger("destroying", self, opts)

        response = await QuerySync(self, opts).delete()
        if opts.get("require") and response == 0:
            raise type(self).NoRowsDeletedError("No Rows Deleted")

        self.clear()
        await self.trigger("destroyed", self, response, opts)
        self._reset()
        return self
