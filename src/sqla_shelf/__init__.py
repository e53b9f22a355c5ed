"""Relation resolution and eager loading for SQLAlchemy Core.

sqla_shelf maps plain ``sa.Table`` rows onto lightweight model objects and
resolves their associations (has-one/many, belongs-to, many-to-many,
through, and polymorphic) with one batched query per relation per level.
Declare models on a ``Shelf``, mark accessors with ``@relationship``, then
``await model.fetch(with_related=["author", "tags", "editions.printings"])``.
"""

from ._version import __version__, __version_tuple__
from .base import ModelBase, Pivot
from .collection import Collection
from .datastructures import frozendict
from .descriptor import RelationDescriptor, RelationKind, ThroughDescriptor
from .eager import EagerRelation, shelf_cache_clear, shelf_cache_info
from .errors import (
    ConfigurationError,
    EmptyResponseError,
    NoRowsDeletedError,
    NoRowsUpdatedError,
    NotFoundError,
    ShelfError,
    UnknownMorphTypeError,
    UnknownRelationError,
)
from .events import Events
from .model import Model, relationship
from .registry import Registry
from .relation import Relation
from .shelf import Shelf
from .sync import QuerySync
from .tools import add_conditions, singularize


__all__ = (
    "Collection",
    "ConfigurationError",
    "EagerRelation",
    "EmptyResponseError",
    "Events",
    "Model",
    "ModelBase",
    "NoRowsDeletedError",
    "NoRowsUpdatedError",
    "NotFoundError",
    "Pivot",
    "QuerySync",
    "Registry",
    "Relation",
    "RelationDescriptor",
    "RelationKind",
    "Shelf",
    "ShelfError",
    "ThroughDescriptor",
    "UnknownMorphTypeError",
    "UnknownRelationError",
    "__version__",
    "__version_tuple__",
    "add_conditions",
    "frozendict",
    "relationship",
    "shelf_cache_clear",
    "shelf_cache_info",
    "singularize",
)
