from __future__ import annotations

import sys
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, ClassVar

from .events import Events
from .tools import PIVOT_PREFIX


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from .collection import Collection
    from .relation import Relation


class ModelBase(Events):
    """Attribute container for a single record.

    Holds the current attribute values, the values as of the last sync
    (``previous_attributes``), the per-name ``relations`` populated by eager
    loading, and the ``pivot`` parsed off join-table columns. Knows nothing
    about SQL; ``Model`` adds persistence on top.
    """

    id_attribute: ClassVar[str] = "id"

    attributes: dict[str, Any]
    changed: dict[str, Any]
    relations: dict[str, ModelBase | Collection | None]
    pivot: ModelBase | None
    related_data: Relation | None

    def __init__(self, attributes: Mapping[str, Any] | None = None, /, **kwargs: Any) -> None:
        self.attributes = {}
        self.changed = {}
        self.relations = {}
        self.pivot = None
        self.related_data = None
        self._previous_attributes: dict[str, Any] = {}
        self.set({**(attributes or {}), **kwargs})
        self._reset()
        self.initialize()

    def initialize(self) -> None:
        """Hook called at the end of ``__init__``; register listeners here."""

    @property
    def id(self) -> Any:
        return self.attributes.get(self.id_attribute)

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def has(self, key: str) -> bool:
        return self.attributes.get(key) is not None

    def set(self, values: Mapping[str, Any] | str, value: Any = None, /) -> Self:
        """Set one attribute (``set("title", "X")``) or many (``set({...})``).

        Tracks which keys differ from the last synced state in ``changed``.
        """
        items = {values: value} if isinstance(values, str) else values
        for key, val in items.items():
            self.attributes[key] = val
            if key in self._previous_attributes and self._previous_attributes[key] == val:
                self.changed.pop(key, None)
            else:
                self.changed[key] = val

        return self

    def unset(self, key: str) -> Self:
        self.attributes.pop(key, None)
        self.changed.pop(key, None)
        return self

    def clear(self) -> Self:
        self.attributes.clear()
        self.changed.clear()
        return self

    def is_new(self) -> bool:
        """A model is new until it has an identity value."""
        return self.id is None

    def has_changed(self, attr: str | None = None) -> bool:
        if attr is None:
            return bool(self.changed)

        return attr in self.changed

    def previous(self, attr: str) -> Any:
        return self._previous_attributes.get(attr)

    def previous_attributes(self) -> dict[str, Any]:
        return dict(self._previous_attributes)

    def parse(self, attributes: dict[str, Any]) -> dict[str, Any]:
        """Convert raw column values into attributes (identity by default)."""
        return attributes

    def format(self, attributes: dict[str, Any]) -> dict[str, Any]:
        """Convert attributes into column values before writing (identity by default)."""
        return attributes

    def to_dict(self, *, shallow: bool = False, omit_pivot: bool = False) -> dict[str, Any]:
        """Serialize to a plain dict.

        Relations are serialized recursively and pivot attributes are added
        under ``_pivot_<name>``; ``shallow=True`` returns only the model's
        own attributes, ``omit_pivot=True`` keeps relations but drops the pivot.
        """
        attrs = dict(self.attributes)
        if shallow:
            return attrs

        for key, relation in self.relations.items():
            attrs[key] = relation.to_dict(omit_pivot=omit_pivot) if relation is not None else None

        if omit_pivot or self.pivot is None:
            return attrs

        for key, value in self.pivot.attributes.items():
            attrs[f"{PIVOT_PREFIX}{key}"] = value

        return attrs

    def _reset(self) -> Self:
        self._previous_attributes = dict(self.attributes)
        self.changed = {}
        return self

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.attributes!r}>"


class Pivot(ModelBase):
    """Join-table row attached to a ``belongs_to_many`` result."""

    def __init__(
        self,
        attributes: Mapping[str, Any] | None = None,
        /,
        *,
        table_name: str,
        **kwargs: Any,
    ) -> None:
        self.table_name = table_name
        super().__init__(attributes, **kwargs)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.table_name} {self.attributes!r}>"
