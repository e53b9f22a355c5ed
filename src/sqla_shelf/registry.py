from __future__ import annotations

import warnings
from typing import TYPE_CHECKING, final

from .datastructures import frozendict
from .errors import ConfigurationError


if TYPE_CHECKING:
    from collections.abc import Iterator

    from .model import Model


@final
class Registry:
    """Lookup table of the model classes declared on one ``Shelf``.

    Every concrete ``shelf.Model`` subclass is added here when the class is
    created. Relation builders accept either a class or a name; names are
    resolved through this registry, by class name first and table name
    second, so relations can point at models declared later in the module.
    """

    __slots__ = ("_by_name", "_by_table")

    def __init__(self) -> None:
        self._by_name: dict[str, type[Model]] = {}
        self._by_table: dict[str, type[Model]] = {}

    def add(self, model: type[Model]) -> None:
        """Register *model* under its class name and its table name.

        Re-registering a name replaces the previous class with a warning.
        """
        name = model.__name__
        if (previous := self._by_name.get(name)) is not None and previous is not model:
            warnings.warn(
                f"Model {name!r} is already registered ({previous!r}); replacing it.",
                stacklevel=3,
            )

        self._by_name[name] = model
        self._by_table[model.__tablename__] = model

    def get(self, name: str) -> type[Model] | None:
        """Find a model by class name or table name, returning ``None`` if absent."""
        return self._by_name.get(name) or self._by_table.get(name)

    def __getitem__(self, name: str) -> type[Model]:
        """Look up a model by name, raising ``KeyError`` if not found."""
        if (model := self.get(name)) is None:
            raise KeyError(name)

        return model

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __iter__(self) -> Iterator[type[Model]]:
        return iter(self._by_name.values())

    def __len__(self) -> int:
        return len(self._by_name)

    def resolve(self, target: type[Model] | str) -> type[Model]:
        """Turn a relation target (class or name) into a model class.

        Raises:
            ConfigurationError: If *target* is a name nobody registered.
        """
        if not isinstance(target, str):
            return target

        if (model := self.get(target)) is None:
            raise ConfigurationError(
                f"Unknown model {target!r}. Registered: {sorted(self._by_name)}"
            )

        return model

    @property
    def models(self) -> frozendict[str, type[Model]]:
        """Read-only snapshot of class name -> model class."""
        return frozendict(self._by_name)

    def reset(self) -> None:
        """Forget every registered model (primarily for tests)."""
        self._by_name.clear()
        self._by_table.clear()
