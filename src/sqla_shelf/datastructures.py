from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any, TypeVar


K = TypeVar("K")
V = TypeVar("V")


class frozendict(Mapping[K, V]):  # noqa: N801
    """Immutable, hashable mapping.

    Used wherever sqla_shelf hands out a mapping that must not change after
    declaration: the per-model relation accessor table (``__relations__``)
    and the ``morph_to`` candidate table on a ``RelationDescriptor``. Being
    hashable keeps descriptors (frozen dataclasses) hashable too.

    Example:
        >>> candidates = frozendict({"books": Book, "authors": Author})
        >>> candidates["books"]
        <class 'Book'>
        >>> candidates.merge({"photos": Photo})
        <frozendict {'books': <class 'Book'>, 'authors': ..., 'photos': ...}>
    """

    __slots__ = ("_dict", "_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._dict: dict[K, V] = dict(*args, **kwargs)
        self._hash: int | None = None

    def __getitem__(self, key: K) -> V:
        return self._dict[key]

    def __contains__(self, key: Any) -> bool:
        return key in self._dict

    def __iter__(self) -> Iterator[K]:
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def merge(self, other: Mapping[K, V]) -> frozendict[K, V]:
        """Return a new frozendict with *other* layered over this one.

        Args:
            other: Items to add or replace.

        Returns:
            New frozendict; ``self`` is left untouched.
        """
        return type(self)({**self._dict, **other})

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._dict!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, frozendict):
            return self._dict == other._dict

        if isinstance(other, dict):
            return self._dict == other

        return NotImplemented

    def __hash__(self) -> int:
        # Computed on first use; unhashable values raise here, not in __init__.
        if self._hash is None:
            self._hash = hash(frozenset(self._dict.items()))

        return self._hash
