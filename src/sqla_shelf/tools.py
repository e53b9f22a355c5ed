from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Mapping
from functools import lru_cache
from typing import Any, Final, TypeVar

import sqlalchemy as sa

from .errors import ConfigurationError


PIVOT_PREFIX: Final[str] = "_pivot_"

_H = TypeVar("_H", bound=Hashable)

_IRREGULAR: Final[dict[str, str]] = {
    "people": "person",
    "men": "man",
    "women": "woman",
    "children": "child",
    "teeth": "tooth",
    "feet": "foot",
    "mice": "mouse",
    "geese": "goose",
    "data": "datum",
    "criteria": "criterion",
}
_UNCOUNTABLE: Final[frozenset[str]] = frozenset(
    {"equipment", "information", "rice", "money", "species", "series", "fish", "sheep", "news"}
)


@lru_cache(maxsize=1024)
def singularize(word: str) -> str:
    """Default naming convention: English singular form of a table name.

    Only the last ``_``-separated segment is inflected, so ``book_editions``
    becomes ``book_edition``. Pass a different callable as
    ``Shelf(singularize=...)`` to replace this heuristic.

    Args:
        word: Plural table name.

    Returns:
        Singular form used to build default foreign keys.
    """
    head, sep, last = word.rpartition("_")
    lower = last.lower()

    if lower in _UNCOUNTABLE:
        single = last
    elif lower in _IRREGULAR:
        single = _IRREGULAR[lower]
    elif lower.endswith("ies") and len(lower) > 3:
        single = last[:-3] + "y"
    elif lower.endswith(("sses", "shes", "ches", "xes", "zes")):
        single = last[:-2]
    elif lower.endswith("s") and not lower.endswith(("ss", "us", "is")):
        single = last[:-1]
    else:
        single = last

    return f"{head}{sep}{single}"


def foreign_key_name(
    table_name: str,
    id_attribute: str,
    singularize: Callable[[str], str] = singularize,
) -> str:
    """Build a default key name: ``<singular table>_<id attribute>``."""
    return f"{singularize(table_name)}_{id_attribute}"


def get_column(table: sa.Table, name: str) -> sa.Column[Any]:
    """Look up *name* on *table*, raising ``ConfigurationError`` if absent."""
    try:
        return table.c[name]
    except KeyError:
        raise ConfigurationError(
            f"Column {name!r} not found on table {table.name!r}. "
            f"Available: {[c.key for c in table.c]}"
        ) from None


def unique_keys(values: Iterable[_H | None]) -> list[_H]:
    """Drop ``None`` and duplicates from *values*, keeping first-seen order."""
    return [value for value in dict.fromkeys(values) if value is not None]


def split_pivot(attributes: Mapping[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a raw row into ``(own, pivot)`` attribute dicts.

    Pivot columns are the ones selected under ``PIVOT_PREFIX``; the prefix
    is stripped from the returned pivot keys.
    """
    own: dict[str, Any] = {}
    pivot: dict[str, Any] = {}
    for key, value in attributes.items():
        if key.startswith(PIVOT_PREFIX):
            pivot[key[len(PIVOT_PREFIX) :]] = value
        else:
            own[key] = value

    return own, pivot


def add_conditions(
    *conditions: sa.ColumnExpressionArgument[bool],
) -> Callable[[sa.Select[Any]], sa.Select[Any]]:
    """Create a function that adds WHERE conditions to a relation query.

    The returned callable is meant to be used as the constraint half of a
    ``with_related`` entry; it is applied once to the eager query of the
    level it is attached to.

    Args:
        *conditions: SQLAlchemy column expressions that evaluate to boolean.

    Returns:
        A function that takes a select query and returns it with added conditions.

    Example:
        >>> await book.load(
        ...     {"editions": add_conditions(editions.c.format == "hardcover")}
        ... )
    """

    def _add(query: sa.Select[Any]) -> sa.Select[Any]:
        return query.where(*conditions)

    return _add
