from __future__ import annotations

import logging
import sys
from collections.abc import Mapping, Sequence
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from .errors import UnknownRelationError
from .relation import Relation
from .sync import Constraint, EagerOptions, QuerySync, WithRelated
from .tools import singularize


if sys.version_info >= (3, 11):
    from typing import Unpack
else:
    from typing_extensions import Unpack

if TYPE_CHECKING:
    from .model import Model

logger = logging.getLogger(__name__)

_LEVEL_ONLY_OPTIONS = frozenset({"with_related", "parent_rows", "before", "columns"})


class EagerRelation:
    """Resolve ``with_related`` paths for a batch of already-fetched parents.

    Each level issues one query per relation name (one per discriminator
    for ``morph_to``), batched over the keys of every parent, pairs the
    results back onto ``parent.relations`` and then recurses into the
    instances it just created with the remaining path suffixes.

    Example:
        >>> rows = [{"id": 1, "title": "Dune"}]
        >>> await EagerRelation([book], rows, Book()).fetch(
        ...     with_related=["author", "tags", "editions.printings"]
        ... )
    """

    __slots__ = ("parent_rows", "parents", "target")

    def __init__(
        self,
        parents: Sequence[Model],
        parent_rows: Sequence[Mapping[str, Any]],
        target: Model,
    ) -> None:
        self.parents = parents
        self.parent_rows = parent_rows
        self.target = target

    async def fetch(self, **options: Unpack[EagerOptions]) -> Sequence[Mapping[str, Any]]:
        """Eager-load every path in ``options["with_related"]``.

        Args:
            **options: ``with_related`` plus the fetch options (``transacting``,
                ``require`` ...) handed unchanged to every level.

        Returns:
            The parent rows this level was built from.

        Raises:
            UnknownRelationError: If any path segment is not declared, checked
                for every path before the first query runs.
        """
        with_related = _prep_with_related(options.get("with_related"))
        model = type(self.target)
        for path in with_related:
            _resolve_dotted_path(model, path)

        handled: dict[str, Relation] = {}
        sub_related: dict[str, list[dict[str, Constraint | None]]] = {}
        for path, constraint in with_related.items():
            name, _, rest = path.partition(".")
            if rest:
                sub_related.setdefault(name, []).append({rest: constraint})
            if name not in handled:
                handled[name] = self.target.relation_for(name)

        shared = {key: value for key, value in options.items() if key not in _LEVEL_ONLY_OPTIONS}
        for name, relation in handled.items():
            level_options: dict[str, Any] = {
                **shared,
                "with_related": sub_related.get(name, []),
                "before": with_related.get(name),
            }
            if relation.descriptor.kind == "morph_to":
                await self._morph_to_fetch(name, relation, level_options)
            else:
                await self._eager_fetch(name, relation, level_options)

        return self.parent_rows

    async def _eager_fetch(self, name: str, relation: Relation, options: dict[str, Any]) -> None:
        if not self.parents:
            return

        logger.debug(
            "Eager loading %s.%s for %d parent(s)",
            type(self.target).__name__,
            name,
            len(self.parents),
        )
        rows = await QuerySync(
            relation.prototype(), {**options, "parent_rows": self.parent_rows}
        ).select()
        await self._eager_load_helper(rows, name, relation, self.parents, options)

    async def _morph_to_fetch(self, name: str, relation: Relation, options: dict[str, Any]) -> None:
        descriptor = relation.descriptor
        groups: dict[str, list[Model]] = {}
        unrouted: list[Model] = []
        for parent in self.parents:
            value = parent.format(dict(parent.attributes)).get(descriptor.morph_key)
            if value is None:
                unrouted.append(parent)
            else:
                groups.setdefault(value, []).append(parent)

        # Route every group first so an unknown discriminator fails before any query.
        routed = {value: Relation(descriptor.route(value)) for value in groups}

        for value, parents in groups.items():
            logger.debug(
                "Eager loading %s.%s[%s] for %d parent(s)",
                type(self.target).__name__,
                name,
                value,
                len(parents),
            )
            group = routed[value]
            parent_rows = [parent.format(dict(parent.attributes)) for parent in parents]
            sync = QuerySync(group.prototype(), {**options, "parent_rows": parent_rows})
            rows = await sync.select()
            await self._eager_load_helper(rows, name, group, parents, options)

        for parent in unrouted:
            parent.relations[name] = None

    async def _eager_load_helper(
        self,
        rows: Sequence[Mapping[str, Any]],
        name: str,
        relation: Relation,
        parents: Sequence[Model],
        options: dict[str, Any],
    ) -> None:
        related = [relation.create_model(row) for row in rows]
        relation.eager_pair(name, related, parents)

        if not rows or not options.get("with_related"):
            return

        target = relation.descriptor.target
        assert target is not None
        await EagerRelation(related, rows, target()).fetch(**options)


def _prep_with_related(with_related: WithRelated | None) -> dict[str, Constraint | None]:
    """Normalize ``with_related`` into an ordered ``{path: constraint}`` dict."""
    if not with_related:
        return {}

    if isinstance(with_related, (str, Mapping)):
        with_related = [with_related]

    prepared: dict[str, Constraint | None] = {}
    for item in with_related:
        if isinstance(item, str):
            prepared.setdefault(item, None)
        else:
            prepared.update(item)

    return prepared


@lru_cache(maxsize=1028)
def _resolve_dotted_path(model: type[Model], dotted: str) -> tuple[type[Model], ...]:
    """Check a dot-notation path like 'editions.printings' against declared relations.

    A ``morph_to`` segment fans out: the rest of the path must exist on every
    candidate target. Returns the model classes reached by the last segment.
    """
    current: tuple[type[Model], ...] = (model,)
    for segment in dotted.split("."):
        reached: dict[type[Model], None] = {}
        for current_cls in current:
            if segment not in current_cls.__relations__:
                raise UnknownRelationError(
                    f"No relationship '{segment}' on {current_cls.__name__} "
                    f"(resolving '{dotted}' from {model.__name__})"
                )
            descriptor = current_cls().relation_for(segment).descriptor
            if descriptor.kind == "morph_to":
                reached.update(dict.fromkeys(descriptor.candidates.values()))
            else:
                assert descriptor.target is not None
                reached[descriptor.target] = None
        current = tuple(reached)

    return current


def shelf_cache_info() -> dict[str, Any]:
    """Return LRU cache statistics for all internal caches."""
    return {fn.__name__: fn.cache_info() for fn in (_resolve_dotted_path, singularize)}


def shelf_cache_clear() -> None:
    """Clear all internal LRU caches."""
    for fn in (_resolve_dotted_path, singularize):
        fn.cache_clear()
