from __future__ import annotations

import logging
import sys
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Literal, Optional, Union

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncConnection

from .tools import get_column


if sys.version_info >= (3, 11):
    from typing import TypedDict
else:
    from typing_extensions import TypedDict

if TYPE_CHECKING:
    from .collection import Collection
    from .model import Model

logger = logging.getLogger(__name__)

Constraint = Callable[[sa.Select[Any]], sa.Select[Any]]
WithRelated = Union[
    str,
    Mapping[str, Optional[Constraint]],
    Sequence[Union[str, Mapping[str, Optional[Constraint]]]],
]


class SyncOptions(TypedDict, total=False):
    transacting: AsyncConnection
    columns: Sequence[str]


class FetchOptions(SyncOptions, total=False):
    require: bool
    with_related: WithRelated


class EagerOptions(FetchOptions, total=False):
    parent_rows: Sequence[Mapping[str, Any]]
    before: Optional[Constraint]


class SaveOptions(SyncOptions, total=False):
    method: Literal["insert", "update"]
    patch: bool
    defaults: bool
    require: bool


class DestroyOptions(SyncOptions, total=False):
    require: bool


class QuerySync:
    """Turn one model or collection operation into a single statement.

    Pending ``where()``/``query()`` constraints of the synced object are
    consumed by the statement that runs next, so they apply exactly once.
    Statements run on ``options["transacting"]`` when given, otherwise on
    the shelf's bind (an engine gets a fresh ``begin()`` block per call).
    """

    __slots__ = ("options", "syncing")

    def __init__(self, syncing: Model | Collection, options: Mapping[str, Any]) -> None:
        self.syncing = syncing
        self.options = options

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[AsyncConnection]:
        bind = self.options.get("transacting") or self.syncing.shelf.get_bind()
        if isinstance(bind, AsyncConnection):
            yield bind
            return

        async with bind.begin() as conn:
            yield conn

    async def first(self) -> list[sa.RowMapping]:
        """Select the first row matching the model's current attributes."""
        syncing = self.syncing
        table = syncing.__table__
        attributes = syncing.format(dict(syncing.attributes))  # type: ignore[union-attr]
        clauses = [get_column(table, key) == value for key, value in attributes.items()]
        return await self.select(*clauses, limit=1)

    async def select(
        self,
        *clauses: sa.ColumnExpressionArgument[bool],
        limit: int | None = None,
    ) -> list[sa.RowMapping]:
        """Run the (relation-constrained) SELECT and return its raw rows.

        Triggers ``fetching`` on the synced object before the statement runs.
        """
        syncing = self.syncing
        options = self.options
        columns = options.get("columns")
        relation = syncing.related_data

        if relation is not None:
            query = relation.select_constraints(
                columns=columns,
                parent_rows=options.get("parent_rows"),
                before=options.get("before"),
            )
        else:
            table = syncing.__table__
            if columns:
                query = sa.select(*(get_column(table, name) for name in columns))
            else:
                query = sa.select(table)

        where, modifiers = syncing._reset_query()
        if where or clauses:
            query = query.where(*where, *clauses)
        for modifier in modifiers:
            query = modifier(query)
        if limit is not None:
            query = query.limit(limit)

        await syncing.trigger("fetching", syncing, columns, options)

        logger.debug("Fetching %s: %s", type(syncing).__name__, query)
        async with self._connection() as conn:
            result = await conn.execute(query)
            return list(result.mappings().all())

    async def insert(self) -> Any:
        """Insert the model's formatted attributes and return the new primary key."""
        syncing = self.syncing
        values = syncing.format(dict(syncing.attributes))  # type: ignore[union-attr]
        statement = sa.insert(syncing.__table__).values(values)

        logger.debug("Inserting %s: %s", type(syncing).__name__, values)
        async with self._connection() as conn:
            result = await conn.execute(statement)

        primary_key = result.inserted_primary_key
        return primary_key[0] if primary_key else None

    async def update(self, attributes: Mapping[str, Any]) -> int:
        """Update the matched rows with *attributes* and return the row count.

        Raises:
            ValueError: If the model has neither an id nor pending where clauses.
        """
        syncing = self.syncing
        table = syncing.__table__
        statement = sa.update(table).where(*self._identity_clauses("updated")).values(
            syncing.format(dict(attributes))  # type: ignore[union-attr]
        )
        return await self.execute(statement)

    async def delete(self) -> int:
        """Delete the matched rows and return the row count.

        Raises:
            ValueError: If the model has neither an id nor pending where clauses.
        """
        statement = sa.delete(self.syncing.__table__).where(*self._identity_clauses("deleted"))
        return await self.execute(statement)

    def _identity_clauses(self, action: str) -> list[Any]:
        syncing = self.syncing
        where, modifiers = syncing._reset_query()
        if modifiers:
            logger.debug("Ignoring %d query modifier(s) on %s", len(modifiers), action)

        clauses = list(where)
        model_id = getattr(syncing, "id", None)
        if model_id is not None:
            clauses.append(get_column(syncing.__table__, syncing.id_attribute) == model_id)  # type: ignore[union-attr]

        if not clauses:
            raise ValueError(
                f'A model cannot be {action} without a "where" clause or an id_attribute.'
            )

        return clauses

    async def execute(self, statement: sa.Executable) -> int:
        """Run a write statement and return the affected row count."""
        logger.debug("Executing: %s", statement)
        async with self._connection() as conn:
            result = await conn.execute(statement)

        return result.rowcount
