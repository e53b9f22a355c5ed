from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Union

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from . import tools
from .errors import ConfigurationError
from .model import Model
from .registry import Registry


Bind = Union[AsyncEngine, AsyncConnection]


class Shelf:
    """Entry point: table metadata, model registry and database bind.

    Args:
        metadata: ``sa.MetaData`` holding every table the models use.
        bind: ``AsyncEngine`` or ``AsyncConnection`` queries run on; may be
            (re)assigned later via ``shelf.bind``.
        singularize: Naming convention used to build default foreign keys
            (``books`` -> ``book_id``).
        id_attribute: Default primary key attribute for this shelf's models.

    Example:
        >>> shelf = Shelf(metadata, bind=engine)
        >>> class Author(shelf.Model):
        ...     __tablename__ = "authors"
        ...
        ...     @relationship
        ...     def books(self):
        ...         return self.has_many("Book")
    """

    def __init__(
        self,
        metadata: sa.MetaData | None = None,
        *,
        bind: Bind | None = None,
        singularize: Callable[[str], str] = tools.singularize,
        id_attribute: str = "id",
    ) -> None:
        self.metadata = metadata if metadata is not None else sa.MetaData()
        self.bind = bind
        self.singularize = singularize
        self.id_attribute = id_attribute
        self.registry = Registry()
        self.Model: type[Model] = type(
            "Model",
            (Model,),
            {
                "__abstract__": True,
                "__module__": Model.__module__,
                "shelf": self,
                "id_attribute": id_attribute,
            },
        )

    def table(self, name: str) -> sa.Table:
        """Look up *name* in the shelf's metadata.

        Raises:
            ConfigurationError: If the table is not defined.
        """
        try:
            return self.metadata.tables[name]
        except KeyError:
            raise ConfigurationError(
                f"Table {name!r} is not defined in the shelf's metadata. "
                f"Available: {sorted(self.metadata.tables)}"
            ) from None

    def get_bind(self) -> Bind:
        if self.bind is None:
            raise RuntimeError("Shelf has no bind; pass `bind=` or assign `shelf.bind` first.")

        return self.bind

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """Yield a connection inside a transaction, for ``transacting=``.

        On an engine this is ``engine.begin()``; on a connection already in a
        transaction a SAVEPOINT is used.
        """
        bind = self.get_bind()
        if isinstance(bind, AsyncEngine):
            async with bind.begin() as conn:
                yield conn
        elif bind.in_transaction():
            async with bind.begin_nested():
                yield bind
        else:
            async with bind.begin():
                yield bind

    def __repr__(self) -> str:
        return f"<{type(self).__name__} models={sorted(self.registry.models)}>"
