from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from typing import Any

import pytest
import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from sqla_shelf import shelf_cache_clear

from .models import (
    authors,
    books,
    books_tags,
    editions,
    genres,
    metadata,
    photos,
    printings,
    shelf,
    summaries,
    tags,
)


pytestmark = pytest.mark.anyio


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(scope="session")
def db_config(tmp_path_factory: pytest.TempPathFactory) -> str:
    tmp = tmp_path_factory.mktemp("db")
    return f"sqlite+aiosqlite:///{tmp}/test.db"


@pytest.fixture(scope="session")
def engine(db_config: str) -> AsyncEngine:
    return create_async_engine(db_config, echo=False)


@pytest.fixture(scope="session")
async def _create_tables(engine: AsyncEngine) -> AsyncIterator[None]:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def connection(
    engine: AsyncEngine, _create_tables: None
) -> AsyncIterator[AsyncConnection]:
    async with engine.connect() as conn:
        trans = await conn.begin()
        shelf.bind = conn
        yield conn
        shelf.bind = None
        await trans.rollback()


@pytest.fixture
async def seed_data(connection: AsyncConnection) -> dict[str, list[dict[str, Any]]]:
    data: dict[str, list[dict[str, Any]]] = {
        "genres": [
            {"id": 1, "name": "science fiction"},
            {"id": 2, "name": "fantasy"},
            {"id": 3, "name": "poetry"},
        ],
        "authors": [
            {"id": 1, "name": "Frank Herbert"},
            {"id": 2, "name": "Ursula K. Le Guin"},
            {"id": 3, "name": "Nobody"},
        ],
        "books": [
            {"id": 1, "title": "Dune", "genre_id": 1, "author_id": 1},
            {"id": 2, "title": "Dune Messiah", "genre_id": 1, "author_id": 1},
            {"id": 3, "title": "A Wizard of Earthsea", "genre_id": 2, "author_id": 2},
            {"id": 4, "title": "Orphan", "genre_id": None, "author_id": None},
        ],
        "editions": [
            {"id": 1, "book_id": 1, "format": "hardcover"},
            {"id": 2, "book_id": 1, "format": "paperback"},
            {"id": 3, "book_id": 3, "format": "paperback"},
        ],
        "printings": [
            {"id": 1, "edition_id": 1, "run": 1},
            {"id": 2, "edition_id": 1, "run": 2},
            {"id": 3, "edition_id": 3, "run": 1},
        ],
        "tags": [
            {"id": 1, "name": "classic"},
            {"id": 2, "name": "desert"},
            {"id": 3, "name": "magic"},
            {"id": 4, "name": "unused"},
        ],
        "books_tags": [
            {"book_id": 1, "tag_id": 1, "access": "public"},
            {"book_id": 1, "tag_id": 2, "access": "public"},
            {"book_id": 2, "tag_id": 2, "access": "private"},
            {"book_id": 3, "tag_id": 1, "access": "public"},
            {"book_id": 3, "tag_id": 3, "access": "public"},
        ],
        "photos": [
            {"id": 1, "url": "dune.jpg", "imageable_type": "books", "imageable_id": 1},
            {"id": 2, "url": "herbert.jpg", "imageable_type": "authors", "imageable_id": 1},
            {"id": 3, "url": "earthsea.jpg", "imageable_type": "books", "imageable_id": 3},
            {"id": 4, "url": "stray.jpg", "imageable_type": None, "imageable_id": None},
        ],
        "summaries": [
            {"id": 1, "book_id": 1, "body": "Spice and sand."},
        ],
    }
    tables: dict[str, sa.Table] = {
        "genres": genres,
        "authors": authors,
        "books": books,
        "editions": editions,
        "printings": printings,
        "tags": tags,
        "books_tags": books_tags,
        "photos": photos,
        "summaries": summaries,
    }
    for name, rows in data.items():
        await connection.execute(tables[name].insert(), rows)

    return data


class QueryLog:
    """SQL statements executed on the engine while the fixture is active."""

    def __init__(self) -> None:
        self.statements: list[str] = []

    def record(self, conn: Any, cursor: Any, statement: str, *args: Any) -> None:
        self.statements.append(statement)

    @property
    def selects(self) -> list[str]:
        return [s for s in self.statements if s.lstrip().upper().startswith("SELECT")]

    def clear(self) -> None:
        self.statements.clear()


@pytest.fixture
def queries(engine: AsyncEngine, seed_data: dict[str, Any]) -> Iterator[QueryLog]:
    log = QueryLog()
    event.listen(engine.sync_engine, "before_cursor_execute", log.record)
    yield log
    event.remove(engine.sync_engine, "before_cursor_execute", log.record)


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    shelf_cache_clear()
