from __future__ import annotations

import pytest
import sqlalchemy as sa

from sqla_shelf import Shelf, relationship
from sqla_shelf.errors import ConfigurationError, UnknownRelationError
from sqla_shelf.registry import Registry

from ..models import Author, Book, shelf


def _metadata() -> sa.MetaData:
    metadata = sa.MetaData()
    sa.Table("items", metadata, sa.Column("id", sa.Integer, primary_key=True))
    sa.Table(
        "parts",
        metadata,
        sa.Column("uuid", sa.String(36), primary_key=True),
        sa.Column("item_uuid", sa.String(36)),
    )
    return metadata


class TestRegistry:
    def test_models_registered_by_class_and_table_name(self) -> None:
        assert shelf.registry["Book"] is Book
        assert shelf.registry["books"] is Book
        assert "Author" in shelf.registry

    def test_missing_name(self) -> None:
        assert shelf.registry.get("Reviews") is None
        with pytest.raises(KeyError):
            shelf.registry["Reviews"]

    def test_resolve_passes_classes_through(self) -> None:
        assert shelf.registry.resolve(Author) is Author

    def test_resolve_unknown_name(self) -> None:
        with pytest.raises(ConfigurationError, match="Registered:"):
            shelf.registry.resolve("Reviews")

    def test_models_snapshot_is_read_only(self) -> None:
        models = shelf.registry.models
        with pytest.raises(TypeError):
            models["Other"] = Book  # type: ignore[index]

    def test_replacing_a_name_warns(self) -> None:
        local = Shelf(_metadata())

        class Item(local.Model):
            __tablename__ = "items"

        with pytest.warns(UserWarning, match="already registered"):

            class Item(local.Model):  # type: ignore[no-redef]  # noqa: F811
                __tablename__ = "items"

        assert local.registry["items"] is Item

    def test_reset(self) -> None:
        registry = Registry()
        registry.add(Book)
        registry.reset()

        assert len(registry) == 0


class TestShelfConfiguration:
    def test_missing_table(self) -> None:
        local = Shelf(_metadata())
        with pytest.raises(ConfigurationError, match="'widgets' is not defined"):

            class Widget(local.Model):
                __tablename__ = "widgets"

    def test_missing_tablename(self) -> None:
        local = Shelf(_metadata())
        with pytest.raises(ConfigurationError, match="__tablename__"):

            class Widget(local.Model):
                pass

    def test_custom_id_attribute_and_naming(self) -> None:
        local = Shelf(_metadata(), id_attribute="uuid", singularize=lambda name: name.rstrip("s"))

        class Item(local.Model):
            __tablename__ = "items"
            id_attribute = "id"

            @relationship
            def parts(self):
                return self.has_many("Part")

        class Part(local.Model):
            __tablename__ = "parts"

        part = Part({"uuid": "abc"})
        descriptor = Item().relation_for("parts").descriptor

        assert part.id == "abc"
        assert descriptor.foreign_key == "item_id"

    def test_unbound_shelf(self) -> None:
        with pytest.raises(RuntimeError, match="no bind"):
            Shelf().get_bind()

    def test_relations_are_inherited(self) -> None:
        local = Shelf(_metadata())

        class Base(local.Model):
            __abstract__ = True

            @relationship
            def parts(self):
                return self.has_many("Part", foreign_key="item_uuid")

        class Item(Base):
            __tablename__ = "items"

        assert set(Item.__relations__) == {"parts"}
        with pytest.raises(UnknownRelationError, match="'tags' is not defined"):
            Item().related("tags")

    def test_each_model_gets_its_own_errors(self) -> None:
        assert Book.NotFoundError is not Author.NotFoundError
        assert issubclass(Book.NotFoundError, shelf.Model.NotFoundError)
        assert Book.NotFoundError.__qualname__ == "Book.NotFoundError"
