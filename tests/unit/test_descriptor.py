from __future__ import annotations

import pytest

from sqla_shelf.descriptor import RelationDescriptor
from sqla_shelf.errors import ConfigurationError, UnknownMorphTypeError

from ..models import (
    Author,
    Book,
    Edition,
    Genre,
    Imprint,
    Photo,
    Printing,
    Publisher,
    Release,
    Tag,
)


class TestDefaults:
    def test_has_many_foreign_key_from_parent_table(self) -> None:
        descriptor = Author().relation_for("books").descriptor

        assert descriptor.kind == "has_many"
        assert descriptor.target is Book
        assert descriptor.foreign_key == "author_id"

    def test_belongs_to_foreign_key_from_target_table(self) -> None:
        descriptor = Book().relation_for("genre").descriptor

        assert descriptor.foreign_key == "genre_id"
        assert descriptor.is_inverse
        assert descriptor.is_single

    def test_belongs_to_many_join_table_and_keys(self) -> None:
        descriptor = Book().relation_for("tags").descriptor

        assert descriptor.join_table_name == "books_tags"
        assert descriptor.foreign_key == "book_id"
        assert descriptor.other_key == "tag_id"
        assert descriptor.is_joined
        assert not descriptor.is_single

    def test_belongs_to_many_join_table_is_symmetric(self) -> None:
        assert Tag().relation_for("books").descriptor.join_table_name == "books_tags"

    def test_morph_one_columns_and_value(self) -> None:
        descriptor = Book().relation_for("cover").descriptor

        assert descriptor.foreign_key == "imageable_id"
        assert descriptor.morph_key == "imageable_type"
        assert descriptor.morph_value == "books"
        assert descriptor.is_morph

    def test_morph_custom_column_names_and_value(self) -> None:
        descriptor = RelationDescriptor.create(
            "morph_many",
            Author,
            Photo,
            morph_name="imageable",
            column_names=("kind", "owner_id"),
            morph_value="writer",
        )

        assert descriptor.morph_key == "kind"
        assert descriptor.foreign_key == "owner_id"
        assert descriptor.morph_value == "writer"

    def test_morph_to_candidates_keyed_by_table(self) -> None:
        descriptor = Photo().relation_for("imageable").descriptor

        assert descriptor.target is None
        assert dict(descriptor.candidates) == {"books": Book, "authors": Author}
        assert descriptor.foreign_key == "imageable_id"

    def test_targets_resolve_by_class_or_table_name(self) -> None:
        by_table = RelationDescriptor.create("has_many", Edition, "printings")
        by_class = RelationDescriptor.create("has_many", Edition, "Printing")

        assert by_table.target is by_class.target is Printing

    def test_explicit_foreign_key_wins(self) -> None:
        descriptor = RelationDescriptor.create("has_one", Genre, Book, foreign_key="genre_id")
        assert descriptor.foreign_key == "genre_id"

    @pytest.mark.parametrize(
        ("model", "name"),
        [(Author, "books"), (Book, "genre"), (Book, "summary"), (Book, "tags"), (Book, "cover")],
    )
    def test_plain_relations_have_no_interim(self, model: type, name: str) -> None:
        descriptor = model().relation_for(name).descriptor

        assert descriptor.interim is None
        assert not descriptor.is_through

    @pytest.mark.parametrize("name", ["books", "photos"])
    def test_plain_relations_are_not_joined(self, name: str) -> None:
        descriptor = Author().relation_for(name).descriptor

        assert not descriptor.is_joined
        assert descriptor.join_table_name_resolved is None


class TestThrough:
    def test_has_many_through(self) -> None:
        descriptor = Author().relation_for("editions").descriptor

        assert descriptor.is_through
        assert descriptor.is_joined
        assert descriptor.interim is not None
        assert descriptor.interim.target is Book
        assert descriptor.interim.foreign_key == "book_id"
        assert descriptor.join_table_name_resolved == "books"

    def test_belongs_to_through(self) -> None:
        descriptor = Edition().relation_for("author").descriptor

        assert descriptor.kind == "belongs_to"
        assert descriptor.foreign_key == "author_id"
        assert descriptor.interim is not None
        assert descriptor.interim.table_name == "books"

    def test_chained_on_bound_relation(self) -> None:
        relation = Author({"id": 1}).has_many("Edition").through("Book")

        assert relation.parent_fk == 1
        assert relation.descriptor.interim is not None
        assert relation.descriptor.interim.target is Book
        assert relation.descriptor.foreign_key == "author_id"

    def test_has_many_explicit_keys(self) -> None:
        descriptor = Publisher().relation_for("releases").descriptor

        assert descriptor.interim is not None
        assert descriptor.interim.target is Imprint
        assert descriptor.interim.foreign_key == "label_id"
        assert descriptor.foreign_key == "owner_id"
        assert descriptor.other_key is None

    def test_belongs_to_explicit_keys(self) -> None:
        descriptor = Release().relation_for("publisher").descriptor

        assert descriptor.interim is not None
        assert descriptor.interim.foreign_key == "label_id"
        assert descriptor.foreign_key == "owner_id"

    def test_default_keys_without_explicit_ones(self) -> None:
        descriptor = RelationDescriptor.create("has_many", Publisher, Release).through(Imprint)

        assert descriptor.interim is not None
        assert descriptor.interim.foreign_key == "imprint_id"
        assert descriptor.foreign_key == "publisher_id"

    def test_belongs_to_many_other_key(self) -> None:
        descriptor = Book().relation_for("tags").descriptor.through(Edition, other_key="label_id")

        assert descriptor.other_key == "label_id"
        assert descriptor.foreign_key == "book_id"

    @pytest.mark.parametrize("name", ["cover", "photos"])
    def test_not_allowed_for_morph_kinds(self, name: str) -> None:
        model = Book() if name == "cover" else Author()
        with pytest.raises(ConfigurationError, match="only chainable"):
            model.relation_for(name).through(Edition)


class TestRoute:
    def test_routes_to_candidate(self) -> None:
        descriptor = Photo().relation_for("imageable").descriptor.route("authors")

        assert descriptor.target is Author
        assert descriptor.morph_value == "authors"

    def test_none_leaves_unrouted(self) -> None:
        descriptor = Photo().relation_for("imageable").descriptor
        assert descriptor.route(None) is descriptor

    def test_unknown_discriminator(self) -> None:
        descriptor = Photo().relation_for("imageable").descriptor
        with pytest.raises(UnknownMorphTypeError, match="'genres'"):
            descriptor.route("genres")

    def test_unknown_discriminator_is_configuration_error(self) -> None:
        assert issubclass(UnknownMorphTypeError, ConfigurationError)

    def test_binding_routes_by_stored_type(self) -> None:
        relation = Photo({"imageable_type": "books", "imageable_id": 1}).relation_for("imageable")

        assert relation.descriptor.target is Book
        assert relation.parent_fk == 1


class TestValidation:
    def test_unknown_kind(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown relation kind"):
            RelationDescriptor.create("has_few", Book, Tag)  # type: ignore[arg-type]

    def test_missing_target(self) -> None:
        with pytest.raises(ConfigurationError, match="target model is required"):
            RelationDescriptor.create("has_many", Book, None)

    def test_unknown_target_name(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown model 'Reviews'"):
            RelationDescriptor.create("has_many", Book, "Reviews")

    def test_morph_without_name(self) -> None:
        with pytest.raises(ConfigurationError, match="polymorphic"):
            RelationDescriptor.create("morph_one", Book, Photo)

    def test_morph_to_without_candidates(self) -> None:
        with pytest.raises(ConfigurationError, match="at least one candidate"):
            RelationDescriptor.create("morph_to", Photo, None, morph_name="imageable")

    def test_bad_column_names(self) -> None:
        with pytest.raises(ConfigurationError, match="column_names"):
            RelationDescriptor.create(
                "morph_one", Book, Photo, morph_name="imageable", column_names=("only",)
            )

    def test_join_table_on_wrong_kind(self) -> None:
        with pytest.raises(ConfigurationError, match="join_table_name"):
            RelationDescriptor.create("has_many", Book, Edition, join_table_name="books_tags")

    def test_same_foreign_and_other_key(self) -> None:
        with pytest.raises(ConfigurationError, match="both 'book_id'"):
            RelationDescriptor.create("belongs_to_many", Book, Tag, other_key="book_id")

    def test_missing_join_table_surfaces_on_use(self) -> None:
        descriptor = RelationDescriptor.create(
            "belongs_to_many", Book, Tag, join_table_name="book_labels"
        )
        with pytest.raises(ConfigurationError, match="'book_labels' is not defined"):
            _ = descriptor.join_table

    def test_descriptors_are_hashable(self) -> None:
        assert hash(Book().relation_for("tags").descriptor) == hash(
            Book().relation_for("tags").descriptor
        )
