import pytest
from sample_models import Author, Post, Tag

from tablemap.attributes import (
    ModelAttributeLink,
    ModelAttributeLinkThrough,
    Resolved,
    Unresolved,
)
from tablemap.attributes.values import format_relation
from tablemap.errors import ModelDefinitionError


def _country_link(**kwargs) -> ModelAttributeLink:
    return ModelAttributeLink(
        "country",
        model_name="post",
        model_table="posts",
        target_table="countries",
        **kwargs,
    )


def test_raw_id_without_database_stays_unresolved():
    link = _country_link().create(3)

    assert link.get(as_native=True) == Unresolved(3)
    assert link.get_target_id() == 3
    assert link.get() == {"id": 3}
    assert link.target_column == "country_id"


def test_row_mapping_is_resolved_to_the_row():
    link = _country_link().create({"id": 4, "name": "Peru"})

    assert link.get(as_native=True) == Resolved(4, {"id": 4, "name": "Peru"})
    assert link.get() == {"id": 4, "name": "Peru"}


def test_mapping_without_the_id_is_a_type_error():
    link = _country_link().create({"name": "Peru"})

    assert not link.is_valid
    assert [m.code for m in link.messages] == ["attribute-type"]


def test_link_needs_a_target():
    with pytest.raises(ModelDefinitionError):
        ModelAttributeLink("country", model_name="post", model_table="posts")


def test_many_targets_need_an_inversed_link():
    with pytest.raises(ModelDefinitionError):
        _country_link(n_links="many")
    with pytest.raises(ModelDefinitionError):
        _country_link(n_links="several", is_inversed=True)


def test_inversed_link_holds_a_member_per_target():
    link = _country_link(is_inversed=True, n_links="many").create([1, 2, 2])

    assert link.get_target_ids() == [1, 2]
    assert link.target_column == "post_id"


def test_removing_an_unlinked_target_is_recorded():
    link = _country_link(is_inversed=True, n_links="many").create([1])
    link.remove(5)

    assert [m.code for m in link.messages] == ["attribute-remove-target-not-found"]
    assert link.get_target_ids() == [1]


def test_link_to_a_model_reads_the_target_declaration():
    link = ModelAttributeLink(
        "author", model_name="post", model_table="posts", target=Author
    )

    assert link.target_table == "authors"
    assert link.target_id_column == "id"
    assert link.target_updated_at_column == "updated_at"


def test_unsaved_target_instance_is_rejected():
    link = ModelAttributeLink(
        "author", model_name="post", model_table="posts", target=Author
    ).create(Author())

    assert [m.code for m in link.messages] == ["attribute-type"]


def test_polymorphic_junction_naming():
    link = ModelAttributeLinkThrough(
        "tags", model_name="post", model_table="posts", target=Tag
    )
    inversed = ModelAttributeLinkThrough(
        "posts", model_name="tag", model_table="tags", target=Post, is_inversed=True
    )

    assert link.relation_table == inversed.relation_table == "tagables"
    assert link.relation_source_column == "tagable_id"
    assert link.relation_target_column == "tag_id"
    assert link.relation_source_type_column == "tagable_type"
    assert link.source_discriminator == "post"

    assert inversed.relation_source_column == "tag_id"
    assert inversed.relation_target_column == "tagable_id"
    assert inversed.source_discriminator == "post"


def test_plain_junction_naming():
    link = ModelAttributeLinkThrough(
        "tags", model_name="post", model_table="posts", target=Tag, is_many=False
    )
    inversed = ModelAttributeLinkThrough(
        "posts",
        model_name="tag",
        model_table="tags",
        target=Post,
        is_many=False,
        is_inversed=True,
    )

    assert link.relation_table == inversed.relation_table == "post_tags"
    assert (link.relation_source_column, link.relation_target_column) == (
        "post_id",
        "tag_id",
    )
    assert (inversed.relation_source_column, inversed.relation_target_column) == (
        "tag_id",
        "post_id",
    )
    assert link.relation_source_type_column is None


def test_junction_columns():
    link = ModelAttributeLinkThrough(
        "tags", model_name="post", model_table="posts", target=Tag
    )

    assert [column.name for column in link.junction_columns()] == [
        "tagable_id",
        "tag_id",
        "tagable_type",
    ]
    assert all(not column.nullable for column in link.junction_columns())


def test_format_relation():
    assert format_relation(None, "id") is None
    assert format_relation(Unresolved(2), "uuid") == {"uuid": 2}
    assert format_relation(Resolved(2, {"id": 2}), "id") == {"id": 2}
    with pytest.raises(TypeError):
        format_relation("2", "id")
