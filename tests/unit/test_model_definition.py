import pytest
from sample_models import Author, Note, Post, Tag

from tablemap import AttributeType, Model, Privacy, Right
from tablemap.errors import ModelDefinitionError


class Entry(Model):
    name = "entry"
    bundle = "blog"

    def model(self):
        self.id("entry_uuid", AttributeType.UUID)
        self.attribute("title")


class Unnamed(Model):
    def model(self):
        self.attribute("title")


def test_default_columns_are_declared():
    post = Post()

    assert post.table == "posts"
    assert post.id_column == "id"
    assert post.user_column == "user_id"
    assert (post.created_at_column, post.updated_at_column, post.deleted_at_column) == (
        "created_at",
        "updated_at",
        "deleted_at",
    )
    assert post.can_view == Privacy.PROTECTED
    assert post.table_attributes()[0].name == "id"


def test_updated_at_is_stamped_by_scalar_attributes_and_links():
    post = Post()

    assert post.get_attribute("title").updated_at_column == "updated_at"
    assert post.get_attribute("author").updated_at_column == "updated_at"
    assert post.get_attribute("updated_at").updated_at_column is None


def test_public_model_without_timestamps():
    tag = Tag()

    assert tag.user_column is None
    assert tag.can_view == Privacy.PUBLIC
    assert set(tag.attributes) == {"label", "id"}


def test_bundle_prefixes_the_table_and_uuid_id():
    entry = Entry()

    assert entry.table == "blog_entrys"
    assert entry.id_column == "entry_uuid"
    assert entry.id_type == AttributeType.UUID


def test_soft_delete_can_be_disabled():
    note = Note()

    assert note.deleted_at_column is None
    assert "deleted_at" not in note.attributes
    assert note.updated_at_column == "updated_at"


def test_model_needs_a_name():
    with pytest.raises(ModelDefinitionError):
        Unnamed()


def test_duplicate_attribute_is_rejected():
    post = Post()

    with pytest.raises(ModelDefinitionError):
        post.attribute("title")


@pytest.mark.parametrize("call", ["relation", "second_id", "char_id", "link_twice"])
def test_invalid_declarations(call):
    post = Post()

    with pytest.raises(ModelDefinitionError):
        if call == "relation":
            post.attribute("other", AttributeType.RELATION)
        elif call == "second_id":
            post.id("other_id")
        elif call == "char_id":
            Tag().id("code", AttributeType.CHAR)
        else:
            post.link_to(Author, name="editor")


def test_links_are_skipped_without_relations():
    post = Post(load_relations=False)

    assert "author" not in post.attributes
    assert "tags" not in post.attributes


def test_undeclared_attribute():
    with pytest.raises(ModelDefinitionError):
        Post().get("missing")


def test_check_form_collects_messages():
    post = Post()

    assert post.check_form({"body": "no title", "views": "many"}) is None
    assert not post.is_valid
    assert [m.code for m in post.messages["title"]] == ["attribute-required"]
    assert [m.code for m in post.messages["views"]] == ["attribute-type"]
    assert [m.code for m in post.messages["published"]] == ["default-value-used"]


def test_check_form_looks_values_up_by_column():
    post = Post()

    assert post.check_form({"title": "Hi", "author_id": 3, "user_id": 7}) is post
    assert post.get_attribute("author").get_target_id() == 3


def test_check_form_skips_managed_attributes():
    post = Post()
    post.check_form(
        {"title": "Hi", "user_id": 7, "id": 5, "created_at": "yesterday"}
    )

    assert post.is_valid
    assert post.get("id") is None
    assert post.get("created_at") is None


def test_rights_of_a_protected_model():
    post = Post()
    post.set("user_id", 7)

    assert post.check_user_rights(Right.VIEW, 7)
    assert post.check_user_rights("edit", 7)
    assert not post.check_user_rights(Right.EDIT, 8)
    assert not post.check_user_rights(Right.VIEW, None)


def test_rights_of_public_and_logged_in_models():
    note = Note()
    note.set("user_id", 7)

    assert Tag().check_user_rights(Right.EDIT, None)
    assert note.check_user_rights(Right.VIEW, 8)
    assert not note.check_user_rights(Right.VIEW, None)
    assert not note.check_user_rights(Right.EDIT, 8)


def test_invalid_right():
    with pytest.raises(ValueError):
        Post().check_user_rights("delete", 7)


def test_to_dict_formats_every_attribute():
    post = Post()
    post.check_form(
        {
            "title": "Hi",
            "user_id": 7,
            "keywords": ["a", "b"],
            "published_on": "02/01/2024",
        }
    )

    values = post.to_dict()
    assert values["title"] == "Hi"
    assert values["keywords"] == "a,b"
    assert values["published_on"] == "02/01/2024"
    assert values["tags"] == []
