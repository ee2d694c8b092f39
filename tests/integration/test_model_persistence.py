from datetime import datetime

import pytest
from sample_models import Author, Post

from tablemap.context import RequestContext
from tablemap.errors import AuthorisationError, ObjectIdNotSetError
from tablemap.query import Query


def _row(db, id):
    return Query.from_table(db, "posts").find(id)


def test_create_inserts_a_row_owned_by_the_caller(make_post, test_db, owner):
    post = make_post(
        "Hello",
        body="First post",
        keywords="a,b",
        published="on",
        published_on="01/03/2024",
        rating="4.5",
    )

    assert post.is_instantiated
    row = _row(test_db, post.get_id())
    assert row["title"] == "Hello"
    assert row["user_id"] == owner.user_id
    assert row["keywords"] == "a,b"
    assert row["published"] == 1
    assert row["published_on"] == "2024-03-01"
    assert row["views"] == 0
    assert row["created_at"] is not None
    assert row["created_at"] == row["updated_at"]
    assert row["deleted_at"] is None


def test_load_reads_the_typed_values(make_post, test_db):
    post = make_post("Hello", keywords="a,b", published="1", published_on="2024-03-01")

    loaded = Post.load(test_db, post.get_id())

    assert loaded.get("title") == "Hello"
    assert loaded.get("keywords", as_native=True) == ["a", "b"]
    assert loaded.get("published", as_native=True) is True
    assert loaded.get("published_on") == "01/03/2024"
    assert isinstance(loaded.get("created_at", as_native=True), datetime)
    assert loaded.is_instantiated


def test_load_unknown_id(test_db):
    assert Post.load(test_db, 404) is None


def test_invalid_form_inserts_nothing(test_db, owner):
    post = Post(test_db)

    assert post.create({"views": "many"}, owner) is None
    assert not post.is_valid
    assert not post.is_instantiated
    assert Query.from_table(test_db, "posts").count() == 0


def test_create_requires_an_owner_for_owned_models(test_db):
    post = Post(test_db)

    assert post.create({"title": "Anonymous"}) is None
    assert [m.code for m in post.messages["user_id"]] == ["attribute-required"]


def test_update_writes_every_column(make_post, test_db):
    post = make_post("Hello", views=3)

    updated = Post.load(test_db, post.get_id()).update({"title": "Hello again"})

    assert updated is not None
    row = _row(test_db, post.get_id())
    assert row["title"] == "Hello again"
    # required values missing from the form keep their stored value
    assert row["views"] == 3
    assert row["user_id"] == 7


def test_update_needs_a_saved_model(test_db):
    with pytest.raises(ObjectIdNotSetError):
        Post(test_db).update({"title": "Nope"})


def test_set_persists_a_single_attribute(make_post, test_db):
    post = make_post("Hello")

    assert post.set("rating", 2.5, persist_now=True) is post
    assert _row(test_db, post.get_id())["rating"] == 2.5
    assert post.fetch("rating") == 2.5


def test_set_records_type_errors(make_post):
    post = make_post("Hello")

    assert post.set("rating", "high") is None
    assert [m.code for m in post.messages["rating"]] == ["attribute-type"]


def test_soft_delete_hides_the_row_from_queries(make_post, test_db, owner):
    post = make_post("Hello")

    assert post.delete()

    assert Post.start_query(test_db, owner).find(post.get_id()) is None
    assert _row(test_db, post.get_id())["deleted_at"] is not None


def test_forced_delete_removes_the_row(make_post, test_db):
    post = make_post("Hello")

    post.delete(force=True)

    assert _row(test_db, post.get_id()) is None


def test_queries_only_return_the_callers_rows(test_db, owner, other_user, admin):
    mine = Post(test_db).create({"title": "Mine"}, owner)
    Post(test_db).create({"title": "Theirs"}, other_user)

    titles = [post.get("title") for post in Post.start_query(test_db, owner).fetch()]
    assert titles == ["Mine"]
    assert Post.start_query(test_db, other_user).find(mine.get_id()) is None
    assert Post.start_query(test_db, admin).count() == 2


def test_anonymous_callers_can_not_query_protected_models(test_db):
    with pytest.raises(AuthorisationError):
        Post.start_query(test_db, RequestContext())


def test_model_query_returns_models_and_raw_rows(make_post, test_db, owner):
    make_post("One")
    make_post("Two")

    posts = Post.start_query(test_db, owner).order("title").fetch()
    rows = Post.start_query(test_db, owner).order("title").fetch_rows()
    dicts = Post.start_query(test_db, owner).order("title").fetch_as_dicts()

    assert [type(post) for post in posts] == [Post, Post]
    assert [row["title"] for row in rows] == ["One", "Two"]
    assert [values["title"] for values in dicts] == ["One", "Two"]


def test_transaction_rolls_back_every_statement(test_db, owner):
    with pytest.raises(RuntimeError):
        with test_db.transaction():
            Post(test_db).create({"title": "Lost"}, owner)
            raise RuntimeError("boom")

    assert Query.from_table(test_db, "posts").count() == 0


def test_or_where_stays_inside_the_owner_and_soft_delete_filters(
    test_db, owner, other_user
):
    Post(test_db).create({"title": "Theirs", "views": 9}, other_user)
    Post(test_db).create({"title": "Gone", "views": 9}, owner).delete()
    Post(test_db).create({"title": "Mine"}, owner)

    posts = (
        Post.start_query(test_db, owner)
        .where("title", "Mine")
        .or_where("views", 9)
        .fetch()
    )

    assert [post.get("title") for post in posts] == ["Mine"]


def test_first_where_on_a_scoped_query(make_post, test_db, owner):
    make_post("Hello")

    post = Post.start_query(test_db, owner).first_where("title", "Hello")

    assert post.get("title") == "Hello"


def test_update_keeps_columns_missing_from_the_loaded_row(test_db):
    author = Author(test_db).create(
        {"full_name": "Ada Lovelace", "email": "ada@example.com"}
    )
    row = (
        Query.from_table(test_db, "authors")
        .select("id, full_name")
        .find(author.get_id())
    )
    partial = Author(test_db).load_from_row(row)

    partial.set("full_name", "Ada King")
    assert partial.update() is not None

    stored = Query.from_table(test_db, "authors").find(author.get_id())
    assert stored["full_name"] == "Ada King"
    assert stored["email"] == "ada@example.com"
