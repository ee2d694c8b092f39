import typing as t

import pytest
from sample_models import Author, Note, Post, Tag
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from tablemap.context import RequestContext
from tablemap.database import Database
from tablemap.schema import generate_table_for_model

OWNER_ID = 7
OTHER_USER_ID = 8


@pytest.fixture
def engine() -> t.Generator[Engine, None, None]:
    """An in-memory SQLite database shared by every connection of one test."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def db(engine) -> t.Generator[Database, None, None]:
    with Database.connect(engine) as database:
        yield database


@pytest.fixture
def test_db(db) -> Database:
    """A database with the tables of the sample models."""
    for model_class in (Author, Tag, Post, Note):
        generate_table_for_model(db, model_class)
    return db


@pytest.fixture
def owner() -> RequestContext:
    return RequestContext(user_id=OWNER_ID)


@pytest.fixture
def other_user() -> RequestContext:
    return RequestContext(user_id=OTHER_USER_ID)


@pytest.fixture
def admin() -> RequestContext:
    return RequestContext(user_id=1, is_admin=True)


@pytest.fixture
def author(test_db) -> Author:
    return Author(test_db).create(
        {"full_name": "Ada Lovelace", "email": "ada@example.com"}
    )


@pytest.fixture
def make_post(test_db, owner):
    def _make_post(title: str = "Hello", **values) -> Post:
        post = Post(test_db).create({"title": title, **values}, owner)
        assert post is not None
        return post

    return _make_post


@pytest.fixture
def make_tag(test_db):
    def _make_tag(label: str) -> Tag:
        return Tag(test_db).create({"label": label})

    return _make_tag


@pytest.fixture
def executed_sql(test_db, monkeypatch) -> list[str]:
    """Record the statements run through ``Database.execute``."""
    statements: list[str] = []
    execute = test_db.execute

    def _recording_execute(sql, bind_kinds="", *values):
        statements.append(sql)
        return execute(sql, bind_kinds, *values)

    monkeypatch.setattr(test_db, "execute", _recording_execute)
    return statements
