import pytest
from sample_models import Post

from tablemap.context import RequestContext
from tablemap.errors import NotFoundError, QueryBuildError, QueryConsumedError
from tablemap.query import Query, QueryLink, QueryOperator
from tablemap.settings import settings

LIMIT = f"LIMIT {settings.default_query_limit}"


class RecordingDatabase:
    """Stands in for ``Database`` and returns canned rows."""

    def __init__(self, rows=None):
        self.rows = rows or []
        self.calls = []

    def fetch(self, sql, bind_kinds="", *values):
        self.calls.append((sql, bind_kinds, list(values)))
        return [dict(row) for row in self.rows]


def _query(table="t", rows=None) -> Query:
    return Query.from_table(RecordingDatabase(rows), table)


def test_grouped_predicates_shape():
    query = (
        _query()
        .where("a", 1)
        .or_where("b", 2)
        .where([("c", 3), ("d", 4)], QueryLink.AND, QueryLink.OR)
    )

    assert query.build() == (
        f"SELECT * FROM t WHERE a = ? OR b = ? OR (c = ? AND d = ?) {LIMIT}"
    )
    assert query.debug()["values"] == [1, 2, 3, 4]
    assert query.debug()["bind_kinds"] == "iiii"


def test_or_group_joins_its_clauses_with_its_own_link():
    query = _query().where("a", 1).or_where([("b", 2), ("c", ">", 3)], QueryLink.OR)

    assert query.build() == f"SELECT * FROM t WHERE a = ? OR (b = ? OR c > ?) {LIMIT}"


@pytest.mark.parametrize(
    "column, args, expected_sql, expected_values",
    [
        ("a", (1,), "a = ?", [1]),
        ("a", ("!=", "x"), "a != ?", ["x"]),
        ("a", (QueryOperator.LIKE, "%x%"), "a LIKE ?", ["%x%"]),
        ("a", ("in", [1, 2]), "a IN (?, ?)", [1, 2]),
        ("a", ("NOT IN", (3,)), "a NOT IN (?)", [3]),
        ("a", (None,), "a IS NULL", []),
        ("a", ("!=", None), "a IS NOT NULL", []),
    ],
)
def test_where_clauses(column, args, expected_sql, expected_values):
    query = _query().where(column, *args)

    assert query.build() == f"SELECT * FROM t WHERE {expected_sql} {LIMIT}"
    assert query.debug()["values"] == expected_values


def test_null_helpers():
    query = _query().where_null("deleted_at").where_not_null("title")

    assert query.build() == (
        f"SELECT * FROM t WHERE deleted_at IS NULL AND title IS NOT NULL {LIMIT}"
    )


def test_empty_in_list_is_rejected():
    with pytest.raises(QueryBuildError):
        _query().where_in("a", []).build()


def test_invalid_operator_is_rejected():
    with pytest.raises(QueryBuildError):
        _query().where("a", "~~", 1)


def test_invalid_link_is_rejected():
    with pytest.raises(QueryBuildError):
        _query().where([("a", 1)], "XOR")


def test_select_join_group_order_and_paging():
    query = (
        _query("posts")
        .select("posts.id, authors.full_name")
        .left_join("authors", "author_id", "id")
        .group_by("posts.id")
        .order_desc("posts.created_at")
        .take(10, 20)
    )

    assert query.build() == (
        "SELECT posts.id, authors.full_name FROM posts "
        "LEFT JOIN authors ON posts.author_id = authors.id "
        "GROUP BY posts.id ORDER BY posts.created_at DESC LIMIT 10 OFFSET 20"
    )


def test_no_limit_leaves_out_the_default_limit():
    assert _query().where("a", 1).no_limit().build() == "SELECT * FROM t WHERE a = ?"


def test_explicit_limit_applies_even_without_default():
    assert _query().no_limit().take(5).build() == "SELECT * FROM t LIMIT 5"


def test_negative_paging_is_rejected():
    with pytest.raises(QueryBuildError):
        _query().take(-1)
    with pytest.raises(QueryBuildError):
        _query().skip(-1)


def test_aggregates_have_no_limit():
    query = _query().where("a", 1).add_aggregate("count")

    assert query.build() == "SELECT COUNT(*) AS count FROM t WHERE a = ?"


def test_unknown_aggregate_is_rejected():
    with pytest.raises(QueryBuildError):
        _query().add_aggregate("median", "a")


def test_count_returns_the_aliased_value():
    assert _query(rows=[{"count": 3}]).count() == 3


def test_query_is_consumed_by_its_execution():
    query = _query()
    query.fetch()

    assert query.is_consumed
    with pytest.raises(QueryConsumedError):
        query.where("a", 1)
    with pytest.raises(QueryConsumedError):
        query.fetch()


def test_first_fetches_a_single_row():
    db = RecordingDatabase([{"id": 1}])
    row = Query.from_table(db, "t").where("id", 1).first()

    assert row == {"id": 1}
    assert db.calls[0][0] == "SELECT * FROM t WHERE id = ? LIMIT 1"


def test_first_where_refuses_existing_predicates():
    with pytest.raises(QueryBuildError):
        _query().where("a", 1).first_where("b", 2)


def test_fetch_or_fail_raises_when_nothing_matches():
    with pytest.raises(NotFoundError):
        _query().fetch_or_fail()


def test_fetch_or_runs_the_fallback():
    assert _query().fetch_or(lambda: "fallback") == "fallback"


def test_distinct_keeps_rows_bringing_a_new_value():
    rows = [{"a": 1, "b": "x"}, {"a": 1, "b": "x"}, {"a": 2, "b": "x"}, {"a": None}]

    assert _query(rows=rows).distinct("a").fetch() == [
        {"a": 1, "b": "x"},
        {"a": 2, "b": "x"},
    ]


def test_model_scope_wraps_the_where_clause():
    query = (
        Post.start_query(RecordingDatabase(), RequestContext(user_id=7))
        .where("title", "Mine")
        .or_where("views", 9)
    )

    assert query.build() == (
        "SELECT * FROM posts WHERE user_id = ? AND deleted_at IS NULL AND "
        f"(title = ? OR views = ?) {LIMIT}"
    )
    assert query.debug()["values"] == [7, "Mine", 9]


def test_model_scope_alone_is_the_where_clause():
    query = Post.start_query(RecordingDatabase(), RequestContext(user_id=7))

    assert query.build() == (
        f"SELECT * FROM posts WHERE user_id = ? AND deleted_at IS NULL {LIMIT}"
    )


def test_model_query_refuses_projections():
    query = Post.start_query(RecordingDatabase(), RequestContext(user_id=7))

    with pytest.raises(QueryBuildError):
        query.select("id, title")
