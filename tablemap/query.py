"""
A fluent builder for single-table SELECT queries.

Predicates are stored as a flat list of ``WhereGroup``; every group records
both how its own clauses are joined and how it is linked to the previous
group, which is enough to express nested boolean logic without a tree::

    Query.from_table(db, "t").where("a", 1).or_where("b", 2).where(
        [("c", 3), ("d", 4)], QueryLink.AND, QueryLink.OR
    )
    # SELECT * FROM t WHERE a = ? OR b = ? OR (c = ? AND d = ?) ...

A query is consumed by its first execution, after which it can neither be
executed nor modified again.
"""

import functools
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from tablemap.attribute_types import SQL_DATE_FORMAT, SQL_DATETIME_FORMAT
from tablemap.database import Database, Row, bind_kind_for
from tablemap.errors import NotFoundError, QueryBuildError, QueryConsumedError
from tablemap.settings import settings

_LOGGER = logging.getLogger(__name__)

AGGREGATES = ("count", "sum", "avg", "min", "max")


class QueryOperator(str, Enum):
    EQUALS = "="
    NOT_EQUALS = "!="
    GREATER_THAN = ">"
    LESS_THAN = "<"
    GREATER_THAN_OR_EQUAL = ">="
    LESS_THAN_OR_EQUAL = "<="
    LIKE = "LIKE"
    NOT_LIKE = "NOT LIKE"
    IN = "IN"
    NOT_IN = "NOT IN"
    IS_NULL = "IS NULL"
    IS_NOT_NULL = "IS NOT NULL"


class QueryLink(str, Enum):
    AND = "AND"
    OR = "OR"


class JoinType(str, Enum):
    INNER = "INNER JOIN"
    LEFT = "LEFT JOIN"
    RIGHT = "RIGHT JOIN"


def to_bind_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.strftime(SQL_DATETIME_FORMAT)
    if isinstance(value, date):
        return value.strftime(SQL_DATE_FORMAT)
    if isinstance(value, Enum):
        return value.value
    return value


def _as_operator(operator: QueryOperator | str) -> QueryOperator:
    if isinstance(operator, QueryOperator):
        return operator
    try:
        return QueryOperator(operator.strip().upper())
    except (ValueError, AttributeError) as e:
        raise QueryBuildError(f"Invalid query operator: {operator!r}") from e


def _as_link(link: QueryLink | str | None) -> QueryLink:
    if link is None:
        return QueryLink.AND
    if isinstance(link, QueryLink):
        return link
    try:
        return QueryLink(str(link).strip().upper())
    except ValueError as e:
        raise QueryBuildError(
            "Invalid query link: where clauses must be linked by AND or OR, not "
            f"{link!r}"
        ) from e


def _split_columns(columns: Iterable[str] | str) -> list[str]:
    if isinstance(columns, str):
        return [column.strip() for column in columns.split(",") if column.strip()]
    return list(columns)


@dataclass
class WhereClause:
    """One predicate: ``column operator value``."""

    column: str
    operator: QueryOperator = QueryOperator.EQUALS
    value: Any = None

    @classmethod
    def from_args(cls, column: str, *args: Any) -> "WhereClause":
        """Build a clause from ``(column, value)`` or ``(column, operator, value)``.

        :raises QueryBuildError: if the arguments do not fit either shape
        """
        if not isinstance(column, str) or not column:
            raise QueryBuildError("A where clause needs a column name")
        if len(args) == 1:
            return cls(column, QueryOperator.EQUALS, args[0])
        if len(args) == 2:
            return cls(column, _as_operator(args[0]), args[1])
        raise QueryBuildError(
            f"Invalid where clause on '{column}': expected a value, or an operator "
            "and a value"
        )

    def build(self) -> tuple[str, str, list[Any]]:
        """Render the clause.

        :return tuple[str, str, list[Any]]: SQL fragment, bind kinds, values
        """
        if self.operator in (QueryOperator.IN, QueryOperator.NOT_IN):
            if isinstance(self.value, (str, bytes)) or not isinstance(
                self.value, Iterable
            ):
                raise QueryBuildError(
                    f"The {self.operator.value} clause on '{self.column}' needs a list "
                    "of values"
                )
            values = [to_bind_value(value) for value in self.value]
            if not values:
                raise QueryBuildError(
                    f"The {self.operator.value} clause on '{self.column}' needs at "
                    "least one value"
                )
            placeholders = ", ".join(["?"] * len(values))
            return (
                f"{self.column} {self.operator.value} ({placeholders})",
                "".join(bind_kind_for(value) for value in values),
                values,
            )

        if self.operator == QueryOperator.IS_NULL or (
            self.operator == QueryOperator.EQUALS and self.value is None
        ):
            return f"{self.column} IS NULL", "", []
        if self.operator == QueryOperator.IS_NOT_NULL or (
            self.operator == QueryOperator.NOT_EQUALS and self.value is None
        ):
            return f"{self.column} IS NOT NULL", "", []

        value = to_bind_value(self.value)
        return f"{self.column} {self.operator.value} ?", bind_kind_for(value), [value]


@dataclass
class WhereGroup:
    """Clauses joined by ``link``, attached to the previous group by
    ``link_to_previous``."""

    clauses: list[WhereClause] = field(default_factory=list)
    link: QueryLink = QueryLink.AND
    link_to_previous: QueryLink = QueryLink.AND

    @classmethod
    def from_tuples(
        cls,
        clauses: Sequence[Sequence[Any] | WhereClause],
        link: QueryLink | str | None = QueryLink.AND,
        link_to_previous: QueryLink | str | None = QueryLink.AND,
    ) -> "WhereGroup":
        group = cls(link=_as_link(link), link_to_previous=_as_link(link_to_previous))
        for clause in clauses:
            if isinstance(clause, WhereClause):
                group.clauses.append(clause)
                continue
            if isinstance(clause, str) or len(clause) < 2:
                raise QueryBuildError(
                    "Invalid where group: each clause needs at least a column and "
                    "a value"
                )
            group.clauses.append(WhereClause.from_args(*clause))
        if not group.clauses:
            raise QueryBuildError("A where group needs at least one clause")
        return group

    def build(self, is_first: bool = False) -> tuple[str, str, list[Any]]:
        """Render the group, omitting its link when it opens the WHERE clause.

        :param bool is_first: whether the group is the first of the query
        :return tuple[str, str, list[Any]]: SQL fragment, bind kinds, values
        """
        fragments = []
        bind_kinds = ""
        values: list[Any] = []
        for clause in self.clauses:
            sql, kinds, clause_values = clause.build()
            fragments.append(sql)
            bind_kinds += kinds
            values.extend(clause_values)

        sql = f" {self.link.value} ".join(fragments)
        if len(fragments) > 1:
            sql = f"({sql})"
        if not is_first:
            sql = f"{self.link_to_previous.value} {sql}"
        return sql, bind_kinds, values


def _builder(method):
    """Refuse to modify a query that has already been executed."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        self._ensure_not_consumed()
        method(self, *args, **kwargs)
        return self

    return wrapper


class Query:
    """A one-shot SELECT builder over a single table."""

    def __init__(self, db: Database, table: str):
        if not table:
            raise QueryBuildError("A query needs a table")
        self.db = db
        self.table = table

        self._columns: list[str] = []
        # ANDed in front of the where groups, out of reach of or_where
        self._scope: list[WhereClause] = []
        self._where_groups: list[WhereGroup] = []
        self._joins: list[tuple[JoinType, str, str, str]] = []
        self._group_by: list[str] = []
        self._order_by: list[tuple[str, bool]] = []
        self._distinct: list[str] = []
        self._limit: int | None = None
        self._offset: int = 0
        self._unbounded = False
        self._is_aggregate = False

        self._consumed = False
        self._sql: str | None = None
        self._bind_kinds = ""
        self._values: list[Any] = []

    @classmethod
    def from_table(cls, db: Database, table: str) -> "Query":
        return cls(db, table)

    def _ensure_not_consumed(self) -> None:
        if self._consumed:
            raise QueryConsumedError(
                f"This query on '{self.table}' has already been executed, build a "
                "new one"
            )

    @property
    def is_consumed(self) -> bool:
        return self._consumed

    ######################################
    # Builder methods
    ######################################

    @_builder
    def select(self, columns: Iterable[str] | str) -> "Query":
        self._columns.extend(_split_columns(columns))

    @_builder
    def where(self, column: str | Sequence[Sequence[Any]], *args: Any) -> "Query":
        """Add a predicate, or a group of predicates.

        Accepted shapes::

            where("a", 1)
            where("a", ">", 1)
            where([("a", 1), ("b", "<", 2)], QueryLink.OR, QueryLink.AND)

        For a group the optional arguments are the link between its clauses
        and the link to the previous group, both AND by default.
        """
        if isinstance(column, str):
            clause = WhereClause.from_args(column, *args)
            self._where_groups.append(WhereGroup([clause]))
            return
        if len(args) > 2:
            raise QueryBuildError("A where group takes at most two links")
        self._where_groups.append(WhereGroup.from_tuples(column, *args))

    @_builder
    def or_where(self, column: str | Sequence[Sequence[Any]], *args: Any) -> "Query":
        """Same shapes as ``where``, linked to the previous predicates with OR.

        For a group the optional argument is the link between its clauses.
        """
        if isinstance(column, str):
            clause = WhereClause.from_args(column, *args)
            self._where_groups.append(
                WhereGroup([clause], link_to_previous=QueryLink.OR)
            )
            return
        if len(args) > 1:
            raise QueryBuildError("An or_where group takes at most one link")
        link = args[0] if args else QueryLink.AND
        self._where_groups.append(WhereGroup.from_tuples(column, link, QueryLink.OR))

    @_builder
    def where_group(
        self,
        clauses: Sequence[Sequence[Any]],
        link: QueryLink | str = QueryLink.AND,
        link_to_previous: QueryLink | str = QueryLink.AND,
    ) -> "Query":
        self._where_groups.append(
            WhereGroup.from_tuples(clauses, link, link_to_previous)
        )

    @_builder
    def where_in(self, column: str, values: Iterable[Any]) -> "Query":
        self._where_groups.append(
            WhereGroup([WhereClause(column, QueryOperator.IN, list(values))])
        )

    @_builder
    def where_not_in(self, column: str, values: Iterable[Any]) -> "Query":
        self._where_groups.append(
            WhereGroup([WhereClause(column, QueryOperator.NOT_IN, list(values))])
        )

    @_builder
    def where_null(self, column: str) -> "Query":
        self._where_groups.append(
            WhereGroup([WhereClause(column, QueryOperator.IS_NULL)])
        )

    @_builder
    def where_not_null(self, column: str) -> "Query":
        self._where_groups.append(
            WhereGroup([WhereClause(column, QueryOperator.IS_NOT_NULL)])
        )

    @_builder
    def join(
        self,
        table: str,
        column1: str,
        column2: str,
        join_type: JoinType = JoinType.INNER,
    ) -> "Query":
        """Join ``table`` on ``<query table>.column1 = table.column2``."""
        self._joins.append((JoinType(join_type), table, column1, column2))

    def left_join(self, table: str, column1: str, column2: str) -> "Query":
        return self.join(table, column1, column2, JoinType.LEFT)

    def right_join(self, table: str, column1: str, column2: str) -> "Query":
        return self.join(table, column1, column2, JoinType.RIGHT)

    @_builder
    def group_by(self, columns: Iterable[str] | str) -> "Query":
        self._group_by.extend(_split_columns(columns))

    @_builder
    def order(self, column: str, ascending: bool = True) -> "Query":
        self._order_by.append((column, ascending))

    def order_desc(self, column: str) -> "Query":
        return self.order(column, ascending=False)

    @_builder
    def take(self, limit: int | None = None, offset: int | None = None) -> "Query":
        if limit is not None:
            if limit < 0:
                raise QueryBuildError("The limit of a query can't be negative")
            self._limit = limit
        if offset is not None:
            self._skip(offset)

    @_builder
    def skip(self, offset: int) -> "Query":
        self._skip(offset)

    @_builder
    def no_limit(self) -> "Query":
        """Do not apply the default row limit; used by relation synchronisation."""
        self._unbounded = True

    def _skip(self, offset: int) -> None:
        if offset < 0:
            raise QueryBuildError("The offset of a query can't be negative")
        self._offset = offset

    @_builder
    def distinct(self, columns: Iterable[str] | str) -> "Query":
        """Keep only rows bringing a new value in one of ``columns``.

        This is applied to the fetched rows rather than in SQL, so it should
        only be used on small result sets.
        """
        self._distinct.extend(_split_columns(columns))

    @_builder
    def add_aggregate(
        self, aggregate: str, column: str | None = None, name: str | None = None
    ) -> "Query":
        """Replace the projection with one aggregate.

        :param str aggregate: one of count, sum, avg, min, max
        :param str | None column: the aggregated column, ``*`` by default
        :param str | None name: the result alias, ``<aggregate>_<column>`` by default
        :raises QueryBuildError: for an unknown aggregate
        """
        aggregate = aggregate.lower()
        if aggregate not in AGGREGATES:
            raise QueryBuildError(f"Invalid aggregate function: {aggregate}")
        if name is None:
            name = aggregate if column is None else f"{aggregate}_{column}"
        self._columns = [f"{aggregate.upper()}({column or '*'}) AS {name}"]
        self._is_aggregate = True

    ######################################
    # SQL assembly
    ######################################

    def build(self, limit: int | None = None, offset: int | None = None) -> str:
        """Assemble the SQL and its parameters.

        :param int | None limit: overrides the limit set with ``take``
        :param int | None offset: overrides the offset set with ``skip``
        :return str: the SQL, with ``?`` placeholders
        """
        self._ensure_not_consumed()
        if limit is not None:
            self._limit = limit
        if offset is not None:
            self._skip(offset)

        columns = ", ".join(self._columns) if self._columns else "*"
        sql = f"SELECT {columns} FROM {self.table}"

        for join_type, table, column1, column2 in self._joins:
            sql += (
                f" {join_type.value} {table} ON {self.table}.{column1} = "
                f"{table}.{column2}"
            )

        bind_kinds = ""
        values: list[Any] = []
        conditions = []
        for clause in self._scope:
            fragment, kinds, clause_values = clause.build()
            conditions.append(fragment)
            bind_kinds += kinds
            values.extend(clause_values)
        if self._where_groups:
            fragments = []
            for index, group in enumerate(self._where_groups):
                fragment, kinds, group_values = group.build(is_first=index == 0)
                fragments.append(fragment)
                bind_kinds += kinds
                values.extend(group_values)
            fragment = " ".join(fragments)
            if self._scope:
                fragment = f"({fragment})"
            conditions.append(fragment)
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)

        if self._group_by:
            sql += " GROUP BY " + ", ".join(self._group_by)

        if self._order_by:
            sql += " ORDER BY " + ", ".join(
                f"{column} {'ASC' if ascending else 'DESC'}"
                for column, ascending in self._order_by
            )

        if not self._is_aggregate and not (self._unbounded and self._limit is None):
            limit = self._limit
            if limit is None:
                limit = settings.default_query_limit
            sql += f" LIMIT {limit}"
            if self._offset:
                sql += f" OFFSET {self._offset}"

        self._sql = sql
        self._bind_kinds = bind_kinds
        self._values = values
        return sql

    def debug(self) -> dict[str, Any]:
        """The last built SQL with its bind kinds and values."""
        return {
            "sql": self._sql,
            "bind_kinds": self._bind_kinds,
            "values": self._values,
        }

    ######################################
    # Execution
    ######################################

    def _run(self, limit: int | None = None, offset: int | None = None) -> list[Row]:
        self.build(limit, offset)
        self._consumed = True
        rows = self.db.fetch(self._sql, self._bind_kinds, *self._values)
        if self._distinct and not self._is_aggregate:
            rows = self._find_distinct(rows)
        return rows

    def _find_distinct(self, rows: list[Row]) -> list[Row]:
        seen: dict[str, list[Any]] = {column: [] for column in self._distinct}
        kept = []
        for row in rows:
            keep = False
            for column in self._distinct:
                value = row.get(column)
                if value is None or value == "":
                    continue
                if value in seen[column]:
                    continue
                seen[column].append(value)
                keep = True
            if keep:
                kept.append(row)
        return kept

    def fetch(self, limit: int | None = None, offset: int | None = None) -> list[Row]:
        return self._run(limit, offset)

    def first(self) -> Row | None:
        rows = self._run(1, 0)
        return rows[0] if rows else None

    def first_where(
        self,
        column: str,
        value: Any,
        operator: QueryOperator | str = QueryOperator.EQUALS,
    ) -> Row | None:
        """Shortcut for ``where(column, operator, value).first()``.

        :raises QueryBuildError: if the query already has predicates
        """
        if self._where_groups:
            raise QueryBuildError(
                "first_where can't be used when where clauses are already defined"
            )
        return self.where(column, operator, value).first()

    def find(self, id: Any, id_column: str = "id") -> Row | None:
        return self.where(id_column, id).first()

    def fetch_or_fail(
        self,
        message: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Row]:
        """Fetch rows, raising when none matched.

        :raises NotFoundError: if the query returned no rows
        """
        rows = self._run(limit, offset)
        if not rows:
            raise NotFoundError(
                message or f"No results were found for the query: {self._sql}"
            )
        return rows

    def fetch_or(
        self,
        callback: Callable[[], Any],
        limit: int | None = None,
        offset: int | None = None,
    ) -> Any:
        """Fetch rows, or return ``callback()`` when none matched."""
        rows = self._run(limit, offset)
        if not rows:
            _LOGGER.debug(f"No rows for query on {self.table}, running fallback")
            return callback()
        return rows

    def _aggregate(self, aggregate: str, column: str) -> Any:
        self.add_aggregate(aggregate, column, aggregate)
        rows = self._run()
        if not rows:
            return None
        return rows[0].get(aggregate)

    def count(self) -> int:
        value = self._aggregate("count", "*")
        return int(value or 0)

    def sum(self, column: str) -> float | int | None:
        return self._aggregate("sum", column)

    def avg(self, column: str) -> float | None:
        value = self._aggregate("avg", column)
        return None if value is None else float(value)

    def min(self, column: str) -> Any:
        return self._aggregate("min", column)

    def max(self, column: str) -> Any:
        return self._aggregate("max", column)
