"""
Parameterized SQL execution on top of a SQLAlchemy connection.

The query builder and the model attributes produce SQL with positional ``?``
placeholders and a bind-kind string (one of ``s``, ``i``, ``d``, ``b`` per
value). ``Database`` turns that into a SQLAlchemy ``text()`` statement with
typed bind parameters and runs it on the request's connection.

Statements are committed as soon as they run, unless they run inside
``Database.transaction()``.
"""

import logging
import time
from collections.abc import Generator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, bindparam, create_engine, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.types import Float, Integer, LargeBinary, String, TypeEngine

from tablemap.errors import QueryBuildError
from tablemap.settings import settings

_LOGGER = logging.getLogger(__name__)

BIND_KIND_TYPES: dict[str, type[TypeEngine]] = {
    "s": String,
    "i": Integer,
    "d": Float,
    "b": LargeBinary,
}

Row = dict[str, Any]


def create_db_engine(url: str | None = None, **kwargs: Any) -> Engine:
    """Create the engine used for all tablemap connections.

    :param str | None url: database URL, defaults to the configured one
    :return Engine: a SQLAlchemy engine
    """
    url = url or settings.database_url.get_secret_value()
    kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url, **kwargs)


def bind_kind_for(value: Any) -> str:
    """Pick the bind kind for a value from its Python type."""
    if isinstance(value, (bool, int)):
        return "i"
    if isinstance(value, float):
        return "d"
    if isinstance(value, (bytes, bytearray)):
        return "b"
    return "s"


def normalise_bind_kinds(bind_kinds: str) -> str:
    """Strip separators from a bind-kind string and validate its characters.

    :param str bind_kinds: e.g. ``"ssi"`` or ``"s, s, i"``
    :raises QueryBuildError: if an unknown bind kind is present
    :return str: the compact bind-kind string
    """
    compact = bind_kinds.replace(" ", "").replace(",", "")
    invalid = {kind for kind in compact if kind not in BIND_KIND_TYPES}
    if invalid:
        raise QueryBuildError(f"Invalid bind kinds: {''.join(sorted(invalid))}")
    return compact


def to_named_placeholders(sql: str, count: int) -> str:
    """Replace positional ``?`` placeholders with ``:p0``, ``:p1``...

    Identifiers and literals in generated SQL never contain ``?``, so every
    question mark is a placeholder.
    """
    parts = sql.split("?")
    if len(parts) - 1 != count:
        raise QueryBuildError(
            f"The query has {len(parts) - 1} placeholders but {count} values "
            f"were given: {sql}"
        )
    named = parts[0]
    for index, part in enumerate(parts[1:]):
        named += f":p{index}{part}"
    return named


class Database:
    """The raw connection abstraction used by queries, attributes and models."""

    def __init__(self, connection: Connection):
        self._connection = connection
        self._in_transaction = False

    @classmethod
    @contextmanager
    def connect(cls, engine: Engine) -> Generator["Database", None, None]:
        """Open a connection for the duration of one request.

        :param Engine engine: the engine to connect with
        :yields Database: a database bound to the new connection
        """
        connection = engine.connect()
        try:
            _LOGGER.debug("Database connection opened")
            yield cls(connection)
        except Exception:
            if connection.in_transaction():
                connection.rollback()
            _LOGGER.exception("Database connection rolled back")
            raise
        finally:
            connection.close()
            _LOGGER.debug("Database connection closed")

    @property
    def connection(self) -> Connection:
        return self._connection

    @property
    def dialect_name(self) -> str:
        return self._connection.dialect.name

    @contextmanager
    def transaction(self) -> Generator["Database", None, None]:
        """Run the enclosed statements atomically.

        Nested calls join the outermost transaction.
        """
        if self._in_transaction:
            yield self
            return

        if self._connection.in_transaction():
            self._connection.commit()

        self._in_transaction = True
        try:
            yield self
            self._connection.commit()
        except Exception:
            self._connection.rollback()
            _LOGGER.warning("Transaction rolled back")
            raise
        finally:
            self._in_transaction = False

    def commit(self) -> None:
        if not self._in_transaction and self._connection.in_transaction():
            self._connection.commit()

    def rollback(self) -> None:
        """Roll back the pending statements, unless inside ``transaction()``."""
        if not self._in_transaction and self._connection.in_transaction():
            self._connection.rollback()

    def fetch(self, sql: str, bind_kinds: str = "", *values: Any) -> list[Row]:
        """Run a query and return its rows as dictionaries.

        :param str sql: SQL with ``?`` placeholders
        :param str bind_kinds: one bind kind per value
        :return list[Row]: the fetched rows
        """
        result = self._run(sql, bind_kinds, values)
        rows = [dict(row) for row in result.mappings().all()]
        self.commit()
        return rows

    def execute(self, sql: str, bind_kinds: str = "", *values: Any) -> Any:
        """Run a statement and return the last inserted id, if any.

        :param str sql: SQL with ``?`` placeholders
        :param str bind_kinds: one bind kind per value
        :return Any: the id generated by an INSERT, or None
        """
        result = self._run(sql, bind_kinds, values)
        last_id = getattr(result, "lastrowid", None) or None
        self.commit()
        return last_id

    def execute_rowcount(self, sql: str, bind_kinds: str = "", *values: Any) -> int:
        result = self._run(sql, bind_kinds, values)
        rowcount = result.rowcount
        self.commit()
        return rowcount

    def insert(
        self,
        table: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]] | Sequence[Any],
    ) -> Any:
        """Insert one or several rows in a single statement.

        :param str table: the table to insert into
        :param Sequence[str] columns: the column names
        :param rows: one row of values, or a list of rows
        :raises QueryBuildError: if the rows do not all have the same length
        :return Any: the id generated by the INSERT, if any
        """
        if len(rows) == 0:
            raise QueryBuildError(f"Nothing to insert into {table}")
        if not isinstance(rows[0], (list, tuple)):
            rows = [rows]

        width = len(columns)
        values: list[Any] = []
        for row in rows:
            if len(row) != width:
                raise QueryBuildError(
                    "Wrong number of values in insert - all rows need to have "
                    f"{width} values"
                )
            values.extend(row)

        row_placeholders = "(" + ", ".join(["?"] * width) + ")"
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES "
            + ", ".join([row_placeholders] * len(rows))
        )
        return self.execute(
            sql, "".join(bind_kind_for(value) for value in values), *values
        )

    def _run(self, sql: str, bind_kinds: str, values: Sequence[Any]):
        bind_kinds = normalise_bind_kinds(bind_kinds)
        if len(bind_kinds) != len(values):
            raise QueryBuildError(
                "Number of bind kinds does not match the number of parameters "
                f"({len(bind_kinds)} vs {len(values)})"
            )
        for value in values:
            if isinstance(value, (list, tuple, set, dict)):
                raise QueryBuildError(
                    f"Collection parameters are not supported, tried to bind {value!r}"
                )

        statement = text(to_named_placeholders(sql, len(values)))
        if values:
            statement = statement.bindparams(
                *[
                    bindparam(f"p{index}", type_=BIND_KIND_TYPES[kind]())
                    for index, kind in enumerate(bind_kinds)
                ]
            )
        params: Mapping[str, Any] = {
            f"p{index}": value for index, value in enumerate(values)
        }

        start = time.perf_counter()
        try:
            result = self._connection.execute(statement, params)
        except SQLAlchemyError:
            _LOGGER.exception(
                "Error while executing query",
                extra={"sql": sql, "params": list(values)},
            )
            raise
        duration_ms = (time.perf_counter() - start) * 1000

        _LOGGER.debug("%s %s", sql, list(values))
        if duration_ms >= settings.slow_query_threshold_ms:
            _LOGGER.warning(
                f"Slow query done in {duration_ms:.1f}ms: {sql}",
                extra={"sql": sql, "duration_ms": duration_ms},
            )
        return result


@contextmanager
def get_db_context(engine: Engine | None = None) -> Generator[Database, None, None]:
    """Context manager for one request's database lifecycle.

    :param Engine | None engine: engine to use, one is created from settings
        when omitted
    :yields Database: the request's database
    """
    owns_engine = engine is None
    engine = engine or create_db_engine()
    try:
        with Database.connect(engine) as db:
            yield db
    finally:
        if owns_engine:
            engine.dispose()
