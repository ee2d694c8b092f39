from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from tablemap.database import Database, Row
from tablemap.errors import QueryBuildError
from tablemap.query import Query, WhereClause

if TYPE_CHECKING:
    from tablemap.model import Model


class ModelQuery(Query):
    """A query on a model's table returning model instances instead of rows.

    Aggregates still return their raw value. Use ``Model.start_query`` rather
    than building one directly, so the ownership and soft-delete filters are
    applied.
    """

    def __init__(
        self, db: Database, model_class: type["Model"], load_relations: bool = False
    ):
        self.model_class = model_class
        self.model = model_class(db, load_relations=False)
        self.load_relations = load_relations
        super().__init__(db, self.model.table)

    def restrict(self, column: str, *args: Any) -> "ModelQuery":
        """Add a predicate every row must match, whatever the where clauses.

        Takes the same ``(column, value)`` or ``(column, operator, value)``
        shapes as ``where``, and is ANDed with the whole where clause.
        """
        self._ensure_not_consumed()
        self._scope.append(WhereClause.from_args(column, *args))
        return self

    def select(self, columns: Iterable[str] | str) -> "ModelQuery":
        """Models are hydrated from whole rows, so projections are refused.

        :raises QueryBuildError: always
        """
        raise QueryBuildError(
            f"A query on {self.model_class.name} loads whole rows and can't select "
            f"columns ({columns!r}), use Query.from_table for a projection"
        )

    def _hydrate(self, row: Row) -> "Model":
        return self.model_class(self.db).load_from_row(row, self.load_relations)

    def _run(self, limit: int | None = None, offset: int | None = None) -> list[Any]:
        rows = super()._run(limit, offset)
        if self._is_aggregate:
            return rows
        return [self._hydrate(row) for row in rows]

    def fetch_rows(
        self, limit: int | None = None, offset: int | None = None
    ) -> list[Row]:
        """Fetch the raw rows, without building models."""
        return super()._run(limit, offset)

    def fetch_as_dicts(
        self, limit: int | None = None, offset: int | None = None
    ) -> list[dict[str, Any]]:
        return [model.to_dict() for model in self.fetch(limit, offset)]

    def find(self, id: Any, id_column: str | None = None) -> "Model | None":
        return super().find(id, id_column or self.model.id_column)
