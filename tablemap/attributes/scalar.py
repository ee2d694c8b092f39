import logging
from typing import Any

from tablemap.attribute_types import AttributeType
from tablemap.attributes.base import _SKIP, AbstractModelAttribute, Severity
from tablemap.errors import ModelDefinitionError
from tablemap.query import bind_kind_for

_LOGGER = logging.getLogger(__name__)


class ModelAttribute(AbstractModelAttribute):
    """A typed value stored in a column of the model table."""

    def __init__(
        self, name: str, type: AttributeType = AttributeType.CHAR, **kwargs: Any
    ):
        if AttributeType(type) == AttributeType.RELATION:
            raise ModelDefinitionError(
                f"The attribute type 'relation' is not allowed for '{name}', use a "
                "link instead"
            )
        super().__init__(name, type, **kwargs)

    def parse(self, value: Any) -> Any:
        return self.type.kind.parse(value, self.name)

    def _set_value(self, value: Any, is_creation: bool) -> None:
        value = self._check_required(value, is_creation)
        if value is _SKIP:
            return
        try:
            self.value = self.parse(value)
        except ValueError as e:
            self.add_message(Severity.ERROR, "attribute-type", str(e))

    def _format(self) -> Any:
        return self.type.kind.format(self.value)

    def _persist(self) -> None:
        """UPDATE the column, and the updated-at column when there is one."""
        self._require_object_id()
        assignments = [f"{self.target_column} = ?"]
        bind_kinds = self.bind_kind
        values = [self.sql_value()]

        if self.updated_at_column and self.updated_at_column != self.target_column:
            assignments.append(f"{self.updated_at_column} = ?")
            bind_kinds += "s"
            values.append(self._now_sql())

        bind_kinds += bind_kind_for(self.object_id)
        values.append(self.object_id)
        self._require_db().execute(
            f"UPDATE {self.model_table} SET {', '.join(assignments)} "
            f"WHERE {self.model_id_column} = ?",
            bind_kinds,
            *values,
        )
        _LOGGER.debug(
            f"Saved {self.model_name}.{self.name} for object {self.object_id}"
        )

    def _fetch_value(self) -> Any:
        row = (
            self._query(self.model_table)
            .select(self.target_column)
            .where(self.model_id_column, self.object_id)
            .first()
        )
        return None if row is None else row[self.target_column]
