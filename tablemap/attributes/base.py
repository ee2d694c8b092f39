import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple

from sqlalchemy import Column

from tablemap.attribute_types import SQL_DATETIME_FORMAT, AttributeType
from tablemap.attributes.values import (
    RelationValue,
    Resolved,
    Unresolved,
    format_relation,
)
from tablemap.database import Database
from tablemap.errors import (
    ModelDefinitionError,
    ObjectIdNotSetError,
    ObjectIdRebindError,
)
from tablemap.query import Query
from tablemap.settings import settings

_LOGGER = logging.getLogger(__name__)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Message(NamedTuple):
    severity: Severity
    code: str
    text: str


class TargetNotFoundError(ValueError):
    """A relation was given the id of a row that does not exist."""


# Returned by the required-field check when there is nothing left to parse
_SKIP = object()


def table_prefix(bundle: str) -> str:
    return "" if bundle == "default" else f"{bundle}_"


class AbstractModelAttribute(ABC):
    """One named field of one model instance.

    The attribute owns the field's value and its validation state, and knows
    how to read and write that value in the database. Validation problems
    never raise: they are recorded in ``messages`` and flip ``is_valid``.

    Once bound to an object id an attribute can't be bound to another one.
    """

    is_link = False
    is_link_through = False
    is_inversed = False

    def __init__(
        self,
        name: str,
        type: AttributeType,
        *,
        model_name: str,
        model_table: str,
        db: Database | None = None,
        model_id_column: str = "id",
        bundle: str = "default",
        is_required: bool = False,
        default_value: Any = None,
        target_column: str | None = None,
        updated_at_column: str | None = None,
    ):
        if not name:
            raise ModelDefinitionError("An attribute needs a name")
        self.name = name
        self.type = AttributeType(type)
        self.db = db
        self.model_name = model_name
        self.model_table = model_table
        self.model_id_column = model_id_column
        self.bundle = bundle
        self.is_required = is_required
        self.default_value = default_value
        self.target_column = target_column or name
        self.updated_at_column = updated_at_column

        self.value: Any = self._empty_value()
        self.messages: list[Message] = []
        self.is_valid = True
        self._object_id: Any = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.model_name}.{self.name}={self.value!r}>"

    def set_required(self, is_required: bool = True) -> "AbstractModelAttribute":
        self.is_required = is_required
        return self

    def set_default(self, default_value: Any) -> "AbstractModelAttribute":
        self.default_value = default_value
        return self

    ######################################
    # Type specific behaviour
    ######################################

    @abstractmethod
    def parse(self, value: Any) -> Any:
        """Coerce one raw value, raising ``ValueError`` when it doesn't fit."""

    @abstractmethod
    def _set_value(self, value: Any, is_creation: bool) -> None:
        """Validate and store a value, recording messages instead of raising."""

    @abstractmethod
    def _format(self) -> Any:
        """The current value formatted for display."""

    @abstractmethod
    def _persist(self) -> None:
        """Write the current value to the database."""

    @abstractmethod
    def _fetch_value(self) -> Any:
        """Read the stored value from the database."""

    def _load_value(self, value: Any) -> None:
        self._set_value(value, is_creation=False)

    def _empty_value(self) -> Any:
        return None

    ######################################
    # Lifecycle
    ######################################

    def create(self, value: Any) -> "AbstractModelAttribute":
        """Validate a value for a record that does not exist yet."""
        self._reset_state()
        self._set_value(value, is_creation=True)
        return self

    def update(
        self, value: Any, object_id: Any = None, persist_now: bool = False
    ) -> "AbstractModelAttribute":
        """Validate a new value for an existing record.

        A required attribute keeps its current value when given None.

        :param Any value: the new value
        :param Any object_id: binds the attribute to this record
        :param bool persist_now: write the value to the database straight away
        """
        self.set_id(object_id)
        self._reset_state()
        if self.is_inversed or self.is_link_through:
            self.value = self._empty_value()
        self._set_value(value, is_creation=False)
        if persist_now and self.is_valid:
            self._persist()
        return self

    def add(self, value: Any, persist_now: bool = False) -> "AbstractModelAttribute":
        raise ModelDefinitionError(
            f"add() is only available for link attributes, '{self.name}' is not one"
        )

    def remove(
        self, value: Any = None, persist_now: bool = False, cascade: bool = False
    ) -> "AbstractModelAttribute":
        raise ModelDefinitionError(
            f"remove() is only available for link attributes, '{self.name}' is not one"
        )

    def get(self, as_native: bool = False) -> Any:
        """Return the value, or None when the attribute is invalid.

        :param bool as_native: return the Python value instead of its
            formatted form
        """
        if not self.is_valid:
            return None
        if as_native:
            return self.value
        return self._format()

    def load(self, object_id: Any) -> "AbstractModelAttribute":
        """Bind to ``object_id`` and read the stored value."""
        self.set_id(object_id)
        self._require_object_id()
        self._load_value(self._fetch_value())
        return self

    def load_from_value(self, value: Any, object_id: Any) -> "AbstractModelAttribute":
        """Bind to ``object_id`` with a value read elsewhere, e.g. the model row."""
        self.set_id(object_id)
        self._load_value(value)
        return self

    def save(self, object_id: Any = None) -> "AbstractModelAttribute":
        self.set_id(object_id)
        if self.is_valid:
            self._persist()
        return self

    def delete(self, object_id: Any = None) -> "AbstractModelAttribute":
        """Clear the value and persist it. Required attributes can't be deleted."""
        if self.is_required:
            self.add_message(
                Severity.ERROR,
                "attribute-required",
                f"{self.name} is required and cannot be deleted.",
            )
            return self
        self.set_id(object_id)
        self.value = self._empty_value()
        self._persist()
        return self

    def set_id(self, object_id: Any) -> "AbstractModelAttribute":
        """Bind the attribute to a record.

        :raises ObjectIdRebindError: if already bound to a different record
        """
        if object_id is None:
            return self
        if self._object_id is not None and self._object_id != object_id:
            raise ObjectIdRebindError(
                f"Attribute '{self.name}' is bound to object {self._object_id}, "
                f"it can't be bound to {object_id}"
            )
        self._object_id = object_id
        return self

    @property
    def object_id(self) -> Any:
        return self._object_id

    ######################################
    # Messages
    ######################################

    def add_message(self, severity: Severity, code: str, text: str) -> None:
        self.messages.append(Message(severity, code, text))
        if severity == Severity.ERROR:
            self.is_valid = False

    @property
    def has_errors(self) -> bool:
        return any(message.severity == Severity.ERROR for message in self.messages)

    def _reset_state(self) -> None:
        self.messages = []
        self.is_valid = True

    def _check_required(self, value: Any, is_creation: bool) -> Any:
        """Apply the required-field policy to an empty value.

        On creation a default replaces the missing value, on update the
        current value is kept.

        :return Any: the value to parse, or ``_SKIP``
        """
        if not self.is_required or not self._is_empty(value):
            return value

        if not is_creation and not self._is_empty(self.value):
            self.add_message(
                Severity.WARNING,
                "old-value-user",
                f"The old value was used for {self.name} as the new value passed "
                "was null and this attribute is required.",
            )
            return _SKIP

        if self.default_value is None:
            self.add_message(
                Severity.ERROR,
                "attribute-required",
                f"{self.name} is required but no value was provided.",
            )
            return _SKIP

        self.add_message(
            Severity.INFO,
            "default-value-used",
            f"The default value ({self.default_value}) was used for {self.name}",
        )
        return self.default_value

    def _is_empty(self, value: Any) -> bool:
        return value is None

    ######################################
    # SQL helpers
    ######################################

    @property
    def bind_kind(self) -> str:
        return self.type.bind_kind

    @property
    def sql_type(self) -> str:
        return self.type.sql_type

    @property
    def is_stored_in_model_table(self) -> bool:
        """Whether the attribute owns a column of the model table."""
        return not self.is_inversed and not self.is_link_through

    def sql_value(self) -> Any:
        return self.type.kind.sql_value(self.value)

    def column(self) -> Column:
        """The column declaring this attribute in the model table."""
        if self.type == AttributeType.ID:
            return Column(
                self.target_column,
                self.type.kind.column_type(),
                primary_key=True,
                autoincrement=True,
            )
        if self.type == AttributeType.UUID:
            return Column(
                self.target_column,
                self.type.kind.column_type(),
                primary_key=True,
                autoincrement=False,
            )
        return Column(
            self.target_column,
            self.type.kind.column_type(),
            nullable=not self.is_required,
        )

    def _require_object_id(self) -> None:
        if self._object_id is None:
            raise ObjectIdNotSetError(
                f"Attribute '{self.name}' of {self.model_name} is not bound to an "
                "object"
            )

    def _require_db(self) -> Database:
        if self.db is None:
            raise ModelDefinitionError(
                f"Attribute '{self.name}' of {self.model_name} has no database"
            )
        return self.db

    def _query(self, table: str) -> Query:
        return Query.from_table(self._require_db(), table)

    @staticmethod
    def _now_sql() -> str:
        return datetime.now(settings.tz()).strftime(SQL_DATETIME_FORMAT)


class AbstractLinkAttribute(AbstractModelAttribute):
    """Shared behaviour of the attributes that point at rows of another table.

    ``target`` is the target model class, or None when the relation points at
    a plain table.
    """

    is_link = True

    def __init__(
        self,
        name: str,
        *,
        model_name: str,
        model_table: str,
        target: type | None = None,
        target_table: str | None = None,
        target_id_column: str | None = None,
        target_id_type: AttributeType = AttributeType.ID,
        **kwargs: Any,
    ):
        super().__init__(
            name,
            AttributeType.RELATION,
            model_name=model_name,
            model_table=model_table,
            **kwargs,
        )
        if target is not None:
            target_model = target(self.db, load_relations=False)
            self.target = target
            self.target_name = target.name
            self.target_table = target_model.table
            self.target_id_column = target_model.id_column
            self.target_id_type = target_model.id_type
            self.target_model_updated_at = target_model.updated_at_column
            self.target_deleted_at_column = target_model.deleted_at_column
        else:
            if not target_table:
                raise ModelDefinitionError(
                    f"Link '{name}' needs at least a target model or a target table"
                )
            self.target = None
            self.target_name = None
            self.target_table = target_table
            self.target_id_column = target_id_column or "id"
            self.target_id_type = target_id_type
            self.target_model_updated_at = None
            self.target_deleted_at_column = None

    def _target_query(self) -> Query:
        """A query on the target table that skips soft-deleted targets."""
        query = self._query(self.target_table)
        if self.target_deleted_at_column is not None:
            query.where_null(self.target_deleted_at_column)
        return query

    def _is_empty(self, value: Any) -> bool:
        return value is None or value == "" or (
            isinstance(value, (list, tuple, set, dict)) and len(value) == 0
        )

    def parse(self, value: Any) -> RelationValue:
        """Turn a model instance, a row mapping or a raw id into a relation value.

        :raises TargetNotFoundError: if a raw id matches no target row
        :raises ValueError: if the value can't point at a target
        """
        if isinstance(value, (Resolved, Unresolved)):
            return value

        if self.target is not None and isinstance(value, self.target):
            target_id = value.get_id()
            if target_id is None:
                raise ValueError(
                    f"The {self.target_name} given for '{self.name}' has not been "
                    "saved yet"
                )
            return Resolved(target_id, value)

        if isinstance(value, Mapping):
            if self.target_id_column not in value:
                raise ValueError(
                    f"The value of '{self.name}' must have a key named "
                    f"{self.target_id_column}"
                )
            return self._resolve_row(value)

        if isinstance(value, (int, str)) and not isinstance(value, bool):
            if self.db is None:
                return Unresolved(value)
            row = (
                self._target_query().where(self.target_id_column, value).first()
            )
            if row is None:
                raise TargetNotFoundError(
                    f"No {self.target_name or self.target_table} with "
                    f"{self.target_id_column} {value} was found for '{self.name}'"
                )
            return self._resolve_row(row)

        if self.target is not None:
            raise ValueError(
                f"The value of '{self.name}' must be a {self.target.__name__}, a "
                "mapping or an id"
            )
        raise ValueError(f"The value of '{self.name}' must be a mapping or an id")

    def _resolve_row(self, row: Mapping) -> Resolved:
        target_id = row[self.target_id_column]
        if self.target is None:
            return Resolved(target_id, dict(row))
        entity = self.target(self.db, load_relations=False).load_from_row(row)
        return Resolved(target_id, entity)

    def _parse_into(self, value: Any) -> RelationValue | None:
        """Parse one member, recording a message when it is rejected."""
        try:
            return self.parse(value)
        except TargetNotFoundError as e:
            self.add_message(Severity.ERROR, "attribute-target-not-found", str(e))
        except ValueError as e:
            self.add_message(Severity.ERROR, "attribute-type", str(e))
        return None

    def _member_id(self, value: Any) -> Any:
        """The target id a value designates, without touching the database."""
        if isinstance(value, (Resolved, Unresolved)):
            return value.id
        if self.target is not None and isinstance(value, self.target):
            return value.get_id()
        if isinstance(value, Mapping):
            return value.get(self.target_id_column)
        return value

    @staticmethod
    def _as_members(value: Any) -> list[Any]:
        """Normalise one member or a collection of members into a list."""
        if value is None:
            return []
        if isinstance(value, (list, tuple, set)):
            return list(value)
        if isinstance(value, dict) and value and all(
            isinstance(item, (Resolved, Unresolved)) for item in value.values()
        ):
            return list(value.values())
        return [value]

    def _set_members(self, value: Any, is_creation: bool) -> None:
        members = self._as_members(value)
        if not members:
            if self.is_required and is_creation:
                self.add_message(
                    Severity.ERROR,
                    "attribute-required",
                    f"{self.name} is required but no value was provided.",
                )
            return

        for member in members:
            parsed = self._parse_into(member)
            if parsed is None:
                return
            self.value[parsed.id] = parsed

    def _format_members(self) -> list[dict]:
        return [
            format_relation(member, self.target_id_column)
            for member in self.value.values()
        ]

    def _load_rows(self, rows: list[Mapping] | None) -> None:
        self.value = self._empty_value()
        for row in rows or []:
            resolved = self._resolve_row(row)
            self.value[resolved.id] = resolved

    @staticmethod
    def _id_key(value: Any) -> str:
        return str(value)

    def _find_key(self, target_id: Any) -> Any:
        for key in self.value:
            if self._id_key(key) == self._id_key(target_id):
                return key
        return None

    def _target_not_linked(self, target_id: Any) -> None:
        self.add_message(
            Severity.ERROR,
            "attribute-remove-target-not-found",
            f"Target ID {target_id} not found in attribute {self.name}.",
        )
