"""
The catalogue of scalar attribute kinds.

Every ``AttributeType`` maps to exactly one ``ScalarKind``, which owns the
behaviour that depends on the type: the SQL column type, the bind kind used
when the value is sent as a query parameter, how user input is parsed and how
the value is formatted for storage and for display.
"""

import math
from datetime import date, datetime, tzinfo
from enum import Enum
from typing import Any

from dateutil.parser import isoparse
from pydantic import EmailStr, TypeAdapter, ValidationError
from sqlalchemy.types import (
    CHAR,
    Boolean,
    Date,
    DateTime,
    Float,
    Integer,
    Text,
    TypeEngine,
)

from tablemap.settings import settings

DISPLAY_DATE_FORMAT = "%d/%m/%Y"
DISPLAY_DATETIME_FORMAT = "%d/%m/%Y %H:%M:%S"
SQL_DATE_FORMAT = "%Y-%m-%d"
SQL_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

CHAR_MAX_LENGTH = 255

_email_adapter = TypeAdapter(EmailStr)


def _type_error(name: str, kind: str, value: Any) -> ValueError:
    if isinstance(value, str):
        return ValueError(
            f"The attribute '{name}' needs to be a {kind} but the value provided "
            f"'{value}' is not."
        )
    return ValueError(
        f"The attribute '{name}' needs to be a {kind} but the value provided is not."
    )


class ScalarKind:
    """Behaviour shared by every kind; subclasses override what differs."""

    name: str = ""
    sql_type: str = ""
    bind_kind: str = "s"

    def column_type(self) -> TypeEngine:
        raise NotImplementedError

    def parse(self, value: Any, attribute_name: str, tz: tzinfo | None = None) -> Any:
        """Coerce user input or a stored value into the native value.

        :param Any value: the raw value
        :param str attribute_name: used in error messages
        :param tzinfo | None tz: timezone for naive dates, defaults to settings
        :raises ValueError: if the value does not fit the kind
        :return Any: the native value
        """
        return value

    def format(self, value: Any) -> Any:
        """Format a native value for display and serialisation."""
        return value

    def sql_value(self, value: Any, tz: tzinfo | None = None) -> Any:
        """Format a native value for storage."""
        return value


class PassThroughKind(ScalarKind):
    def __init__(self, name: str, sql_type: str, bind_kind: str, column_type):
        self.name = name
        self.sql_type = sql_type
        self.bind_kind = bind_kind
        self._column_type = column_type

    def column_type(self) -> TypeEngine:
        return self._column_type()


class CharKind(ScalarKind):
    name = "char"
    sql_type = "CHAR(255)"

    def column_type(self) -> TypeEngine:
        return CHAR(CHAR_MAX_LENGTH)

    def parse(self, value, attribute_name, tz=None):
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise _type_error(attribute_name, self.name, value)
        value = str(value)
        if len(value) > CHAR_MAX_LENGTH:
            raise ValueError(
                f"The attribute '{attribute_name}' can't exceed {CHAR_MAX_LENGTH} "
                "characters. The given value is too long."
            )
        return value


class TextKind(ScalarKind):
    name = "text"
    sql_type = "TEXT"

    def column_type(self) -> TypeEngine:
        return Text()

    def parse(self, value, attribute_name, tz=None):
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise _type_error(attribute_name, self.name, value)
        return str(value)


class EmailKind(ScalarKind):
    name = "email"
    sql_type = "CHAR(255)"

    def column_type(self) -> TypeEngine:
        return CHAR(CHAR_MAX_LENGTH)

    def parse(self, value, attribute_name, tz=None):
        if value is None:
            return None
        try:
            return _email_adapter.validate_python(value)
        except ValidationError as e:
            raise ValueError(
                f"The attribute '{attribute_name}' needs to be an email but the "
                "value provided is not."
            ) from e


class ListKind(ScalarKind):
    name = "list"
    sql_type = "TEXT"

    def column_type(self) -> TypeEngine:
        return Text()

    def parse(self, value, attribute_name, tz=None):
        if value is None or value == "":
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        if isinstance(value, str):
            return value.split(",")
        raise _type_error(attribute_name, self.name, value)

    def format(self, value):
        if value is None:
            return None
        return ",".join(str(item) for item in value)

    def sql_value(self, value, tz=None):
        return self.format(value)


class BoolKind(ScalarKind):
    name = "bool"
    sql_type = "TINYINT(1)"
    bind_kind = "i"

    def column_type(self) -> TypeEngine:
        return Boolean(create_constraint=False)

    def parse(self, value, attribute_name, tz=None):
        if value is None or isinstance(value, bool):
            return value
        if value in ("true", "on", "1") or (isinstance(value, int) and value == 1):
            return True
        if value in ("false", "off", "0") or (isinstance(value, int) and value == 0):
            return False
        raise _type_error(attribute_name, self.name, value)

    def sql_value(self, value, tz=None):
        return None if value is None else int(value)


class IntKind(ScalarKind):
    name = "int"
    sql_type = "INT"
    bind_kind = "i"

    def column_type(self) -> TypeEngine:
        return Integer()

    def parse(self, value, attribute_name, tz=None):
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            raise _type_error(attribute_name, self.name, value)
        if isinstance(value, int):
            return value
        if isinstance(value, float) and math.isfinite(value):
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                pass
            try:
                number = float(value.strip())
            except ValueError:
                raise _type_error(attribute_name, self.name, value)
            if math.isfinite(number):
                return int(number)
        raise _type_error(attribute_name, self.name, value)


class FloatKind(ScalarKind):
    name = "float"
    sql_type = "FLOAT"
    bind_kind = "d"

    def column_type(self) -> TypeEngine:
        return Float()

    def parse(self, value, attribute_name, tz=None):
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            raise _type_error(attribute_name, self.name, value)
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            try:
                number = float(value.strip())
            except ValueError:
                raise _type_error(attribute_name, self.name, value)
        else:
            raise _type_error(attribute_name, self.name, value)
        if not math.isfinite(number):
            raise _type_error(attribute_name, self.name, value)
        return number


class DateTimeKind(ScalarKind):
    """Datetimes are kept as timezone-aware instants in the configured timezone."""

    name = "datetime"
    sql_type = "DATETIME"
    display_format = DISPLAY_DATETIME_FORMAT
    storage_format = SQL_DATETIME_FORMAT
    slash_formats = (DISPLAY_DATETIME_FORMAT, "%d/%m/%Y %H:%M", DISPLAY_DATE_FORMAT)

    def column_type(self) -> TypeEngine:
        return DateTime()

    def parse(self, value, attribute_name, tz=None):
        if value is None or value == "":
            return None
        tz = tz or settings.tz()

        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, date):
            parsed = datetime(value.year, value.month, value.day)
        elif isinstance(value, str):
            parsed = self._parse_string(value.strip(), attribute_name)
        else:
            raise _type_error(attribute_name, self.name, value)

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=tz)
        else:
            parsed = parsed.astimezone(tz)
        return self._truncate(parsed)

    def _parse_string(self, value: str, attribute_name: str) -> datetime:
        if "/" in value:
            for fmt in self.slash_formats:
                try:
                    return datetime.strptime(value, fmt)
                except ValueError:
                    continue
            raise _type_error(attribute_name, self.name, value)
        try:
            return isoparse(value)
        except (ValueError, OverflowError):
            raise _type_error(attribute_name, self.name, value)

    def _truncate(self, value: datetime) -> datetime:
        return value

    def format(self, value):
        return None if value is None else value.strftime(self.display_format)

    def sql_value(self, value, tz=None):
        if value is None:
            return None
        return value.astimezone(tz or settings.tz()).strftime(self.storage_format)


class DateKind(DateTimeKind):
    """Dates are midnight instants in the configured timezone."""

    name = "date"
    sql_type = "DATE"
    display_format = DISPLAY_DATE_FORMAT
    storage_format = SQL_DATE_FORMAT
    slash_formats = (DISPLAY_DATE_FORMAT,)

    def column_type(self) -> TypeEngine:
        return Date()

    def _truncate(self, value: datetime) -> datetime:
        return value.replace(hour=0, minute=0, second=0, microsecond=0)

    def sql_value(self, value, tz=None):
        # The instant is already midnight in the configured timezone
        return None if value is None else value.strftime(self.storage_format)


class AttributeType(str, Enum):
    """The declarable attribute types, plus the internal relation type."""

    ID = "id"
    UUID = "uuid"
    EMAIL = "email"
    RELATION = "relation"
    CHAR = "char"
    TEXT = "text"
    LIST = "list"
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    DATE = "date"
    DATETIME = "datetime"

    @property
    def kind(self) -> ScalarKind:
        return _KINDS[self]

    @property
    def sql_type(self) -> str:
        return self.kind.sql_type

    @property
    def bind_kind(self) -> str:
        return self.kind.bind_kind

    @property
    def is_id(self) -> bool:
        return self in (AttributeType.ID, AttributeType.UUID)


_KINDS: dict[AttributeType, ScalarKind] = {
    AttributeType.ID: PassThroughKind("id", "INT", "i", Integer),
    AttributeType.UUID: PassThroughKind("uuid", "CHAR(36)", "s", lambda: CHAR(36)),
    AttributeType.EMAIL: EmailKind(),
    AttributeType.RELATION: PassThroughKind("relation", "INT", "s", Integer),
    AttributeType.CHAR: CharKind(),
    AttributeType.TEXT: TextKind(),
    AttributeType.LIST: ListKind(),
    AttributeType.BOOL: BoolKind(),
    AttributeType.INT: IntKind(),
    AttributeType.FLOAT: FloatKind(),
    AttributeType.DATE: DateKind(),
    AttributeType.DATETIME: DateTimeKind(),
}

_missing = set(AttributeType) - set(_KINDS)
if _missing:
    raise RuntimeError(f"No scalar kind registered for {sorted(_missing)}")
