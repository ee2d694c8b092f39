from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from tablemap.attribute_types import CHAR_MAX_LENGTH, AttributeType

UTC = ZoneInfo("UTC")


@pytest.mark.parametrize(
    "type, sql_type, bind_kind",
    [
        (AttributeType.ID, "INT", "i"),
        (AttributeType.UUID, "CHAR(36)", "s"),
        (AttributeType.EMAIL, "CHAR(255)", "s"),
        (AttributeType.RELATION, "INT", "s"),
        (AttributeType.CHAR, "CHAR(255)", "s"),
        (AttributeType.TEXT, "TEXT", "s"),
        (AttributeType.LIST, "TEXT", "s"),
        (AttributeType.BOOL, "TINYINT(1)", "i"),
        (AttributeType.INT, "INT", "i"),
        (AttributeType.FLOAT, "FLOAT", "d"),
        (AttributeType.DATE, "DATE", "s"),
        (AttributeType.DATETIME, "DATETIME", "s"),
    ],
)
def test_every_type_maps_to_one_sql_type_and_bind_kind(type, sql_type, bind_kind):
    assert type.sql_type == sql_type
    assert type.bind_kind == bind_kind


@pytest.mark.parametrize(
    "type, value, expected",
    [
        (AttributeType.CHAR, "abc", "abc"),
        (AttributeType.CHAR, 12, "12"),
        (AttributeType.TEXT, "x" * 1000, "x" * 1000),
        (AttributeType.EMAIL, "ada@example.com", "ada@example.com"),
        (AttributeType.LIST, "a,b,c", ["a", "b", "c"]),
        (AttributeType.LIST, None, []),
        (AttributeType.LIST, "", []),
        (AttributeType.BOOL, "on", True),
        (AttributeType.BOOL, "true", True),
        (AttributeType.BOOL, "0", False),
        (AttributeType.BOOL, False, False),
        (AttributeType.INT, "42", 42),
        (AttributeType.INT, 4.0, 4),
        (AttributeType.INT, "", None),
        (AttributeType.FLOAT, "1.5", 1.5),
        (AttributeType.FLOAT, 2, 2.0),
        (AttributeType.UUID, "not checked", "not checked"),
    ],
)
def test_parse_valid_values(type, value, expected):
    assert type.kind.parse(value, "field") == expected


@pytest.mark.parametrize(
    "type, value",
    [
        (AttributeType.CHAR, "x" * (CHAR_MAX_LENGTH + 1)),
        (AttributeType.CHAR, ["a"]),
        (AttributeType.EMAIL, "not-an-email"),
        (AttributeType.BOOL, "maybe"),
        (AttributeType.BOOL, 2),
        (AttributeType.INT, "abc"),
        (AttributeType.INT, True),
        (AttributeType.FLOAT, "nan"),
        (AttributeType.FLOAT, "1,5"),
        (AttributeType.DATE, "31/02/2024"),
        (AttributeType.DATETIME, "yesterday"),
        (AttributeType.LIST, 3),
    ],
)
def test_parse_invalid_values(type, value):
    with pytest.raises(ValueError):
        type.kind.parse(value, "field")


def test_char_accepts_exactly_the_max_length():
    value = "x" * CHAR_MAX_LENGTH
    assert AttributeType.CHAR.kind.parse(value, "field") == value


def test_datetime_from_display_format():
    kind = AttributeType.DATETIME.kind
    parsed = kind.parse("25/12/2024 10:30:00", "field", UTC)

    assert parsed == datetime(2024, 12, 25, 10, 30, tzinfo=UTC)
    assert kind.format(parsed) == "25/12/2024 10:30:00"
    assert kind.sql_value(parsed, UTC) == "2024-12-25 10:30:00"


def test_datetime_converts_aware_values_to_the_configured_timezone():
    paris = ZoneInfo("Europe/Paris")
    parsed = AttributeType.DATETIME.kind.parse("2024-06-01T12:00:00+00:00", "f", paris)

    assert parsed.tzinfo == paris
    assert parsed.hour == 14


def test_date_is_truncated_to_midnight():
    kind = AttributeType.DATE.kind
    parsed = kind.parse("2024-12-25T15:45:00", "field", UTC)

    assert parsed == datetime(2024, 12, 25, tzinfo=UTC)
    assert kind.format(parsed) == "25/12/2024"
    assert kind.sql_value(parsed) == "2024-12-25"


@pytest.mark.parametrize(
    "type, value",
    [
        (AttributeType.LIST, ["a", "b"]),
        (AttributeType.BOOL, True),
        (AttributeType.INT, 3),
        (AttributeType.FLOAT, 0.25),
        (AttributeType.DATE, datetime(2024, 1, 2, tzinfo=UTC)),
        (AttributeType.DATETIME, datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)),
    ],
)
def test_stored_value_parses_back_to_the_same_value(type, value):
    kind = type.kind
    assert kind.parse(kind.sql_value(value, UTC), "field", UTC) == value


def test_bool_is_stored_as_an_integer():
    assert AttributeType.BOOL.kind.sql_value(True) == 1
    assert AttributeType.BOOL.kind.sql_value(False) == 0


def test_id_types():
    assert AttributeType.ID.is_id
    assert AttributeType.UUID.is_id
    assert not AttributeType.INT.is_id
