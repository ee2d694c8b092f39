"""
Keep database tables in line with model declarations.

The declared columns of a model are compared with the columns reflected from
the database. Missing tables are created with SQLAlchemy, existing ones are
altered with alembic operations, in batch mode so the same code path works
on SQLite where most ALTERs need the table to be rebuilt.
"""

import logging
import re
from datetime import datetime
from pathlib import Path

from alembic.migration import MigrationContext
from alembic.operations import Operations
from pydantic import BaseModel, Field, computed_field
from sqlalchemy import Column, MetaData, Table, inspect
from sqlalchemy.exc import CompileError, SQLAlchemyError
from sqlalchemy.schema import CreateTable, DropTable
from sqlalchemy.types import TypeEngine

from tablemap.attributes import ModelAttributeLinkThrough
from tablemap.database import Database
from tablemap.model import Model
from tablemap.settings import settings

_LOGGER = logging.getLogger(__name__)

STATEMENT_SEPARATOR = ";\n\n"

_TYPE_ALIASES = {
    "int": "integer",
    "int(11)": "integer",
    "integer": "integer",
    "tinyint(1)": "boolean",
    "boolean": "boolean",
    "bool": "boolean",
    "float": "float",
    "double": "float",
    "double precision": "float",
    "real": "float",
    "text": "text",
    "longtext": "text",
    "mediumtext": "text",
    "clob": "text",
    "datetime": "datetime",
    "timestamp": "datetime",
    "timestamp without time zone": "datetime",
    "date": "date",
}

_CHAR_PATTERN = re.compile(r"^(?:var)?char(?:acter)?(?: varying)?\s*\((\d+)\)$")


class ColumnMismatch(BaseModel):
    column: str
    expected: str
    actual: str


class AdequationReport(BaseModel):
    """Differences between a model declaration and its table."""

    table: str
    table_exists: bool = True
    missing_columns_in_db: list[str] = Field(default_factory=list)
    extra_columns_in_db: list[str] = Field(default_factory=list)
    types_mismatch: list[ColumnMismatch] = Field(default_factory=list)
    required_mismatch: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def success(self) -> bool:
        return self.table_exists and not (
            self.missing_columns_in_db
            or self.extra_columns_in_db
            or self.types_mismatch
            or self.required_mismatch
        )


def normalise_sql_type(sql_type: str) -> str:
    """Reduce a SQL type to a canonical name so dialect spellings compare equal.

    ``INT``, ``int(11)`` and ``INTEGER`` all become ``integer``; ``CHAR(255)``
    and ``varchar(255)`` both become ``varchar(255)``.

    :param str sql_type: a type as declared or as reflected
    :return str: the canonical type name
    """
    sql_type = " ".join(sql_type.strip().lower().split())
    if sql_type in _TYPE_ALIASES:
        return _TYPE_ALIASES[sql_type]
    if match := _CHAR_PATTERN.match(sql_type):
        return f"varchar({match.group(1)})"
    if sql_type.startswith("float(") or sql_type.startswith("double("):
        return "float"
    return sql_type


def _type_name(type_: TypeEngine, db: Database) -> str:
    try:
        return str(type_.compile(dialect=db.connection.dialect))
    except CompileError:
        return str(type_)


def model_columns(model: Model) -> list[Column]:
    """The columns declared by a model for its own table, id first."""
    return [attribute.column() for attribute in model.table_attributes()]


def model_table(model: Model, metadata: MetaData | None = None) -> Table:
    return Table(model.table, metadata or MetaData(), *model_columns(model))


def junction_tables(model: Model, metadata: MetaData | None = None) -> list[Table]:
    """The junction tables owned by the model's non-inversed through links."""
    metadata = metadata or MetaData()
    return [
        Table(attribute.relation_table, metadata, *attribute.junction_columns())
        for attribute in model.attributes.values()
        if isinstance(attribute, ModelAttributeLinkThrough)
        and not attribute.is_inversed
    ]


def table_exists(db: Database, table: str) -> bool:
    return inspect(db.connection).has_table(table)


def check_model_db_adequation(
    db: Database, model_class: type[Model]
) -> AdequationReport:
    """Compare the declared columns of a model with its table.

    :param Database db: the database to inspect
    :param type[Model] model_class: the model to check
    :return AdequationReport: what differs, empty when adequate
    """
    model = model_class(db)
    report = AdequationReport(table=model.table)
    if not table_exists(db, model.table):
        report.table_exists = False
        return report

    actual = {
        column["name"]: column
        for column in inspect(db.connection).get_columns(model.table)
    }
    expected = {column.name: column for column in model_columns(model)}

    for name, column in expected.items():
        if name not in actual:
            report.missing_columns_in_db.append(name)
            continue

        expected_type = normalise_sql_type(_type_name(column.type, db))
        actual_type = normalise_sql_type(_type_name(actual[name]["type"], db))
        if expected_type != actual_type:
            report.types_mismatch.append(
                ColumnMismatch(column=name, expected=expected_type, actual=actual_type)
            )
        if not column.primary_key and column.nullable != actual[name]["nullable"]:
            report.required_mismatch.append(name)

    report.extra_columns_in_db = [name for name in actual if name not in expected]

    if not report.success:
        _LOGGER.info(
            f"Table {model.table} does not match the {model.name} model",
            extra={"report": report.model_dump()},
        )
    return report


def update_table_from_model(
    db: Database, model_class: type[Model], force: bool = False
) -> AdequationReport:
    """Alter a table towards its model declaration.

    Missing columns are always added, as nullable so rows already in the
    table stay valid. Extra columns are dropped and mismatched columns
    altered only when ``force`` is set, as both can lose data.

    :return AdequationReport: the differences left after the update
    """
    model = model_class(db)
    report = check_model_db_adequation(db, model_class)
    if not report.table_exists:
        raise ValueError(f"Table {model.table} does not exist, it can't be updated")
    if report.success:
        return report

    expected = {column.name: column for column in model_columns(model)}
    operations = Operations(MigrationContext.configure(db.connection))

    if report.missing_columns_in_db or (force and report.extra_columns_in_db):
        with operations.batch_alter_table(model.table) as batch:
            for name in report.missing_columns_in_db:
                batch.add_column(Column(name, expected[name].type, nullable=True))
                _LOGGER.info(f"Adding column {model.table}.{name}")
            if force:
                for name in report.extra_columns_in_db:
                    batch.drop_column(name)
                    _LOGGER.warning(f"Dropping column {model.table}.{name}")
        db.commit()

    if force:
        report = check_model_db_adequation(db, model_class)
        altered = {mismatch.column for mismatch in report.types_mismatch}
        altered.update(report.required_mismatch)
        for name in sorted(altered):
            _alter_column(db, operations, model.table, expected[name])

    return check_model_db_adequation(db, model_class)


def _alter_column(
    db: Database, operations: Operations, table: str, column: Column
) -> None:
    """Alter a column in place, or drop and add it back when that fails.

    Batch mode alters in place where the dialect can, and rebuilds the table
    on SQLite. A column added back loses its data and is nullable.
    """
    existing = {
        reflected["name"]: reflected
        for reflected in inspect(db.connection).get_columns(table)
    }[column.name]
    _LOGGER.warning(f"Altering column {table}.{column.name}")
    try:
        with operations.batch_alter_table(table) as batch:
            batch.alter_column(
                column.name,
                type_=column.type,
                existing_type=existing["type"],
                nullable=column.nullable,
                existing_nullable=existing["nullable"],
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        _LOGGER.exception(
            f"Could not alter {table}.{column.name}, dropping and adding it back"
        )
        with operations.batch_alter_table(table) as batch:
            batch.drop_column(column.name)
        with operations.batch_alter_table(table) as batch:
            batch.add_column(Column(column.name, column.type, nullable=True))
        db.commit()


def drop_table(db: Database, table: str) -> None:
    db.execute(f"DROP TABLE IF EXISTS {table}")
    _LOGGER.warning(f"Dropped table {table}")


def create_table(db: Database, table: Table) -> None:
    table.create(db.connection)
    db.commit()
    _LOGGER.info(f"Created table {table.name}")


def generate_table_for_model(
    db: Database,
    model_class: type[Model],
    allow_update: bool = True,
    drop_tables_if_exist: bool = False,
    force: bool = False,
    export: bool = False,
) -> bool:
    """Make sure the table and junction tables of a model exist and match it.

    :param Database db: the database to generate the tables in
    :param type[Model] model_class: the model to generate tables for
    :param bool allow_update: alter an existing table that doesn't match
    :param bool drop_tables_if_exist: recreate the tables from scratch
    :param bool force: let updates drop and alter columns
    :param bool export: write the resulting schema to the structure file
    :return bool: False when an existing table was left untouched
    """
    model = model_class(db)
    exists = table_exists(db, model.table)

    if exists and not drop_tables_if_exist:
        if not allow_update:
            _LOGGER.info(f"Table {model.table} exists and updates are not allowed")
            return False
        if not check_model_db_adequation(db, model_class).success:
            update_table_from_model(db, model_class, force=force)
    else:
        if exists:
            drop_table(db, model.table)
        create_table(db, model_table(model))

    for junction in junction_tables(model):
        if table_exists(db, junction.name):
            if not drop_tables_if_exist:
                continue
            drop_table(db, junction.name)
        create_table(db, junction)

    if export:
        export_schema(db)
    return True


def export_schema(
    db: Database,
    path: Path | None = None,
    keep_data: bool = False,
    drop_tables_if_exist: bool = False,
    backup: bool = False,
) -> Path:
    """Write the CREATE TABLE statement of every table in the database.

    Statements are separated by a blank line, which is what ``load_structure``
    splits on.

    :param Database db: the database to export
    :param Path | None path: where to write, the configured structure file by
        default
    :param bool keep_data: follow each table with an INSERT per row
    :param bool drop_tables_if_exist: precede each table with a DROP TABLE IF
        EXISTS
    :param bool backup: also write a dated copy in the backup directory
    :return Path: the written file
    """
    path = Path(path or settings.structure_file)
    dialect = db.connection.dialect
    metadata = MetaData()
    metadata.reflect(bind=db.connection)

    statements = []
    for table in metadata.sorted_tables:
        if drop_tables_if_exist:
            statements.append(
                str(DropTable(table, if_exists=True).compile(dialect=dialect)).strip()
            )
        statements.append(str(CreateTable(table).compile(dialect=dialect)).strip())
        if keep_data:
            statements.extend(_insert_statements(db, table))
    db.commit()

    content = STATEMENT_SEPARATOR.join(statements) + ";\n" if statements else ""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    _LOGGER.info(
        f"Exported {len(metadata.sorted_tables)} tables to {path}",
        extra={"keep_data": keep_data},
    )

    if backup:
        backup_path = settings.backup_dir / (
            f"{datetime.now(settings.tz()):%Y-%m-%d_%H-%M-%S}_database.sql"
        )
        backup_path.parent.mkdir(parents=True, exist_ok=True)
        backup_path.write_text(content)
        _LOGGER.info(f"Backed up the database to {backup_path}")
    return path


def _insert_statements(db: Database, table: Table) -> list[str]:
    rows = db.connection.execute(table.select()).mappings().all()
    return [
        str(
            table.insert()
            .values(dict(row))
            .compile(
                dialect=db.connection.dialect,
                compile_kwargs={"literal_binds": True},
            )
        ).strip()
        for row in rows
    ]


def load_structure(db: Database, path: Path | None = None) -> int:
    """Run the statements of a file written by ``export_schema``.

    Everything runs in one transaction: nothing is applied if one statement
    fails.

    :param Database db: the database to load into
    :param Path | None path: the file, the configured structure file by default
    :return int: the number of statements run
    """
    path = Path(path or settings.structure_file)
    content = path.read_text().strip()
    if content.endswith(";"):
        content = content[:-1]
    statements = [
        statement.strip()
        for statement in content.split(STATEMENT_SEPARATOR)
        if statement.strip()
    ]

    with db.transaction():
        for statement in statements:
            db.connection.exec_driver_sql(statement)
    _LOGGER.info(f"Loaded {len(statements)} statements from {path}")
    return len(statements)
