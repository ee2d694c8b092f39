import pytest
from sample_models import Counter, Post

from tablemap.query import Query
from tablemap.settings import settings
from tablemap.schema import (
    check_model_db_adequation,
    export_schema,
    generate_table_for_model,
    load_structure,
    table_exists,
    update_table_from_model,
)


def _create_counters(db, *columns: str) -> None:
    definition = ", ".join(("id INTEGER NOT NULL PRIMARY KEY",) + columns)
    db.execute(f"CREATE TABLE counters ({definition})")


def test_generated_tables_match_their_models(test_db):
    report = check_model_db_adequation(test_db, Post)

    assert report.success
    assert table_exists(test_db, "tagables")


def test_missing_table_is_reported(db):
    report = check_model_db_adequation(db, Counter)

    assert not report.table_exists
    assert not report.success


def test_updating_a_missing_table_fails(db):
    with pytest.raises(ValueError):
        update_table_from_model(db, Counter)


def test_mysql_integer_spelling_is_adequate(db):
    _create_counters(db, "hits int(11) NOT NULL")

    assert check_model_db_adequation(db, Counter).success


def test_missing_column_is_added_as_nullable(db):
    _create_counters(db)

    report = check_model_db_adequation(db, Counter)
    assert report.missing_columns_in_db == ["hits"]

    report = update_table_from_model(db, Counter)
    assert report.missing_columns_in_db == []
    assert report.required_mismatch == ["hits"]

    report = update_table_from_model(db, Counter, force=True)
    assert report.success


def test_extra_column_is_only_dropped_when_forced(db):
    _create_counters(db, "hits INTEGER NOT NULL", "legacy TEXT")

    report = update_table_from_model(db, Counter)
    assert report.extra_columns_in_db == ["legacy"]

    report = update_table_from_model(db, Counter, force=True)
    assert report.success


def test_type_mismatch_is_altered_when_forced(db):
    _create_counters(db, "hits TEXT NOT NULL")

    report = check_model_db_adequation(db, Counter)
    assert [mismatch.column for mismatch in report.types_mismatch] == ["hits"]
    assert not update_table_from_model(db, Counter).success

    assert update_table_from_model(db, Counter, force=True).success


def test_existing_table_is_skipped_without_updates(db):
    _create_counters(db)

    assert not generate_table_for_model(db, Counter, allow_update=False)
    assert check_model_db_adequation(db, Counter).missing_columns_in_db == ["hits"]


def test_generate_updates_an_existing_table(db):
    _create_counters(db)

    assert generate_table_for_model(db, Counter, force=True)
    assert check_model_db_adequation(db, Counter).success


def test_drop_recreates_the_table(db):
    generate_table_for_model(db, Counter)
    Counter(db).create({"hits": 3})
    assert Query.from_table(db, "counters").count() == 1

    generate_table_for_model(db, Counter, drop_tables_if_exist=True)

    assert Query.from_table(db, "counters").count() == 0


def test_export_writes_every_table(test_db, tmp_path):
    path = export_schema(test_db, tmp_path / "schema" / "structure.sql")

    content = path.read_text()
    assert "CREATE TABLE posts" in content
    assert "CREATE TABLE tagables" in content
    assert content.endswith(";\n")


def test_export_without_data_has_no_inserts(test_db, make_tag, tmp_path):
    make_tag("red")

    content = export_schema(test_db, tmp_path / "structure.sql").read_text()

    assert "INSERT INTO" not in content
    assert "DROP TABLE" not in content


def test_export_with_data_restores_the_rows(test_db, make_tag, tmp_path):
    red = make_tag("red")
    make_tag("it's green")
    path = export_schema(
        test_db,
        tmp_path / "backup.sql",
        keep_data=True,
        drop_tables_if_exist=True,
    )

    content = path.read_text()
    assert "DROP TABLE IF EXISTS tags" in content
    assert "INSERT INTO tags" in content

    red.delete(force=True)
    assert load_structure(test_db, path) > 0

    rows = Query.from_table(test_db, "tags").order("id").fetch()
    assert [row["label"] for row in rows] == ["red", "it's green"]


def test_export_can_write_a_dated_backup(test_db, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "backup_dir", tmp_path / "backups")

    path = export_schema(test_db, tmp_path / "structure.sql", backup=True)

    backups = list((tmp_path / "backups").glob("*_database.sql"))
    assert len(backups) == 1
    assert backups[0].read_text() == path.read_text()
