"""
Command line tooling to bootstrap and check the tables of a set of models.

Models are given as import paths, ``package.module:ClassName``::

    tablemap generate myapp.models:Article myapp.models:Author
    tablemap check myapp.models:Article
    tablemap export --with-data --output backup.sql
"""

import importlib
import sys
from pathlib import Path

import click

from tablemap.database import create_db_engine, get_db_context
from tablemap.log_config import configure_logging
from tablemap.model import Model
from tablemap.schema import (
    check_model_db_adequation,
    export_schema,
    generate_table_for_model,
    load_structure,
    update_table_from_model,
)


def load_model_class(path: str) -> type[Model]:
    """Import a model class from ``package.module:ClassName``.

    :raises click.BadParameter: if the path does not name a Model subclass
    """
    module_name, _, class_name = path.partition(":")
    if not module_name or not class_name:
        raise click.BadParameter(f"'{path}' is not of the form module:ClassName")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise click.BadParameter(f"Could not import {module_name}: {e}") from e

    model_class = getattr(module, class_name, None)
    if not isinstance(model_class, type) or not issubclass(model_class, Model):
        raise click.BadParameter(f"{path} is not a Model subclass")
    return model_class


def _model_classes(paths: tuple[str, ...]) -> list[type[Model]]:
    return [load_model_class(path) for path in paths]


@click.group()
@click.option("--database-url", envvar="TABLEMAP_DATABASE_URL", default=None)
@click.option("--log-level", default=None, help="Overrides TABLEMAP_LOG_LEVEL")
@click.pass_context
def cli(ctx: click.Context, database_url: str | None, log_level: str | None):
    """Generate, check and update the tables of tablemap models."""
    configure_logging(log_level)
    ctx.obj = {"engine": create_db_engine(database_url)}
    ctx.call_on_close(ctx.obj["engine"].dispose)


@cli.command()
@click.argument("models", nargs=-1, required=True)
@click.option("--no-update", is_flag=True, help="Leave existing tables untouched")
@click.option("--drop", is_flag=True, help="Drop and recreate existing tables")
@click.option("--force", is_flag=True, help="Let updates drop and alter columns")
@click.option("--export", is_flag=True, help="Write the structure file afterwards")
@click.pass_context
def generate(ctx, models, no_update, drop, force, export):
    """Create or update the tables of MODELS."""
    model_classes = _model_classes(models)
    with get_db_context(ctx.obj["engine"]) as db:
        for model_class in model_classes:
            done = generate_table_for_model(
                db,
                model_class,
                allow_update=not no_update,
                drop_tables_if_exist=drop,
                force=force,
            )
            status = "ok" if done else "skipped"
            click.echo(f"{model_class.name}: {status}")
        if export:
            click.echo(f"Exported to {export_schema(db)}")


@cli.command()
@click.argument("models", nargs=-1, required=True)
@click.pass_context
def check(ctx, models):
    """Report the differences between MODELS and their tables.

    Exits with status 1 when any table does not match its model.
    """
    model_classes = _model_classes(models)
    all_adequate = True
    with get_db_context(ctx.obj["engine"]) as db:
        for model_class in model_classes:
            report = check_model_db_adequation(db, model_class)
            all_adequate = all_adequate and report.success
            if report.success:
                click.echo(f"{model_class.name}: ok")
            else:
                click.echo(f"{model_class.name}: {report.model_dump_json()}")
    if not all_adequate:
        sys.exit(1)


@cli.command()
@click.argument("models", nargs=-1, required=True)
@click.option("--force", is_flag=True, help="Drop and alter mismatched columns")
@click.pass_context
def update(ctx, models, force):
    """Add missing columns to the tables of MODELS."""
    model_classes = _model_classes(models)
    with get_db_context(ctx.obj["engine"]) as db:
        for model_class in model_classes:
            try:
                report = update_table_from_model(db, model_class, force=force)
            except ValueError as e:
                raise click.ClickException(str(e)) from e
            status = "ok" if report.success else report.model_dump_json()
            click.echo(f"{model_class.name}: {status}")


@cli.command()
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Defaults to TABLEMAP_STRUCTURE_FILE",
)
@click.option("--with-data", is_flag=True, help="Add an INSERT per row")
@click.option("--drop", is_flag=True, help="Drop each table before creating it")
@click.option(
    "--backup", is_flag=True, help="Also write a dated copy to TABLEMAP_BACKUP_DIR"
)
@click.pass_context
def export(ctx, output, with_data, drop, backup):
    """Write the CREATE TABLE statements of the database to a file."""
    with get_db_context(ctx.obj["engine"]) as db:
        path = export_schema(
            db,
            output,
            keep_data=with_data,
            drop_tables_if_exist=drop,
            backup=backup,
        )
    click.echo(f"Exported to {path}")


@cli.command()
@click.option(
    "--input",
    "input_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Defaults to TABLEMAP_STRUCTURE_FILE",
)
@click.pass_context
def load(ctx, input_path):
    """Run the statements of an exported structure file."""
    with get_db_context(ctx.obj["engine"]) as db:
        count = load_structure(db, input_path)
    click.echo(f"Ran {count} statements")


if __name__ == "__main__":
    cli()
