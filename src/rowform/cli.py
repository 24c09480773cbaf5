"""rowform command line.

Inspects SQLite databases and applies the additive migrations declared by a
model registry.
"""

import asyncio
import importlib
import sys
from pathlib import Path
from typing import Optional

import structlog
import typer

from rowform.models.schema import TableSchema
from rowform.services.factory import create_connector, create_migration_engine
from rowform.services.query_builder import QueryBuilder
from rowform.services.registry import ModelRegistry

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    logger_factory=lambda name: structlog.PrintLogger(file=sys.stderr),
    wrapper_class=structlog.BoundLogger,
    context_class=dict,
    cache_logger_on_first_use=False,
)

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="rowform",
    help="""Inspect SQLite schemas and apply model-driven migrations.

Examples:

  # Show every table with its columns and indexes
  uv run rowform schema storage/app.db

  # Preview the migrations a registry would apply
  uv run rowform migrate storage/app.db --models myapp.models:registry --dry-run""",
    rich_markup_mode="markdown",
)

_RULE = "-" * 75
_WIDTHS = (25, 15, 8, 10, 15)


@app.command()
def schema(
    database: str = typer.Argument(
        ...,
        help="Path to SQLite database file",
    ),
    table: Optional[str] = typer.Option(
        None,
        "--table",
        "-t",
        help="Show schema for a specific table only",
    ),
    compact: bool = typer.Option(
        False,
        "--compact",
        "-c",
        help="Show only column names",
    ),
) -> None:
    """Display database table schemas."""
    db_path = Path(database)
    if not db_path.exists():
        logger.error("database_not_found", database=str(db_path))
        typer.echo(f"Database not found: {db_path}")
        raise typer.Exit(1)

    async def read_schema() -> tuple[list[str], list[tuple[TableSchema, int]]]:
        async with create_connector(db_path) as connector:
            inspector = connector.create_schema_inspector()
            names = await inspector.get_tables()
            selected = [name for name in names if table is None or name == table]
            described = []
            for name in selected:
                table_schema = await inspector.get_table_schema(name)
                if table_schema is None:
                    continue
                row_count = await QueryBuilder(connector).table(name).count()
                described.append((table_schema, row_count))
            return names, described

    names, described = asyncio.run(read_schema())

    if not names:
        typer.echo("No tables found in database")
        return
    if table is not None and not described:
        typer.echo(f'Table "{table}" not found')
        typer.echo("Available tables:")
        for name in names:
            typer.echo(f"  - {name}")
        raise typer.Exit(1)

    typer.echo(f"Database: {db_path}")
    typer.echo(f"Tables: {len(names)}")
    typer.echo("")
    for table_schema, row_count in described:
        typer.echo(f"{table_schema.name} ({row_count} rows)")
        if compact:
            typer.echo(f"  {', '.join(table_schema.column_names)}")
        else:
            _echo_table(table_schema)
        typer.echo("")


@app.command()
def migrate(
    database: str = typer.Argument(
        ...,
        help="Path to SQLite database file (created if missing)",
    ),
    models: str = typer.Option(
        ...,
        "--models",
        "-m",
        help="Registry to migrate from, as module:attribute",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Print the pending operations without applying them",
    ),
) -> None:
    """Bring a database in line with the schemas of a model registry."""
    try:
        registry = load_registry(models)
    except (ImportError, AttributeError, TypeError, ValueError) as exc:
        logger.error("registry_load_failed", target=models, error=str(exc))
        typer.echo(f"Could not load registry '{models}': {exc}")
        raise typer.Exit(1) from exc

    async def run_migrate() -> tuple[list[str], list[str]]:
        async with create_connector(database) as connector:
            engine = create_migration_engine(connector)
            operations = await engine.diff_registry(registry)
            descriptions = [operation.describe() for operation in operations]
            if dry_run:
                return descriptions, []
            return descriptions, await engine.apply(operations)

    descriptions, statements = asyncio.run(run_migrate())

    if not descriptions:
        typer.echo("Database is up to date")
        return
    for description in descriptions:
        typer.echo(f"  {description}")
    if dry_run:
        typer.echo(f"{len(descriptions)} pending operations")
    else:
        typer.echo(f"Applied {len(descriptions)} operations ({len(statements)} statements)")


@app.command()
def version() -> None:
    """Show version information."""
    from rowform import __version__

    typer.echo(f"rowform {__version__}")


def load_registry(target: str) -> ModelRegistry:
    """Import ``module:attribute`` and return the ModelRegistry it names.

    The attribute may also be a zero-argument callable returning a registry.
    """
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ValueError("expected module:attribute")

    value = getattr(importlib.import_module(module_name), attribute)
    if callable(value) and not isinstance(value, ModelRegistry):
        value = value()
    if not isinstance(value, ModelRegistry):
        raise TypeError(f"{target} is {type(value).__name__}, not a ModelRegistry")
    return value


def _echo_table(table_schema: TableSchema) -> None:
    typer.echo(_RULE)
    typer.echo(_row(("Column", "Type", "Null", "Primary", "Default")))
    typer.echo(_RULE)
    for column in table_schema.columns:
        default = "" if column.default_value is None else str(column.default_value)
        typer.echo(
            _row(
                (
                    column.name,
                    column.type.value,
                    "YES" if column.nullable else "NO",
                    "PK" if column.is_primary_key else "",
                    default,
                )
            )
        )
    if table_schema.indexes:
        typer.echo("  Indexes:")
        for index in table_schema.indexes:
            unique = " (UNIQUE)" if index.unique else ""
            typer.echo(f"    - {index.name}: {', '.join(index.columns)}{unique}")


def _row(cells: tuple[str, ...]) -> str:
    return "".join(cell.ljust(width) for cell, width in zip(cells, _WIDTHS)).rstrip()
