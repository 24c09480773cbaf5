"""Factory functions for creating and wiring connectors and the migration engine.

Provides production factories backed by a SQLite file and test factories
that use in-memory databases for fast, isolated testing.
"""

from pathlib import Path

import structlog

from rowform.models.schema import TableSchema
from rowform.services.connector import DatabaseConnector, SqliteConnector, create_async_engine_from_path
from rowform.services.migration_builder import SqliteMigrationBuilder
from rowform.services.migrations import MigrationConfig, MigrationEngine
from rowform.services.registry import ModelRegistry


def create_connector(db_path: Path | str, foreign_keys: bool = True) -> SqliteConnector:
    """Create a connector for a SQLite database file.

    The parent directory is created if needed. The connector still has to
    be opened with ``connect()`` (or ``async with``).

    Args:
        db_path: Path to the database file.
        foreign_keys: Whether to enforce foreign key constraints.

    Returns:
        Unopened SqliteConnector.
    """
    logger = structlog.get_logger(__name__)

    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_async_engine_from_path(str(db_path))
    return SqliteConnector(engine=engine, logger=logger, foreign_keys=foreign_keys)


def create_test_connector(foreign_keys: bool = True) -> SqliteConnector:
    """Create a connector over a private in-memory database.

    Each call creates an independent database, so tests don't interfere.
    """
    logger = structlog.get_logger(__name__)

    engine = create_async_engine_from_path(":memory:")
    return SqliteConnector(engine=engine, logger=logger, foreign_keys=foreign_keys)


def create_migration_engine(connector: DatabaseConnector) -> MigrationEngine:
    """Wire a MigrationEngine for the connector's backend."""
    logger = structlog.get_logger(__name__)

    return MigrationEngine(
        connector=connector,
        inspector=connector.create_schema_inspector(),
        builder=SqliteMigrationBuilder(logger=logger),
        logger=logger,
    )


async def prepare_database(
    connector: DatabaseConnector,
    registry: ModelRegistry,
    config: MigrationConfig | None = None,
    extra_schemas: list[TableSchema] | None = None,
) -> list[str]:
    """Bootstrap step run once before serving traffic.

    Opens the connector, binds it (with the registry) to every registered
    model type, and migrates the registered schemas when
    ``config.auto_migrate`` is set.

    Returns:
        The DDL statements that were executed.
    """
    config = config or MigrationConfig()
    await connector.connect()
    registry.bind_models(connector)

    if not config.auto_migrate:
        return []
    schemas = registry.schemas() + list(extra_schemas or [])
    return await connector.run_migrations(schemas, verbose=config.verbose)
