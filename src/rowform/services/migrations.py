"""Migration engine that reconciles a live database with declared schemas.

Compares each declared table against what the inspector reports and emits
only additive operations: missing tables, missing columns, missing indexes
and missing pivot tables. Existing columns are never altered or dropped, and
a type mismatch on an existing column is left as it is.
"""

from collections.abc import Iterable
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from rowform.models.operations import AddColumn, CreateIndex, CreatePivotTable, CreateTable, MigrationOperation
from rowform.models.schema import ColumnDefinition, TableSchema, validate_schema_set
from rowform.services.connector import DatabaseConnector
from rowform.services.inspector import SchemaInspector
from rowform.services.migration_builder import MigrationBuilder

if TYPE_CHECKING:
    from rowform.services.registry import ModelRegistry


class MigrationConfig(BaseModel):
    """Whether to migrate automatically at startup, and how loudly."""

    auto_migrate: bool = False
    verbose: bool = False

    model_config = {"frozen": True}


class MigrationEngine:
    """Computes and applies the additive diff between declared and live schema.

    Meant to run once at startup, before any other traffic uses the
    connector; it is not safe to run concurrently against one database.
    """

    def __init__(
        self,
        connector: DatabaseConnector,
        inspector: SchemaInspector,
        builder: MigrationBuilder,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._connector = connector
        self._inspector = inspector
        self._builder = builder
        self._logger = logger or structlog.get_logger(__name__)

    async def diff(self, schemas: Iterable[TableSchema]) -> list[MigrationOperation]:
        """Compute the operations needed to bring the database up to ``schemas``.

        Args:
            schemas: The full declared schema set.

        Returns:
            Operations in apply order: tables, columns, indexes, pivot tables.
            Empty when the database already conforms.

        Raises:
            SchemaDefinitionError: If the declared set is inconsistent.
        """
        schemas = validate_schema_set(schemas)
        operations: list[MigrationOperation] = []

        for schema in schemas:
            operations.extend(await self._diff_table(schema))

        primary_keys = {schema.name: schema.primary_key.name for schema in schemas if schema.primary_key}
        seen_pivots: set[str] = set()
        for schema in schemas:
            for pivot in schema.pivot_tables:
                if pivot.name in seen_pivots:
                    continue
                seen_pivots.add(pivot.name)
                if await self._inspector.table_exists(pivot.name):
                    continue
                operations.append(
                    CreatePivotTable(
                        pivot=pivot,
                        local_primary_key=primary_keys[pivot.local_table],
                        related_primary_key=primary_keys[pivot.related_table],
                    )
                )

        operations.sort(key=lambda operation: operation.phase)
        self._logger.info(
            "migration_diff_computed",
            table_count=len(schemas),
            operation_count=len(operations),
        )
        return operations

    async def apply(self, operations: Iterable[MigrationOperation]) -> list[str]:
        """Execute the operations in phase order.

        Returns:
            Every SQL statement that was executed, in order.
        """
        executed: list[str] = []
        for operation in sorted(operations, key=lambda op: op.phase):
            for statement in self._builder.statements_for(operation):
                await self._connector.execute(statement)
                executed.append(statement)
            self._logger.debug("migration_operation_applied", operation=operation.describe())

        if executed:
            self._logger.info("migrations_applied", statement_count=len(executed))
        return executed

    async def migrate(self, schemas: Iterable[TableSchema]) -> list[str]:
        """Diff and apply in one step."""
        return await self.apply(await self.diff(schemas))

    async def diff_registry(self, registry: "ModelRegistry") -> list[MigrationOperation]:
        return await self.diff(registry.schemas())

    async def migrate_registry(self, registry: "ModelRegistry") -> list[str]:
        return await self.migrate(registry.schemas())

    async def needs_migration(self, schema: TableSchema) -> bool:
        """True if the table is missing or lacks a declared column."""
        return bool(await self.missing_columns(schema))

    async def missing_columns(self, schema: TableSchema) -> list[ColumnDefinition]:
        """Declared columns the live table does not have (all of them if it is missing)."""
        if not await self._inspector.table_exists(schema.name):
            return list(schema.columns)
        existing = set(await self._inspector.get_table_columns(schema.name))
        return [column for column in schema.columns if column.name not in existing]

    async def _diff_table(self, schema: TableSchema) -> list[MigrationOperation]:
        operations: list[MigrationOperation] = []
        if not await self._inspector.table_exists(schema.name):
            operations.append(CreateTable(table=schema))
        else:
            existing = set(await self._inspector.get_table_columns(schema.name))
            operations.extend(
                AddColumn(table=schema.name, column=column) for column in schema.columns if column.name not in existing
            )

        for index in schema.indexes:
            if not await self._inspector.index_exists(index.name):
                operations.append(CreateIndex(index=index))
        return operations
