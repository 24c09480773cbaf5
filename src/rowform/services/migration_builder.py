"""DDL generation for the additive migration operations."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import structlog

from rowform.models.enums import ColumnType
from rowform.models.operations import AddColumn, CreateIndex, CreatePivotTable, CreateTable, MigrationOperation
from rowform.models.schema import ColumnDefinition, IndexDefinition, PivotTableSchema, TableSchema


class MigrationBuilder(ABC):
    """Generates backend-specific SQL for each migration operation."""

    @abstractmethod
    def build_create_table(self, schema: TableSchema) -> str: ...

    @abstractmethod
    def build_add_column(self, table_name: str, column: ColumnDefinition) -> list[str]:
        """Statements that add one column to an existing table."""

    @abstractmethod
    def build_create_index(self, index: IndexDefinition) -> str: ...

    @abstractmethod
    def build_create_pivot_table(
        self,
        pivot: PivotTableSchema,
        local_primary_key: str = "id",
        related_primary_key: str = "id",
    ) -> str: ...

    def statements_for(self, operation: MigrationOperation) -> list[str]:
        if isinstance(operation, CreateTable):
            return [self.build_create_table(operation.table)]
        if isinstance(operation, AddColumn):
            return self.build_add_column(operation.table, operation.column)
        if isinstance(operation, CreateIndex):
            return [self.build_create_index(operation.index)]
        if isinstance(operation, CreatePivotTable):
            return [
                self.build_create_pivot_table(
                    operation.pivot,
                    local_primary_key=operation.local_primary_key,
                    related_primary_key=operation.related_primary_key,
                )
            ]
        raise TypeError(f"unknown migration operation: {type(operation).__name__}")


class SqliteMigrationBuilder(MigrationBuilder):
    """Generates SQLite-compatible DDL.

    SQLite has no boolean or datetime storage class: booleans are stored as
    INTEGER 0/1 and datetimes as ISO-8601 TEXT.
    """

    _TYPE_NAMES = {
        ColumnType.INTEGER: "INTEGER",
        ColumnType.TEXT: "TEXT",
        ColumnType.REAL: "REAL",
        ColumnType.BLOB: "BLOB",
        ColumnType.BOOLEAN: "INTEGER",
        ColumnType.DATETIME: "TEXT",
    }

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    def build_create_table(self, schema: TableSchema) -> str:
        column_defs = ",\n  ".join(self._column_definition(column) for column in schema.columns)
        return f"CREATE TABLE IF NOT EXISTS {schema.name} (\n  {column_defs}\n)"

    def build_add_column(self, table_name: str, column: ColumnDefinition) -> list[str]:
        # ALTER TABLE ADD COLUMN rejects UNIQUE and NOT NULL without a default.
        addable = column.model_copy(update={"unique": False})
        if not column.nullable and column.default_value is None:
            self._logger.warning(
                "not_null_relaxed_for_added_column",
                table=table_name,
                column=column.name,
            )
            addable = addable.model_copy(update={"nullable": True})

        statements = [f"ALTER TABLE {table_name} ADD COLUMN {self._column_definition(addable)}"]
        if column.unique:
            statements.append(
                f"CREATE UNIQUE INDEX IF NOT EXISTS {table_name}_{column.name}_unique ON {table_name}({column.name})"
            )
        return statements

    def build_create_index(self, index: IndexDefinition) -> str:
        unique = "UNIQUE " if index.unique else ""
        return f"CREATE {unique}INDEX IF NOT EXISTS {index.name} ON {index.table}({', '.join(index.columns)})"

    def build_create_pivot_table(
        self,
        pivot: PivotTableSchema,
        local_primary_key: str = "id",
        related_primary_key: str = "id",
    ) -> str:
        local = (
            f"{pivot.local_key_column} INTEGER NOT NULL "
            f"REFERENCES {pivot.local_table}({local_primary_key}) ON DELETE CASCADE"
        )
        related = (
            f"{pivot.related_key_column} INTEGER NOT NULL "
            f"REFERENCES {pivot.related_table}({related_primary_key}) ON DELETE CASCADE"
        )
        key = f"PRIMARY KEY ({pivot.local_key_column}, {pivot.related_key_column})"
        return f"CREATE TABLE IF NOT EXISTS {pivot.name} (\n  {local},\n  {related},\n  {key}\n)"

    def _column_definition(self, column: ColumnDefinition) -> str:
        parts = [column.name, self._TYPE_NAMES[column.type]]

        if column.is_primary_key:
            parts.append("PRIMARY KEY")
            if column.auto_increment:
                parts.append("AUTOINCREMENT")
        else:
            if not column.nullable:
                parts.append("NOT NULL")
            if column.unique:
                parts.append("UNIQUE")

        if column.default_value is not None:
            parts.append(f"DEFAULT {format_default_value(column.default_value)}")

        return " ".join(parts)


def format_default_value(value: Any) -> str:
    """Render a default as a SQLite literal."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, datetime):
        value = value.isoformat()
    if isinstance(value, str):
        escaped = value.replace("'", "''")
        return f"'{escaped}'"
    raise TypeError(f"unsupported default value type: {type(value).__name__}")
