"""Additive DDL operations emitted by the migration diff.

Operations are ordered by ``phase`` when applied: tables first, then new
columns on existing tables, then indexes, then pivot tables (which reference
both of their sides).
"""

from typing import ClassVar, TypeAlias

from rowform.models.schema import ColumnDefinition, IndexDefinition, PivotTableSchema, SchemaModel, TableSchema


class CreateTable(SchemaModel):
    phase: ClassVar[int] = 0

    table: TableSchema

    def describe(self) -> str:
        return f"create table {self.table.name}"


class AddColumn(SchemaModel):
    phase: ClassVar[int] = 1

    table: str
    column: ColumnDefinition

    def describe(self) -> str:
        return f"add column {self.table}.{self.column.name}"


class CreateIndex(SchemaModel):
    phase: ClassVar[int] = 2

    index: IndexDefinition

    def describe(self) -> str:
        return f"create index {self.index.name} on {self.index.table}"


class CreatePivotTable(SchemaModel):
    phase: ClassVar[int] = 3

    pivot: PivotTableSchema
    local_primary_key: str = "id"
    related_primary_key: str = "id"

    def describe(self) -> str:
        return f"create pivot table {self.pivot.name}"


MigrationOperation: TypeAlias = CreateTable | AddColumn | CreateIndex | CreatePivotTable
