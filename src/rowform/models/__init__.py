from rowform.models.enums import ColumnType, RelationshipType, TrashedScope
from rowform.models.operations import AddColumn, CreateIndex, CreatePivotTable, CreateTable, MigrationOperation
from rowform.models.relationships import RelationshipMeta
from rowform.models.schema import ColumnDefinition, IndexDefinition, PivotTableSchema, TableSchema
from rowform.models.values import Row, SqlValue

__all__ = [
    "AddColumn",
    "ColumnDefinition",
    "ColumnType",
    "CreateIndex",
    "CreatePivotTable",
    "CreateTable",
    "IndexDefinition",
    "MigrationOperation",
    "PivotTableSchema",
    "RelationshipMeta",
    "RelationshipType",
    "Row",
    "SqlValue",
    "TableSchema",
    "TrashedScope",
]
