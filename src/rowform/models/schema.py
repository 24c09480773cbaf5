"""Declarative table shapes shared by models, the inspector and the migration engine.

Everything here is plain data: frozen pydantic models with structural
equality. The same shapes are produced by reading a live database, so a
declared schema and an inspected one can be compared field by field.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from rowform.exceptions import SchemaDefinitionError
from rowform.models.enums import ColumnType


class SchemaModel(BaseModel):
    """Base class enforcing immutability for schema descriptions."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class ColumnDefinition(SchemaModel):
    name: str
    type: ColumnType
    is_primary_key: bool = False
    auto_increment: bool = False
    nullable: bool = True
    unique: bool = False
    default_value: Any = None

    @field_validator("name")
    @classmethod
    def _ensure_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("column name cannot be empty")
        return value

    @model_validator(mode="after")
    def _validate_auto_increment(self) -> "ColumnDefinition":
        if self.auto_increment and not (self.is_primary_key and self.type == ColumnType.INTEGER):
            raise ValueError("auto_increment requires an integer primary key column")
        return self


class IndexDefinition(SchemaModel):
    name: str
    columns: tuple[str, ...]
    unique: bool = False
    table: str | None = None

    @field_validator("columns")
    @classmethod
    def _ensure_columns(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("an index needs at least one column")
        return value


class PivotTableSchema(SchemaModel):
    """A many-to-many join table keyed by the pair of its two columns."""

    name: str
    local_table: str
    related_table: str
    local_key_column: str
    related_key_column: str

    @model_validator(mode="after")
    def _validate_keys(self) -> "PivotTableSchema":
        if self.local_key_column == self.related_key_column:
            raise ValueError("pivot key columns must differ")
        return self

    @property
    def key_pairs(self) -> frozenset[tuple[str, str]]:
        """(table, column) pairs, independent of which side declared the pivot."""
        return frozenset({(self.local_table, self.local_key_column), (self.related_table, self.related_key_column)})

    @property
    def columns(self) -> tuple[ColumnDefinition, ColumnDefinition]:
        return (
            ColumnDefinition(name=self.local_key_column, type=ColumnType.INTEGER, nullable=False),
            ColumnDefinition(name=self.related_key_column, type=ColumnType.INTEGER, nullable=False),
        )


class TableSchema(SchemaModel):
    name: str
    columns: tuple[ColumnDefinition, ...]
    indexes: tuple[IndexDefinition, ...] = Field(default_factory=tuple)
    pivot_tables: tuple[PivotTableSchema, ...] = Field(default_factory=tuple)

    @model_validator(mode="before")
    @classmethod
    def _attach_index_table(cls, data: Any) -> Any:
        if not isinstance(data, Mapping) or not data.get("indexes"):
            return data
        table = data.get("name")
        indexes = []
        for index in data["indexes"]:
            if isinstance(index, IndexDefinition):
                if index.table is None:
                    index = index.model_copy(update={"table": table})
            elif isinstance(index, Mapping) and index.get("table") is None:
                index = {**index, "table": table}
            indexes.append(index)
        return {**data, "indexes": indexes}

    @model_validator(mode="after")
    def _validate_members(self) -> "TableSchema":
        names = [column.name for column in self.columns]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate columns in table '{self.name}': {', '.join(duplicates)}")
        for index in self.indexes:
            if index.table != self.name:
                raise ValueError(f"index '{index.name}' belongs to '{index.table}', not '{self.name}'")
        return self

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    @property
    def primary_key(self) -> ColumnDefinition | None:
        return next((column for column in self.columns if column.is_primary_key), None)

    def get_column(self, name: str) -> ColumnDefinition | None:
        return next((column for column in self.columns if column.name == name), None)

    def has_column(self, name: str) -> bool:
        return self.get_column(name) is not None


def validate_schema_set(schemas: Iterable[TableSchema]) -> list[TableSchema]:
    """Check the invariants that only make sense across a whole declared set.

    Args:
        schemas: Declared table schemas, typically one per registered model.

    Returns:
        The schemas as a list, in the order given.

    Raises:
        SchemaDefinitionError: If table or index names collide, a table does
            not have exactly one primary key, or a pivot table references a
            table outside the set.
    """
    schemas = list(schemas)
    table_names: set[str] = set()
    for schema in schemas:
        if schema.name in table_names:
            raise SchemaDefinitionError(f"table '{schema.name}' is declared more than once")
        table_names.add(schema.name)

        primary_keys = [column.name for column in schema.columns if column.is_primary_key]
        if len(primary_keys) != 1:
            raise SchemaDefinitionError(
                f"table '{schema.name}' must declare exactly one primary key column, found {len(primary_keys)}"
            )

    index_names: set[str] = set()
    pivots: dict[str, PivotTableSchema] = {}
    for schema in schemas:
        for index in schema.indexes:
            if index.name in index_names:
                raise SchemaDefinitionError(f"index name '{index.name}' is used more than once")
            index_names.add(index.name)
            missing = [column for column in index.columns if not schema.has_column(column)]
            if missing:
                raise SchemaDefinitionError(
                    f"index '{index.name}' references unknown columns on '{schema.name}': {', '.join(missing)}"
                )

        for pivot in schema.pivot_tables:
            if pivot.name in table_names:
                raise SchemaDefinitionError(f"pivot table '{pivot.name}' collides with a declared table")
            for referenced in (pivot.local_table, pivot.related_table):
                if referenced not in table_names:
                    raise SchemaDefinitionError(
                        f"pivot table '{pivot.name}' references undeclared table '{referenced}'"
                    )
            # Both sides of a many-to-many may declare the same pivot, each from its own side.
            declared = pivots.setdefault(pivot.name, pivot)
            if declared.key_pairs != pivot.key_pairs:
                raise SchemaDefinitionError(f"pivot table '{pivot.name}' is declared twice with different shapes")

    return schemas


def id_column(name: str = "id") -> ColumnDefinition:
    return ColumnDefinition(name=name, type=ColumnType.INTEGER, is_primary_key=True, auto_increment=True)


def text_column(name: str, nullable: bool = True, unique: bool = False, default: str | None = None) -> ColumnDefinition:
    return ColumnDefinition(name=name, type=ColumnType.TEXT, nullable=nullable, unique=unique, default_value=default)


def integer_column(name: str, nullable: bool = True, unique: bool = False, default: int | None = None) -> ColumnDefinition:
    return ColumnDefinition(name=name, type=ColumnType.INTEGER, nullable=nullable, unique=unique, default_value=default)


def real_column(name: str, nullable: bool = True, default: float | None = None) -> ColumnDefinition:
    return ColumnDefinition(name=name, type=ColumnType.REAL, nullable=nullable, default_value=default)


def boolean_column(name: str, nullable: bool = True, default: bool | None = None) -> ColumnDefinition:
    return ColumnDefinition(name=name, type=ColumnType.BOOLEAN, nullable=nullable, default_value=default)


def datetime_column(name: str, nullable: bool = True) -> ColumnDefinition:
    return ColumnDefinition(name=name, type=ColumnType.DATETIME, nullable=nullable)


def blob_column(name: str, nullable: bool = True) -> ColumnDefinition:
    return ColumnDefinition(name=name, type=ColumnType.BLOB, nullable=nullable)


def timestamp_columns() -> list[ColumnDefinition]:
    return [datetime_column("created_at"), datetime_column("updated_at")]


def soft_delete_column(name: str = "deleted_at") -> ColumnDefinition:
    return datetime_column(name)
