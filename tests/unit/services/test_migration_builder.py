"""Unit tests for SqliteMigrationBuilder."""

from datetime import datetime

import pytest

from rowform.models.enums import ColumnType
from rowform.models.operations import AddColumn, CreateIndex, CreatePivotTable, CreateTable
from rowform.models.schema import (
    ColumnDefinition,
    IndexDefinition,
    PivotTableSchema,
    TableSchema,
    boolean_column,
    datetime_column,
    id_column,
    integer_column,
    text_column,
)
from rowform.services.migration_builder import SqliteMigrationBuilder, format_default_value


@pytest.fixture
def builder() -> SqliteMigrationBuilder:
    return SqliteMigrationBuilder()


@pytest.fixture
def pivot() -> PivotTableSchema:
    return PivotTableSchema(
        name="user_role",
        local_table="users",
        related_table="roles",
        local_key_column="user_id",
        related_key_column="role_id",
    )


class TestCreateTable:
    """Tests for CREATE TABLE generation."""

    def test_basic_table(self, builder: SqliteMigrationBuilder) -> None:
        schema = TableSchema(
            name="users",
            columns=[id_column(), text_column("name", nullable=False), text_column("email", unique=True)],
        )

        assert builder.build_create_table(schema) == (
            "CREATE TABLE IF NOT EXISTS users (\n"
            "  id INTEGER PRIMARY KEY AUTOINCREMENT,\n"
            "  name TEXT NOT NULL,\n"
            "  email TEXT UNIQUE\n"
            ")"
        )

    def test_storage_types_and_defaults(self, builder: SqliteMigrationBuilder) -> None:
        schema = TableSchema(
            name="flags",
            columns=[
                ColumnDefinition(name="code", type=ColumnType.TEXT, is_primary_key=True),
                boolean_column("enabled", nullable=False, default=False),
                datetime_column("seen_at"),
                integer_column("weight", default=10),
                ColumnDefinition(name="ratio", type=ColumnType.REAL, default_value=0.5),
                ColumnDefinition(name="payload", type=ColumnType.BLOB),
            ],
        )

        assert builder.build_create_table(schema) == (
            "CREATE TABLE IF NOT EXISTS flags (\n"
            "  code TEXT PRIMARY KEY,\n"
            "  enabled INTEGER NOT NULL DEFAULT 0,\n"
            "  seen_at TEXT,\n"
            "  weight INTEGER DEFAULT 10,\n"
            "  ratio REAL DEFAULT 0.5,\n"
            "  payload BLOB\n"
            ")"
        )


class TestAddColumn:
    """Tests for ALTER TABLE ADD COLUMN generation."""

    def test_nullable_column(self, builder: SqliteMigrationBuilder) -> None:
        assert builder.build_add_column("users", text_column("role")) == ["ALTER TABLE users ADD COLUMN role TEXT"]

    def test_not_null_with_default_is_kept(self, builder: SqliteMigrationBuilder) -> None:
        column = text_column("role", nullable=False, default="member")

        assert builder.build_add_column("users", column) == [
            "ALTER TABLE users ADD COLUMN role TEXT NOT NULL DEFAULT 'member'"
        ]

    def test_not_null_without_default_is_relaxed(self, builder: SqliteMigrationBuilder) -> None:
        column = text_column("role", nullable=False)

        assert builder.build_add_column("users", column) == ["ALTER TABLE users ADD COLUMN role TEXT"]

    def test_unique_becomes_an_index(self, builder: SqliteMigrationBuilder) -> None:
        column = text_column("handle", unique=True)

        assert builder.build_add_column("users", column) == [
            "ALTER TABLE users ADD COLUMN handle TEXT",
            "CREATE UNIQUE INDEX IF NOT EXISTS users_handle_unique ON users(handle)",
        ]


class TestIndexesAndPivots:
    """Tests for index and pivot table generation."""

    def test_index(self, builder: SqliteMigrationBuilder) -> None:
        index = IndexDefinition(name="users_name_email", columns=("name", "email"), table="users")

        assert builder.build_create_index(index) == (
            "CREATE INDEX IF NOT EXISTS users_name_email ON users(name, email)"
        )

    def test_unique_index(self, builder: SqliteMigrationBuilder) -> None:
        index = IndexDefinition(name="users_email", columns=("email",), table="users", unique=True)

        assert builder.build_create_index(index).startswith("CREATE UNIQUE INDEX IF NOT EXISTS users_email")

    def test_pivot_table(self, builder: SqliteMigrationBuilder, pivot: PivotTableSchema) -> None:
        assert builder.build_create_pivot_table(pivot, related_primary_key="role_pk") == (
            "CREATE TABLE IF NOT EXISTS user_role (\n"
            "  user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,\n"
            "  role_id INTEGER NOT NULL REFERENCES roles(role_pk) ON DELETE CASCADE,\n"
            "  PRIMARY KEY (user_id, role_id)\n"
            ")"
        )


class TestStatementsFor:
    """Tests for dispatching operations to statements."""

    def test_each_operation(self, builder: SqliteMigrationBuilder, pivot: PivotTableSchema) -> None:
        table = TableSchema(name="roles", columns=[id_column()])
        index = IndexDefinition(name="roles_id", columns=("id",), table="roles")

        assert builder.statements_for(CreateTable(table=table)) == [builder.build_create_table(table)]
        assert len(builder.statements_for(AddColumn(table="roles", column=text_column("x", unique=True)))) == 2
        assert builder.statements_for(CreateIndex(index=index)) == [builder.build_create_index(index)]
        assert builder.statements_for(CreatePivotTable(pivot=pivot)) == [builder.build_create_pivot_table(pivot)]

    def test_unknown_operation(self, builder: SqliteMigrationBuilder) -> None:
        with pytest.raises(TypeError):
            builder.statements_for(object())  # type: ignore[arg-type]


class TestFormatDefaultValue:
    """Tests for default value literals."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (True, "1"),
            (False, "0"),
            (7, "7"),
            (2.5, "2.5"),
            ("o'clock", "'o''clock'"),
            (datetime(2024, 1, 1, 9, 30), "'2024-01-01T09:30:00'"),
        ],
    )
    def test_literals(self, value: object, expected: str) -> None:
        assert format_default_value(value) == expected

    def test_rejects_unsupported_values(self) -> None:
        with pytest.raises(TypeError):
            format_default_value([1, 2])
