"""Unit tests for SqliteSchemaInspector."""

from collections.abc import AsyncIterator

import pytest

from rowform.models.enums import ColumnType
from rowform.models.schema import ColumnDefinition, IndexDefinition
from rowform.services.connector import SqliteConnector, create_async_engine_from_path
from rowform.services.inspector import SqliteSchemaInspector, parse_column_type, parse_default_value


@pytest.fixture
async def connector() -> AsyncIterator[SqliteConnector]:
    connector = SqliteConnector(create_async_engine_from_path(":memory:"))
    await connector.connect()
    await connector.execute(
        "CREATE TABLE users (\n"
        "  id INTEGER PRIMARY KEY AUTOINCREMENT,\n"
        "  name VARCHAR(80) NOT NULL,\n"
        "  email TEXT UNIQUE,\n"
        "  score DOUBLE DEFAULT 1.5,\n"
        "  motto TEXT DEFAULT 'it''s fine',\n"
        "  avatar BLOB,\n"
        "  level INT DEFAULT 3\n"
        ")"
    )
    await connector.execute("CREATE INDEX users_name_index ON users(name)")
    await connector.execute("CREATE TABLE tags (code TEXT PRIMARY KEY)")
    yield connector
    await connector.close()


@pytest.fixture
def inspector(connector: SqliteConnector) -> SqliteSchemaInspector:
    return SqliteSchemaInspector(connector)


class TestTables:
    """Tests for table listing and existence."""

    async def test_lists_user_tables_only(self, inspector: SqliteSchemaInspector) -> None:
        assert await inspector.get_tables() == ["tags", "users"]

    async def test_table_exists(self, inspector: SqliteSchemaInspector) -> None:
        assert await inspector.table_exists("users")
        assert not await inspector.table_exists("missing")

    async def test_missing_table(self, inspector: SqliteSchemaInspector) -> None:
        assert await inspector.get_table_schema("missing") is None
        assert await inspector.get_table_columns("missing") == []


class TestTableSchema:
    """Tests for reading a table back into a TableSchema."""

    async def test_columns(self, inspector: SqliteSchemaInspector) -> None:
        schema = await inspector.get_table_schema("users")

        assert schema is not None
        assert schema.columns == (
            ColumnDefinition(name="id", type=ColumnType.INTEGER, is_primary_key=True, auto_increment=True),
            ColumnDefinition(name="name", type=ColumnType.TEXT, nullable=False),
            ColumnDefinition(name="email", type=ColumnType.TEXT, unique=True),
            ColumnDefinition(name="score", type=ColumnType.REAL, default_value=1.5),
            ColumnDefinition(name="motto", type=ColumnType.TEXT, default_value="it's fine"),
            ColumnDefinition(name="avatar", type=ColumnType.BLOB),
            ColumnDefinition(name="level", type=ColumnType.INTEGER, default_value=3),
        )

    async def test_text_primary_key_is_not_auto_increment(self, inspector: SqliteSchemaInspector) -> None:
        schema = await inspector.get_table_schema("tags")

        assert schema is not None
        assert schema.primary_key == ColumnDefinition(name="code", type=ColumnType.TEXT, is_primary_key=True)

    async def test_column_names(self, inspector: SqliteSchemaInspector) -> None:
        assert await inspector.get_table_columns("tags") == ["code"]


class TestIndexes:
    """Tests for index discovery."""

    async def test_skips_internal_indexes(self, inspector: SqliteSchemaInspector) -> None:
        assert await inspector.get_table_indexes("users") == ["users_name_index"]
        assert await inspector.get_table_indexes("tags") == []

    async def test_index_exists(self, inspector: SqliteSchemaInspector) -> None:
        assert await inspector.index_exists("users_name_index")
        assert not await inspector.index_exists("missing_index")

    async def test_indexes_are_part_of_the_schema(
        self, connector: SqliteConnector, inspector: SqliteSchemaInspector
    ) -> None:
        await connector.execute("CREATE UNIQUE INDEX users_level_score ON users(level, score)")

        schema = await inspector.get_table_schema("users")

        assert schema is not None
        assert schema.indexes == (
            IndexDefinition(name="users_level_score", columns=("level", "score"), unique=True, table="users"),
            IndexDefinition(name="users_name_index", columns=("name",), table="users"),
        )


class TestParsers:
    """Tests for the catalog value parsers."""

    @pytest.mark.parametrize(
        ("declared", "expected"),
        [
            ("INTEGER", ColumnType.INTEGER),
            ("bigint", ColumnType.INTEGER),
            ("VARCHAR(255)", ColumnType.TEXT),
            ("CLOB", ColumnType.TEXT),
            ("DOUBLE PRECISION", ColumnType.REAL),
            ("float", ColumnType.REAL),
            ("BLOB", ColumnType.BLOB),
            ("", ColumnType.TEXT),
            ("NUMERIC", ColumnType.TEXT),
        ],
    )
    def test_parse_column_type(self, declared: str, expected: ColumnType) -> None:
        assert parse_column_type(declared) == expected

    @pytest.mark.parametrize(
        ("literal", "expected"),
        [
            (None, None),
            ("NULL", None),
            ("'abc'", "abc"),
            ("'it''s'", "it's"),
            ("42", 42),
            ("-1.25", -1.25),
            ("CURRENT_TIMESTAMP", "CURRENT_TIMESTAMP"),
        ],
    )
    def test_parse_default_value(self, literal: object, expected: object) -> None:
        assert parse_default_value(literal) == expected
