"""Read live catalog state into the shared schema model."""

from abc import ABC, abstractmethod
from typing import Any

import structlog

from rowform.models.enums import ColumnType
from rowform.models.schema import ColumnDefinition, IndexDefinition, TableSchema
from rowform.services.connector import DatabaseConnector


class SchemaInspector(ABC):
    """Backend-specific view of the tables, columns and indexes that exist."""

    @abstractmethod
    async def table_exists(self, table_name: str) -> bool: ...

    @abstractmethod
    async def get_tables(self) -> list[str]: ...

    @abstractmethod
    async def get_table_schema(self, table_name: str) -> TableSchema | None:
        """Return the table's shape, or None if it does not exist."""

    @abstractmethod
    async def get_table_columns(self, table_name: str) -> list[str]:
        """Return column names, or an empty list if the table does not exist."""

    @abstractmethod
    async def index_exists(self, index_name: str) -> bool: ...

    @abstractmethod
    async def get_table_indexes(self, table_name: str) -> list[str]: ...


class SqliteSchemaInspector(SchemaInspector):
    """Inspects SQLite through sqlite_master and the pragma table functions."""

    def __init__(
        self,
        connector: DatabaseConnector,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._connector = connector
        self._logger = logger or structlog.get_logger(__name__)

    async def table_exists(self, table_name: str) -> bool:
        rows = await self._connector.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
            [table_name],
        )
        return bool(rows)

    async def get_tables(self) -> list[str]:
        rows = await self._connector.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [str(row["name"]) for row in rows]

    async def get_table_schema(self, table_name: str) -> TableSchema | None:
        if not await self.table_exists(table_name):
            return None

        rows = await self._connector.query("SELECT * FROM pragma_table_info(?) ORDER BY cid", [table_name])
        unique_columns = await self._unique_columns(table_name)
        primary_keys = [row for row in rows if int(row["pk"] or 0) > 0]
        auto_increment = len(primary_keys) == 1 and await self._uses_autoincrement(table_name)

        columns = []
        for row in rows:
            name = str(row["name"])
            column_type = parse_column_type(str(row["type"] or ""))
            is_primary_key = int(row["pk"] or 0) > 0
            columns.append(
                ColumnDefinition(
                    name=name,
                    type=column_type,
                    is_primary_key=is_primary_key,
                    auto_increment=auto_increment and is_primary_key and column_type == ColumnType.INTEGER,
                    nullable=not bool(row["notnull"]),
                    unique=name in unique_columns and not is_primary_key,
                    default_value=parse_default_value(row["dflt_value"]),
                )
            )

        indexes = [await self._index_definition(table_name, name) for name in await self.get_table_indexes(table_name)]
        return TableSchema(name=table_name, columns=columns, indexes=indexes)

    async def get_table_columns(self, table_name: str) -> list[str]:
        schema = await self.get_table_schema(table_name)
        if schema is None:
            return []
        return schema.column_names

    async def index_exists(self, index_name: str) -> bool:
        rows = await self._connector.query(
            "SELECT name FROM sqlite_master WHERE type = 'index' AND name = ?",
            [index_name],
        )
        return bool(rows)

    async def get_table_indexes(self, table_name: str) -> list[str]:
        rows = await self._connector.query(
            "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = ? AND name NOT LIKE 'sqlite_%' "
            "ORDER BY name",
            [table_name],
        )
        return [str(row["name"]) for row in rows]

    async def _index_definition(self, table_name: str, index_name: str) -> IndexDefinition:
        info = await self._connector.query("SELECT name FROM pragma_index_info(?) ORDER BY seqno", [index_name])
        listing = await self._connector.query(
            "SELECT \"unique\" FROM pragma_index_list(?) WHERE name = ?",
            [table_name, index_name],
        )
        unique = bool(listing and listing[0]["unique"])
        return IndexDefinition(
            name=index_name,
            table=table_name,
            columns=tuple(str(row["name"]) for row in info),
            unique=unique,
        )

    async def _unique_columns(self, table_name: str) -> set[str]:
        """Columns covered on their own by a UNIQUE constraint."""
        listing = await self._connector.query(
            "SELECT name FROM pragma_index_list(?) WHERE \"unique\" = 1 AND origin = 'u'",
            [table_name],
        )
        columns: set[str] = set()
        for entry in listing:
            info = await self._connector.query("SELECT name FROM pragma_index_info(?)", [entry["name"]])
            if len(info) == 1:
                columns.add(str(info[0]["name"]))
        return columns

    async def _uses_autoincrement(self, table_name: str) -> bool:
        rows = await self._connector.query(
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?",
            [table_name],
        )
        return bool(rows) and "AUTOINCREMENT" in str(rows[0]["sql"] or "").upper()


def parse_column_type(sql_type: str) -> ColumnType:
    """Normalize a declared SQLite type by substring, defaulting to text."""
    declared = sql_type.upper()
    if "INT" in declared:
        return ColumnType.INTEGER
    if "TEXT" in declared or "CHAR" in declared or "CLOB" in declared:
        return ColumnType.TEXT
    if "REAL" in declared or "DOUBLE" in declared or "FLOAT" in declared:
        return ColumnType.REAL
    if "BLOB" in declared:
        return ColumnType.BLOB
    return ColumnType.TEXT


def parse_default_value(literal: Any) -> Any:
    """Turn a ``dflt_value`` SQL literal back into a Python value."""
    if literal is None:
        return None
    text = str(literal).strip()
    if len(text) >= 2 and text[0] == text[-1] == "'":
        return text[1:-1].replace("''", "'")
    if text.upper() == "NULL":
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text
