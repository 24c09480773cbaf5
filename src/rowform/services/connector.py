"""Database connectors that execute raw, positionally-bound SQL.

Uses SQLAlchemy's native async support with aiosqlite for non-blocking
database operations. A connector owns exactly one physical connection and
serializes every statement on it; nothing here opens a transaction, so
multi-statement operations built on top are not atomic.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from types import TracebackType
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from rowform.exceptions import ConnectionNotOpenError
from rowform.models.schema import TableSchema
from rowform.models.values import Row, encode

if TYPE_CHECKING:
    from rowform.services.inspector import SchemaInspector


class StatementResult(BaseModel):
    """Outcome of a statement that returns no rows."""

    last_row_id: int | None = None
    row_count: int = 0

    model_config = {"frozen": True}


class DatabaseConnector(ABC):
    """Executes SQL against one database connection.

    Subclasses implement the two primitives ``_fetch`` and ``_write``; the
    public methods build the statements, encode bindings and log every call.
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection. Calling it twice is a no-op."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection if open."""

    @property
    @abstractmethod
    def is_connected(self) -> bool: ...

    @abstractmethod
    async def _fetch(self, sql: str, params: tuple[Any, ...]) -> list[Row]: ...

    @abstractmethod
    async def _write(self, sql: str, params: tuple[Any, ...]) -> StatementResult: ...

    async def __aenter__(self) -> "DatabaseConnector":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def query(self, sql: str, bindings: Sequence[Any] | None = None) -> list[Row]:
        """Run a statement that returns rows.

        Args:
            sql: SQL text with ``?`` placeholders.
            bindings: Positional values for the placeholders.

        Returns:
            One dict per row, keyed by column name.
        """
        started = time.perf_counter()
        rows = await self._fetch(sql, _encode_all(bindings))
        self._log_statement(sql, bindings, started, row_count=len(rows))
        return rows

    async def execute(self, sql: str, bindings: Sequence[Any] | None = None) -> None:
        """Run a statement whose result is not needed (DDL, raw DML)."""
        started = time.perf_counter()
        result = await self._write(sql, _encode_all(bindings))
        self._log_statement(sql, bindings, started, row_count=result.row_count)

    async def insert(self, table: str, data: Mapping[str, Any]) -> int:
        """Insert one row and return its row id."""
        if data:
            columns = list(data)
            placeholders = ", ".join("?" for _ in columns)
            sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        else:
            sql = f"INSERT INTO {table} DEFAULT VALUES"
        values = list(data.values())

        started = time.perf_counter()
        result = await self._write(sql, _encode_all(values))
        self._log_statement(sql, values, started, row_count=result.row_count)
        if result.last_row_id is None:
            raise RuntimeError(f"Insert into {table} did not report a row id")
        return result.last_row_id

    async def update(
        self,
        table: str,
        data: Mapping[str, Any],
        where: str | None = None,
        where_args: Sequence[Any] | None = None,
    ) -> int:
        """Update matching rows and return how many were affected.

        Raises:
            ValueError: If ``data`` is empty.
        """
        if not data:
            raise ValueError("Data map cannot be empty")
        set_clause = ", ".join(f"{column} = ?" for column in data)
        sql = f"UPDATE {table} SET {set_clause}"
        params = list(data.values())
        if where:
            sql += f" WHERE {where}"
            params.extend(where_args or [])

        started = time.perf_counter()
        result = await self._write(sql, _encode_all(params))
        self._log_statement(sql, params, started, row_count=result.row_count)
        return result.row_count

    async def delete(self, table: str, where: str | None = None, where_args: Sequence[Any] | None = None) -> int:
        """Delete matching rows and return how many were removed."""
        sql = f"DELETE FROM {table}"
        params: list[Any] = []
        if where:
            sql += f" WHERE {where}"
            params.extend(where_args or [])

        started = time.perf_counter()
        result = await self._write(sql, _encode_all(params))
        self._log_statement(sql, params, started, row_count=result.row_count)
        return result.row_count

    async def run_migrations(self, schemas: Sequence[TableSchema], verbose: bool = False) -> list[str]:
        """Bring the database in line with ``schemas``.

        Connectors without migration support do nothing.
        """
        return []

    def create_schema_inspector(self) -> "SchemaInspector":
        raise NotImplementedError(f"{type(self).__name__} does not provide a schema inspector")

    def _log_statement(self, sql: str, bindings: Sequence[Any] | None, started: float, row_count: int) -> None:
        self._logger.debug(
            "query_executed",
            sql=sql,
            bindings=list(bindings or []),
            duration_ms=round((time.perf_counter() - started) * 1000, 3),
            row_count=row_count,
        )


class SqliteConnector(DatabaseConnector):
    """SQLite connector on top of an async SQLAlchemy engine.

    Accepts an AsyncEngine via dependency injection to support both
    persistent and in-memory databases for testing. Holds one autocommit
    connection for its whole lifetime and runs statements one at a time.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        logger: structlog.stdlib.BoundLogger | None = None,
        foreign_keys: bool = True,
    ) -> None:
        super().__init__(logger)
        self._engine = engine
        self._foreign_keys = foreign_keys
        self._connection: AsyncConnection | None = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        if self._connection is not None:
            return
        connection = await self._engine.connect()
        self._connection = await connection.execution_options(isolation_level="AUTOCOMMIT")
        if self._foreign_keys:
            await self._connection.exec_driver_sql("PRAGMA foreign_keys = ON")
        self._logger.info("connector_connected", url=self._engine.url.render_as_string(hide_password=True))

    async def close(self) -> None:
        if self._connection is None:
            return
        await self._connection.close()
        self._connection = None
        await self._engine.dispose()
        self._logger.info("connector_closed")

    async def _fetch(self, sql: str, params: tuple[Any, ...]) -> list[Row]:
        connection = self._require_connection()
        async with self._lock:
            result = await connection.exec_driver_sql(sql, params)
            return [dict(row) for row in result.mappings().all()]

    async def _write(self, sql: str, params: tuple[Any, ...]) -> StatementResult:
        connection = self._require_connection()
        async with self._lock:
            result = await connection.exec_driver_sql(sql, params)
            return StatementResult(last_row_id=result.lastrowid, row_count=max(result.rowcount, 0))

    async def run_migrations(self, schemas: Sequence[TableSchema], verbose: bool = False) -> list[str]:
        from rowform.services.migration_builder import SqliteMigrationBuilder
        from rowform.services.migrations import MigrationEngine

        self._require_connection()
        if not schemas:
            return []

        engine = MigrationEngine(
            connector=self,
            inspector=self.create_schema_inspector(),
            builder=SqliteMigrationBuilder(logger=self._logger),
            logger=self._logger,
        )
        statements = await engine.migrate(schemas)

        if verbose and statements:
            self._logger.info("migrations_executed", count=len(statements))
            for statement in statements:
                self._logger.info("migration_statement", sql=" ".join(statement.split()))
        return statements

    def create_schema_inspector(self) -> "SchemaInspector":
        from rowform.services.inspector import SqliteSchemaInspector

        return SqliteSchemaInspector(self, logger=self._logger)

    def _require_connection(self) -> AsyncConnection:
        if self._connection is None:
            raise ConnectionNotOpenError()
        return self._connection


def _encode_all(bindings: Sequence[Any] | None) -> tuple[Any, ...]:
    return tuple(encode(value) for value in bindings or ())


def create_async_engine_from_path(db_path: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine for the given database path.

    Args:
        db_path: Path to SQLite database file, or ":memory:" for in-memory.

    Returns:
        AsyncEngine instance configured for aiosqlite.
    """
    if db_path == ":memory:":
        url = "sqlite+aiosqlite:///:memory:"
    else:
        url = f"sqlite+aiosqlite:///{db_path}"
    return create_async_engine(url)
