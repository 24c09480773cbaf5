"""Fluent SELECT/INSERT/UPDATE/DELETE builder with positional bindings.

Values are always bound through ``?`` placeholders. Column and table names
are taken as given and must come from trusted code, never from user input.
"""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from rowform.exceptions import TableRequiredError
from rowform.models.values import Row, SqlValue
from rowform.services.connector import DatabaseConnector

OPERATORS = frozenset({"=", "!=", "<>", "<", "<=", ">", ">=", "LIKE", "NOT LIKE", "GLOB", "IS", "IS NOT"})
DIRECTIONS = frozenset({"ASC", "DESC"})


class QueryBuilder:
    """Accumulates clauses and compiles them in a fixed order.

    The generated SELECT is always
    SELECT, FROM, WHERE, GROUP BY, HAVING, ORDER BY, LIMIT, OFFSET.

    ``where`` predicates are joined with AND. ``or_where`` does not open a
    new group: it appends ``OR <cond>`` to the most recent predicate, so
    ``where(a).where(b).or_where(c)`` compiles to ``a AND b OR c``.
    """

    def __init__(self, connector: DatabaseConnector) -> None:
        self._connector = connector
        self._table: str | None = None
        self._columns: list[str] = ["*"]
        self._wheres: list[str] = []
        self._bindings: list[Any] = []
        self._scopes: dict[str, str] = {}
        self._order_by: list[str] = []
        self._group_by: list[str] = []
        self._having: list[str] = []
        self._having_bindings: list[Any] = []
        self._limit: int | None = None
        self._offset: int | None = None

    @property
    def connector(self) -> DatabaseConnector:
        return self._connector

    @property
    def table_name(self) -> str | None:
        return self._table

    def table(self, table: str) -> "QueryBuilder":
        self._table = table
        return self

    def select(self, *columns: str | Sequence[str]) -> "QueryBuilder":
        """Set the selected columns; no arguments keeps ``*``."""
        flattened = _flatten(columns)
        if flattened:
            self._columns = flattened
        return self

    def select_raw(self, expression: str) -> "QueryBuilder":
        if self._columns == ["*"]:
            self._columns = [expression]
        else:
            self._columns.append(expression)
        return self

    def where(self, column: str, value: Any, operator: str = "=") -> "QueryBuilder":
        self._wheres.append(f"{column} {_check_operator(operator)} ?")
        self._bindings.append(value)
        return self

    def or_where(self, column: str, value: Any, operator: str = "=") -> "QueryBuilder":
        if not self._wheres:
            return self.where(column, value, operator)
        self._wheres[-1] = f"{self._wheres[-1]} OR {column} {_check_operator(operator)} ?"
        self._bindings.append(value)
        return self

    def where_in(self, column: str, values: Iterable[Any]) -> "QueryBuilder":
        values = list(values)
        self._wheres.append(f"{column} IN ({_placeholders(len(values))})")
        self._bindings.extend(values)
        return self

    def where_not_in(self, column: str, values: Iterable[Any]) -> "QueryBuilder":
        values = list(values)
        self._wheres.append(f"{column} NOT IN ({_placeholders(len(values))})")
        self._bindings.extend(values)
        return self

    def where_between(self, column: str, low: Any, high: Any) -> "QueryBuilder":
        self._wheres.append(f"{column} BETWEEN ? AND ?")
        self._bindings.extend([low, high])
        return self

    def where_not_between(self, column: str, low: Any, high: Any) -> "QueryBuilder":
        self._wheres.append(f"{column} NOT BETWEEN ? AND ?")
        self._bindings.extend([low, high])
        return self

    def where_null(self, column: str) -> "QueryBuilder":
        self._wheres.append(f"{column} IS NULL")
        return self

    def where_not_null(self, column: str) -> "QueryBuilder":
        self._wheres.append(f"{column} IS NOT NULL")
        return self

    def where_raw(self, expression: str, bindings: Sequence[Any] | None = None) -> "QueryBuilder":
        self._wheres.append(expression)
        self._bindings.extend(bindings or [])
        return self

    def apply_scope(self, name: str, clause: str | None) -> "QueryBuilder":
        """Set or clear a named predicate that is always ANDed with the rest.

        Scoped predicates take no bindings. When user predicates exist they
        are grouped in parentheses first, so a merged ``OR`` cannot escape
        the scope.
        """
        if clause is None:
            self._scopes.pop(name, None)
        else:
            self._scopes[name] = clause
        return self

    def order_by(self, column: str, direction: str = "ASC") -> "QueryBuilder":
        direction = direction.upper()
        if direction not in DIRECTIONS:
            raise ValueError(f"invalid sort direction: {direction}")
        self._order_by.append(f"{column} {direction}")
        return self

    def group_by(self, *columns: str) -> "QueryBuilder":
        self._group_by.extend(columns)
        return self

    def having(self, column: str, value: Any, operator: str = "=") -> "QueryBuilder":
        self._having.append(f"{column} {_check_operator(operator)} ?")
        self._having_bindings.append(value)
        return self

    def limit(self, limit: int) -> "QueryBuilder":
        if limit < 0:
            raise ValueError("limit must be non-negative")
        self._limit = limit
        return self

    def offset(self, offset: int) -> "QueryBuilder":
        if offset < 0:
            raise ValueError("offset must be non-negative")
        self._offset = offset
        return self

    def to_sql(self) -> tuple[str, list[Any]]:
        """Compile the SELECT statement and its bindings without running it."""
        return self._compile_select()

    async def get(self) -> list[Row]:
        sql, bindings = self._compile_select()
        return await self._connector.query(sql, bindings)

    async def first(self) -> Row | None:
        sql, bindings = self._compile_select(limit=1)
        rows = await self._connector.query(sql, bindings)
        return rows[0] if rows else None

    async def value(self, column: str) -> SqlValue:
        sql, bindings = self._compile_select(columns=[column], limit=1)
        rows = await self._connector.query(sql, bindings)
        if not rows:
            return None
        return next(iter(rows[0].values()))

    async def exists(self) -> bool:
        sql, bindings = self._compile_select(columns=["1"], limit=1)
        return bool(await self._connector.query(sql, bindings))

    async def count(self, column: str = "*") -> int:
        result = await self._aggregate("COUNT", column)
        return int(result or 0)

    async def sum(self, column: str) -> int | float:
        result = await self._aggregate("SUM", column)
        return result if isinstance(result, (int, float)) else 0

    async def avg(self, column: str) -> float:
        result = await self._aggregate("AVG", column)
        return float(result) if isinstance(result, (int, float)) else 0.0

    async def min(self, column: str) -> SqlValue:
        return await self._aggregate("MIN", column)

    async def max(self, column: str) -> SqlValue:
        return await self._aggregate("MAX", column)

    async def insert(self, data: Mapping[str, Any]) -> int:
        """Insert a row into the table and return its id."""
        return await self._connector.insert(self._require_table(), data)

    async def update(self, data: Mapping[str, Any]) -> int:
        """Update rows matching the WHERE clause and return the affected count."""
        table = self._require_table()
        where, bindings = self._compile_where()
        return await self._connector.update(table, data, where=where, where_args=bindings)

    async def delete(self) -> int:
        """Delete rows matching the WHERE clause and return the affected count."""
        table = self._require_table()
        where, bindings = self._compile_where()
        return await self._connector.delete(table, where=where, where_args=bindings)

    def reset(self) -> "QueryBuilder":
        self._table = None
        self._columns = ["*"]
        self._wheres.clear()
        self._bindings.clear()
        self._scopes.clear()
        self._order_by.clear()
        self._group_by.clear()
        self._having.clear()
        self._having_bindings.clear()
        self._limit = None
        self._offset = None
        return self

    async def _aggregate(self, function: str, column: str) -> SqlValue:
        sql, bindings = self._compile_select(
            columns=[f"{function}({column}) AS aggregate"],
            include_ordering=False,
        )
        rows = await self._connector.query(sql, bindings)
        return rows[0]["aggregate"] if rows else None

    def _compile_where(self) -> tuple[str | None, list[Any]]:
        if not self._wheres and not self._scopes:
            return None, []
        clause = " AND ".join(self._wheres)
        if self._scopes:
            scopes = " AND ".join(self._scopes.values())
            clause = f"({clause}) AND {scopes}" if clause else scopes
        return clause, list(self._bindings)

    def _compile_select(
        self,
        columns: list[str] | None = None,
        limit: int | None = None,
        include_ordering: bool = True,
    ) -> tuple[str, list[Any]]:
        table = self._require_table()
        parts = [f"SELECT {', '.join(columns or self._columns)}", f"FROM {table}"]

        where, bindings = self._compile_where()
        if where:
            parts.append(f"WHERE {where}")
        if self._group_by:
            parts.append(f"GROUP BY {', '.join(self._group_by)}")
        if self._having:
            parts.append(f"HAVING {' AND '.join(self._having)}")
            bindings.extend(self._having_bindings)

        if include_ordering:
            if self._order_by:
                parts.append(f"ORDER BY {', '.join(self._order_by)}")
            effective_limit = limit if limit is not None else self._limit
            if effective_limit is not None:
                parts.append(f"LIMIT {int(effective_limit)}")
            if self._offset is not None:
                if effective_limit is None:
                    parts.append("LIMIT -1")
                parts.append(f"OFFSET {int(self._offset)}")

        return " ".join(parts), bindings

    def _require_table(self) -> str:
        if self._table is None:
            raise TableRequiredError()
        return self._table


def _check_operator(operator: str) -> str:
    normalized = " ".join(operator.upper().split())
    if normalized not in OPERATORS:
        raise ValueError(f"unsupported operator: {operator}")
    return normalized


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


def _flatten(columns: Iterable[str | Sequence[str]]) -> list[str]:
    flattened: list[str] = []
    for column in columns:
        if isinstance(column, str):
            flattened.append(column)
        else:
            flattened.extend(column)
    return flattened
