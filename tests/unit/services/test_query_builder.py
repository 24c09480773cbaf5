"""Unit tests for the QueryBuilder."""

from typing import Any

import pytest

from rowform.exceptions import TableRequiredError
from rowform.models.values import Row
from rowform.services.connector import DatabaseConnector, StatementResult
from rowform.services.query_builder import QueryBuilder


class RecordingConnector(DatabaseConnector):
    """Fake connector that records statements and returns canned rows."""

    def __init__(self, rows: list[Row] | None = None, row_count: int = 1) -> None:
        super().__init__()
        self.statements: list[tuple[str, tuple[Any, ...]]] = []
        self.rows = rows or []
        self.row_count = row_count
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def _fetch(self, sql: str, params: tuple[Any, ...]) -> list[Row]:
        self.statements.append((sql, params))
        return list(self.rows)

    async def _write(self, sql: str, params: tuple[Any, ...]) -> StatementResult:
        self.statements.append((sql, params))
        return StatementResult(last_row_id=7, row_count=self.row_count)


@pytest.fixture
def connector() -> RecordingConnector:
    return RecordingConnector()


@pytest.fixture
def builder(connector: RecordingConnector) -> QueryBuilder:
    return QueryBuilder(connector).table("users")


class TestWhereComposition:
    """Tests for how predicates combine."""

    def test_where_clauses_are_anded(self, builder: QueryBuilder) -> None:
        sql, bindings = builder.where("a", 1).where("b", 2).to_sql()

        assert sql == "SELECT * FROM users WHERE a = ? AND b = ?"
        assert bindings == [1, 2]

    def test_or_where_merges_into_last_clause(self, builder: QueryBuilder) -> None:
        sql, bindings = builder.where("a", 1).or_where("b", 2).to_sql()

        assert sql == "SELECT * FROM users WHERE a = ? OR b = ?"
        assert bindings == [1, 2]

    def test_or_where_only_binds_to_the_most_recent_predicate(self, builder: QueryBuilder) -> None:
        sql, bindings = builder.where("a", 1).where("b", 2).or_where("c", 3).to_sql()

        assert sql == "SELECT * FROM users WHERE a = ? AND b = ? OR c = ?"
        assert bindings == [1, 2, 3]

    def test_or_where_without_predicates_acts_like_where(self, builder: QueryBuilder) -> None:
        sql, _ = builder.or_where("a", 1).to_sql()

        assert sql == "SELECT * FROM users WHERE a = ?"

    def test_operators(self, builder: QueryBuilder) -> None:
        sql, bindings = builder.where("age", 18, ">=").where("name", "A%", "like").to_sql()

        assert sql == "SELECT * FROM users WHERE age >= ? AND name LIKE ?"
        assert bindings == [18, "A%"]

    def test_unknown_operator_is_rejected(self, builder: QueryBuilder) -> None:
        with pytest.raises(ValueError, match="unsupported operator"):
            builder.where("a", 1, "; DROP TABLE users; --")

    def test_where_in_expands_one_placeholder_per_value(self, builder: QueryBuilder) -> None:
        sql, bindings = builder.where_in("id", [1, 2, 3]).where_not_in("role", ["x", "y"]).to_sql()

        assert sql == "SELECT * FROM users WHERE id IN (?, ?, ?) AND role NOT IN (?, ?)"
        assert bindings == [1, 2, 3, "x", "y"]

    def test_between_and_null_checks(self, builder: QueryBuilder) -> None:
        sql, bindings = (
            builder.where_between("age", 18, 65)
            .where_not_between("score", 0, 10)
            .where_null("deleted_at")
            .where_not_null("email")
            .to_sql()
        )

        assert sql == (
            "SELECT * FROM users WHERE age BETWEEN ? AND ? AND score NOT BETWEEN ? AND ? "
            "AND deleted_at IS NULL AND email IS NOT NULL"
        )
        assert bindings == [18, 65, 0, 10]

    def test_where_raw(self, builder: QueryBuilder) -> None:
        sql, bindings = builder.where_raw("lower(name) = ?", ["ada"]).to_sql()

        assert sql == "SELECT * FROM users WHERE lower(name) = ?"
        assert bindings == ["ada"]


class TestScopes:
    """Tests for named scopes."""

    def test_scope_groups_user_predicates(self, builder: QueryBuilder) -> None:
        builder.where("a", 1).or_where("b", 2).apply_scope("soft_deletes", "deleted_at IS NULL")

        sql, bindings = builder.to_sql()

        assert sql == "SELECT * FROM users WHERE (a = ? OR b = ?) AND deleted_at IS NULL"
        assert bindings == [1, 2]

    def test_scope_alone(self, builder: QueryBuilder) -> None:
        sql, _ = builder.apply_scope("soft_deletes", "deleted_at IS NULL").to_sql()

        assert sql == "SELECT * FROM users WHERE deleted_at IS NULL"

    def test_scope_can_be_cleared(self, builder: QueryBuilder) -> None:
        builder.apply_scope("soft_deletes", "deleted_at IS NULL").apply_scope("soft_deletes", None)

        assert builder.to_sql() == ("SELECT * FROM users", [])


class TestClauseOrder:
    """Tests for the fixed clause order."""

    def test_full_statement(self, connector: RecordingConnector) -> None:
        sql, bindings = (
            QueryBuilder(connector)
            .table("products")
            .select("category", "COUNT(*) AS total")
            .where("active", True)
            .group_by("category")
            .having("total", 1, ">")
            .order_by("category", "desc")
            .limit(10)
            .offset(5)
            .to_sql()
        )

        assert sql == (
            "SELECT category, COUNT(*) AS total FROM products WHERE active = ? "
            "GROUP BY category HAVING total > ? ORDER BY category DESC LIMIT 10 OFFSET 5"
        )
        assert bindings == [True, 1]

    def test_order_by_accumulates(self, builder: QueryBuilder) -> None:
        sql, _ = builder.order_by("last_name").order_by("first_name", "DESC").to_sql()

        assert sql == "SELECT * FROM users ORDER BY last_name ASC, first_name DESC"

    def test_invalid_direction_is_rejected(self, builder: QueryBuilder) -> None:
        with pytest.raises(ValueError):
            builder.order_by("name", "sideways")

    def test_offset_without_limit(self, builder: QueryBuilder) -> None:
        sql, _ = builder.offset(20).to_sql()

        assert sql == "SELECT * FROM users LIMIT -1 OFFSET 20"

    def test_select_raw_appends(self, builder: QueryBuilder) -> None:
        sql, _ = builder.select(["id", "name"]).select_raw("length(name) AS size").to_sql()

        assert sql == "SELECT id, name, length(name) AS size FROM users"

    def test_negative_limit_is_rejected(self, builder: QueryBuilder) -> None:
        with pytest.raises(ValueError):
            builder.limit(-1)

    def test_reset(self, builder: QueryBuilder) -> None:
        builder.where("a", 1).order_by("a").limit(3).apply_scope("s", "x IS NULL").reset()

        assert builder.table_name is None
        assert builder.table("t").to_sql() == ("SELECT * FROM t", [])


class TestTerminals:
    """Tests for statements that execute through the connector."""

    async def test_get_runs_compiled_select(self, connector: RecordingConnector, builder: QueryBuilder) -> None:
        connector.rows = [{"id": 1}]

        rows = await builder.where("active", True).get()

        assert rows == [{"id": 1}]
        assert connector.statements == [("SELECT * FROM users WHERE active = ?", (1,))]

    async def test_first_limits_without_mutating(self, connector: RecordingConnector, builder: QueryBuilder) -> None:
        connector.rows = [{"id": 1}, {"id": 2}]

        row = await builder.where("a", 1).first()

        assert row == {"id": 1}
        assert connector.statements[0][0] == "SELECT * FROM users WHERE a = ? LIMIT 1"
        assert builder.to_sql()[0] == "SELECT * FROM users WHERE a = ?"

    async def test_first_returns_none_without_rows(self, builder: QueryBuilder) -> None:
        assert await builder.first() is None

    async def test_count_selects_only_the_aggregate(
        self, connector: RecordingConnector, builder: QueryBuilder
    ) -> None:
        connector.rows = [{"aggregate": 3}]

        count = await builder.where("a", 1).order_by("a").limit(2).count()

        assert count == 3
        assert connector.statements == [("SELECT COUNT(*) AS aggregate FROM users WHERE a = ?", (1,))]

    async def test_aggregates(self, connector: RecordingConnector, builder: QueryBuilder) -> None:
        connector.rows = [{"aggregate": 4.5}]

        assert await builder.sum("score") == 4.5
        assert await builder.avg("score") == 4.5
        assert await builder.min("score") == 4.5
        assert await builder.max("score") == 4.5
        assert [sql for sql, _ in connector.statements] == [
            "SELECT SUM(score) AS aggregate FROM users",
            "SELECT AVG(score) AS aggregate FROM users",
            "SELECT MIN(score) AS aggregate FROM users",
            "SELECT MAX(score) AS aggregate FROM users",
        ]

    async def test_sum_of_nothing_is_zero(self, connector: RecordingConnector, builder: QueryBuilder) -> None:
        connector.rows = [{"aggregate": None}]

        assert await builder.sum("score") == 0

    async def test_value_and_exists(self, connector: RecordingConnector, builder: QueryBuilder) -> None:
        connector.rows = [{"name": "Ada"}]

        assert await builder.value("name") == "Ada"
        assert await builder.exists()
        assert connector.statements[0][0] == "SELECT name FROM users LIMIT 1"
        assert connector.statements[1][0] == "SELECT 1 FROM users LIMIT 1"

    async def test_insert(self, connector: RecordingConnector, builder: QueryBuilder) -> None:
        row_id = await builder.insert({"name": "Ada", "active": True})

        assert row_id == 7
        assert connector.statements == [("INSERT INTO users (name, active) VALUES (?, ?)", ("Ada", 1))]

    async def test_update_uses_where_clause(self, connector: RecordingConnector, builder: QueryBuilder) -> None:
        affected = await builder.where("id", 3).update({"name": "Grace"})

        assert affected == 1
        assert connector.statements == [("UPDATE users SET name = ? WHERE id = ?", ("Grace", 3))]

    async def test_delete_respects_scopes(self, connector: RecordingConnector, builder: QueryBuilder) -> None:
        await builder.where("id", 3).apply_scope("soft_deletes", "deleted_at IS NULL").delete()

        assert connector.statements == [("DELETE FROM users WHERE (id = ?) AND deleted_at IS NULL", (3,))]

    @pytest.mark.parametrize("terminal", ["get", "first", "count", "delete", "exists"])
    async def test_missing_table_fails_before_sql(self, connector: RecordingConnector, terminal: str) -> None:
        builder = QueryBuilder(connector).where("a", 1)

        with pytest.raises(TableRequiredError, match="Table name is required"):
            await getattr(builder, terminal)()

        assert connector.statements == []

    async def test_insert_and_update_require_table(self, connector: RecordingConnector) -> None:
        with pytest.raises(TableRequiredError):
            await QueryBuilder(connector).insert({"a": 1})
        with pytest.raises(TableRequiredError):
            await QueryBuilder(connector).update({"a": 1})

        assert connector.statements == []
