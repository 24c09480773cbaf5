"""Query builder that hydrates rows into model instances."""

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from rowform.exceptions import MissingPrimaryKeyError, ModelFactoryMissingError
from rowform.models.enums import TrashedScope
from rowform.models.values import Row, SqlValue
from rowform.services.connector import DatabaseConnector
from rowform.services.query_builder import QueryBuilder

if TYPE_CHECKING:
    from rowform.orm.model import Model

T = TypeVar("T", bound="Model")

SOFT_DELETE_SCOPE = "soft_deletes"


class ModelQuery(Generic[T]):
    """Wraps a QueryBuilder and turns result rows into ``T`` instances.

    Chaining methods delegate to the inner builder and return ``self``. When
    the factory produces a soft-delete capable model, trashed rows are hidden
    from every statement the query issues unless ``with_trashed`` or
    ``only_trashed`` says otherwise.
    """

    def __init__(
        self,
        connector: DatabaseConnector,
        factory: Callable[[], T] | None = None,
        table: str | None = None,
        primary_key: str | None = None,
    ) -> None:
        self._query = QueryBuilder(connector)
        self._factory = factory
        self._primary_key = primary_key
        self._trashed: TrashedScope | None = None
        self._deleted_at_column: str | None = None

        if factory is not None:
            from rowform.orm.soft_deletes import SoftDeletes

            prototype = factory()
            table = table or prototype.table
            self._primary_key = primary_key or prototype.primary_key
            if isinstance(prototype, SoftDeletes):
                self._deleted_at_column = prototype.deleted_at_column
                self._set_trashed(TrashedScope.EXCLUDE)

        if table is not None:
            self._query.table(table)

    @property
    def builder(self) -> QueryBuilder:
        return self._query

    @property
    def trashed_scope(self) -> TrashedScope | None:
        """None when the model has no soft-delete capability."""
        return self._trashed

    def model(self, factory: Callable[[], T]) -> "ModelQuery[T]":
        """Return a fresh query for the same connector using ``factory``."""
        return ModelQuery(self._query.connector, factory=factory)

    def table(self, table: str) -> "ModelQuery[T]":
        self._query.table(table)
        return self

    async def get(self) -> list[T]:
        factory = self._require_factory()
        rows = await self._query.get()
        return [self._hydrate(factory, row) for row in rows]

    async def first(self) -> T | None:
        factory = self._require_factory()
        row = await self._query.first()
        if row is None:
            return None
        return self._hydrate(factory, row)

    async def find(self, key: Any) -> T | None:
        factory = self._require_factory()
        if key is None:
            raise MissingPrimaryKeyError("find")
        primary_key = self._primary_key or factory().primary_key
        self._query.where(primary_key, key)
        return await self.first()

    async def get_map(self) -> list[Row]:
        return await self._query.get()

    async def first_map(self) -> Row | None:
        return await self._query.first()

    async def count(self, column: str = "*") -> int:
        return await self._query.count(column)

    async def sum(self, column: str) -> int | float:
        return await self._query.sum(column)

    async def avg(self, column: str) -> float:
        return await self._query.avg(column)

    async def min(self, column: str) -> SqlValue:
        return await self._query.min(column)

    async def max(self, column: str) -> SqlValue:
        return await self._query.max(column)

    async def value(self, column: str) -> SqlValue:
        return await self._query.value(column)

    async def exists(self) -> bool:
        return await self._query.exists()

    async def update(self, data: Mapping[str, Any]) -> int:
        return await self._query.update(data)

    async def delete(self) -> int:
        return await self._query.delete()

    def with_trashed(self) -> "ModelQuery[T]":
        self._set_trashed(TrashedScope.INCLUDE)
        return self

    def only_trashed(self) -> "ModelQuery[T]":
        self._set_trashed(TrashedScope.ONLY)
        return self

    def without_trashed(self) -> "ModelQuery[T]":
        self._set_trashed(TrashedScope.EXCLUDE)
        return self

    def select(self, *columns: str | Sequence[str]) -> "ModelQuery[T]":
        self._query.select(*columns)
        return self

    def select_raw(self, expression: str) -> "ModelQuery[T]":
        self._query.select_raw(expression)
        return self

    def where(self, column: str, value: Any, operator: str = "=") -> "ModelQuery[T]":
        self._query.where(column, value, operator)
        return self

    def or_where(self, column: str, value: Any, operator: str = "=") -> "ModelQuery[T]":
        self._query.or_where(column, value, operator)
        return self

    def where_in(self, column: str, values: Iterable[Any]) -> "ModelQuery[T]":
        self._query.where_in(column, values)
        return self

    def where_not_in(self, column: str, values: Iterable[Any]) -> "ModelQuery[T]":
        self._query.where_not_in(column, values)
        return self

    def where_between(self, column: str, low: Any, high: Any) -> "ModelQuery[T]":
        self._query.where_between(column, low, high)
        return self

    def where_not_between(self, column: str, low: Any, high: Any) -> "ModelQuery[T]":
        self._query.where_not_between(column, low, high)
        return self

    def where_null(self, column: str) -> "ModelQuery[T]":
        self._query.where_null(column)
        return self

    def where_not_null(self, column: str) -> "ModelQuery[T]":
        self._query.where_not_null(column)
        return self

    def where_raw(self, expression: str, bindings: Sequence[Any] | None = None) -> "ModelQuery[T]":
        self._query.where_raw(expression, bindings)
        return self

    def order_by(self, column: str, direction: str = "ASC") -> "ModelQuery[T]":
        self._query.order_by(column, direction)
        return self

    def group_by(self, *columns: str) -> "ModelQuery[T]":
        self._query.group_by(*columns)
        return self

    def having(self, column: str, value: Any, operator: str = "=") -> "ModelQuery[T]":
        self._query.having(column, value, operator)
        return self

    def limit(self, limit: int) -> "ModelQuery[T]":
        self._query.limit(limit)
        return self

    def offset(self, offset: int) -> "ModelQuery[T]":
        self._query.offset(offset)
        return self

    def to_sql(self) -> tuple[str, list[Any]]:
        return self._query.to_sql()

    def _set_trashed(self, scope: TrashedScope) -> None:
        if self._deleted_at_column is None:
            return
        self._trashed = scope
        if scope == TrashedScope.EXCLUDE:
            clause = f"{self._deleted_at_column} IS NULL"
        elif scope == TrashedScope.ONLY:
            clause = f"{self._deleted_at_column} IS NOT NULL"
        else:
            clause = None
        self._query.apply_scope(SOFT_DELETE_SCOPE, clause)

    def _require_factory(self) -> Callable[[], T]:
        if self._factory is None:
            raise ModelFactoryMissingError()
        return self._factory

    @staticmethod
    def _hydrate(factory: Callable[[], T], row: Row) -> T:
        instance = factory()
        instance.from_map(row)
        instance.mark_persisted()
        return instance
