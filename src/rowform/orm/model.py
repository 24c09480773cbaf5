"""Active-record base class for entities stored in one table.

Entities are pydantic models whose fields are the table's columns. Table
level settings are class variables; the connector and registry are bound to
a class (and inherited by its subclasses) with ``bind``::

    class User(Model):
        table = "users"
        unique_columns = ("email",)

        id: int | None = None
        name: str
        email: str | None = None

    User.bind(connector, registry)
    user = await User.create({"name": "Ada"})
    admins = await User.query().where("name", "Ada").get()
"""

from collections.abc import Iterable, Mapping
from datetime import date, datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, NamedTuple, TypeVar, get_origin

import structlog
from pydantic import BaseModel, ConfigDict, PrivateAttr, ValidationError
from pydantic.fields import FieldInfo

from rowform.exceptions import (
    ConfigurationError,
    ConnectorNotBoundError,
    MissingPrimaryKeyError,
    ModelNotFoundError,
    ModelValidationError,
    RelationshipError,
)
from rowform.models.enums import ColumnType
from rowform.models.relationships import RelationshipMeta
from rowform.models.schema import ColumnDefinition, IndexDefinition, PivotTableSchema, TableSchema
from rowform.models.values import Row, column_type_for, decode, encode, parse_date, unwrap_optional
from rowform.orm.soft_deletes import SoftDeletes
from rowform.services.connector import DatabaseConnector
from rowform.services.model_query import ModelQuery

if TYPE_CHECKING:
    from rowform.orm.relations import RelationshipResolver
    from rowform.services.registry import ModelRegistry

M = TypeVar("M", bound="Model")

logger = structlog.get_logger(__name__)


class _Binding(NamedTuple):
    connector: DatabaseConnector
    registry: "ModelRegistry | None"


_bindings: dict[type, _Binding] = {}

_TRAILING_FIELDS = ("created_at", "updated_at", "deleted_at")


class Model(BaseModel):
    """Base class for persisted entities.

    Lifecycle hooks run around each write and may raise (typically
    ``IntegrityGuardError``) to veto it; a veto always happens before the
    connector is touched. None of the multi-statement operations here run in
    a transaction.
    """

    model_config = ConfigDict(extra="ignore", arbitrary_types_allowed=True)

    table: ClassVar[str]
    primary_key: ClassVar[str] = "id"
    incrementing: ClassVar[bool] = True
    timestamps: ClassVar[bool] = True
    created_at_column: ClassVar[str] = "created_at"
    updated_at_column: ClassVar[str] = "updated_at"
    entity_name: ClassVar[str | None] = None
    table_definition: ClassVar[TableSchema | None] = None
    relationships: ClassVar[tuple[RelationshipMeta, ...]] = ()
    unique_columns: ClassVar[tuple[str, ...]] = ()
    indexes: ClassVar[tuple[IndexDefinition, ...]] = ()
    fillable: ClassVar[tuple[str, ...]] = ()
    guarded: ClassVar[tuple[str, ...]] = ()

    created_at: datetime | None = None
    updated_at: datetime | None = None

    _original: dict[str, Any] = PrivateAttr(default_factory=dict)
    _persisted: bool = PrivateAttr(default=False)
    _relations: dict[str, Any] = PrivateAttr(default_factory=dict)
    _pivot_ids: dict[str, list[Any]] = PrivateAttr(default_factory=dict)

    @classmethod
    def bind(cls, connector: DatabaseConnector, registry: "ModelRegistry | None" = None) -> None:
        """Attach a connector (and optionally a registry) to this class and its subclasses."""
        _bindings[cls] = _Binding(connector, registry)

    @classmethod
    def unbind(cls) -> None:
        _bindings.pop(cls, None)

    @classmethod
    def get_connector(cls) -> DatabaseConnector:
        return cls._binding().connector

    @classmethod
    def get_registry(cls) -> "ModelRegistry | None":
        return cls._binding().registry

    @classmethod
    def _binding(cls) -> _Binding:
        for klass in cls.__mro__:
            binding = _bindings.get(klass)
            if binding is not None:
                return binding
        raise ConnectorNotBoundError(cls.__name__)

    @classmethod
    def registry_name(cls) -> str:
        """Stable name other models use to refer to this one."""
        return cls.entity_name or cls.table

    @classmethod
    def empty(cls: type[M]) -> M:
        """Build an instance without validation, for hydration from a row."""
        missing = {name: None for name, info in cls.model_fields.items() if info.is_required()}
        return cls.model_construct(**missing)

    @classmethod
    def column_fields(cls) -> dict[str, str]:
        """Map each persisted column name to the field holding its value."""
        columns: dict[str, str] = {}
        for name, info in cls.model_fields.items():
            if name in ("created_at", "updated_at") and not cls.timestamps:
                continue
            columns[cls._column_name(name, info)] = name
        return columns

    @classmethod
    def _column_name(cls, field_name: str, info: FieldInfo) -> str:
        if field_name == "created_at":
            return cls.created_at_column
        if field_name == "updated_at":
            return cls.updated_at_column
        if field_name == "deleted_at" and issubclass(cls, SoftDeletes):
            return cls.deleted_at_column
        return info.alias or field_name

    @classmethod
    def get_fields(cls) -> list[str]:
        return list(cls.column_fields())

    @classmethod
    def get_relationships(cls) -> list[RelationshipMeta]:
        return list(cls.relationships)

    @classmethod
    def get_relationship(cls, name: str) -> RelationshipMeta:
        for meta in cls.relationships:
            if meta.name == name:
                return meta
        raise RelationshipError(f"Relationship '{name}' is not defined on {cls.__name__}")

    @classmethod
    def table_schema(cls, registry: "ModelRegistry | None" = None) -> TableSchema:
        """Return the declared table shape, deriving it from the fields if none is declared.

        Pivot tables for many-to-many relationships are only derived when a
        registry is given, since the related table is looked up by name.
        """
        if cls.table_definition is not None:
            return cls.table_definition

        # Primary key first, bookkeeping columns last.
        ordered = sorted(
            cls.column_fields().items(),
            key=lambda item: (item[0] != cls.primary_key, _trailing_position(item[1])),
        )
        columns = [cls._column_definition(column, cls.model_fields[field]) for column, field in ordered]

        pivots = []
        if registry is not None:
            for meta in cls.relationships:
                if not meta.uses_pivot_table:
                    continue
                related = registry.lookup_by_name(meta.related_model_type).model_type
                pivots.append(
                    PivotTableSchema(
                        name=meta.pivot_table,
                        local_table=cls.table,
                        related_table=related.table,
                        local_key_column=meta.pivot_local_key,
                        related_key_column=meta.pivot_related_key,
                    )
                )

        return TableSchema(name=cls.table, columns=columns, indexes=cls.indexes, pivot_tables=pivots)

    @classmethod
    def _column_definition(cls, column: str, info: FieldInfo) -> ColumnDefinition:
        column_type = column_type_for(info.annotation)
        if column == cls.primary_key:
            return ColumnDefinition(
                name=column,
                type=column_type,
                is_primary_key=True,
                auto_increment=cls.incrementing and column_type == ColumnType.INTEGER,
            )
        _, nullable = unwrap_optional(info.annotation)
        default = info.default if isinstance(info.default, (bool, int, float, str)) else None
        return ColumnDefinition(
            name=column,
            type=column_type,
            nullable=nullable,
            unique=column in cls.unique_columns,
            default_value=encode(default),
        )

    def get_key(self) -> Any:
        return getattr(self, self._primary_key_field())

    def set_key(self, value: Any) -> None:
        setattr(self, self._primary_key_field(), value)

    def _primary_key_field(self) -> str:
        field = self.column_fields().get(self.primary_key)
        if field is None:
            raise ConfigurationError(f"{type(self).__name__} has no field for primary key '{self.primary_key}'")
        return field

    @property
    def exists(self) -> bool:
        """True once the instance was inserted or loaded from the database."""
        return self._persisted

    def to_map(self) -> Row:
        return {column: getattr(self, field) for column, field in self.column_fields().items()}

    def from_map(self, row: Mapping[str, Any]) -> "Model":
        """Populate fields from a row, leniently.

        Values that cannot be coerced to a field's type become ``None``, or
        the field's default when the field is not optional. Keys that are not
        columns of this model are ignored, and columns absent from ``row``
        are left untouched.
        """
        columns = self.column_fields()
        for column, value in row.items():
            field = columns.get(column)
            if field is not None:
                setattr(self, field, self._coerce(field, value))
        return self

    @classmethod
    def _coerce(cls, field: str, value: Any) -> Any:
        info = cls.model_fields[field]
        inner, nullable = unwrap_optional(info.annotation)
        if value is None:
            decoded = None
        elif inner is date:
            decoded = parse_date(value)
        elif get_origin(inner) is None and isinstance(inner, type) and issubclass(inner, Enum):
            try:
                decoded = inner(value)
            except ValueError:
                decoded = None
        else:
            decoded = decode(value, column_type_for(info.annotation))

        if decoded is None and not nullable and not info.is_required():
            return info.get_default(call_default_factory=True)
        return decoded

    def fill(self, attributes: Mapping[str, Any]) -> "Model":
        """Assign attributes allowed by ``fillable``/``guarded``."""
        if self.fillable:
            allowed = {key: value for key, value in attributes.items() if key in self.fillable}
        else:
            allowed = {key: value for key, value in attributes.items() if key not in self.guarded}
        return self.from_map(allowed)

    def sync_original(self) -> None:
        self._original = dict(self.to_map())

    def mark_persisted(self) -> None:
        self._persisted = True
        self.sync_original()

    def get_dirty(self) -> Row:
        """Columns whose value differs from the last loaded or saved state."""
        return {
            column: value
            for column, value in self.to_map().items()
            if column not in self._original or self._original[column] != value
        }

    def is_dirty(self, column: str | None = None) -> bool:
        dirty = self.get_dirty()
        return bool(dirty) if column is None else column in dirty

    def validation_errors(self) -> list[str]:
        """Check the current field values against the field annotations.

        Hydration and ``fill`` assign fields without validation, so this runs
        the full pydantic validation on a copy of the values.

        Returns:
            One ``field: message`` entry per failure; empty when valid.
        """
        try:
            type(self).model_validate(self.model_dump(by_alias=True))
        except ValidationError as exc:
            return [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()]
        return []

    def validate_or_fail(self) -> None:
        """Raises ModelValidationError if any field value is invalid."""
        errors = self.validation_errors()
        if errors:
            raise ModelValidationError(type(self).__name__, errors)

    async def on_saving(self) -> None:
        pass

    async def on_saved(self) -> None:
        pass

    async def on_creating(self) -> None:
        pass

    async def on_created(self) -> None:
        pass

    async def on_updating(self) -> None:
        pass

    async def on_updated(self) -> None:
        pass

    async def on_deleting(self) -> None:
        pass

    async def on_deleted(self) -> None:
        pass

    @classmethod
    def query(cls: type[M]) -> ModelQuery[M]:
        return ModelQuery(cls.get_connector(), factory=cls.empty, table=cls.table, primary_key=cls.primary_key)

    @classmethod
    async def find(cls: type[M], key: Any) -> M | None:
        return await cls.query().find(key)

    @classmethod
    async def find_or_fail(cls: type[M], key: Any) -> M:
        model = await cls.find(key)
        if model is None:
            raise ModelNotFoundError(f"{cls.__name__} with {cls.primary_key}={key!r} was not found")
        return model

    @classmethod
    async def all(cls: type[M]) -> list[M]:
        return await cls.query().get()

    @classmethod
    async def create(cls: type[M], attributes: Mapping[str, Any]) -> M:
        model = cls.empty()
        model.fill(attributes)
        await model.save()
        return model

    async def save(self) -> bool:
        """Insert or update this row.

        Returns:
            False if an update matched no row, True otherwise.

        Raises:
            ModelValidationError: If a field value is invalid. Raised after the
                creating/updating hooks and before anything is written.
        """
        connector = self.get_connector()
        key = self.get_key()
        creating = key is None or (not self.incrementing and not self._persisted)

        await self.on_saving()
        if creating:
            await self.on_creating()
        else:
            await self.on_updating()
        self.validate_or_fail()

        data = self.to_map()
        now = datetime.now(timezone.utc)
        if self.timestamps:
            if creating:
                data[self.created_at_column] = now
            data[self.updated_at_column] = now

        if creating:
            if self.incrementing and data.get(self.primary_key) is None:
                data.pop(self.primary_key, None)
            row_id = await connector.insert(self.table, data)
            if self.incrementing:
                self.set_key(row_id)
        else:
            data.pop(self.primary_key, None)
            updated = await connector.update(self.table, data, where=f"{self.primary_key} = ?", where_args=[key])
            if updated == 0:
                logger.warning("model_update_missed", model=type(self).__name__, key=key)
                return False

        if self.timestamps:
            if creating:
                self.created_at = now
            self.updated_at = now
        self.mark_persisted()

        if creating:
            logger.debug("model_created", model=type(self).__name__, key=self.get_key())
            await self.on_created()
        else:
            logger.debug("model_updated", model=type(self).__name__, key=key)
            await self.on_updated()
        await self.on_saved()
        return True

    async def update(self, attributes: Mapping[str, Any]) -> bool:
        self.fill(attributes)
        return await self.save()

    async def delete(self) -> bool:
        """Delete this row, or trash it if the model has the soft-delete capability.

        Raises:
            MissingPrimaryKeyError: If the instance has no key.
        """
        key = self._require_key("delete")
        if isinstance(self, SoftDeletes):
            return await self._soft_delete(key)
        return await self._hard_delete(key)

    async def force_delete(self) -> bool:
        """Remove the row even if the model would normally be trashed."""
        return await self._hard_delete(self._require_key("force delete"))

    async def restore(self) -> bool:
        if not isinstance(self, SoftDeletes):
            raise TypeError(f"{type(self).__name__} does not support soft deletes")
        key = self._require_key("restore")
        updated = await self.get_connector().update(
            self.table,
            {self.deleted_at_column: None},
            where=f"{self.primary_key} = ?",
            where_args=[key],
        )
        if updated == 0:
            return False
        self.deleted_at = None
        self.sync_original()
        logger.debug("model_restored", model=type(self).__name__, key=key)
        return True

    async def refresh(self) -> "Model":
        """Reload every column from the database and drop cached relations.

        Raises:
            ModelNotFoundError: If the row no longer exists.
        """
        key = self._require_key("refresh")
        rows = await self.get_connector().query(f"SELECT * FROM {self.table} WHERE {self.primary_key} = ?", [key])
        if not rows:
            raise ModelNotFoundError(f"{type(self).__name__} with {self.primary_key}={key!r} no longer exists")
        self.from_map(rows[0])
        self.mark_persisted()
        self._relations.clear()
        self._pivot_ids.clear()
        return self

    async def _soft_delete(self, key: Any) -> bool:
        await self.on_deleting()
        now = datetime.now(timezone.utc)
        updated = await self.get_connector().update(
            self.table,
            {self.deleted_at_column: now},
            where=f"{self.primary_key} = ?",
            where_args=[key],
        )
        if updated == 0:
            return False
        self.deleted_at = now
        self.sync_original()
        logger.debug("model_soft_deleted", model=type(self).__name__, key=key)
        await self.on_deleted()
        return True

    async def _hard_delete(self, key: Any) -> bool:
        await self.on_deleting()
        deleted = await self.get_connector().delete(self.table, where=f"{self.primary_key} = ?", where_args=[key])
        if deleted == 0:
            return False
        self._persisted = False
        logger.debug("model_deleted", model=type(self).__name__, key=key)
        await self.on_deleted()
        return True

    def _require_key(self, operation: str) -> Any:
        key = self.get_key()
        if key is None:
            raise MissingPrimaryKeyError(operation, type(self).__name__)
        return key

    @property
    def relation_cache(self) -> dict[str, Any]:
        return self._relations

    @property
    def pivot_id_cache(self) -> dict[str, list[Any]]:
        return self._pivot_ids

    def get_relation(self, name: str) -> Any:
        """Return a relation loaded earlier, or None."""
        return self._relations.get(name)

    async def load(self, name: str, refresh: bool = False) -> Any:
        """Resolve a relationship, reusing the cached result unless ``refresh``."""
        return await self._resolver().resolve(self, name, refresh=refresh)

    async def load_pivot_ids(self, name: str) -> list[Any]:
        return await self._resolver().load_pivot_ids(self, name)

    async def attach_many(self, name: str, ids: Iterable[Any]) -> None:
        await self._resolver().attach_many(self, name, ids)

    async def detach_many(self, name: str, ids: Iterable[Any]) -> None:
        await self._resolver().detach_many(self, name, ids)

    async def sync_many(self, name: str, ids: Iterable[Any]) -> None:
        await self._resolver().sync_many(self, name, ids)

    def _resolver(self) -> "RelationshipResolver":
        from rowform.orm.relations import RelationshipResolver

        registry = self.get_registry()
        if registry is None:
            raise RelationshipError(
                f"{type(self).__name__} was bound without a registry; pass one to bind() to resolve relationships"
            )
        return RelationshipResolver(registry)


def _trailing_position(field: str) -> int:
    return _TRAILING_FIELDS.index(field) if field in _TRAILING_FIELDS else -1
