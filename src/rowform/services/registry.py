"""Explicit registry of model types, their factories and their table schemas."""

from collections.abc import Callable
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict

from rowform.exceptions import ModelNotRegisteredError, RegistryError
from rowform.models.schema import TableSchema
from rowform.orm.model import Model
from rowform.services.connector import DatabaseConnector


class RegistryEntry(BaseModel):
    """One registered model type.

    ``table_schema`` is None when the schema is derived from the model's
    fields on demand.
    """

    model_type: type[Model]
    name: str
    factory: Callable[[], Model]
    table_schema: TableSchema | None = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, protected_namespaces=())

    def create(self) -> Model:
        return self.factory()


class ModelRegistry:
    """Maps model types, and their stable names, to registry entries.

    Construct one at startup, bind it with ``bind_models`` (or
    ``prepare_database``) and hand it to the migration engine. Only the
    registered types are bound, so independent registries can serve
    different connectors in one process.
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)
        self._entries: dict[type[Model], RegistryEntry] = {}
        self._names: dict[str, type[Model]] = {}

    def register(
        self,
        model_type: type[Model],
        factory: Callable[[], Model] | None = None,
        schema: TableSchema | None = None,
    ) -> RegistryEntry:
        """Register ``model_type``, replacing any earlier entry for it.

        Args:
            model_type: The model class.
            factory: Zero-argument constructor; defaults to ``model_type.empty``.
            schema: Explicit table schema; by default it is derived from the
                model when ``schemas()`` is called.

        Raises:
            RegistryError: If a different type is already registered under
                the same name.
        """
        name = model_type.registry_name()
        claimed = self._names.get(name)
        if claimed is not None and claimed is not model_type:
            raise RegistryError(f"'{name}' is already registered by {claimed.__name__}")

        entry = RegistryEntry(
            model_type=model_type,
            name=name,
            factory=factory or model_type.empty,
            table_schema=schema,
        )
        self._entries[model_type] = entry
        self._names[name] = model_type
        self._logger.debug("model_registered", model=model_type.__name__, name=name)
        return entry

    def lookup(self, model_type: type[Model]) -> RegistryEntry:
        entry = self._entries.get(model_type)
        if entry is None:
            raise ModelNotRegisteredError(model_type.__name__)
        return entry

    def lookup_by_name(self, name: str) -> RegistryEntry:
        model_type = self._names.get(name)
        if model_type is None:
            raise ModelNotRegisteredError(name)
        return self._entries[model_type]

    def create(self, name: str) -> Model:
        """Build an empty instance of the model registered as ``name``."""
        return self.lookup_by_name(name).create()

    def schema_for(self, model_type: type[Model]) -> TableSchema:
        entry = self.lookup(model_type)
        return entry.table_schema or model_type.table_schema(registry=self)

    def schemas(self) -> list[TableSchema]:
        """One schema per registered model, in registration order."""
        return [self.schema_for(model_type) for model_type in self._entries]

    def entries(self) -> list[RegistryEntry]:
        return list(self._entries.values())

    def bind_models(self, connector: DatabaseConnector) -> None:
        """Bind ``connector`` and this registry to every registered model type."""
        for model_type in self._entries:
            model_type.bind(connector, self)

    def unbind_models(self) -> None:
        for model_type in self._entries:
            model_type.unbind()

    def clear(self) -> None:
        self._entries.clear()
        self._names.clear()

    def __contains__(self, key: Any) -> bool:
        if isinstance(key, str):
            return key in self._names
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
