"""Lazy loading of relationships declared on models."""

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import structlog

from rowform.exceptions import MissingPrimaryKeyError, RelationshipError
from rowform.models.enums import RelationshipType
from rowform.models.relationships import RelationshipMeta
from rowform.services.model_query import ModelQuery

if TYPE_CHECKING:
    from rowform.orm.model import Model
    from rowform.services.registry import ModelRegistry, RegistryEntry


class RelationshipResolver:
    """Resolves relationships by name through a registry.

    Related models are queried on the owning model's connector. Results are
    cached on the owning model until the relation is changed through this
    resolver or reloaded with ``refresh=True``.
    """

    def __init__(
        self,
        registry: "ModelRegistry",
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._registry = registry
        self._logger = logger or structlog.get_logger(__name__)

    async def resolve(self, model: "Model", name: str, refresh: bool = False) -> Any:
        """Load one relationship of ``model``.

        Returns:
            A model or None for belongs-to and has-one, a list of models for
            has-many (pivot-backed or not).

        Raises:
            RelationshipError: If ``name`` is not a relationship of the model.
        """
        meta = model.get_relationship(name)
        cache = model.relation_cache
        if not refresh and name in cache:
            return cache[name]
        if refresh:
            self._forget(model, name)

        if meta.uses_pivot_table:
            result: Any = await self._resolve_pivot(model, meta)
        elif meta.type == RelationshipType.BELONGS_TO:
            result = await self._resolve_belongs_to(model, meta)
        elif meta.type == RelationshipType.HAS_ONE:
            result = await self._resolve_has_one(model, meta)
        elif meta.type == RelationshipType.HAS_MANY:
            result = await self._resolve_has_many(model, meta)
        else:
            raise RelationshipError(f"Unsupported relationship type: {meta.type}")

        cache[name] = result
        return result

    async def load_pivot_ids(self, model: "Model", name: str) -> list[Any]:
        """Related ids recorded in the pivot table, in row order."""
        meta = self._pivot_meta(model, name)
        key = model.get_key()
        if key is None:
            return []
        if name in model.pivot_id_cache:
            return list(model.pivot_id_cache[name])

        rows = await model.get_connector().query(
            f"SELECT {meta.pivot_related_key} FROM {meta.pivot_table} WHERE {meta.pivot_local_key} = ? ORDER BY rowid",
            [key],
        )
        ids = [row[meta.pivot_related_key] for row in rows]
        model.pivot_id_cache[name] = ids
        return list(ids)

    async def attach_many(self, model: "Model", name: str, ids: Iterable[Any]) -> None:
        """Insert one pivot row per id.

        Ids are neither deduplicated nor checked against existing rows, and
        the inserts do not share a transaction: if one fails, the rows
        inserted before it stay.
        """
        meta = self._pivot_meta(model, name)
        key = model.get_key()
        if key is None:
            raise MissingPrimaryKeyError("attach relationships", type(model).__name__)
        ids = list(ids)
        if not ids:
            return

        connector = model.get_connector()
        try:
            for related_id in ids:
                await connector.insert(meta.pivot_table, {meta.pivot_local_key: key, meta.pivot_related_key: related_id})
        finally:
            self._forget(model, name)
        self._logger.debug("pivot_attached", relationship=name, pivot=meta.pivot_table, key=key, count=len(ids))

    async def detach_many(self, model: "Model", name: str, ids: Iterable[Any]) -> None:
        meta = self._pivot_meta(model, name)
        key = model.get_key()
        ids = list(ids)
        if key is None or not ids:
            return

        connector = model.get_connector()
        try:
            for related_id in ids:
                await connector.delete(
                    meta.pivot_table,
                    where=f"{meta.pivot_local_key} = ? AND {meta.pivot_related_key} = ?",
                    where_args=[key, related_id],
                )
        finally:
            self._forget(model, name)
        self._logger.debug("pivot_detached", relationship=name, pivot=meta.pivot_table, key=key, count=len(ids))

    async def sync_many(self, model: "Model", name: str, ids: Iterable[Any]) -> None:
        """Make the pivot rows for ``model`` match ``ids`` exactly."""
        self._pivot_meta(model, name)
        if model.get_key() is None:
            raise MissingPrimaryKeyError("sync relationships", type(model).__name__)

        wanted = list(dict.fromkeys(ids))
        model.pivot_id_cache.pop(name, None)
        existing = await self.load_pivot_ids(model, name)

        to_detach = [related_id for related_id in dict.fromkeys(existing) if related_id not in wanted]
        to_attach = [related_id for related_id in wanted if related_id not in existing]
        if to_detach:
            await self.detach_many(model, name, to_detach)
        if to_attach:
            await self.attach_many(model, name, to_attach)
        self._logger.debug(
            "pivot_synced",
            relationship=name,
            attached=len(to_attach),
            detached=len(to_detach),
        )

    async def _resolve_belongs_to(self, model: "Model", meta: RelationshipMeta) -> "Model | None":
        value = self._column_value(model, meta.foreign_key)
        if value is None:
            return None
        entry = self._related(meta)
        owner_key = meta.related_key or entry.model_type.primary_key
        return await self._query(model, entry).where(owner_key, value).first()

    async def _resolve_has_one(self, model: "Model", meta: RelationshipMeta) -> "Model | None":
        value = self._column_value(model, meta.related_key or model.primary_key)
        if value is None:
            return None
        entry = self._related(meta)
        return await self._query(model, entry).where(meta.foreign_key, value).first()

    async def _resolve_has_many(self, model: "Model", meta: RelationshipMeta) -> list["Model"]:
        value = self._column_value(model, meta.related_key or model.primary_key)
        if value is None:
            return []
        entry = self._related(meta)
        return (
            await self._query(model, entry)
            .where(meta.foreign_key, value)
            .order_by(entry.model_type.primary_key)
            .get()
        )

    async def _resolve_pivot(self, model: "Model", meta: RelationshipMeta) -> list["Model"]:
        ids = await self.load_pivot_ids(model, meta.name)
        if not ids:
            return []
        entry = self._related(meta)
        related = await self._query(model, entry).where_in(entry.model_type.primary_key, ids).get()
        by_key = {instance.get_key(): instance for instance in related}
        return [by_key[related_id] for related_id in dict.fromkeys(ids) if related_id in by_key]

    def _related(self, meta: RelationshipMeta) -> "RegistryEntry":
        return self._registry.lookup_by_name(meta.related_model_type)

    @staticmethod
    def _query(model: "Model", entry: "RegistryEntry") -> ModelQuery:
        return ModelQuery(
            model.get_connector(),
            factory=entry.factory,
            table=entry.model_type.table,
            primary_key=entry.model_type.primary_key,
        )

    @staticmethod
    def _column_value(model: "Model", column: str) -> Any:
        field = model.column_fields().get(column)
        if field is None:
            raise RelationshipError(f"{type(model).__name__} has no column '{column}'")
        return getattr(model, field)

    @staticmethod
    def _pivot_meta(model: "Model", name: str) -> RelationshipMeta:
        meta = model.get_relationship(name)
        if not meta.uses_pivot_table:
            raise RelationshipError(f"Relationship '{name}' on {type(model).__name__} does not use a pivot table")
        return meta

    @staticmethod
    def _forget(model: "Model", name: str) -> None:
        model.relation_cache.pop(name, None)
        model.pivot_id_cache.pop(name, None)
