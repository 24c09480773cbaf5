from pydantic import model_validator

from rowform.models.enums import RelationshipType
from rowform.models.schema import SchemaModel


class RelationshipMeta(SchemaModel):
    """How rows of one model relate to another's.

    ``related_key`` is the owner key on the related table for belongs-to, and
    the local key on this table for has-one and has-many. ``None`` means the
    primary key of whichever table it refers to. ``related_model_type`` is
    the registry name of the related model.
    """

    name: str
    type: RelationshipType
    foreign_key: str
    related_model_type: str
    related_key: str | None = None
    pivot_table: str | None = None
    pivot_local_key: str | None = None
    pivot_related_key: str | None = None

    @model_validator(mode="after")
    def _validate_pivot(self) -> "RelationshipMeta":
        pivot_fields = (self.pivot_table, self.pivot_local_key, self.pivot_related_key)
        if any(pivot_fields) and not all(pivot_fields):
            raise ValueError("pivot_table, pivot_local_key and pivot_related_key must be set together")
        if self.pivot_table and self.type != RelationshipType.HAS_MANY:
            raise ValueError("only has_many relationships can use a pivot table")
        return self

    @property
    def uses_pivot_table(self) -> bool:
        return self.type == RelationshipType.HAS_MANY and self.pivot_table is not None


def belongs_to(name: str, related: str, foreign_key: str, owner_key: str | None = None) -> RelationshipMeta:
    return RelationshipMeta(
        name=name,
        type=RelationshipType.BELONGS_TO,
        foreign_key=foreign_key,
        related_key=owner_key,
        related_model_type=related,
    )


def has_one(name: str, related: str, foreign_key: str, local_key: str | None = None) -> RelationshipMeta:
    return RelationshipMeta(
        name=name,
        type=RelationshipType.HAS_ONE,
        foreign_key=foreign_key,
        related_key=local_key,
        related_model_type=related,
    )


def has_many(name: str, related: str, foreign_key: str, local_key: str | None = None) -> RelationshipMeta:
    return RelationshipMeta(
        name=name,
        type=RelationshipType.HAS_MANY,
        foreign_key=foreign_key,
        related_key=local_key,
        related_model_type=related,
    )


def many_to_many(
    name: str,
    related: str,
    pivot_table: str,
    pivot_local_key: str,
    pivot_related_key: str,
) -> RelationshipMeta:
    return RelationshipMeta(
        name=name,
        type=RelationshipType.HAS_MANY,
        foreign_key=pivot_related_key,
        related_model_type=related,
        pivot_table=pivot_table,
        pivot_local_key=pivot_local_key,
        pivot_related_key=pivot_related_key,
    )
