"""Unit tests for relationship metadata."""

import pytest
from pydantic import ValidationError

from rowform.models.enums import RelationshipType
from rowform.models.relationships import RelationshipMeta, belongs_to, has_many, has_one, many_to_many


class TestRelationshipMeta:
    """Tests for RelationshipMeta validation."""

    def test_belongs_to(self) -> None:
        meta = belongs_to("author", "users", foreign_key="user_id")

        assert meta.type == RelationshipType.BELONGS_TO
        assert meta.related_key is None
        assert not meta.uses_pivot_table

    def test_has_one_and_has_many_keep_local_key(self) -> None:
        assert has_one("profile", "profiles", foreign_key="user_id", local_key="uuid").related_key == "uuid"
        assert has_many("notes", "notes", foreign_key="user_id").type == RelationshipType.HAS_MANY

    def test_many_to_many_uses_pivot(self) -> None:
        meta = many_to_many("roles", "roles", "user_role", "user_id", "role_id")

        assert meta.type == RelationshipType.HAS_MANY
        assert meta.uses_pivot_table
        assert meta.foreign_key == "role_id"

    def test_pivot_fields_must_be_set_together(self) -> None:
        with pytest.raises(ValidationError, match="must be set together"):
            RelationshipMeta(
                name="roles",
                type=RelationshipType.HAS_MANY,
                foreign_key="role_id",
                related_model_type="roles",
                pivot_table="user_role",
            )

    def test_only_has_many_can_use_pivot(self) -> None:
        with pytest.raises(ValidationError, match="only has_many"):
            RelationshipMeta(
                name="role",
                type=RelationshipType.BELONGS_TO,
                foreign_key="role_id",
                related_model_type="roles",
                pivot_table="user_role",
                pivot_local_key="user_id",
                pivot_related_key="role_id",
            )

    def test_is_read_only(self) -> None:
        meta = has_many("notes", "notes", foreign_key="user_id")

        with pytest.raises(ValidationError):
            meta.name = "other"
