from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel


class SoftDeletes(BaseModel):
    """Capability mixin for models that are trashed instead of removed.

    Combine it with ``Model``::

        class Post(Model, SoftDeletes):
            table = "posts"

            id: int | None = None
            title: str

    ``Post.delete()`` then stamps ``deleted_at`` instead of issuing a DELETE,
    queries hide trashed rows by default, ``restore()`` clears the stamp and
    ``force_delete()`` removes the row for good.
    """

    deleted_at_column: ClassVar[str] = "deleted_at"

    deleted_at: datetime | None = None

    @property
    def is_trashed(self) -> bool:
        return self.deleted_at is not None
