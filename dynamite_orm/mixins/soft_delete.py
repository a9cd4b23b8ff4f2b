"""
SoftDeleteMixin for logical deletion.

Records are stamped with deleted_at instead of being removed, and are
hidden from queries unless with_trashed/only_trashed is requested.
"""

from typing import Optional, TYPE_CHECKING

from dynamite_orm.models.decorators import DeleteAt
from dynamite_orm.models.fields import Field

if TYPE_CHECKING:
    from dynamite_orm.transaction import Transaction


class SoftDeleteMixin:
    """
    Mixin that adds a deleted_at soft-delete marker.

    Example:
        >>> class Post(SoftDeleteMixin, Model):
        ...     id = Field(PrimaryKey())
        >>>
        >>> await post.destroy()          # sets deleted_at
        >>> await Post.where()            # post is hidden
        >>> await Post.only_trashed()     # [post]
        >>> await post.restore()          # visible again
    """

    deleted_at = Field(DeleteAt())

    @property
    def is_trashed(self) -> bool:
        return self.deleted_at is not None

    async def restore(self, tx: Optional["Transaction"] = None):
        """Clear the soft-delete marker and save."""
        return await self.update({"deleted_at": None}, tx=tx)  # type: ignore[attr-defined]
