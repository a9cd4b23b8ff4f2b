"""
TimestampMixin for automatic created_at and updated_at tracking.

Provides automatic timestamp management for models.
"""

from dynamite_orm.models.decorators import CreatedAt, UpdatedAt
from dynamite_orm.models.fields import Field


class TimestampMixin:
    """
    Mixin that adds automatic timestamp tracking.

    Adds created_at and updated_at fields that are automatically managed:
    - created_at: Set once when the record is first saved
    - updated_at: Set on creation and refreshed on every save

    Both are stored as ISO-8601 UTC strings.

    Example:
        >>> class User(TimestampMixin, Model):
        ...     id = Field(PrimaryKey())
        ...     name = Field()
        >>>
        >>> user = await User.create(id="1", name="Alice")
        >>> print(user.created_at)  # Automatic timestamp
        >>> user.name = "Alice Smith"
        >>> await user.save()
        >>> print(user.updated_at)  # Updated timestamp
    """

    created_at = Field(CreatedAt())
    updated_at = Field(UpdatedAt())
