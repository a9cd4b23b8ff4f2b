"""
Built-in mixins for Dynamite ORM.

Provides common functionality that can be mixed into models.
"""

from dynamite_orm.mixins.timestamp import TimestampMixin
from dynamite_orm.mixins.soft_delete import SoftDeleteMixin

__all__ = [
    'TimestampMixin',
    'SoftDeleteMixin',
]
