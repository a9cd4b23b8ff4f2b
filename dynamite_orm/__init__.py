"""
Dynamite ORM - ActiveRecord-style ORM for DynamoDB.

Declare record types once (fields, keys, defaults, validation,
transformation and relationships) and get async reads, writes, filtering
and batched eager loading over a key-value document store.
"""

from dynamite_orm.client import Dynamite
from dynamite_orm.transaction import Transaction
from dynamite_orm.models import (
    UNSET,
    BelongsTo,
    Column,
    CreatedAt,
    Default,
    DeleteAt,
    Field,
    HasMany,
    HasOne,
    Index,
    IndexSort,
    ManyToMany,
    Model,
    Mutate,
    Name,
    NotNull,
    PrimaryKey,
    Serialize,
    UpdatedAt,
    Validate,
    after_load,
    after_save,
    before_save,
    registry,
)
from dynamite_orm.mixins import SoftDeleteMixin, TimestampMixin
from dynamite_orm.backends import InMemoryStore, Store
from dynamite_orm.query import QueryBuilder
from dynamite_orm.exceptions import (
    BatchSizeError,
    ConfigurationError,
    DynamiteError,
    MultipleResultsError,
    NotConnectedError,
    PersistenceError,
    QueryError,
    RelationError,
    TransactionError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "Dynamite",
    "Transaction",
    "Model",
    "Field",
    "UNSET",
    "Column",
    "CreatedAt",
    "Default",
    "DeleteAt",
    "Index",
    "IndexSort",
    "Mutate",
    "Name",
    "NotNull",
    "PrimaryKey",
    "Serialize",
    "UpdatedAt",
    "Validate",
    "BelongsTo",
    "HasMany",
    "HasOne",
    "ManyToMany",
    "before_save",
    "after_save",
    "after_load",
    "registry",
    "TimestampMixin",
    "SoftDeleteMixin",
    "Store",
    "InMemoryStore",
    "QueryBuilder",
    "DynamiteError",
    "ConfigurationError",
    "ValidationError",
    "QueryError",
    "RelationError",
    "MultipleResultsError",
    "NotConnectedError",
    "PersistenceError",
    "TransactionError",
    "BatchSizeError",
]
