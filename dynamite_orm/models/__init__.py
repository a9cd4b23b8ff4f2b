"""Model definitions for Dynamite ORM."""

from dynamite_orm.models.base import Model
from dynamite_orm.models.fields import Field, UNSET
from dynamite_orm.models.decorators import (
    Column,
    CreatedAt,
    Default,
    DeleteAt,
    Index,
    IndexSort,
    Mutate,
    Name,
    NotNull,
    PrimaryKey,
    Serialize,
    UpdatedAt,
    Validate,
)
from dynamite_orm.models.hooks import after_load, after_save, before_save
from dynamite_orm.models.registry import registry
from dynamite_orm.models.relations import BelongsTo, HasMany, HasOne, ManyToMany

__all__ = [
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
    "before_save",
    "after_save",
    "after_load",
    "registry",
    "BelongsTo",
    "HasMany",
    "HasOne",
    "ManyToMany",
]
