"""
Relationship declarations for Dynamite ORM.

Relations are declared as class attributes referencing the related model
through a class or a zero-argument callable. The callable is only invoked
when a query needs the related type, so two models may reference each
other regardless of declaration order.

Example:
    >>> class User(Model):
    ...     id = Field(PrimaryKey())
    ...     orders = HasMany(lambda: Order, "user_id")
    ...     roles = ManyToMany(lambda: Role, "users_roles", "user_id", "role_id")
    >>>
    >>> class Order(Model):
    ...     id = Field(PrimaryKey())
    ...     user_id = Field()
    ...     user = BelongsTo(lambda: User, "user_id")
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union, TYPE_CHECKING

from dynamite_orm.exceptions import ConfigurationError
from dynamite_orm.models.fields import FieldDeclaration

if TYPE_CHECKING:
    from dynamite_orm.models.base import Model
    from dynamite_orm.models.registry import RecordDescriptor
    from dynamite_orm.models.fields import FieldDescriptor

ModelTarget = Union[type, Callable[[], type]]


class RelationKind(str, Enum):
    """Kinds of relationship between two record types."""
    HAS_MANY = "has_many"
    HAS_ONE = "has_one"
    BELONGS_TO = "belongs_to"
    MANY_TO_MANY = "many_to_many"


@dataclass
class RelationDescriptor:
    """
    Join description attached to a relation field.

    For HAS_MANY and HAS_ONE, children carry foreign_key equal to the
    parent's local_key. For BELONGS_TO, the record carries local_key equal to
    the parent's foreign_key. MANY_TO_MANY goes through junction rows holding
    junction_local_key (our local_key value) and junction_related_key (the
    related record's related_key value).
    """

    kind: RelationKind
    target: ModelTarget
    foreign_key: str
    local_key: str = "id"
    junction_collection_name: Optional[str] = None
    junction_local_key: Optional[str] = None
    junction_related_key: Optional[str] = None
    related_key: str = "id"

    @property
    def is_to_many(self) -> bool:
        return self.kind in (RelationKind.HAS_MANY, RelationKind.MANY_TO_MANY)

    def resolve_target(self) -> type["Model"]:
        """Resolve the related model class, calling the thunk if needed."""
        from dynamite_orm.models.base import Model

        target = self.target
        if not (isinstance(target, type) and issubclass(target, Model)):
            target = target()
        if not (isinstance(target, type) and issubclass(target, Model)):
            raise ConfigurationError(f"Relation target {target!r} is not a Model subclass")
        return target


class RelationDeclaration(FieldDeclaration):
    """Class-body placeholder for a relation field."""

    def __init__(self, relation: RelationDescriptor):
        super().__init__()
        self.relation = relation

    def apply(self, model_class: type, name: str) -> None:
        from dynamite_orm.models.registry import registry

        def configure(record: "RecordDescriptor", field: "FieldDescriptor") -> None:
            if field.read_pipeline or field.write_pipeline:
                raise ConfigurationError(
                    f"Field '{name}' already has a value pipeline and cannot be a relation"
                )
            field.relation = self.relation

        registry.configure_field(model_class, name, configure)

    def attribute(self, name: str) -> "RelationAttribute":
        return RelationAttribute(name, self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.relation.kind.value})"


class RelationAttribute:
    """
    Descriptor holding loaded related records on an instance.

    Returns None until the relation has been loaded through an include.
    """

    def __init__(self, name: str, declaration: RelationDeclaration):
        self.name = name
        self.declaration = declaration

    def __get__(self, instance: Optional["Model"], owner: type) -> Any:
        if instance is None:
            return self
        return instance._relations.get(self.name)

    def __set__(self, instance: "Model", value: Any) -> None:
        instance.set_relation(self.name, value)


def HasMany(target: ModelTarget, foreign_key: str, local_key: str = "id") -> Any:
    """Parent has many children whose foreign_key equals the parent's local_key."""
    return RelationDeclaration(
        RelationDescriptor(RelationKind.HAS_MANY, target, foreign_key, local_key)
    )


def HasOne(target: ModelTarget, foreign_key: str, local_key: str = "id") -> Any:
    """Parent has at most one child whose foreign_key equals the parent's local_key."""
    return RelationDeclaration(
        RelationDescriptor(RelationKind.HAS_ONE, target, foreign_key, local_key)
    )


def BelongsTo(target: ModelTarget, local_key: str, foreign_key: str = "id") -> Any:
    """Record references one parent whose foreign_key equals our local_key."""
    return RelationDeclaration(
        RelationDescriptor(RelationKind.BELONGS_TO, target, foreign_key, local_key)
    )


def ManyToMany(
    target: ModelTarget,
    junction: str,
    foreign_key: str,
    related_key: str,
    local_key: str = "id",
    related_pk: str = "id",
) -> Any:
    """
    Many-to-many relation through a junction collection.

    Args:
        target: Related model class or thunk
        junction: Junction collection name
        foreign_key: Junction attribute holding our local_key value
        related_key: Junction attribute holding the related record's key
        local_key: Our field referenced by junction rows
        related_pk: Related model field referenced by junction rows
    """
    return RelationDeclaration(
        RelationDescriptor(
            RelationKind.MANY_TO_MANY,
            target,
            foreign_key=foreign_key,
            local_key=local_key,
            junction_collection_name=junction,
            junction_local_key=foreign_key,
            junction_related_key=related_key,
            related_key=related_pk,
        )
    )
