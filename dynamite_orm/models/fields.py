"""
Field definitions for Dynamite ORM.

A field is described once per record type by a FieldDescriptor holding its
metadata (key roles, nullability, storage name, lifecycle roles) and two
ordered pipelines:

- the read pipeline turns a stored value into the exposed value
- the write pipeline turns an incoming value into the next stored value

Record classes declare fields with Field(*configurators); the model metaclass
machinery turns each declaration into a FieldAttribute descriptor that routes
attribute access through the owning instance's value buffer.
"""

from dataclasses import dataclass, field as dataclass_field
from typing import Any, Callable, Optional, TYPE_CHECKING

from dynamite_orm.exceptions import ValidationError

if TYPE_CHECKING:
    from dynamite_orm.models.base import Model
    from dynamite_orm.models.relations import RelationDescriptor

ReadStep = Callable[[Any], Any]
WriteStep = Callable[[Any, Any], Any]
Validator = Callable[[Any], Any]


class _Unset:
    """Marker for "no value given", distinct from None."""

    _instance: Optional["_Unset"] = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def is_absent(value: Any) -> bool:
    """True for None and UNSET, the two spellings of a missing value."""
    return value is None or value is UNSET


@dataclass
class FieldDescriptor:
    """
    Metadata and transformation pipelines for one declared field.

    Attributes:
        name: Field name as exposed on instances
        storage_name: Attribute name used in the store
        custom_name: Whether storage_name was set explicitly
        is_primary_key: Field is the record identity
        is_partition_key: Field is the hash key of the collection
        is_sort_key: Field is the range key of the collection
        attribute_type: Store attribute type for key fields ("S", "N", "B")
        nullable: Whether an absent value may be persisted
        is_soft_delete_marker: Field holds the soft-delete timestamp
        is_created_timestamp: Field is stamped on insert
        is_updated_timestamp: Field is stamped on every persist
        read_pipeline: Steps applied to stored values on read
        write_pipeline: Steps applied to incoming values on assignment
        lazy_validators: Validators deferred until persist time
        default: Constant or zero-argument factory for absent values
        relation: Relationship descriptor when the field is a relation
    """

    name: str
    storage_name: str = ""
    custom_name: bool = False
    is_primary_key: bool = False
    is_partition_key: bool = False
    is_sort_key: bool = False
    attribute_type: str = "S"
    nullable: bool = True
    is_soft_delete_marker: bool = False
    is_created_timestamp: bool = False
    is_updated_timestamp: bool = False
    read_pipeline: list[ReadStep] = dataclass_field(default_factory=list)
    write_pipeline: list[WriteStep] = dataclass_field(default_factory=list)
    lazy_validators: list[Validator] = dataclass_field(default_factory=list)
    default: Any = UNSET
    relation: Optional["RelationDescriptor"] = None

    def __post_init__(self) -> None:
        if not self.storage_name:
            self.storage_name = self.name

    @property
    def is_key(self) -> bool:
        return self.is_partition_key or self.is_sort_key

    @property
    def has_default(self) -> bool:
        return self.default is not UNSET

    def realize_default(self) -> Any:
        """
        Produce a fresh default value.

        Factories are invoked on every call so two instances never share a
        mutable default.
        """
        if callable(self.default):
            return self.default()
        return self.default

    def apply_read(self, stored_value: Any) -> Any:
        """Fold the read pipeline over a stored value, left to right."""
        value = stored_value
        for step in self.read_pipeline:
            value = step(value)
        return value

    def apply_write(self, current_value: Any, incoming_value: Any) -> Any:
        """
        Fold the write pipeline over an incoming value.

        Each step receives (current_value, accumulated_value); the first step
        is seeded with the incoming value, after default substitution when
        the incoming value is absent. Any exception propagates to the caller
        and nothing is committed.
        """
        value = incoming_value
        if is_absent(value) and self.has_default:
            value = self.realize_default()
        elif value is UNSET:
            value = None
        for step in self.write_pipeline:
            value = step(current_value, value)
        return value

    def run_lazy_validators(self, value: Any) -> None:
        """Run the deferred validators against a value, first failure wins."""
        for validator in self.lazy_validators:
            check_validator_result(self.name, validator(value))


def check_validator_result(field_name: str, result: Any) -> None:
    """
    Interpret a validator's return value.

    Only the literal True passes. A string is used as the error message;
    anything else produces a generic message.
    """
    if result is True:
        return
    if isinstance(result, str):
        raise ValidationError(result, field=field_name)
    raise ValidationError(f"Validation failed for field '{field_name}'", field=field_name)


class FieldDeclaration:
    """
    Class-body placeholder produced by Field().

    Holds the configurators in declaration order until the owning model
    class is registered.
    """

    def __init__(self, *configurators: Callable[..., Any]):
        self.configurators = list(configurators)

    def apply(self, model_class: type, name: str) -> None:
        """Register the field on model_class and run every configurator."""
        from dynamite_orm.models.registry import registry
        registry.describe_field(model_class, name)
        for configurator in self.configurators:
            registry.configure_field(model_class, name, configurator)

    def attribute(self, name: str) -> "FieldAttribute":
        return FieldAttribute(name, self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({', '.join(repr(c) for c in self.configurators)})"


def Field(*configurators: Callable[..., Any]) -> Any:
    """
    Declare a model field.

    Configurators are applied in the order given; pipeline steps they add
    run in that same order.

    Example:
        >>> class User(Model):
        ...     id = Field(PrimaryKey(), Default(lambda: str(uuid4())))
        ...     email = Field(Mutate(str.lower), Validate(is_email))
        ...     age = Field(Default(18))
    """
    return FieldDeclaration(*configurators)


class FieldAttribute:
    """
    Descriptor installed on model classes for each scalar field.

    Reads and writes go through Model.get_value / Model.set_value, which run
    the field pipelines against the instance's value buffer.
    """

    def __init__(self, name: str, declaration: FieldDeclaration):
        self.name = name
        self.declaration = declaration

    def __get__(self, instance: Optional["Model"], owner: type) -> Any:
        if instance is None:
            return self
        return instance.get_value(self.name)

    def __set__(self, instance: "Model", value: Any) -> None:
        instance.set_value(self.name, value)

    def __repr__(self) -> str:
        return f"<field {self.name}>"
