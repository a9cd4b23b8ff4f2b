"""
Schema registry for Dynamite ORM.

Keeps one RecordDescriptor per model class, keyed by the class object
itself so two classes with the same name in different modules never
collide. Field descriptors are created on first mention and shared by every
configurator applied to the same (class, field) pair afterwards.
"""

import re
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Callable, Iterator, Optional

from dynamite_orm.exceptions import ConfigurationError
from dynamite_orm.models.fields import FieldDescriptor


def to_snake_plural(name: str) -> str:
    """
    Convert a class name to a snake_case plural collection name.

    Example:
        >>> to_snake_plural("OrderItem")
        'order_items'
        >>> to_snake_plural("Category")
        'categories'
    """
    snake = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name).lower()
    if snake.endswith("y") and snake[-2:] not in ("ay", "ey", "iy", "oy", "uy"):
        return snake[:-1] + "ies"
    if snake.endswith(("s", "x", "z", "ch", "sh")):
        return snake + "es"
    return snake + "s"


@dataclass
class RecordDescriptor:
    """
    Registered schema of one model class.

    Attributes:
        model_class: The class this descriptor belongs to
        collection_name: Physical collection (table) name
        custom_collection_name: Whether collection_name was set explicitly
        primary_key_field_name: Name of the identity field, if declared
        fields: Field descriptors in declaration order
    """

    model_class: type
    collection_name: str
    custom_collection_name: bool = False
    primary_key_field_name: Optional[str] = None
    fields: dict[str, FieldDescriptor] = dataclass_field(default_factory=dict)

    def scalar_fields(self) -> Iterator[FieldDescriptor]:
        return (f for f in self.fields.values() if f.relation is None)

    def relation_fields(self) -> Iterator[FieldDescriptor]:
        return (f for f in self.fields.values() if f.relation is not None)

    def get_relation(self, name: str) -> Optional[FieldDescriptor]:
        field = self.fields.get(name)
        if field is None or field.relation is None:
            return None
        return field

    @property
    def partition_key(self) -> Optional[FieldDescriptor]:
        return next((f for f in self.fields.values() if f.is_partition_key), None)

    @property
    def sort_key(self) -> Optional[FieldDescriptor]:
        return next((f for f in self.fields.values() if f.is_sort_key), None)

    @property
    def primary_key(self) -> FieldDescriptor:
        """
        The identity field: the declared primary key, else the partition key.

        Raises:
            ConfigurationError: If the record type has no partition key
        """
        if self.primary_key_field_name is not None:
            return self.fields[self.primary_key_field_name]
        partition_key = self.partition_key
        if partition_key is None:
            raise ConfigurationError(
                f"{self.model_class.__name__} has no partition key. "
                f"Declare one with PrimaryKey() or Index()."
            )
        return partition_key

    @property
    def key_fields(self) -> list[FieldDescriptor]:
        """Partition key followed by the sort key, when declared."""
        keys = [self.partition_key or self.primary_key]
        sort_key = self.sort_key
        if sort_key is not None:
            keys.append(sort_key)
        return keys

    @property
    def soft_delete_field(self) -> Optional[FieldDescriptor]:
        return next((f for f in self.fields.values() if f.is_soft_delete_marker), None)

    def storage_name(self, field_name: str) -> str:
        """Map a field name to its storage name; undeclared names map to themselves."""
        field = self.fields.get(field_name)
        return field.storage_name if field is not None else field_name

    def field_for_storage_name(self, storage_name: str) -> Optional[FieldDescriptor]:
        for field in self.scalar_fields():
            if field.storage_name == storage_name:
                return field
        return None


class SchemaRegistry:
    """
    Registry of record descriptors keyed by class identity.

    Example:
        >>> descriptor = registry.register(User)
        >>> registry.configure_field(User, "email", NotNull())
        >>> registry.describe_field(User, "email").nullable
        False
    """

    def __init__(self) -> None:
        self._descriptors: dict[type, RecordDescriptor] = {}

    def register(self, model_class: type) -> RecordDescriptor:
        """Return the descriptor for model_class, creating an empty one if needed."""
        descriptor = self._descriptors.get(model_class)
        if descriptor is None:
            descriptor = RecordDescriptor(
                model_class=model_class,
                collection_name=to_snake_plural(model_class.__name__),
            )
            self._descriptors[model_class] = descriptor
        return descriptor

    def get(self, model_class: type) -> Optional[RecordDescriptor]:
        return self._descriptors.get(model_class)

    def describe_field(self, model_class: type, field_name: str) -> FieldDescriptor:
        """Return the field descriptor for (model_class, field_name), creating it if absent."""
        descriptor = self.register(model_class)
        field = descriptor.fields.get(field_name)
        if field is None:
            field = FieldDescriptor(name=field_name)
            descriptor.fields[field_name] = field
        return field

    def configure_field(
        self,
        model_class: type,
        field_name: str,
        configurator: Callable[[RecordDescriptor, FieldDescriptor], Any],
    ) -> FieldDescriptor:
        """
        Apply a configurator to a field descriptor.

        Args:
            model_class: Model class owning the field
            field_name: Name of the field
            configurator: Callable receiving (record_descriptor, field_descriptor)

        Returns:
            The configured field descriptor
        """
        descriptor = self.register(model_class)
        field = self.describe_field(model_class, field_name)
        configurator(descriptor, field)
        return field

    def set_collection_name(self, model_class: type, name: str) -> RecordDescriptor:
        """
        Set a custom collection name.

        Raises:
            ConfigurationError: If a different custom name was already set
        """
        descriptor = self.register(model_class)
        if descriptor.custom_collection_name and descriptor.collection_name != name:
            raise ConfigurationError(
                f"{model_class.__name__} already uses collection name "
                f"'{descriptor.collection_name}', cannot rename it to '{name}'"
            )
        descriptor.collection_name = name
        descriptor.custom_collection_name = True
        return descriptor

    def __contains__(self, model_class: type) -> bool:
        return model_class in self._descriptors

    def __iter__(self) -> Iterator[RecordDescriptor]:
        return iter(list(self._descriptors.values()))


registry = SchemaRegistry()
