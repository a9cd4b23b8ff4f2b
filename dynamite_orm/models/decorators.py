"""
Field configurators for Dynamite ORM.

Each configurator is a callable taking (record_descriptor, field_descriptor)
that sets metadata flags or pushes steps onto the field's pipelines. They
are passed to Field() in the order they should run:

    >>> class User(Model):
    ...     email = Field(NotNull(), Mutate(normalize_email), Validate(is_email))

Here the NotNull check runs first, then the mutation, then the email
validator sees the mutated value.
"""

import functools
import types
from typing import Any, Callable, Optional, Union, TYPE_CHECKING

from dynamite_orm.exceptions import ConfigurationError
from dynamite_orm.models.fields import FieldDescriptor, check_validator_result

if TYPE_CHECKING:
    from dynamite_orm.models.registry import RecordDescriptor


class Configurator:
    """Base class for field configurators."""

    def __call__(self, record: "RecordDescriptor", field: FieldDescriptor) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def _mark_partition_key(record: "RecordDescriptor", field: FieldDescriptor) -> None:
    existing = record.partition_key
    if existing is not None and existing is not field:
        raise ConfigurationError(
            f"{record.model_class.__name__} already has a partition key "
            f"'{existing.name}', cannot declare '{field.name}' as another one"
        )
    field.is_partition_key = True
    field.nullable = False


class PrimaryKey(Configurator):
    """
    Mark a field as the record identity and partition key.

    Example:
        >>> id = Field(PrimaryKey(), Default(lambda: str(uuid4())))
    """

    def __init__(self, attribute_type: str = "S"):
        self.attribute_type = attribute_type

    def __call__(self, record: "RecordDescriptor", field: FieldDescriptor) -> None:
        _mark_partition_key(record, field)
        field.is_primary_key = True
        field.attribute_type = self.attribute_type
        record.primary_key_field_name = field.name


class Index(Configurator):
    """Mark a field as the partition (hash) key of the collection."""

    def __init__(self, attribute_type: str = "S"):
        self.attribute_type = attribute_type

    def __call__(self, record: "RecordDescriptor", field: FieldDescriptor) -> None:
        _mark_partition_key(record, field)
        field.attribute_type = self.attribute_type


class IndexSort(Configurator):
    """
    Mark a field as the sort (range) key of the collection.

    A partition key must already be declared on the record type.
    """

    def __init__(self, attribute_type: str = "S"):
        self.attribute_type = attribute_type

    def __call__(self, record: "RecordDescriptor", field: FieldDescriptor) -> None:
        if record.partition_key is None:
            raise ConfigurationError(
                f"Cannot declare sort key '{field.name}' on "
                f"{record.model_class.__name__} without a partition key. "
                f"Declare a PrimaryKey() or Index() field first."
            )
        existing = record.sort_key
        if existing is not None and existing is not field:
            raise ConfigurationError(
                f"{record.model_class.__name__} already has a sort key "
                f"'{existing.name}', cannot declare '{field.name}' as another one"
            )
        field.is_sort_key = True
        field.nullable = False
        field.attribute_type = self.attribute_type


class Default(Configurator):
    """
    Default value for absent fields.

    A callable is treated as a factory and called once per absent value.
    """

    def __init__(self, value: Any):
        self.value = value

    def __call__(self, record: "RecordDescriptor", field: FieldDescriptor) -> None:
        if field.has_default:
            raise ConfigurationError(
                f"Duplicate Default on '{record.model_class.__name__}.{field.name}'"
            )
        field.default = self.value

    def __repr__(self) -> str:
        return f"Default({self.value!r})"


class Mutate(Configurator):
    """Transform assigned values. None passes through untouched."""

    def __init__(self, func: Callable[[Any], Any]):
        self.func = func

    def __call__(self, record: "RecordDescriptor", field: FieldDescriptor) -> None:
        func = self.func

        def mutate(current: Any, value: Any) -> Any:
            if value is None:
                return value
            return func(value)

        field.write_pipeline.append(mutate)


class Validate(Configurator):
    """
    Validate assigned values.

    Validators return True to accept or a message string to reject. With
    lazy=True they run right before persisting instead of on assignment.

    Example:
        >>> def is_email(value):
        ...     return "@" in str(value) or "Invalid email"
        >>> email = Field(Validate(is_email))
    """

    def __init__(
        self,
        validators: Union[Callable[[Any], Any], list[Callable[[Any], Any]]],
        lazy: bool = False,
    ):
        self.validators = list(validators) if isinstance(validators, (list, tuple)) else [validators]
        if not self.validators or not all(callable(v) for v in self.validators):
            raise ConfigurationError("Validate requires one or more callables")
        self.lazy = lazy

    def __call__(self, record: "RecordDescriptor", field: FieldDescriptor) -> None:
        if self.lazy:
            field.lazy_validators.extend(self.validators)
            return

        validators = self.validators
        name = field.name

        def validate(current: Any, value: Any) -> Any:
            for validator in validators:
                check_validator_result(name, validator(value))
            return value

        field.write_pipeline.append(validate)


class NotNull(Configurator):
    """Reject None and blank strings, and require the field at persist time."""

    def __init__(self, message: Optional[str] = None):
        self.message = message

    def __call__(self, record: "RecordDescriptor", field: FieldDescriptor) -> None:
        message = self.message or f"Field '{field.name}' cannot be empty"
        field.nullable = False

        def not_null(value: Any) -> Union[bool, str]:
            if value is None:
                return message
            if isinstance(value, str) and not value.strip():
                return message
            return True

        Validate(not_null)(record, field)


class Serialize(Configurator):
    """
    Convert values between the exposed and stored representations.

    from_db runs on read, to_db runs on assignment. None is never converted.
    """

    def __init__(
        self,
        from_db: Optional[Callable[[Any], Any]] = None,
        to_db: Optional[Callable[[Any], Any]] = None,
    ):
        self.from_db = from_db
        self.to_db = to_db

    def __call__(self, record: "RecordDescriptor", field: FieldDescriptor) -> None:
        from_db, to_db = self.from_db, self.to_db
        if from_db is not None:
            field.read_pipeline.append(lambda value: value if value is None else from_db(value))
        if to_db is not None:
            field.write_pipeline.append(
                lambda current, value: value if value is None else to_db(value)
            )


class Name(Configurator):
    """
    Custom storage name.

    Inside Field() it renames the stored attribute; used as a class
    decorator it sets the collection name.

    Example:
        >>> @Name("people")
        ... class Person(Model):
        ...     id = Field(PrimaryKey())
        ...     full_name = Field(Name("fullName"))
    """

    def __init__(self, label: str):
        if not label:
            raise ConfigurationError("Name requires a non-empty label")
        self.label = label

    def __call__(self, target: Any, field: Optional[FieldDescriptor] = None) -> Any:
        if field is None:
            from dynamite_orm.models.registry import registry
            registry.set_collection_name(target, self.label)
            return target

        if field.custom_name and field.storage_name != self.label:
            raise ConfigurationError(
                f"Field '{field.name}' already uses storage name "
                f"'{field.storage_name}', cannot rename it to '{self.label}'"
            )
        field.storage_name = self.label
        field.custom_name = True
        return None

    def __repr__(self) -> str:
        return f"Name({self.label!r})"


class Column(Configurator):
    """Plain field registration, optionally with a storage name."""

    def __init__(self, name: Optional[str] = None):
        self.name = name

    def __call__(self, record: "RecordDescriptor", field: FieldDescriptor) -> None:
        if self.name:
            Name(self.name)(record, field)


class CreatedAt(Configurator):
    """Stamp the field with the current time when the record is inserted."""

    def __call__(self, record: "RecordDescriptor", field: FieldDescriptor) -> None:
        field.is_created_timestamp = True


class UpdatedAt(Configurator):
    """Stamp the field with the current time on every persist."""

    def __call__(self, record: "RecordDescriptor", field: FieldDescriptor) -> None:
        field.is_updated_timestamp = True


class DeleteAt(Configurator):
    """Use the field as the soft-delete marker."""

    def __call__(self, record: "RecordDescriptor", field: FieldDescriptor) -> None:
        existing = record.soft_delete_field
        if existing is not None and existing is not field:
            raise ConfigurationError(
                f"{record.model_class.__name__} already has a soft-delete field "
                f"'{existing.name}'"
            )
        field.is_soft_delete_marker = True


class class_or_instance_method:
    """
    Descriptor dispatching to different functions for class and instance access.

    Example:
        >>> class User(Model):
        ...     @class_or_instance_method
        ...     async def update(cls, changes, filter): ...
        ...     @update.instancemethod
        ...     async def update(self, changes): ...
    """

    def __init__(self, class_func: Callable[..., Any]):
        self.class_func = class_func
        self.instance_func: Optional[Callable[..., Any]] = None
        functools.update_wrapper(self, class_func)  # type: ignore[arg-type]

    def instancemethod(self, func: Callable[..., Any]) -> "class_or_instance_method":
        self.instance_func = func
        return self

    def __get__(self, instance: Any, owner: type) -> Callable[..., Any]:
        if instance is None or self.instance_func is None:
            return types.MethodType(self.class_func, owner)
        return types.MethodType(self.instance_func, instance)
