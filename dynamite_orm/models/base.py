"""
Base model class for Dynamite ORM.

Provides an ActiveRecord-style interface over a key-value document store.
Field values live in a per-instance value buffer holding the stored
representation; attribute access runs the field pipelines.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, ClassVar, Iterable, Optional, TYPE_CHECKING

from dynamite_orm.backends.base import WriteOperation
from dynamite_orm.exceptions import NotConnectedError, PersistenceError, ValidationError
from dynamite_orm.models.decorators import class_or_instance_method
from dynamite_orm.models.fields import (
    UNSET,
    FieldAttribute,
    FieldDeclaration,
    FieldDescriptor,
    is_absent,
)
from dynamite_orm.models.hooks import run_hooks
from dynamite_orm.models.registry import RecordDescriptor, registry
from dynamite_orm.models.relations import RelationAttribute

if TYPE_CHECKING:
    from dynamite_orm.client import Dynamite
    from dynamite_orm.query.base import QueryBuilder
    from dynamite_orm.query.relations import SyncResult
    from dynamite_orm.transaction import Transaction


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string, the stored timestamp format."""
    return datetime.now(timezone.utc).isoformat()


class Model:
    """
    Base model class for Dynamite ORM.

    Example:
        >>> class User(TimestampMixin, Model):
        ...     id = Field(PrimaryKey(), Default(lambda: str(uuid4())))
        ...     name = Field(NotNull())
        ...     email = Field(Mutate(str.lower), Validate(is_email))
        ...     orders = HasMany(lambda: Order, "user_id")
        ...
        >>> user = await User.create({"name": "Alice", "email": "A@X.COM"})
        >>> user.email
        'a@x.com'
        >>> users = await User.where({"age": {"gte": 18}}, include={"orders": True})

        Alternative syntax using class parameter:
        >>> class Person(Model, collection="people"):
        ...     id = Field(PrimaryKey())
    """

    # Client binding, set by Dynamite.connect()
    model_client: ClassVar[Optional["Dynamite"]] = None

    # Hook lists (populated by __init_subclass__)
    _before_save_hooks: ClassVar[list[Callable[["Model"], Any]]] = []
    _after_save_hooks: ClassVar[list[Callable[["Model"], Any]]] = []
    _after_load_hooks: ClassVar[list[Callable[["Model"], Any]]] = []

    def __init_subclass__(cls, collection: Optional[str] = None, **kwargs: Any):
        """
        Register the schema and collect hooks when a model class is defined.

        Args:
            collection: Optional collection name (alternative to @Name)
            **kwargs: Additional arguments passed to parent
        """
        super().__init_subclass__(**kwargs)

        registry.register(cls)

        # Field declarations from mixins and parent models, base-most first
        declarations: dict[str, FieldDeclaration] = {}
        for base in reversed(cls.__mro__):
            for name, attr in vars(base).items():
                if isinstance(attr, FieldDeclaration):
                    declarations[name] = attr
                elif isinstance(attr, (FieldAttribute, RelationAttribute)):
                    declarations[name] = attr.declaration
                elif name in declarations:
                    del declarations[name]

        for name, declaration in declarations.items():
            declaration.apply(cls, name)
            setattr(cls, name, declaration.attribute(name))

        if collection is not None:
            registry.set_collection_name(cls, collection)

        # Reset hook lists for this specific subclass
        cls._before_save_hooks = []
        cls._after_save_hooks = []
        cls._after_load_hooks = []

        for attr_name in dir(cls):
            # Skip special Python attributes (double underscore)
            if attr_name.startswith('__'):
                continue
            attr = vars_lookup(cls, attr_name)
            if not callable(attr):
                continue
            if getattr(attr, '_is_before_save_hook', False):
                cls._before_save_hooks.append(attr)
            elif getattr(attr, '_is_after_save_hook', False):
                cls._after_save_hooks.append(attr)
            elif getattr(attr, '_is_after_load_hook', False):
                cls._after_load_hooks.append(attr)

    def __init__(self, data: Optional[dict[str, Any]] = None, **kwargs: Any):
        """
        Build a new, unsaved record.

        Declared fields run their write pipelines; absent fields with a
        default get it. Undeclared keys are kept as extra attributes.
        """
        self._reset_state()
        values = {**(data or {}), **kwargs}
        descriptor = self.describe()

        for field in descriptor.scalar_fields():
            if field.name in values:
                self.set_value(field.name, values.pop(field.name))
            elif field.has_default:
                self.set_value(field.name, UNSET)

        for name, value in values.items():
            if name in descriptor.fields:
                self.set_relation(name, self._build_related(descriptor.fields[name], value))
            elif value is not UNSET:
                self._extra[name] = value

    @staticmethod
    def _build_related(field: FieldDescriptor, value: Any) -> Any:
        """Turn plain related data, as produced by to_dict(), into instances."""
        if value is None:
            return None
        target = field.relation.resolve_target()

        def build(entry: Any) -> Any:
            return entry if isinstance(entry, Model) else target(entry)

        if field.relation.is_to_many:
            return [build(entry) for entry in value]
        return build(value)

    def _reset_state(self) -> None:
        self._values: dict[str, Any] = {}
        self._relations: dict[str, Any] = {}
        self._extra: dict[str, Any] = {}
        self._projection: Optional[frozenset[str]] = None
        self._is_persisted = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.to_dict()!r})"

    # === Schema and client access ===

    @classmethod
    def describe(cls) -> RecordDescriptor:
        """Return the record descriptor registered for this class."""
        return registry.register(cls)

    @classmethod
    def _get_client(cls) -> "Dynamite":
        """
        Get the client this model is bound to.

        Raises:
            NotConnectedError: If no connected client is bound
        """
        client = cls.model_client
        if client is not None and client.is_connected:
            return client

        raise NotConnectedError(
            f"{cls.__name__} is not bound to a connected client. "
            f"Call 'await Dynamite(store, models=[{cls.__name__}, ...]).connect()' first."
        )

    # === Value buffer ===

    def _field(self, name: str) -> FieldDescriptor:
        field = self.describe().fields.get(name)
        if field is None or field.relation is not None:
            raise AttributeError(f"{type(self).__name__} has no field '{name}'")
        return field

    def _stored_value(self, field: FieldDescriptor) -> Any:
        stored = self._values.get(field.name, UNSET)
        if is_absent(stored) and field.has_default and self._projection is None:
            stored = field.apply_write(None, UNSET)
            self._values[field.name] = stored
        return None if stored is UNSET else stored

    def get_value(self, name: str) -> Any:
        """Read a field through its read pipeline, realizing its default if absent."""
        field = self._field(name)
        stored = self._stored_value(field)
        if stored is None:
            return None
        return field.apply_read(stored)

    def set_value(self, name: str, value: Any) -> None:
        """
        Assign a field through its write pipeline.

        The buffer is only updated when the whole pipeline succeeds.
        """
        field = self._field(name)
        self._values[name] = field.apply_write(self._values.get(name), value)

    def set_relation(self, name: str, value: Any) -> None:
        """Attach loaded related records (a list, a single record, or None)."""
        field = self.describe().fields.get(name)
        if field is None or field.relation is None:
            raise AttributeError(f"{type(self).__name__} has no relation '{name}'")
        self._relations[name] = value

    def assign(self, changes: dict[str, Any]) -> "Model":
        """
        Assign several fields at once.

        Every value is run through its pipeline before any is stored, so a
        rejected value leaves the instance unchanged. UNSET values are skipped.
        """
        staged: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        descriptor = self.describe()
        for name, value in changes.items():
            if value is UNSET:
                continue
            field = descriptor.fields.get(name)
            if field is None:
                extra[name] = value
            elif field.relation is not None:
                raise AttributeError(f"Cannot assign relation '{name}' through assign()")
            else:
                staged[name] = field.apply_write(self._values.get(name), value)
        self._values.update(staged)
        self._extra.update(extra)
        return self

    # === Serialization ===

    def to_dict(self) -> dict[str, Any]:
        """
        Plain-dict form of the record.

        Absent scalar values are skipped. Relations appear only once they
        have been loaded, as a list, a dict or None.
        """
        descriptor = self.describe()
        result: dict[str, Any] = {}
        for field in descriptor.scalar_fields():
            if self._projection is not None and field.storage_name not in self._projection:
                continue
            value = self.get_value(field.name)
            if value is not None:
                result[field.name] = value

        for name, value in self._extra.items():
            if self._projection is not None and name not in self._projection:
                continue
            if value is not None:
                result.setdefault(name, value)

        for field in descriptor.relation_fields():
            if field.name not in self._relations:
                continue
            related = self._relations[field.name]
            if related is None:
                result[field.name] = None
            elif isinstance(related, list):
                result[field.name] = [record.to_dict() for record in related]
            else:
                result[field.name] = related.to_dict()
        return result

    def to_item(self) -> dict[str, Any]:
        """Store form of the record, keyed by storage names."""
        item = {k: v for k, v in self._extra.items() if v is not None}
        for field in self.describe().scalar_fields():
            value = self._stored_value(field)
            if value is not None:
                item[field.storage_name] = value
        return item

    def key(self) -> dict[str, Any]:
        """
        Key attributes of this record in storage form.

        Raises:
            PersistenceError: If a key value is missing
        """
        key = {}
        for field in self.describe().key_fields:
            value = self._stored_value(field)
            if is_absent(value):
                raise PersistenceError(
                    f"{type(self).__name__} has no value for key field '{field.name}'"
                )
            key[field.storage_name] = value
        return key

    @classmethod
    def from_item(cls, item: dict[str, Any], projection: Optional[Iterable[str]] = None) -> "Model":
        """
        Build a persisted instance from a store item.

        Values are loaded as stored; write pipelines do not run.
        """
        instance = cls.__new__(cls)
        instance._reset_state()
        descriptor = cls.describe()
        by_storage_name = {f.storage_name: f for f in descriptor.scalar_fields()}
        for attribute, value in item.items():
            field = by_storage_name.get(attribute)
            if field is not None:
                instance._values[field.name] = value
            else:
                instance._extra[attribute] = value
        if projection is not None:
            instance._projection = frozenset(projection)
        instance._is_persisted = True
        return instance

    @classmethod
    async def load(cls, item: dict[str, Any], projection: Optional[Iterable[str]] = None) -> "Model":
        """from_item() followed by the after_load hooks."""
        instance = cls.from_item(item, projection)
        await run_hooks(cls._after_load_hooks, instance)
        return instance

    # === Persistence ===

    def validate(self) -> None:
        """
        Run persist-time checks: required fields, then lazy validators.

        Raises:
            ValidationError: On the first failing field
        """
        for field in self.describe().scalar_fields():
            if not field.nullable and is_absent(self._stored_value(field)):
                raise ValidationError(f"Field '{field.name}' is required", field=field.name)
            if field.lazy_validators:
                field.run_lazy_validators(self.get_value(field.name))

    async def save(self, tx: Optional["Transaction"] = None) -> "Model":
        """
        Validate and write this record.

        New records get their created timestamps; updated timestamps are
        refreshed on every save. If the write fails, or its transaction is
        discarded, the instance returns to its state before the call.

        Args:
            tx: Optional transaction to queue the write on

        Returns:
            Self for method chaining

        Raises:
            ValidationError: If a required field is missing or a lazy validator fails
        """
        return await self._persist(self._snapshot(), tx)

    def _snapshot(self) -> tuple[dict[str, Any], dict[str, Any]]:
        return dict(self._values), dict(self._extra)

    def _restore(self, snapshot: tuple[dict[str, Any], dict[str, Any]]) -> None:
        values, extra = snapshot
        self._values = dict(values)
        self._extra = dict(extra)

    async def _persist(
        self,
        snapshot: tuple[dict[str, Any], dict[str, Any]],
        tx: Optional["Transaction"] = None,
    ) -> "Model":
        cls = type(self)
        try:
            client = cls._get_client()
            descriptor = cls.describe()
            if self._projection is not None:
                raise PersistenceError(
                    f"Cannot save {cls.__name__} loaded with an attribute projection"
                )

            primary_key = descriptor.primary_key
            is_new = not self._is_persisted or is_absent(self._values.get(primary_key.name))

            now = utc_now()
            for field in descriptor.scalar_fields():
                if field.is_created_timestamp and is_new and is_absent(self._values.get(field.name)):
                    self.set_value(field.name, now)
                if field.is_updated_timestamp:
                    self.set_value(field.name, now)

            await run_hooks(cls._before_save_hooks, self)
            self.validate()

            operation = WriteOperation.put(descriptor.collection_name, self.to_item())
            if tx is not None:
                tx.add(
                    operation,
                    on_commit=self._after_save,
                    on_rollback=lambda: self._restore(snapshot),
                )
            else:
                await client.store.put_item(operation.collection, operation.item or {})
        except BaseException:
            self._restore(snapshot)
            raise

        if tx is None:
            await self._after_save()
        return self

    async def _after_save(self) -> None:
        self._is_persisted = True
        await run_hooks(type(self)._after_save_hooks, self)

    @class_or_instance_method
    async def update(
        cls,
        changes: dict[str, Any],
        filter: Optional[dict[str, Any]] = None,
        tx: Optional["Transaction"] = None,
    ) -> int:
        """
        Update every record matching filter.

        Args:
            changes: Field values to assign
            filter: Structural filter selecting the records
            tx: Optional transaction to queue the writes on

        Returns:
            Number of records updated
        """
        records = await cls.where(filter or {})
        await asyncio.gather(*(record.update(changes, tx=tx) for record in records))
        return len(records)

    @update.instancemethod
    async def update(self, changes: dict[str, Any], tx: Optional["Transaction"] = None) -> "Model":
        """Assign changes through the field pipelines, then save()."""
        snapshot = self._snapshot()
        self.assign(changes)
        return await self._persist(snapshot, tx)

    async def destroy(self, tx: Optional["Transaction"] = None) -> None:
        """
        Delete this record.

        Records with a soft-delete field are stamped and saved instead of
        being removed.
        """
        self.key()
        soft_delete = self.describe().soft_delete_field
        if soft_delete is not None:
            snapshot = self._snapshot()
            self.set_value(soft_delete.name, utc_now())
            await self._persist(snapshot, tx)
            return
        await self.force_destroy(tx=tx)

    async def force_destroy(self, tx: Optional["Transaction"] = None) -> None:
        """Physically remove this record, regardless of soft-delete configuration."""
        client = type(self)._get_client()
        operation = WriteOperation.delete(self.describe().collection_name, self.key())
        if tx is not None:
            tx.add(operation, on_commit=self._after_delete)
        else:
            await client.store.delete_item(operation.collection, operation.key or {})
            await self._after_delete()

    async def _after_delete(self) -> None:
        self._is_persisted = False

    @classmethod
    async def create(
        cls,
        data: Optional[dict[str, Any]] = None,
        tx: Optional["Transaction"] = None,
        **kwargs: Any,
    ) -> "Model":
        """
        Create and save a new record in one operation.

        Example:
            >>> role = await Role.create({"name": "admin"})
        """
        instance = cls(data, **kwargs)
        await instance.save(tx=tx)
        return instance

    @classmethod
    async def delete(cls, filter: Optional[dict[str, Any]] = None, tx: Optional["Transaction"] = None) -> int:
        """
        Physically remove every record matching filter, trashed ones included.

        Returns:
            Number of records removed
        """
        records = await cls.where(filter or {}).with_trashed()
        await asyncio.gather(*(record.force_destroy(tx=tx) for record in records))
        return len(records)

    @classmethod
    async def get(cls, with_trashed: bool = False, **key: Any) -> Optional["Model"]:
        """
        Fetch one record by its key fields.

        Example:
            >>> user = await User.get(id="u1")
        """
        client = cls._get_client()
        descriptor = cls.describe()
        storage_key = {descriptor.storage_name(name): value for name, value in key.items()}
        item = await client.store.get_item(descriptor.collection_name, storage_key)
        if item is None:
            return None
        soft_delete = descriptor.soft_delete_field
        if soft_delete is not None and not with_trashed and item.get(soft_delete.storage_name) is not None:
            return None
        return await cls.load(item)

    # === Queries ===

    @classmethod
    def query(cls) -> "QueryBuilder":
        """Create an empty query builder for this model."""
        from dynamite_orm.query.base import QueryBuilder
        return QueryBuilder(cls)

    @classmethod
    def where(cls, *args: Any, **kwargs: Any) -> "QueryBuilder":
        """
        Create a lazy, awaitable query.

        Accepts a structural filter, a (field, value) pair or a
        (field, operator, value) triple, an optional options dict, and
        keyword options or Django-style lookups.

        Examples:
            >>> adults = await User.where({"age": {"gte": 18}})
            >>> admins = await User.where("role", "admin")
            >>> seniors = await User.where("age", ">=", 65, order="DESC", limit=10)
            >>> active = await User.where(status="active", age__lt=30)
            >>> users = await User.where({}, {"include": {"orders": True}})
        """
        return cls.query().filter(*args, **kwargs)

    @classmethod
    async def first(cls, *args: Any, **kwargs: Any) -> Optional["Model"]:
        """First matching record, or None."""
        return await cls.where(*args, **kwargs).first()

    @classmethod
    async def last(cls, *args: Any, **kwargs: Any) -> Optional["Model"]:
        """Last matching record in sort order, or None."""
        return await cls.where(*args, **kwargs).last()

    @classmethod
    def with_trashed(cls, *args: Any, **kwargs: Any) -> "QueryBuilder":
        """Like where(), including soft-deleted records."""
        return cls.where(*args, **kwargs).with_trashed()

    @classmethod
    def only_trashed(cls, *args: Any, **kwargs: Any) -> "QueryBuilder":
        """Like where(), returning only soft-deleted records."""
        return cls.where(*args, **kwargs).only_trashed()

    @classmethod
    async def all(cls) -> list["Model"]:
        """
        Get all records.

        This is a convenience method equivalent to await where().all()
        """
        return await cls.where().all()

    # === Many-to-many ===

    async def attach(
        self,
        related_type: type["Model"],
        related_id: Any,
        extra: Optional[dict[str, Any]] = None,
        tx: Optional["Transaction"] = None,
    ) -> None:
        """Link this record to a related record through the junction collection."""
        from dynamite_orm.query.relations import JunctionManager
        await JunctionManager.for_instance(self, related_type).attach(related_id, extra, tx=tx)

    async def detach(
        self,
        related_type: type["Model"],
        related_id: Any,
        tx: Optional["Transaction"] = None,
    ) -> None:
        """Remove the junction row linking this record to a related record."""
        from dynamite_orm.query.relations import JunctionManager
        await JunctionManager.for_instance(self, related_type).detach(related_id, tx=tx)

    async def sync(
        self,
        related_type: type["Model"],
        related_ids: Iterable[Any],
        tx: Optional["Transaction"] = None,
    ) -> "SyncResult":
        """
        Make the set of linked related ids exactly related_ids.

        Only the differences are written: missing links are attached,
        extra links detached, existing ones left alone.
        """
        from dynamite_orm.query.relations import JunctionManager
        return await JunctionManager.for_instance(self, related_type).sync(related_ids, tx=tx)


def vars_lookup(cls: type, name: str) -> Any:
    """Find a raw class attribute along the MRO without triggering descriptors."""
    for base in cls.__mro__:
        if name in vars(base):
            return vars(base)[name]
    return None
