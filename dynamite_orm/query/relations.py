"""
Relation loading and junction management for Dynamite ORM.

Includes are resolved in batches: one query per relation per level, never
one per parent record. Parents are then matched to related records on the
client side.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Iterable, Optional, Union, TYPE_CHECKING

from dynamite_orm.backends.base import WriteOperation
from dynamite_orm.exceptions import PersistenceError, RelationError
from dynamite_orm.models.fields import is_absent
from dynamite_orm.models.relations import RelationDescriptor, RelationKind
from dynamite_orm.query.base import run_query, scan_all
from dynamite_orm.query.expressions import FilterCompiler
from dynamite_orm.query.options import IncludeOptions

if TYPE_CHECKING:
    from dynamite_orm.models.base import Model
    from dynamite_orm.transaction import Transaction

logger = logging.getLogger(__name__)


def raw_value(record: "Model", name: str) -> Any:
    """Stored value of a field or extra attribute, used for key matching."""
    field = record.describe().fields.get(name)
    if field is not None and field.relation is None:
        value = record._stored_value(field)
    else:
        value = record._extra.get(name)
    return None if is_absent(value) else value


def _distinct(values: Iterable[Any]) -> list[Any]:
    seen: list[Any] = []
    for value in values:
        if value is not None and value not in seen:
            seen.append(value)
    return seen


def _where(*filters: Optional[dict[str, Any]]) -> dict[str, Any]:
    parts = [f for f in filters if f]
    if len(parts) == 1:
        return parts[0]
    return {"and": parts}


def _page(records: list["Model"], options: IncludeOptions) -> list["Model"]:
    start = options.start
    end = start + options.limit if options.limit is not None else None
    return records[start:end]


def _child_options(options: IncludeOptions, join_field: str) -> IncludeOptions:
    """Options for the batched related query: paging is applied per parent afterwards."""
    update: dict[str, Any] = {"limit": None, "skip": None, "offset": None}
    if options.attributes and join_field not in options.attributes:
        update["attributes"] = [*options.attributes, join_field]
    return options.model_copy(update=update)


async def resolve_includes(
    parents: list["Model"],
    include: dict[str, Union[bool, IncludeOptions]],
    parent_type: type["Model"],
) -> None:
    """
    Load the requested relations onto parents.

    Relations are validated before any query runs, then loaded
    concurrently. To-many relations become lists, to-one relations a record
    or None.

    Raises:
        RelationError: If a requested relation is not declared on parent_type
    """
    descriptor = parent_type.describe()
    requested = []
    for name, spec in include.items():
        if spec is False:
            continue
        field = descriptor.get_relation(name)
        if field is None:
            raise RelationError(f"{parent_type.__name__} has no relation '{name}'")
        options = spec if isinstance(spec, IncludeOptions) else IncludeOptions()
        requested.append((name, field.relation, options))

    if not parents:
        return
    await asyncio.gather(
        *(_load_relation(parents, name, relation, options) for name, relation, options in requested)
    )


async def _load_relation(
    parents: list["Model"],
    name: str,
    relation: RelationDescriptor,
    options: IncludeOptions,
) -> None:
    if relation.kind == RelationKind.MANY_TO_MANY:
        await _load_many_to_many(parents, name, relation, options)
        return

    target = relation.resolve_target()
    keys = _distinct(raw_value(parent, relation.local_key) for parent in parents)

    groups: dict[Any, list["Model"]] = defaultdict(list)
    if keys:
        children = await run_query(
            target,
            _where({relation.foreign_key: {"in": keys}}, options.where),
            _child_options(options, relation.foreign_key),
        )
        logger.debug(f"Loaded {len(children)} {target.__name__} records for '{name}'")
        for child in children:
            groups[raw_value(child, relation.foreign_key)].append(child)

    for parent in parents:
        key = raw_value(parent, relation.local_key)
        related = _page(groups.get(key, []) if key is not None else [], options)
        if relation.is_to_many:
            parent.set_relation(name, related)
        else:
            parent.set_relation(name, related[0] if related else None)


async def _load_many_to_many(
    parents: list["Model"],
    name: str,
    relation: RelationDescriptor,
    options: IncludeOptions,
) -> None:
    target = relation.resolve_target()
    junction = relation.junction_collection_name or ""
    local_column = relation.junction_local_key or ""
    related_column = relation.junction_related_key or ""

    keys = _distinct(raw_value(parent, relation.local_key) for parent in parents)
    links: dict[Any, list[Any]] = defaultdict(list)
    children: list["Model"] = []
    if keys:
        store = target._get_client().store
        rows = await scan_all(
            store, junction, FilterCompiler().compile({local_column: {"in": keys}})
        )
        for row in rows:
            links[row.get(local_column)].append(row.get(related_column))

        related_ids = _distinct(row.get(related_column) for row in rows)
        if related_ids:
            children = await run_query(
                target,
                _where({relation.related_key: {"in": related_ids}}, options.where),
                _child_options(options, relation.related_key),
            )
        logger.debug(f"Loaded {len(children)} {target.__name__} records for '{name}' through {junction}")

    for parent in parents:
        linked = set(links.get(raw_value(parent, relation.local_key), []))
        related = [child for child in children if raw_value(child, relation.related_key) in linked]
        parent.set_relation(name, _page(related, options))


@dataclass
class SyncResult:
    """Related ids attached and detached by a sync."""

    attached: list[Any] = dataclass_field(default_factory=list)
    detached: list[Any] = dataclass_field(default_factory=list)


class JunctionManager:
    """
    Reads and writes junction rows for one record and one many-to-many relation.

    Junction rows are keyed by "{local_id}#{related_id}" and carry the
    relation's two junction columns plus any extra attributes.
    """

    def __init__(self, record: "Model", relation: RelationDescriptor):
        self.record = record
        self.relation = relation

    @classmethod
    def for_instance(cls, record: "Model", related_type: type["Model"]) -> "JunctionManager":
        """
        Find the many-to-many relation from record's class to related_type.

        Raises:
            PersistenceError: If record has not been saved
            RelationError: If no many-to-many relation targets related_type
        """
        if not record._is_persisted:
            raise PersistenceError(
                f"{type(record).__name__} must be saved before managing related records"
            )
        for field in record.describe().relation_fields():
            relation = field.relation
            if relation.kind == RelationKind.MANY_TO_MANY and relation.resolve_target() is related_type:
                return cls(record, relation)
        raise RelationError(
            f"{type(record).__name__} has no many-to-many relation to {related_type.__name__}"
        )

    @property
    def collection(self) -> str:
        return self.relation.junction_collection_name or ""

    @property
    def local_id(self) -> Any:
        value = raw_value(self.record, self.relation.local_key)
        if value is None:
            raise PersistenceError(
                f"{type(self.record).__name__} has no value for '{self.relation.local_key}'"
            )
        return value

    def row_id(self, related_id: Any) -> str:
        return f"{self.local_id}#{related_id}"

    async def _write(self, operation: WriteOperation, tx: Optional["Transaction"]) -> None:
        if tx is not None:
            tx.add(operation)
            return
        store = type(self.record)._get_client().store
        if operation.kind == "put":
            await store.put_item(operation.collection, operation.item or {})
        else:
            await store.delete_item(operation.collection, operation.key or {})

    async def attach(
        self,
        related_id: Any,
        extra: Optional[dict[str, Any]] = None,
        tx: Optional["Transaction"] = None,
    ) -> None:
        row = dict(extra or {})
        row.update({
            "id": self.row_id(related_id),
            self.relation.junction_local_key or "": self.local_id,
            self.relation.junction_related_key or "": related_id,
        })
        await self._write(WriteOperation.put(self.collection, row), tx)

    async def detach(self, related_id: Any, tx: Optional["Transaction"] = None) -> None:
        await self._write(WriteOperation.delete(self.collection, {"id": self.row_id(related_id)}), tx)

    async def linked_ids(self) -> list[Any]:
        """Related ids currently linked to the record, in scan order."""
        store = type(self.record)._get_client().store
        local_column = self.relation.junction_local_key or ""
        rows = await scan_all(
            store, self.collection, FilterCompiler().compile({local_column: self.local_id})
        )
        return _distinct(row.get(self.relation.junction_related_key or "") for row in rows)

    async def sync(self, related_ids: Iterable[Any], tx: Optional["Transaction"] = None) -> SyncResult:
        """Attach missing links and detach extra ones; unchanged links are not written."""
        wanted = _distinct(related_ids)
        current = await self.linked_ids()
        result = SyncResult(
            attached=[i for i in wanted if i not in current],
            detached=[i for i in current if i not in wanted],
        )
        await asyncio.gather(
            *(self.attach(related_id, tx=tx) for related_id in result.attached),
            *(self.detach(related_id, tx=tx) for related_id in result.detached),
        )
        logger.debug(
            f"Synced {self.collection} for {self.local_id}: "
            f"{len(result.attached)} attached, {len(result.detached)} detached"
        )
        return result
