"""
In-memory store for Dynamite ORM.

Simple dict-based storage for testing and examples without requiring
external services. Scans are paged like DynamoDB: a page reads up to
page_size items, then applies the filter, so pages may come back short or
empty while a cursor is still returned.
"""

from copy import deepcopy
from typing import Any, Optional, Sequence, TYPE_CHECKING

from dynamite_orm.backends.base import KeyAttribute, ScanPage, Store, WriteOperation
from dynamite_orm.exceptions import PersistenceError

if TYPE_CHECKING:
    from dynamite_orm.query.expressions import CompiledFilter, CompiledProjection


class InMemoryStore(Store):
    """
    In-memory store using Python dicts.

    Stores all data in memory. Data is lost when the process ends.
    Useful for testing and examples.

    Args:
        page_size: Number of items read per scan page
        max_batch_size: Largest atomic batch accepted

    Example:
        >>> store = InMemoryStore(page_size=2)
        >>> client = Dynamite(store, models=[User])
        >>> await client.connect()
    """

    def __init__(self, page_size: int = 100, max_batch_size: int = 25):
        super().__init__(max_batch_size=max_batch_size)
        self.page_size = page_size
        # Storage: {collection: {key_tuple: item}}
        self._storage: dict[str, dict[tuple, dict[str, Any]]] = {}
        self._key_schemas: dict[str, list[KeyAttribute]] = {}

    @property
    def backend_name(self) -> str:
        """Store identifier."""
        return 'memory'

    def _get_storage(self, collection: str) -> dict[tuple, dict[str, Any]]:
        if collection not in self._storage:
            raise PersistenceError(f"Collection '{collection}' does not exist")
        return self._storage[collection]

    def _key_of(self, collection: str, item: dict[str, Any]) -> tuple:
        key = []
        for attribute in self._key_schemas[collection]:
            if item.get(attribute.name) is None:
                raise PersistenceError(
                    f"Missing key attribute '{attribute.name}' for collection '{collection}'"
                )
            key.append(item[attribute.name])
        return tuple(key)

    async def create_collection(
        self,
        name: str,
        key_schema: Sequence[KeyAttribute],
        secondary_indexes: Optional[Sequence[dict[str, Any]]] = None,
    ) -> None:
        if name in self._storage:
            return
        self._storage[name] = {}
        self._key_schemas[name] = list(key_schema)

    async def put_item(self, collection: str, item: dict[str, Any]) -> None:
        storage = self._get_storage(collection)
        storage[self._key_of(collection, item)] = deepcopy(item)

    async def delete_item(self, collection: str, key: dict[str, Any]) -> None:
        storage = self._get_storage(collection)
        storage.pop(self._key_of(collection, key), None)

    async def get_item(self, collection: str, key: dict[str, Any]) -> Optional[dict[str, Any]]:
        storage = self._get_storage(collection)
        item = storage.get(self._key_of(collection, key))
        return deepcopy(item) if item is not None else None

    async def scan(
        self,
        collection: str,
        filter: Optional["CompiledFilter"] = None,
        projection: Optional["CompiledProjection"] = None,
        cursor: Optional[Any] = None,
    ) -> ScanPage:
        storage = self._get_storage(collection)
        records = list(storage.values())

        offset = 0
        if cursor and isinstance(cursor, dict) and "offset" in cursor:
            offset = cursor["offset"]

        window = records[offset:offset + self.page_size]
        items = []
        for record in window:
            if filter is not None and not filter.matches(record):
                continue
            item = projection.apply(record) if projection is not None else record
            items.append(deepcopy(item))

        next_offset = offset + self.page_size
        next_cursor = {"offset": next_offset} if next_offset < len(records) else None
        return ScanPage(items=items, cursor=next_cursor)

    async def batch_apply(self, operations: Sequence[WriteOperation]) -> None:
        self.check_batch_size(operations)

        # Resolve every key before the first write
        staged = []
        for operation in operations:
            storage = self._get_storage(operation.collection)
            source = operation.item if operation.kind == "put" else operation.key
            staged.append((operation, storage, self._key_of(operation.collection, source or {})))

        for operation, storage, key in staged:
            if operation.kind == "put":
                storage[key] = deepcopy(operation.item)
            else:
                storage.pop(key, None)

    def clear(self, collection: Optional[str] = None) -> None:
        """
        Remove stored items.

        Args:
            collection: Optional collection to clear. If None, clears all.
        """
        if collection:
            if collection in self._storage:
                self._storage[collection] = {}
        else:
            for name in self._storage:
                self._storage[name] = {}
