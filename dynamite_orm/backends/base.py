"""
Base store interface for Dynamite ORM.

Defines the async primitives the mapping layer needs from a key-value
document store. Items are plain dicts keyed by storage attribute names.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Literal, Optional, Sequence, TYPE_CHECKING

from dynamite_orm.exceptions import BatchSizeError

if TYPE_CHECKING:
    from dynamite_orm.query.expressions import CompiledFilter, CompiledProjection

DEFAULT_BATCH_SIZE = 25


@dataclass
class KeyAttribute:
    """One attribute of a collection's key schema."""

    name: str
    key_type: Literal["HASH", "RANGE"] = "HASH"
    attribute_type: str = "S"


@dataclass
class ScanPage:
    """A bounded page of scan results and the cursor to continue from."""

    items: list[dict[str, Any]]
    cursor: Optional[Any] = None


@dataclass
class WriteOperation:
    """A put or delete queued for an atomic batch."""

    kind: Literal["put", "delete"]
    collection: str
    item: Optional[dict[str, Any]] = None
    key: Optional[dict[str, Any]] = None

    @classmethod
    def put(cls, collection: str, item: dict[str, Any]) -> "WriteOperation":
        return cls(kind="put", collection=collection, item=item)

    @classmethod
    def delete(cls, collection: str, key: dict[str, Any]) -> "WriteOperation":
        return cls(kind="delete", collection=collection, key=key)


class Store(ABC):
    """
    Abstract base class for stores.

    Implementations must be safe to call from a single event loop; every
    method is a coroutine.

    Args:
        max_batch_size: Largest number of operations batch_apply accepts
    """

    def __init__(self, max_batch_size: int = DEFAULT_BATCH_SIZE):
        self.max_batch_size = max_batch_size

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Store identifier (e.g., 'dynamodb', 'memory')."""
        raise NotImplementedError

    @abstractmethod
    async def put_item(self, collection: str, item: dict[str, Any]) -> None:
        """Insert or replace an item by its key attributes."""
        pass

    @abstractmethod
    async def delete_item(self, collection: str, key: dict[str, Any]) -> None:
        """Remove an item by key. Missing items are not an error."""
        pass

    @abstractmethod
    async def get_item(self, collection: str, key: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Fetch an item by key, or None."""
        pass

    @abstractmethod
    async def scan(
        self,
        collection: str,
        filter: Optional["CompiledFilter"] = None,
        projection: Optional["CompiledProjection"] = None,
        cursor: Optional[Any] = None,
    ) -> ScanPage:
        """
        Return one page of items matching filter.

        Args:
            collection: Collection to scan
            filter: Compiled filter, None for all items
            projection: Compiled projection, None for full items
            cursor: Cursor from the previous page, None to start

        Returns:
            ScanPage whose cursor is None when the scan is exhausted
        """
        pass

    @abstractmethod
    async def batch_apply(self, operations: Sequence[WriteOperation]) -> None:
        """
        Apply puts and deletes atomically.

        Raises:
            BatchSizeError: If more than max_batch_size operations are given
            TransactionError: If the store rejected the batch
        """
        pass

    @abstractmethod
    async def create_collection(
        self,
        name: str,
        key_schema: Sequence[KeyAttribute],
        secondary_indexes: Optional[Sequence[dict[str, Any]]] = None,
    ) -> None:
        """Create a collection. Already existing collections are left as they are."""
        pass

    async def close(self) -> None:
        """
        Close connections and cleanup resources.

        Optional method for stores with persistent connections.
        """
        pass

    def check_batch_size(self, operations: Sequence[WriteOperation]) -> None:
        if len(operations) > self.max_batch_size:
            raise BatchSizeError(
                f"Batch of {len(operations)} operations exceeds the maximum "
                f"of {self.max_batch_size}"
            )
