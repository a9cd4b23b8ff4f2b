"""
Pytest configuration for Dynamite ORM tests.

Async tests run through the anyio pytest plugin on asyncio. The store
fixture records every call so tests can assert on the number of scans and
writes a query performs.
"""

from typing import Any, Optional, Sequence

import pytest

from dynamite_orm import Dynamite, InMemoryStore
from dynamite_orm.backends.base import WriteOperation


def pytest_configure(config):
    """Configure pytest-anyio to use only asyncio backend (trio not installed)."""
    config.option.anyio_backends = ["asyncio"]


@pytest.fixture
def anyio_backend():
    return "asyncio"


class RecordingStore(InMemoryStore):
    """In-memory store keeping a log of (operation, collection) calls."""

    def __init__(self, page_size: int = 2, max_batch_size: int = 25):
        super().__init__(page_size=page_size, max_batch_size=max_batch_size)
        self.calls: list[tuple[str, str]] = []

    def count(self, operation: str, collection: Optional[str] = None) -> int:
        return sum(
            1 for op, name in self.calls
            if op == operation and (collection is None or name == collection)
        )

    def reset_calls(self) -> None:
        self.calls.clear()

    async def put_item(self, collection: str, item: dict[str, Any]) -> None:
        self.calls.append(("put", collection))
        await super().put_item(collection, item)

    async def delete_item(self, collection: str, key: dict[str, Any]) -> None:
        self.calls.append(("delete", collection))
        await super().delete_item(collection, key)

    async def get_item(self, collection: str, key: dict[str, Any]) -> Optional[dict[str, Any]]:
        self.calls.append(("get", collection))
        return await super().get_item(collection, key)

    async def scan(self, collection, filter=None, projection=None, cursor=None):
        self.calls.append(("scan", collection))
        return await super().scan(collection, filter=filter, projection=projection, cursor=cursor)

    async def batch_apply(self, operations: Sequence[WriteOperation]) -> None:
        self.calls.append(("batch", ",".join(sorted({op.collection for op in operations}))))
        await super().batch_apply(operations)


@pytest.fixture
def store():
    """Recording in-memory store with a small page size to exercise pagination."""
    return RecordingStore(page_size=2)


@pytest.fixture
async def connect(anyio_backend, store):
    """
    Factory connecting a client for the given models.

    Every client created through it is disconnected after the test.
    """
    clients: list[Dynamite] = []

    async def _connect(*models, batch_size: int = 25) -> Dynamite:
        client = Dynamite(store, models=models, batch_size=batch_size)
        await client.connect()
        clients.append(client)
        store.reset_calls()
        return client

    yield _connect

    for client in clients:
        if client.is_connected:
            await client.disconnect()
