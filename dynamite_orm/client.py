"""
Client and connection lifecycle for Dynamite ORM.

The client owns the store, binds model classes to it on connect and
unbinds them on disconnect. Model operations issued while no connected
client is bound raise NotConnectedError.
"""

import inspect
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Iterable, TYPE_CHECKING

from dynamite_orm.backends.base import DEFAULT_BATCH_SIZE, KeyAttribute, Store
from dynamite_orm.exceptions import ConfigurationError
from dynamite_orm.models.relations import RelationKind
from dynamite_orm.transaction import Transaction

if TYPE_CHECKING:
    from dynamite_orm.models.base import Model

logger = logging.getLogger(__name__)


class Dynamite:
    """
    Entry point tying model classes to a store.

    Args:
        store: Store implementation (InMemoryStore, DynamoDBStore, ...)
        models: Model classes to bind and provision
        batch_size: Maximum number of operations per transaction

    Example:
        >>> client = Dynamite(DynamoDBStore(region_name="us-east-1"), models=[User, Order])
        >>> await client.connect()
        >>> await User.create({"name": "Alice"})
        >>> await client.disconnect()

        Or as an async context manager:
        >>> async with Dynamite(InMemoryStore(), models=[User]) as client:
        ...     await User.where()
    """

    def __init__(
        self,
        store: Store,
        models: Iterable[type["Model"]] = (),
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        if batch_size < 1:
            raise ConfigurationError(f"batch_size must be at least 1, got {batch_size}")
        self.store = store
        self.models = list(models)
        self.batch_size = batch_size
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _key_schema(self, model: type["Model"]) -> list[KeyAttribute]:
        descriptor = model.describe()
        schema = []
        for field in descriptor.key_fields:
            key_type = "RANGE" if field.is_sort_key else "HASH"
            schema.append(KeyAttribute(field.storage_name, key_type, field.attribute_type))
        return schema

    def _junction_collections(self) -> list[str]:
        names: list[str] = []
        for model in self.models:
            for field in model.describe().relation_fields():
                relation = field.relation
                if relation.kind != RelationKind.MANY_TO_MANY:
                    continue
                if relation.junction_collection_name and relation.junction_collection_name not in names:
                    names.append(relation.junction_collection_name)
        return names

    async def connect(self) -> "Dynamite":
        """
        Provision collections and bind the models to this client.

        Raises:
            ConfigurationError: If a model declares no partition key
        """
        schemas = {model: self._key_schema(model) for model in self.models}

        for model, key_schema in schemas.items():
            await self.store.create_collection(model.describe().collection_name, key_schema)
        for junction in self._junction_collections():
            await self.store.create_collection(junction, [KeyAttribute("id")])

        for model in self.models:
            model.model_client = self
        self._connected = True
        logger.info(
            f"Connected {self.store.backend_name} store with {len(self.models)} models"
        )
        return self

    async def disconnect(self) -> None:
        """Unbind the models and close the store."""
        for model in self.models:
            if model.model_client is self:
                model.model_client = None
        self._connected = False
        await self.store.close()
        logger.info(f"Disconnected {self.store.backend_name} store")

    async def __aenter__(self) -> "Dynamite":
        return await self.connect()

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.disconnect()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """
        Collect writes and commit them atomically on exit.

        Writes join the transaction by passing tx=... to create, save,
        update, destroy and the junction operations. An exception inside
        the block discards every queued write.

        Example:
            >>> async with client.transaction() as tx:
            ...     await Account.create({"id": "a"}, tx=tx)
            ...     await Account.create({"id": "b"}, tx=tx)
        """
        tx = Transaction(self.store, self.batch_size)
        try:
            yield tx
        except BaseException:
            tx.discard()
            raise
        await tx.commit()

    async def tx(self, callback: Callable[[Transaction], Any]) -> Any:
        """
        Run callback(tx) inside a transaction and return its result.

        Example:
            >>> await client.tx(lambda tx: user.update({"name": "Bo"}, tx=tx))
        """
        async with self.transaction() as tx:
            result = callback(tx)
            if inspect.isawaitable(result):
                result = await result
        return result

    def __repr__(self) -> str:
        state = "connected" if self._connected else "disconnected"
        return f"<Dynamite {self.store.backend_name} {state}>"
