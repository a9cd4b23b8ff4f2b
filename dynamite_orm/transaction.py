"""
Transactions for Dynamite ORM.

A Transaction collects put and delete operations issued with tx=... and
applies them in one atomic store batch when it commits. Instances that
changed while queuing a write register a rollback, run when the batch is
discarded or rejected.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from dynamite_orm.backends.base import Store, WriteOperation
from dynamite_orm.exceptions import BatchSizeError, TransactionError

logger = logging.getLogger(__name__)

CommitCallback = Callable[[], Awaitable[Any]]
RollbackCallback = Callable[[], None]


class Transaction:
    """
    Queue of writes committed together.

    Created by Dynamite.transaction(); not meant to be built directly.

    Example:
        >>> async with client.transaction() as tx:
        ...     await User.create({"name": "Alice"}, tx=tx)
        ...     await order.destroy(tx=tx)
    """

    def __init__(self, store: Store, batch_size: int):
        self.store = store
        self.batch_size = batch_size
        self._operations: list[WriteOperation] = []
        self._callbacks: list[CommitCallback] = []
        self._rollbacks: list[RollbackCallback] = []
        self._closed = False

    @property
    def operations(self) -> list[WriteOperation]:
        return list(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def add(
        self,
        operation: WriteOperation,
        on_commit: Optional[CommitCallback] = None,
        on_rollback: Optional[RollbackCallback] = None,
    ) -> None:
        """
        Queue an operation.

        Args:
            operation: Put or delete to apply on commit
            on_commit: Coroutine function awaited after a successful commit
            on_rollback: Function called if the batch is discarded or rejected

        Raises:
            TransactionError: If the transaction already committed or was discarded
            BatchSizeError: If the queue is already at batch_size
        """
        if self._closed:
            raise TransactionError("Transaction is already closed")
        if len(self._operations) >= self.batch_size:
            raise BatchSizeError(
                f"Transaction cannot hold more than {self.batch_size} operations"
            )
        self._operations.append(operation)
        if on_commit is not None:
            self._callbacks.append(on_commit)
        if on_rollback is not None:
            self._rollbacks.append(on_rollback)

    async def commit(self) -> None:
        """Apply every queued operation atomically, then run the commit callbacks."""
        if self._closed:
            raise TransactionError("Transaction is already closed")
        self._closed = True
        if not self._operations:
            return
        try:
            await self.store.batch_apply(self._operations)
        except Exception:
            self._rollback()
            raise
        logger.info(f"Committed transaction with {len(self._operations)} operations")
        self._rollbacks.clear()
        for callback in self._callbacks:
            await callback()

    def discard(self) -> None:
        """Drop every queued operation without touching the store."""
        if self._operations:
            logger.info(f"Discarded transaction with {len(self._operations)} operations")
        self._rollback()
        self._operations.clear()
        self._callbacks.clear()
        self._closed = True

    def _rollback(self) -> None:
        # Latest first, so an instance queued twice ends at its oldest state
        for rollback in reversed(self._rollbacks):
            rollback()
        self._rollbacks.clear()
