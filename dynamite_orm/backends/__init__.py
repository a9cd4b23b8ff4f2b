"""Store implementations for Dynamite ORM."""

from dynamite_orm.backends.base import KeyAttribute, ScanPage, Store, WriteOperation
from dynamite_orm.backends.memory import InMemoryStore


def __getattr__(name):
    """Import the DynamoDB store, and boto3 with it, on first use."""
    if name == "DynamoDBStore":
        from dynamite_orm.backends.dynamodb import DynamoDBStore
        return DynamoDBStore
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "Store",
    "KeyAttribute",
    "ScanPage",
    "WriteOperation",
    "InMemoryStore",
    "DynamoDBStore",
]
