"""
DynamoDB store for Dynamite ORM.

Provides DynamoDB integration through the boto3 resource API:
- One table per collection, keyed by the model's partition and sort keys
- Scan with filter and projection expressions, paged by LastEvaluatedKey
- Atomic batches through TransactWriteItems
- Idempotent table creation

boto3 is synchronous, so every call runs in the event loop's default
executor.
"""

import asyncio
import functools
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Sequence, TYPE_CHECKING

import boto3  # type: ignore[import-untyped]
from botocore.exceptions import ClientError  # type: ignore[import-untyped]

from dynamite_orm.backends.base import KeyAttribute, ScanPage, Store, WriteOperation
from dynamite_orm.exceptions import TransactionError

if TYPE_CHECKING:
    from dynamite_orm.query.expressions import CompiledFilter, CompiledProjection
    Table = Any  # Placeholder for DynamoDB Table type

logger = logging.getLogger(__name__)


class DynamoDBStore(Store):
    """
    DynamoDB store.

    Handles connection management, item operations and scans for AWS
    DynamoDB tables. Collection names map to table names, optionally
    prefixed with table_prefix.

    Example:
        >>> store = DynamoDBStore(region_name="us-east-1", table_prefix="dev_")
        >>> client = Dynamite(store, models=[User, Order])
        >>> await client.connect()  # creates dev_users, dev_orders
    """

    def __init__(
        self,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        page_size: Optional[int] = None,
        table_prefix: str = "",
        max_batch_size: int = 25,
        **boto3_kwargs: Any,
    ):
        """
        Initialize DynamoDB store.

        Args:
            region_name: AWS region (e.g., 'us-east-1')
            endpoint_url: Custom endpoint URL (for local DynamoDB)
            page_size: Scan page size (DynamoDB Limit), None for the service default
            table_prefix: Prefix prepended to every collection name
            max_batch_size: Largest TransactWriteItems batch accepted
            **boto3_kwargs: Additional arguments for boto3.resource()
        """
        super().__init__(max_batch_size=max_batch_size)
        self.region_name = region_name
        self.endpoint_url = endpoint_url
        self.page_size = page_size
        self.table_prefix = table_prefix
        self.boto3_kwargs = boto3_kwargs

        # Lazy initialization of DynamoDB resource
        self._dynamodb_resource: Optional[Any] = None
        self._tables: dict[str, "Table"] = {}

    @property
    def backend_name(self) -> str:
        """Store identifier."""
        return 'dynamodb'

    @property
    def dynamodb(self) -> Any:
        """Get or create DynamoDB resource."""
        if self._dynamodb_resource is None:
            kwargs = {"region_name": self.region_name, **self.boto3_kwargs}
            if self.endpoint_url:
                kwargs["endpoint_url"] = self.endpoint_url
            self._dynamodb_resource = boto3.resource("dynamodb", **kwargs)
        return self._dynamodb_resource

    def table_name(self, collection: str) -> str:
        return f"{self.table_prefix}{collection}"

    def table(self, collection: str) -> "Table":
        """Get or create the Table resource for a collection."""
        if collection not in self._tables:
            self._tables[collection] = self.dynamodb.Table(self.table_name(collection))
        return self._tables[collection]

    async def _run(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    def _python_to_dynamodb(self, value: Any) -> Any:
        """
        Convert Python types to DynamoDB-compatible types.

        DynamoDB doesn't support float or datetime, so we convert:
        - float -> Decimal
        - datetime -> ISO format string
        """
        if isinstance(value, datetime):
            return value.isoformat()
        elif isinstance(value, date):
            return value.isoformat()
        elif isinstance(value, bool):
            return value
        elif isinstance(value, float):
            return Decimal(str(value))
        elif isinstance(value, dict):
            return {k: self._python_to_dynamodb(v) for k, v in value.items()}
        elif isinstance(value, (list, tuple)):
            return [self._python_to_dynamodb(v) for v in value]
        return value

    def _dynamodb_to_python(self, value: Any) -> Any:
        """
        Convert DynamoDB types to Python types.

        Converts Decimal back to int or float for numeric values.
        """
        if isinstance(value, Decimal):
            # Convert to int if no decimal places, otherwise float
            if value % 1 == 0:
                return int(value)
            return float(value)
        elif isinstance(value, dict):
            return {k: self._dynamodb_to_python(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self._dynamodb_to_python(v) for v in value]
        elif isinstance(value, set):
            return {self._dynamodb_to_python(v) for v in value}
        return value

    async def create_collection(
        self,
        name: str,
        key_schema: Sequence[KeyAttribute],
        secondary_indexes: Optional[Sequence[dict[str, Any]]] = None,
    ) -> None:
        table_name = self.table_name(name)
        kwargs: dict[str, Any] = {
            "TableName": table_name,
            "KeySchema": [
                {"AttributeName": k.name, "KeyType": k.key_type} for k in key_schema
            ],
            "AttributeDefinitions": [
                {"AttributeName": k.name, "AttributeType": k.attribute_type} for k in key_schema
            ],
            "BillingMode": "PAY_PER_REQUEST",
        }
        if secondary_indexes:
            kwargs["GlobalSecondaryIndexes"] = list(secondary_indexes)

        try:
            await self._run(self.dynamodb.create_table, **kwargs)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceInUseException":
                logger.debug(f"Table {table_name} already exists")
                return
            raise

        waiter = self.dynamodb.meta.client.get_waiter("table_exists")
        await self._run(waiter.wait, TableName=table_name)
        logger.info(f"Created DynamoDB table {table_name}")

    async def put_item(self, collection: str, item: dict[str, Any]) -> None:
        await self._run(self.table(collection).put_item, Item=self._python_to_dynamodb(item))

    async def delete_item(self, collection: str, key: dict[str, Any]) -> None:
        await self._run(self.table(collection).delete_item, Key=self._python_to_dynamodb(key))

    async def get_item(self, collection: str, key: dict[str, Any]) -> Optional[dict[str, Any]]:
        response = await self._run(
            self.table(collection).get_item, Key=self._python_to_dynamodb(key)
        )
        if "Item" in response:
            return self._dynamodb_to_python(response["Item"])
        return None

    async def scan(
        self,
        collection: str,
        filter: Optional["CompiledFilter"] = None,
        projection: Optional["CompiledProjection"] = None,
        cursor: Optional[Any] = None,
    ) -> ScanPage:
        kwargs: dict[str, Any] = {}
        names: dict[str, str] = {}

        if filter is not None:
            kwargs["FilterExpression"] = filter.expression
            names.update(filter.names)
            if filter.values:
                kwargs["ExpressionAttributeValues"] = self._python_to_dynamodb(filter.values)

        if projection is not None:
            kwargs["ProjectionExpression"] = projection.expression
            names.update(projection.names)

        if names:
            kwargs["ExpressionAttributeNames"] = names
        if cursor:
            kwargs["ExclusiveStartKey"] = cursor
        if self.page_size:
            kwargs["Limit"] = self.page_size

        response = await self._run(self.table(collection).scan, **kwargs)
        items = [self._dynamodb_to_python(item) for item in response.get("Items", [])]
        return ScanPage(items=items, cursor=response.get("LastEvaluatedKey"))

    async def batch_apply(self, operations: Sequence[WriteOperation]) -> None:
        self.check_batch_size(operations)
        if not operations:
            return

        transact_items = []
        for operation in operations:
            table_name = self.table_name(operation.collection)
            if operation.kind == "put":
                transact_items.append({
                    "Put": {"TableName": table_name, "Item": self._python_to_dynamodb(operation.item)}
                })
            else:
                transact_items.append({
                    "Delete": {"TableName": table_name, "Key": self._python_to_dynamodb(operation.key)}
                })

        try:
            await self._run(self.dynamodb.meta.client.transact_write_items, TransactItems=transact_items)
        except ClientError as e:
            error = e.response["Error"]
            raise TransactionError(
                f"Transaction rejected ({error.get('Code')}): {error.get('Message', '')}"
            ) from e

    async def close(self) -> None:
        self._tables.clear()
        self._dynamodb_resource = None
