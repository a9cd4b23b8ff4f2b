"""
Tests for the DynamoDB store.

Uses moto to mock AWS DynamoDB service.
"""

import pytest

# Skip all tests if boto3 or moto not installed
pytest.importorskip("boto3")
pytest.importorskip("moto")

import boto3
from moto import mock_aws

from dynamite_orm import (
    Dynamite,
    Field,
    Index,
    IndexSort,
    Model,
    PrimaryKey,
    SoftDeleteMixin,
    TimestampMixin,
)
from dynamite_orm.backends import DynamoDBStore
from dynamite_orm.backends.base import KeyAttribute, WriteOperation
from dynamite_orm.exceptions import TransactionError

pytestmark = pytest.mark.anyio

REGION = "us-east-1"


class Product(TimestampMixin, SoftDeleteMixin, Model):
    """Product with numeric attributes and soft deletion."""
    id = Field(PrimaryKey())
    name = Field()
    price = Field()
    stock = Field()


class Reading(Model):
    """Sensor reading keyed by sensor and timestamp."""
    sensor = Field(Index())
    taken_at = Field(IndexSort("N"))
    value = Field()


@pytest.fixture
def aws():
    """Mocked AWS for the duration of one test."""
    with mock_aws():
        yield boto3.resource("dynamodb", region_name=REGION)


@pytest.fixture
async def dynamo(anyio_backend, aws):
    """Connected client over a prefixed, small-page DynamoDB store."""
    store = DynamoDBStore(region_name=REGION, table_prefix="test_", page_size=2)
    client = await Dynamite(store, models=[Product, Reading]).connect()
    yield client
    if client.is_connected:
        await client.disconnect()


class TestDynamoDBStoreSetup:
    """Test store initialization and provisioning."""

    def test_initialization(self):
        """Test that configuration is kept and the connection is lazy."""
        store = DynamoDBStore(region_name="us-west-2", table_prefix="dev_")

        assert store.region_name == "us-west-2"
        assert store.table_name("users") == "dev_users"
        assert store.backend_name == "dynamodb"
        assert store._dynamodb_resource is None

    async def test_tables_created(self, dynamo, aws):
        """Test that connect() creates one prefixed table per model."""
        names = sorted(table.name for table in aws.tables.all())
        assert names == ["test_products", "test_readings"]

        readings = aws.Table("test_readings")
        assert readings.key_schema == [
            {"AttributeName": "sensor", "KeyType": "HASH"},
            {"AttributeName": "taken_at", "KeyType": "RANGE"},
        ]

    async def test_create_collection_idempotent(self, dynamo):
        """Test that provisioning an existing table is not an error."""
        await dynamo.store.create_collection("products", [KeyAttribute("id")])


class TestDynamoDBRecords:
    """Test model operations against mocked DynamoDB."""

    async def test_create_and_get(self, dynamo, aws):
        """Test that floats are stored as numbers and read back."""
        await Product.create(id="p1", name="Lamp", price=19.5, stock=3)

        raw = aws.Table("test_products").get_item(Key={"id": "p1"})["Item"]
        assert raw["name"] == "Lamp"
        assert "deleted_at" not in raw

        product = await Product.get(id="p1")
        assert product.price == 19.5
        assert product.stock == 3
        assert isinstance(product.stock, int)
        assert product.created_at is not None

    async def test_scan_with_filter_and_pages(self, dynamo):
        """Test that filtered scans follow LastEvaluatedKey across pages."""
        for index in range(5):
            await Product.create(id=f"p{index}", name=f"Item {index}", price=1.0 + index, stock=index)

        cheap = await Product.where({"price": {"lt": 3.5}}).order_by("price")
        assert [p.id for p in cheap] == ["p0", "p1", "p2"]
        assert await Product.where(stock__in=[1, 4]).count() == 2

    async def test_projection(self, dynamo):
        """Test projected scans through ProjectionExpression."""
        await Product.create(id="p1", name="Lamp", price=5.0, stock=1)

        product = await Product.where({"id": "p1"}).select("name").first()
        assert product.to_dict() == {"name": "Lamp"}

    async def test_soft_delete_scope(self, dynamo):
        """Test that the trashed scope compiles to attribute checks."""
        await Product.create(id="p1", name="Lamp", price=5.0, stock=1)
        await Product.create(id="p2", name="Desk", price=50.0, stock=1)
        await (await Product.get(id="p1")).destroy()

        assert [p.id for p in await Product.where()] == ["p2"]
        assert [p.id for p in await Product.only_trashed()] == ["p1"]

    async def test_composite_key(self, dynamo):
        """Test records keyed by partition and sort key."""
        await Reading.create(sensor="s1", taken_at=1, value=0.5)
        await Reading.create(sensor="s1", taken_at=2, value=0.7)

        reading = await Reading.get(sensor="s1", taken_at=2)
        assert reading.value == 0.7

        await reading.destroy()
        assert await Reading.get(sensor="s1", taken_at=2) is None
        assert len(await Reading.all()) == 1


class TestDynamoDBTransactions:
    """Test atomic batches through TransactWriteItems."""

    async def test_transaction_commit(self, dynamo):
        """Test that a transaction writes every record."""
        async with dynamo.transaction() as tx:
            await Product.create(id="p1", name="Lamp", price=5.0, stock=1, tx=tx)
            await Reading.create(sensor="s1", taken_at=1, value=1.5, tx=tx)

        assert (await Product.get(id="p1")).name == "Lamp"
        assert (await Reading.get(sensor="s1", taken_at=1)).value == 1.5

    async def test_oversized_batch(self, dynamo):
        """Test that the store refuses batches above its maximum."""
        operations = [
            WriteOperation.put("products", {"id": f"p{n}"}) for n in range(26)
        ]
        with pytest.raises(TransactionError):
            await dynamo.store.batch_apply(operations)

    async def test_failed_transaction_writes_nothing(self, dynamo):
        """Test that a rejected transaction leaves every table untouched."""
        operations = [
            WriteOperation.put("products", {"id": "p1", "name": "Lamp"}),
            WriteOperation.put("products", {"name": "No key"}),
        ]
        with pytest.raises(TransactionError, match="rejected"):
            await dynamo.store.batch_apply(operations)

        assert await Product.get(id="p1") is None
