"""
Tests for the schema registry and declaration-time configuration errors.
"""

import pytest

from dynamite_orm import (
    ConfigurationError,
    Default,
    DeleteAt,
    Field,
    HasMany,
    Index,
    IndexSort,
    Model,
    Name,
    NotNull,
    PrimaryKey,
    SoftDeleteMixin,
    TimestampMixin,
    Validate,
    registry,
)
from dynamite_orm.models.registry import SchemaRegistry, to_snake_plural
from dynamite_orm.models.relations import RelationKind


class OrderItem(Model):
    """Order line with a composite key."""
    order_id = Field(Index())
    line = Field(IndexSort(attribute_type="N"))
    sku = Field(NotNull(), Validate(lambda v: v.isupper() or "SKU must be upper case"))


@Name("people")
class Person(Model):
    """Person stored in a custom collection."""
    id = Field(PrimaryKey())
    full_name = Field(Name("fullName"))


class Account(Model, collection="accounts_v2"):
    """Account using the collection class keyword."""
    id = Field(PrimaryKey())


class Article(TimestampMixin, SoftDeleteMixin, Model):
    """Article with timestamp and soft-delete mixins."""
    id = Field(PrimaryKey())
    comments = HasMany(lambda: Comment, "article_id")


class Comment(Model):
    """Comment belonging to an article."""
    id = Field(PrimaryKey())
    article_id = Field()


class TestCollectionNames:
    """Test collection naming."""

    @pytest.mark.parametrize("name,expected", [
        ("User", "users"),
        ("OrderItem", "order_items"),
        ("Category", "categories"),
        ("Address", "addresses"),
        ("Box", "boxes"),
        ("Day", "days"),
    ])
    def test_to_snake_plural(self, name, expected):
        """Test class name to collection name conversion."""
        assert to_snake_plural(name) == expected

    def test_default_collection_name(self):
        """Test that unnamed models get the snake plural of the class name."""
        assert OrderItem.describe().collection_name == "order_items"
        assert OrderItem.describe().custom_collection_name is False

    def test_name_class_decorator(self):
        """Test that Name() on a class sets the collection name."""
        assert Person.describe().collection_name == "people"
        assert Person.describe().custom_collection_name is True

    def test_collection_keyword(self):
        """Test the collection class keyword."""
        assert Account.describe().collection_name == "accounts_v2"

    def test_same_name_again_is_noop(self):
        """Test that re-declaring the same custom name is allowed."""
        Name("people")(Person)
        assert Person.describe().collection_name == "people"

    def test_conflicting_name_raises(self):
        """Test that a different custom name is a configuration error."""
        with pytest.raises(ConfigurationError, match="people"):
            Name("humans")(Person)


class TestKeyDeclarations:
    """Test partition and sort key rules."""

    def test_composite_key(self):
        """Test key fields of a model with a sort key."""
        descriptor = OrderItem.describe()

        assert descriptor.partition_key.name == "order_id"
        assert descriptor.sort_key.name == "line"
        assert descriptor.sort_key.attribute_type == "N"
        assert [f.name for f in descriptor.key_fields] == ["order_id", "line"]

    def test_partition_key_is_identity_without_primary_key(self):
        """Test that the partition key stands in for a missing primary key."""
        assert OrderItem.describe().primary_key.name == "order_id"

    def test_primary_key_not_nullable(self):
        """Test that PrimaryKey() implies a required partition key."""
        field = Person.describe().fields["id"]
        assert field.is_primary_key and field.is_partition_key
        assert field.nullable is False

    def test_second_partition_key_raises(self):
        """Test that a second partition key names the existing one."""
        with pytest.raises(ConfigurationError, match="'id'"):
            class Broken(Model):
                id = Field(PrimaryKey())
                other = Field(Index())

    def test_sort_key_without_partition_key_raises(self):
        """Test that a sort key needs a partition key first."""
        with pytest.raises(ConfigurationError, match="without a partition key"):
            class Broken(Model):
                created = Field(IndexSort())
                id = Field(PrimaryKey())

    def test_second_sort_key_raises(self):
        """Test that only one sort key is allowed."""
        with pytest.raises(ConfigurationError, match="sort key"):
            class Broken(Model):
                id = Field(PrimaryKey())
                a = Field(IndexSort())
                b = Field(IndexSort())

    def test_missing_partition_key(self):
        """Test that a model without keys has no identity."""
        class Keyless(Model):
            value = Field()

        with pytest.raises(ConfigurationError, match="no partition key"):
            Keyless.describe().primary_key


class TestFieldDeclarations:
    """Test field configurator accumulation."""

    def test_configurators_accumulate(self):
        """Test that several configurators share one field descriptor."""
        field = OrderItem.describe().fields["sku"]

        assert field.nullable is False
        assert len(field.write_pipeline) == 2

    def test_duplicate_default_raises(self):
        """Test that a second Default on one field is an error."""
        with pytest.raises(ConfigurationError, match="Duplicate Default"):
            class Broken(Model):
                id = Field(PrimaryKey())
                value = Field(Default(1), Default(2))

    def test_conflicting_storage_name_raises(self):
        """Test that a field cannot get two different storage names."""
        with pytest.raises(ConfigurationError, match="storage name"):
            class Broken(Model):
                id = Field(PrimaryKey())
                value = Field(Name("a"), Name("b"))

    def test_storage_name_lookup(self):
        """Test mapping between field and storage names."""
        descriptor = Person.describe()

        assert descriptor.storage_name("full_name") == "fullName"
        assert descriptor.storage_name("undeclared") == "undeclared"
        assert descriptor.field_for_storage_name("fullName").name == "full_name"

    def test_second_soft_delete_field_raises(self):
        """Test that a record type has at most one soft-delete field."""
        with pytest.raises(ConfigurationError, match="soft-delete"):
            class Broken(SoftDeleteMixin, Model):
                id = Field(PrimaryKey())
                removed_at = Field(DeleteAt())

    def test_explicit_configure_field(self):
        """Test configuring a field without a class body declaration."""
        class Tagged(Model):
            id = Field(PrimaryKey())

        registry.configure_field(Tagged, "label", NotNull())

        assert registry.describe_field(Tagged, "label").nullable is False


class TestMixinsAndRelations:
    """Test inherited fields and relation descriptors."""

    def test_mixin_fields_registered(self):
        """Test that mixin fields become fields of the model."""
        descriptor = Article.describe()

        assert descriptor.fields["created_at"].is_created_timestamp
        assert descriptor.fields["updated_at"].is_updated_timestamp
        assert descriptor.soft_delete_field.name == "deleted_at"

    def test_relation_descriptor(self):
        """Test that relations are registered without resolving the target."""
        relation = Article.describe().get_relation("comments").relation

        assert relation.kind == RelationKind.HAS_MANY
        assert relation.foreign_key == "article_id"
        assert relation.local_key == "id"
        assert relation.resolve_target() is Comment

    def test_relations_are_not_scalar_fields(self):
        """Test that relation fields are kept apart from scalar fields."""
        descriptor = Article.describe()

        assert "comments" not in [f.name for f in descriptor.scalar_fields()]
        assert [f.name for f in descriptor.relation_fields()] == ["comments"]

    def test_subclass_inherits_fields(self):
        """Test that a model subclass gets its own copy of parent fields."""
        class SpecialAccount(Account):
            tier = Field(Default("gold"))

        descriptor = SpecialAccount.describe()
        assert list(descriptor.fields) == ["id", "tier"]
        assert descriptor is not Account.describe()
        assert SpecialAccount(id="a").tier == "gold"


class TestRegistryIdentity:
    """Test that descriptors are keyed by class identity."""

    def test_same_name_different_classes(self):
        """Test that equally named classes get separate descriptors."""
        local = SchemaRegistry()

        def make():
            class Twin:
                pass
            return Twin

        first, second = make(), make()
        assert local.register(first) is not local.register(second)
        assert local.register(first) is local.register(first)

    def test_describe_field_creates_once(self):
        """Test that describe_field returns the same descriptor on every call."""
        local = SchemaRegistry()

        class Holder:
            pass

        assert local.describe_field(Holder, "x") is local.describe_field(Holder, "x")
        assert Holder in local
