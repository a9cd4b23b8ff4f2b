"""
Tests for the query builder and executor against the in-memory store.

The store fixture uses a page size of 2, so most queries span several
scan pages.
"""

import pytest

from dynamite_orm import (
    Default,
    Field,
    Model,
    MultipleResultsError,
    Name,
    PrimaryKey,
    QueryBuilder,
    QueryError,
)

pytestmark = pytest.mark.anyio


class Member(Model):
    """Club member used throughout the query tests."""
    id = Field(PrimaryKey())
    name = Field()
    age = Field()
    role = Field(Default("user"))
    nickname = Field(Name("nick"))


MEMBERS = [
    {"id": "m1", "name": "Ann", "age": 30, "role": "admin"},
    {"id": "m2", "name": "Bob", "age": 10, "nickname": "Bobby"},
    {"id": "m3", "name": "Cid", "age": 20},
    {"id": "m4", "name": "Dee", "age": 40, "role": "admin"},
    {"id": "m5", "name": "Eve", "age": 50, "team": "red"},
]


def ids(records):
    return [record.id for record in records]


@pytest.fixture
async def members(anyio_backend, connect, store):
    """Connect the Member model and insert five members."""
    await connect(Member)
    for data in MEMBERS:
        await Member.create(data)
    store.reset_calls()
    return store


class TestWhereForms:
    """Test the accepted filter forms."""

    async def test_structural_filter(self, members):
        """Test an operator mapping."""
        assert ids(await Member.where({"age": {"gte": 18}})) == ["m1", "m3", "m4", "m5"]

    async def test_field_value_shorthand(self, members):
        """Test the (field, value) form."""
        assert ids(await Member.where("role", "admin")) == ["m1", "m4"]

    async def test_field_operator_value_shorthand(self, members):
        """Test the (field, operator, value) form."""
        assert ids(await Member.where("age", ">=", 40)) == ["m4", "m5"]

    async def test_keyword_lookups(self, members):
        """Test Django-style lookups."""
        assert ids(await Member.where(age__gte=20, role="user")) == ["m3", "m5"]

    async def test_keyword_options(self, members):
        """Test that option names given as keywords set options."""
        assert ids(await Member.where(role="user", limit=2)) == ["m2", "m3"]

    async def test_filter_and_options_dict(self, members):
        """Test the (filter, options) form."""
        assert ids(await Member.where({"role": "user"}, {"limit": 1, "skip": 1})) == ["m3"]

    async def test_storage_name_filter(self, members):
        """Test that filters on renamed fields use the storage name."""
        assert ids(await Member.where(nickname="Bobby")) == ["m2"]

    async def test_empty_in_returns_nothing(self, members):
        """Test that an empty in-list yields no records and no error."""
        assert await Member.where({"role": {"in": []}}) == []

    async def test_empty_not_in_returns_everything(self, members):
        """Test that an empty not-in list excludes nothing."""
        assert len(await Member.where({"role": {"not-in": []}})) == 5

    async def test_unsupported_argument(self, members):
        """Test that a non-mapping filter is rejected."""
        with pytest.raises(QueryError):
            Member.where(42)

    async def test_invalid_operator_before_scan(self, members):
        """Test that a bad operator fails without a store call."""
        with pytest.raises(QueryError, match="Invalid operator"):
            await Member.where("age", "between", 3)
        assert members.count("scan") == 0

    async def test_list_with_comparison_operator_rejected(self, members):
        """Test that the (field, operator, value) form does not turn a list into 'in'."""
        with pytest.raises(QueryError, match="use 'in'"):
            await Member.where("role", "=", ["admin", "user"])
        assert members.count("scan") == 0

        assert ids(await Member.where("role", "in", ["admin"])) == ["m1", "m4"]


class TestPagination:
    """Test limit, skip and page following."""

    async def test_limit_zero_skips_store(self, members):
        """Test that limit 0 returns nothing without scanning."""
        assert await Member.where({}, {"limit": 0}) == []
        assert members.count("scan") == 0

    async def test_negative_limit_rejected(self, members):
        """Test that negative limits are errors raised before scanning."""
        with pytest.raises(QueryError):
            await Member.where({}, {"limit": -1})
        with pytest.raises(QueryError):
            await Member.where().skip(-2)
        assert members.count("scan") == 0

    async def test_follows_every_page(self, members):
        """Test that the scan continues until the cursor is exhausted."""
        assert len(await Member.where({})) == 5
        assert members.count("scan") == 3

    async def test_short_pages_do_not_end_scan(self, members):
        """Test that empty filtered pages keep the scan going."""
        assert ids(await Member.where(name="Eve")) == ["m5"]
        assert members.count("scan") == 3

    async def test_stops_early_without_order(self, members):
        """Test that an unordered limited query stops once enough items are read."""
        assert ids(await Member.where().limit(1)) == ["m1"]
        assert members.count("scan") == 1

    async def test_skip_and_limit_after_sort(self, members):
        """Test that skip/limit select positions of the fully sorted set."""
        records = await Member.where({}, {"order": {"age": "ASC"}, "skip": 1, "limit": 2})
        assert ids(records) == ["m3", "m1"]
        assert members.count("scan") == 3

    async def test_offset_alias(self, members):
        """Test that offset behaves like skip."""
        assert ids(await Member.where().order_by("age").offset(3)) == ["m4", "m5"]


class TestOrdering:
    """Test sort order resolution."""

    async def test_direction_uses_first_filtered_field(self, members):
        """Test that a bare direction sorts by the first filtered field."""
        records = await Member.where({"age": {"gte": 0}}, {"order": "DESC"})
        assert ids(records) == ["m5", "m4", "m1", "m3", "m2"]

    async def test_direction_falls_back_to_primary_key(self, members):
        """Test that without filter fields the primary key is the sort field."""
        assert ids(await Member.where({}, {"order": "desc"})) == ["m5", "m4", "m3", "m2", "m1"]

    async def test_order_by_multiple_fields(self, members):
        """Test descending prefix and secondary sort fields."""
        records = await Member.where().order_by("-role", "age")
        assert ids(records) == ["m2", "m3", "m5", "m1", "m4"]

    async def test_missing_values_sort_last(self, members):
        """Test that absent sort values come last in either direction."""
        ascending = await Member.where().order_by("nickname")
        descending = await Member.where().order_by("-nickname")

        assert ids(ascending)[0] == "m2"
        assert ids(descending)[0] == "m2"


class TestTerminalMethods:
    """Test first, last, count, exists and get."""

    async def test_first(self, members):
        """Test the first record in scan order."""
        assert (await Member.where().first()).id == "m1"
        assert (await Member.first({"role": "user"})).id == "m2"

    async def test_first_none(self, members):
        """Test that first() returns None when nothing matches."""
        assert await Member.first({"age": {"gt": 100}}) is None

    async def test_last_defaults_to_primary_key(self, members):
        """Test that last() with no order is the largest primary key."""
        assert (await Member.last()).id == "m5"

    async def test_last_reverses_order(self, members):
        """Test that last() flips an explicit order."""
        assert (await Member.where().order_by("age").last()).id == "m5"
        assert (await Member.where().order_by("-age").last()).id == "m2"

    async def test_count(self, members):
        """Test counting ignores limit and reads only keys."""
        assert await Member.where(role="user").limit(1).count() == 3

    async def test_exists(self, members):
        """Test existence checks."""
        assert await Member.where(name="Dee").exists() is True
        assert await Member.where(age__gt=100).exists() is False

    async def test_builder_get(self, members):
        """Test fetching exactly one record through the builder."""
        assert (await Member.query().get(name="Ann")).id == "m1"

    async def test_builder_get_multiple(self, members):
        """Test that get() refuses ambiguous matches."""
        with pytest.raises(MultipleResultsError):
            await Member.query().get(role="admin")

    async def test_model_get_by_key(self, members):
        """Test fetching by key attributes."""
        member = await Member.get(id="m2")

        assert member.name == "Bob"
        assert member.nickname == "Bobby"
        assert await Member.get(id="missing") is None

    async def test_all(self, members):
        """Test the all() convenience method."""
        assert len(await Member.all()) == 5


class TestMaterialization:
    """Test how query results become instances."""

    async def test_builder_is_lazy(self, members):
        """Test that building a query does not touch the store."""
        query = Member.where(age__gte=18).order_by("-age").limit(2)

        assert isinstance(query, QueryBuilder)
        assert members.count("scan") == 0
        assert ids(await query) == ["m5", "m4"]

    async def test_loaded_records_are_persisted(self, members):
        """Test that loaded instances are marked persisted."""
        member = await Member.first({"id": "m3"})
        assert member._is_persisted is True

    async def test_extra_attributes_loaded(self, members):
        """Test that undeclared attributes survive a round trip."""
        member = await Member.get(id="m5")
        assert member.to_dict()["team"] == "red"

    async def test_projection_is_minimal(self, members):
        """Test that projected records expose only the selected fields."""
        member = await Member.where({"id": "m3"}).select("name").first()

        assert member.to_dict() == {"name": "Cid"}
        assert member.role is None

    async def test_projection_uses_storage_names(self, members):
        """Test projecting a renamed field."""
        member = await Member.where({"id": "m2"}, {"attributes": ["nickname"]}).first()
        assert member.to_dict() == {"nickname": "Bobby"}

    async def test_empty_projection_returns_full_records(self, members):
        """Test that an empty attribute list means all attributes."""
        member = await Member.where({"id": "m1"}, {"attributes": []}).first()
        assert member.to_dict() == {"id": "m1", "name": "Ann", "age": 30, "role": "admin"}
