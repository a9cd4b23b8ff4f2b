"""
Tests for soft deletion and trashed-record scoping.
"""

import pytest

from dynamite_orm import Field, Model, PrimaryKey, SoftDeleteMixin

pytestmark = pytest.mark.anyio


class Document(SoftDeleteMixin, Model):
    """Document that is stamped instead of removed."""
    id = Field(PrimaryKey())
    title = Field()


@pytest.fixture
async def documents(anyio_backend, connect, store):
    await connect(Document)
    for index in range(1, 4):
        await Document.create(id=f"d{index}", title=f"Doc {index}")
    store.reset_calls()
    return store


def ids(records):
    return sorted(record.id for record in records)


class TestSoftDelete:
    """Test destroy() on a soft-delete model."""

    async def test_destroy_stamps_marker(self, documents):
        """Test that destroy() sets deleted_at and keeps the row."""
        doc = await Document.get(id="d1")
        await doc.destroy()

        assert doc.deleted_at is not None
        assert doc.is_trashed is True
        assert documents.count("delete") == 0
        item = await documents.get_item("documents", {"id": "d1"})
        assert item["deleted_at"] == doc.deleted_at

    async def test_scopes(self, documents):
        """Test default exclusion, with_trashed and only_trashed."""
        await (await Document.get(id="d2")).destroy()

        assert ids(await Document.where({})) == ["d1", "d3"]
        assert ids(await Document.with_trashed({})) == ["d1", "d2", "d3"]
        assert ids(await Document.only_trashed({})) == ["d2"]

    async def test_option_form(self, documents):
        """Test the with_trashed option passed as a keyword."""
        await (await Document.get(id="d2")).destroy()
        assert len(await Document.where(with_trashed=True)) == 3

    async def test_explicit_marker_filter(self, documents):
        """Test that filtering on the marker field disables the implicit scope."""
        await (await Document.get(id="d3")).destroy()
        trashed = await Document.where({"deleted_at": {"ne": None}})
        assert ids(trashed) == ["d3"]

    async def test_get_hides_trashed(self, documents):
        """Test that get() skips trashed records unless asked."""
        await (await Document.get(id="d1")).destroy()

        assert await Document.get(id="d1") is None
        assert (await Document.get(id="d1", with_trashed=True)).id == "d1"

    async def test_restore(self, documents):
        """Test that restore() clears the marker."""
        doc = await Document.get(id="d1")
        await doc.destroy()
        await doc.restore()

        assert doc.is_trashed is False
        assert ids(await Document.where({})) == ["d1", "d2", "d3"]

    async def test_force_destroy(self, documents):
        """Test that force_destroy() removes the row regardless."""
        doc = await Document.get(id="d1")
        await doc.force_destroy()

        assert ids(await Document.with_trashed({})) == ["d2", "d3"]
        assert documents.count("delete", "documents") == 1

    async def test_class_delete_includes_trashed(self, documents):
        """Test that class delete() removes trashed matches as well."""
        await (await Document.get(id="d1")).destroy()

        removed = await Document.delete({"title": {"in": ["Doc 1", "Doc 2"]}})

        assert removed == 2
        assert ids(await Document.with_trashed({})) == ["d3"]

    async def test_count_respects_scope(self, documents):
        """Test that count() excludes trashed records by default."""
        await (await Document.get(id="d1")).destroy()

        assert await Document.where().count() == 2
        assert await Document.where().with_trashed().count() == 3
