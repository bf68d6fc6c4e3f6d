"""
Tests for TabCache (memory tier plus aiosqlite durable tier).

## Test Perspectives Table
| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|----------------------|---------------------------------------|-----------------|-------|
| TC-TC-01 | Memory-only set/get/clear | Equivalence – memory tier | Values round through dict | No loop needed |
| TC-TC-02 | Keys by namespace and tab | Equivalence – isolation | No cross-talk | - |
| TC-TC-03 | Durable write, fresh cache load | Equivalence – persistence | Decoded JSON | - |
| TC-TC-04 | Read right after write, before flush | Boundary – durable lag | Memory value returned | - |
| TC-TC-05 | Pydantic model value | Equivalence – serialization | Stored by alias | - |
| TC-TC-06 | clear() on durable cache | Equivalence – delete | Row removed | - |
| TC-TC-07 | load() without connection | Boundary – not connected | Default | - |
"""

import pytest

pytestmark = pytest.mark.unit

from pdpkit.utils.cache import TabCache
from pdpkit.utils.schemas import PatchStep, Plan


class TestMemoryTier:
    """Synchronous in-process tier."""

    def test_set_get_clear(self):
        """TC-TC-01"""
        cache = TabCache(durable=False)

        cache.set("plan", 1, {"is_pdp": True})
        assert cache.get("plan", 1) == {"is_pdp": True}

        cache.clear("plan", 1)
        assert cache.get("plan", 1) is None
        assert cache.get("plan", 1, "missing") == "missing"

    def test_isolation(self):
        """TC-TC-02"""
        cache = TabCache(durable=False)
        cache.set("plan", 1, "a")
        cache.set("error", 1, "b")
        cache.set("plan", 2, "c")

        assert cache.get("plan", 1) == "a"
        assert cache.get("plan", 2) == "c"
        assert sorted(cache.namespaces(1)) == ["error", "plan"]

    @pytest.mark.asyncio
    async def test_load_without_connection(self):
        """TC-TC-07"""
        cache = TabCache(durable=False)

        assert await cache.load("plan", 1, "default") == "default"


class TestDurableTier:
    """aiosqlite persistence."""

    @pytest.mark.asyncio
    async def test_persist_and_reload(self, temp_dir):
        """
        TC-TC-03: Values survive a restart.

        Given: A durable cache with a value written and flushed
        When: A fresh cache over the same file loads the key
        Then: The decoded value is returned
        """
        # Given:
        db = temp_dir / "cache.db"
        cache = TabCache(db_path=db, durable=True)
        await cache.connect()
        cache.set("error", 3, "backend down")
        await cache.close()

        # When:
        fresh = TabCache(db_path=db, durable=True)
        await fresh.connect()
        try:
            value = await fresh.load("error", 3)
        finally:
            await fresh.close()

        # Then:
        assert value == "backend down"

    @pytest.mark.asyncio
    async def test_read_before_flush(self, temp_dir):
        """TC-TC-04: The memory tier answers while the durable write is pending."""
        cache = TabCache(db_path=temp_dir / "cache.db", durable=True)
        await cache.connect()
        try:
            cache.set("plan", 1, "first")
            cache.set("plan", 1, "second")

            assert cache.get("plan", 1) == "second"
            assert await cache.load("plan", 1) == "second"
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_model_serialized_by_alias(self, temp_dir):
        """TC-TC-05: Pydantic values are stored in wire form."""
        db = temp_dir / "cache.db"
        cache = TabCache(db_path=db, durable=True)
        await cache.connect()
        plan = Plan(
            is_pdp=True,
            patch=[PatchStep(selector="#t", op="setText", value="x", allow_empty=True)],
        )
        cache.set("plan", 1, plan)
        await cache.close()

        fresh = TabCache(db_path=db, durable=True)
        await fresh.connect()
        try:
            stored = await fresh.load("plan", 1)
        finally:
            await fresh.close()

        assert stored["is_pdp"] is True
        assert stored["patch"][0]["allowEmpty"] is True
        assert Plan.model_validate(stored).patch[0].allow_empty is True

    @pytest.mark.asyncio
    async def test_clear_removes_row(self, temp_dir):
        """TC-TC-06"""
        db = temp_dir / "cache.db"
        cache = TabCache(db_path=db, durable=True)
        await cache.connect()
        cache.set("summary", 5, {"steps_applied": 1})
        await cache.flush()
        cache.clear("summary", 5)
        await cache.close()

        fresh = TabCache(db_path=db, durable=True)
        await fresh.connect()
        try:
            assert await fresh.load("summary", 5) is None
        finally:
            await fresh.close()
