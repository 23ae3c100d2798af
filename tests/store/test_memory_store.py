"""Tests for the in-memory store and the typed accessors of the base store."""

import anyio
import pytest
from pydantic import BaseModel

from authbridge.exceptions import (
    KeyNotFoundError,
    MalformedValueError,
    SchemaMismatchError,
)
from authbridge.store import MemoryStore, create_store


class Record(BaseModel):
    name: str
    count: int


class TestMemoryStore:
    async def test_set_get_delete(self, memory_store):
        await memory_store.set("a", "1")
        await memory_store.set("b", "2")
        assert await memory_store.get("a") == "1"
        assert await memory_store.delete("a", "b", "missing") == 2
        assert await memory_store.get("a") is None

    async def test_entries_expire(self, memory_store, clock):
        await memory_store.set("k", "v", ttl=10)
        clock.advance(9)
        assert await memory_store.get("k") == "v"
        clock.advance(1)
        assert await memory_store.get("k") is None
        assert await memory_store.delete("k") == 0

    async def test_entries_without_ttl_persist(self, memory_store, clock):
        await memory_store.set("k", "v")
        clock.advance(10**9)
        assert await memory_store.get("k") == "v"

    async def test_pop_removes_the_key(self, memory_store):
        await memory_store.set("k", "v")
        assert await memory_store.pop("k") == "v"
        assert await memory_store.pop("k") is None
        assert await memory_store.get("k") is None

    async def test_concurrent_pops_yield_one_value(self, memory_store):
        await memory_store.set("code", "secret")
        results = []

        async def take():
            results.append(await memory_store.pop("code"))

        async with anyio.create_task_group() as tg:
            for _ in range(10):
                tg.start_soon(take)

        assert results.count("secret") == 1
        assert results.count(None) == 9

    async def test_len_counts_live_entries(self, memory_store, clock):
        await memory_store.set("a", "1", ttl=5)
        await memory_store.set("b", "2")
        clock.advance(5)
        assert len(memory_store) == 1


class TestTypedAccess:
    async def test_round_trip(self, memory_store):
        await memory_store.set_model("r", Record(name="x", count=2), ttl=60)
        assert await memory_store.get_model("r", Record) == Record(name="x", count=2)

    async def test_missing_key(self, memory_store):
        with pytest.raises(KeyNotFoundError) as exc_info:
            await memory_store.get_model("nope", Record)
        assert exc_info.value.key == "nope"

    async def test_malformed_json(self, memory_store):
        await memory_store.set("r", "{not json")
        with pytest.raises(MalformedValueError) as exc_info:
            await memory_store.get_model("r", Record)
        assert exc_info.value.raw == "{not json"

    async def test_schema_mismatch(self, memory_store):
        await memory_store.set("r", '{"name": "x"}')
        with pytest.raises(SchemaMismatchError) as exc_info:
            await memory_store.get_model("r", Record)
        assert any("count" in e for e in exc_info.value.errors)

    async def test_errors_are_distinguishable(self):
        assert not issubclass(KeyNotFoundError, MalformedValueError)
        assert not issubclass(MalformedValueError, SchemaMismatchError)
        assert not issubclass(SchemaMismatchError, KeyNotFoundError)

    async def test_pop_model_deletes_even_on_schema_mismatch(self, memory_store):
        await memory_store.set("r", '{"name": "x"}')
        with pytest.raises(SchemaMismatchError):
            await memory_store.pop_model("r", Record)
        assert await memory_store.get("r") is None


def test_create_store_memory_url():
    assert isinstance(create_store("memory://"), MemoryStore)
