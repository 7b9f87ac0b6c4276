"""Tests for the JSON file snapshot store."""

import asyncio
import json

import pytest


async def test_load_missing_returns_none(file_store):
    assert await file_store.load() is None


async def test_save_and_load(file_store, snapshot_path):
    await file_store.save({"sessionsById": {"a": {"title": "A"}}})
    assert snapshot_path.is_file()
    assert await file_store.load() == {"sessionsById": {"a": {"title": "A"}}}


async def test_save_creates_parent_dir(file_store, snapshot_path):
    assert not snapshot_path.parent.exists()
    await file_store.save({})
    assert snapshot_path.parent.is_dir()


async def test_save_leaves_no_temp_file(file_store, snapshot_path):
    await file_store.save({"x": 1})
    leftovers = [p.name for p in snapshot_path.parent.iterdir()]
    assert leftovers == ["rp.json"]


async def test_save_keeps_unicode_readable(file_store, snapshot_path):
    await file_store.save({"title": "Karakura – Arc"})
    assert "Karakura – Arc" in snapshot_path.read_text(encoding="utf-8")


async def test_load_corrupt_raises(file_store, snapshot_path):
    snapshot_path.parent.mkdir(parents=True)
    snapshot_path.write_text("{not json")
    with pytest.raises(json.JSONDecodeError):
        await file_store.load()


async def test_concurrent_saves_leave_a_complete_record(file_store):
    records = [{"n": i, "payload": "x" * 1000} for i in range(10)]
    await asyncio.gather(*(file_store.save(r) for r in records))
    loaded = await file_store.load()
    assert loaded in records
