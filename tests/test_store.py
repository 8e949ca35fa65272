from __future__ import annotations

import asyncio
import json

import pytest

from krill.adapters.fs.json_store import JsonDocumentStore
from krill.services.errors import StoreError


@pytest.mark.anyio
async def test_missing_document_uses_default(tmp_path):
    store = JsonDocumentStore(tmp_path / "nope.json")
    assert await store.load() is None
    assert await store.load(dict) == {}
    assert not await store.exists()


@pytest.mark.anyio
async def test_replace_writes_atomically_and_leaves_no_temp_files(tmp_path):
    path = tmp_path / "sub" / "doc.json"
    store = JsonDocumentStore(path)
    await store.replace({"a": 1, "b": [1, 2]})

    assert json.loads(path.read_text(encoding="utf-8")) == {"a": 1, "b": [1, 2]}
    assert [p.name for p in path.parent.iterdir()] == ["doc.json"]


@pytest.mark.anyio
async def test_transaction_persists_on_success_only(tmp_path):
    store = JsonDocumentStore(tmp_path / "doc.json")
    async with store.transaction(dict) as doc:
        doc["x"] = 1
    assert await store.load() == {"x": 1}

    with pytest.raises(RuntimeError):
        async with store.transaction(dict) as doc:
            doc["x"] = 2
            raise RuntimeError("boom")
    assert await store.load() == {"x": 1}
    assert not store.lock.locked()


@pytest.mark.anyio
async def test_corrupt_document_raises_store_error(tmp_path):
    path = tmp_path / "doc.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(StoreError):
        await JsonDocumentStore(path).load()


@pytest.mark.anyio
async def test_bytes_round_trip_is_exact(tmp_path):
    store = JsonDocumentStore(tmp_path / "raw.bin")
    payload = b'{\n  "k": "v"\n}\r\n'
    await store.write_bytes(payload)
    assert await store.read_bytes() == payload


@pytest.mark.anyio
async def test_plain_load_and_replace_ignore_the_lock(tmp_path):
    store = JsonDocumentStore(tmp_path / "doc.json")
    await store.replace({"n": 1})

    async with store.lock:
        assert await asyncio.wait_for(store.load(), 1) == {"n": 1}
        await asyncio.wait_for(store.replace({"n": 2}), 1)
    assert await store.load() == {"n": 2}
