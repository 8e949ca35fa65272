from __future__ import annotations

import asyncio
import json

import pytest

from krill.adapters.fs.json_store import JsonDocumentStore
from krill.services.errors import MalformedInputError, PairingNotFoundError
from krill.services.pairing.manager import PairingManager, hash_token
from krill.services.settings import AgentIdentity

AGENT = AgentIdentity(mxid="@bot:krillbot.network", display_name="Bot")


@pytest.fixture
def store(tmp_path):
    return JsonDocumentStore(tmp_path / "pairings.json")


@pytest.fixture
def manager(store):
    return PairingManager(store, AGENT)


@pytest.mark.anyio
async def test_token_digest_is_persisted_never_plaintext(manager, store):
    result = await manager.request_pairing("@u1:x", "d1", "Phone")

    assert result.success
    assert result.token.startswith("krill_tk_v1_")
    assert result.pairing_id.startswith("pair_") and len(result.pairing_id) == len("pair_") + 16

    raw = store.path.read_text(encoding="utf-8")
    assert result.token not in raw
    doc = json.loads(raw)
    assert doc["pairings"][result.pairing_id]["pairing_token_hash"] == hash_token(result.token)

    listed = await manager.list_pairings()
    assert "pairing_token_hash" not in listed[0]
    assert result.token not in json.dumps(listed)


@pytest.mark.anyio
async def test_repeat_request_deletes_and_reissues(manager):
    first = await manager.request_pairing("u1", "d1", "Phone")
    second = await manager.request_pairing("u1", "d1", "Phone")

    assert second.success
    assert second.pairing_id != first.pairing_id
    assert second.token != first.token
    assert second.replaced_pairing_id == first.pairing_id
    assert await manager.validate_token(first.token) is None
    assert (await manager.validate_token(second.token)).pairing_id == second.pairing_id
    assert [p["pairing_id"] for p in await manager.list_pairings()] == [second.pairing_id]


@pytest.mark.anyio
async def test_concurrent_requests_for_one_key_leave_one_pairing(manager):
    results = await asyncio.gather(*[manager.request_pairing("u1", "d1", "Phone") for _ in range(5)])

    assert all(r.success for r in results)
    pairings = await manager.list_pairings()
    assert len(pairings) == 1
    survivors = [r for r in results if r.pairing_id == pairings[0]["pairing_id"]]
    assert len(survivors) == 1


@pytest.mark.anyio
async def test_no_agent_configured_fails_without_mutation(store):
    mgr = PairingManager(store, None)
    result = await mgr.request_pairing("u1", "d1", "Phone")
    assert not result.success
    assert result.error == "Agent not configured"
    assert not store.path.exists()


@pytest.mark.anyio
async def test_validate_updates_last_seen(manager, store, monkeypatch):
    result = await manager.request_pairing("u1", "d1", "Phone")
    monkeypatch.setattr("krill.services.pairing.manager.time.time", lambda: 2_000_000_000)

    pairing = await manager.validate_token(result.token)
    assert pairing is not None
    assert pairing.last_seen_at == 2_000_000_000
    stored = json.loads(store.path.read_text(encoding="utf-8"))
    assert stored["pairings"][result.pairing_id]["last_seen_at"] == 2_000_000_000


@pytest.mark.anyio
async def test_validate_rejects_unknown_and_malformed_tokens(manager):
    await manager.request_pairing("u1", "d1", "Phone")
    assert await manager.validate_token("krill_tk_v1_nope") is None
    assert await manager.validate_token("") is None
    assert await manager.validate_token(None) is None


@pytest.mark.anyio
async def test_revoke_is_idempotent(manager):
    result = await manager.request_pairing("u1", "d1", "Phone")
    assert await manager.revoke_pairing(result.pairing_id) is True
    assert await manager.revoke_pairing(result.pairing_id) is False
    assert await manager.validate_token(result.token) is None


@pytest.mark.anyio
async def test_senses_shallow_merge(manager):
    result = await manager.request_pairing("u1", "d1", "Phone")
    assert await manager.update_senses(result.pairing_id, {"location": True, "camera": False}) == {
        "location": True,
        "camera": False,
    }
    merged = await manager.update_senses(result.pairing_id, {"camera": True})
    assert merged == {"location": True, "camera": True}


@pytest.mark.anyio
async def test_senses_errors(manager):
    with pytest.raises(PairingNotFoundError):
        await manager.update_senses("pair_missing", {"location": True})
    result = await manager.request_pairing("u1", "d1", "Phone")
    with pytest.raises(MalformedInputError):
        await manager.update_senses(result.pairing_id, {"location": "yes"})
    assert (await manager.get_pairing(result.pairing_id)).senses == {}


@pytest.mark.anyio
async def test_list_filters_by_agent(store):
    a = PairingManager(store, AGENT)
    b = PairingManager(store, AgentIdentity(mxid="@other:krillbot.network", display_name="Other"))
    await a.request_pairing("u1", "d1", "Phone")
    await b.request_pairing("u1", "d1", "Phone")

    assert len(await a.list_pairings()) == 2
    only_other = await a.list_pairings("@other:krillbot.network")
    assert [p["agent_mxid"] for p in only_other] == ["@other:krillbot.network"]
