from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from krill.apps.api.server import create_app
from krill.services.gateway_context import get_ctx

AUTH = {"X-Krill-Token": "test-token"}


@pytest.fixture
def client(ctx):
    app = create_app()
    app.dependency_overrides[get_ctx] = lambda: ctx
    return TestClient(app)


def test_admin_routes_require_token(client):
    assert client.get("/krill/pairings").status_code == 401
    assert client.get("/krill/pairings", headers={"X-Krill-Token": "wrong"}).status_code == 401
    assert client.get("/krill/pairings", headers={"Authorization": "Bearer test-token"}).status_code == 200


def test_pair_validate_senses_revoke_flow(client):
    resp = client.post(
        "/krill/pair",
        json={"agent_mxid": "@bot:krillbot.network", "user_mxid": "@u:x", "device_id": "d1", "device_name": "Phone"},
        headers=AUTH,
    )
    assert resp.status_code == 200
    pairing = resp.json()["pairing"]
    token = pairing["pairing_token"]
    pid = pairing["pairing_id"]

    listed = client.get("/krill/pairings", params={"agent": "@bot:krillbot.network"}, headers=AUTH).json()["pairings"]
    assert [p["pairing_id"] for p in listed] == [pid]
    assert "pairing_token_hash" not in listed[0]

    valid = client.post("/krill/validate", json={"pairing_token": token}).json()
    assert valid["valid"] is True
    assert valid["pairing"]["pairing_id"] == pid

    senses = client.post(f"/krill/pair/{pid}/senses", json={"location": True}, headers=AUTH)
    assert senses.json() == {"success": True, "senses": {"location": True}}

    assert client.delete(f"/krill/pair/{pid}", headers=AUTH).json() == {"success": True, "revoked": pid}
    missing = client.delete(f"/krill/pair/{pid}", headers=AUTH)
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "error": "Pairing not found"}

    assert client.post("/krill/validate", json={"pairing_token": token}).json() == {
        "valid": False,
        "error": "Invalid or expired token",
    }


def test_validate_requires_token_field(client):
    resp = client.post("/krill/validate", json={})
    assert resp.status_code == 400


def test_pair_for_unknown_agent_rejected(client):
    resp = client.post(
        "/krill/pair",
        json={"agent_mxid": "@someone-else:x", "user_mxid": "@u:x", "device_id": "d1"},
        headers=AUTH,
    )
    assert resp.status_code == 400


def test_senses_validation(client, ctx):
    assert client.post("/krill/pair/pair_missing/senses", json={"a": True}, headers=AUTH).status_code == 404


def test_enroll_then_verify(client):
    enrolled = client.post("/krill/enroll", json={"agent_mxid": "@bot:krillbot.network", "display_name": "Bot"}, headers=AUTH)
    content = enrolled.json()["enrollment"]["content"]

    ok = client.post(
        "/krill/verify",
        json={
            "agent_mxid": "@bot:krillbot.network",
            "gateway_id": content["gateway_id"],
            "verification_hash": content["verification_hash"],
            "enrolled_at": content["enrolled_at"],
        },
    ).json()
    assert ok["valid"] is True
    assert ok["agent"]["status"] == "online"

    bad = client.post(
        "/krill/verify",
        json={
            "agent_mxid": "@bot:krillbot.network",
            "gateway_id": "gw-other",
            "verification_hash": content["verification_hash"],
            "enrolled_at": content["enrolled_at"],
        },
    ).json()
    assert bad == {"valid": False, "error": "Gateway ID mismatch"}


def test_agents_listing(client):
    agents = client.get("/krill/agents", headers=AUTH).json()["agents"]
    assert agents[0]["mxid"] == "@bot:krillbot.network"
    assert agents[0]["gateway_id"] == "gw-test"
    assert len(agents[0]["verification_hash"]) == 64


def test_message_endpoint_returns_replies(client):
    resp = client.post(
        "/krill/message",
        json={"type": "ai.krill.health.ping", "content": {"request_id": "r1", "skip_llm_test": True}},
        headers={**AUTH, "X-Krill-Sender": "@monitor:x"},
    )
    body = resp.json()
    assert body["handled"] is True
    assert [r["type"] for r in body["replies"]] == ["ai.krill.health.ack", "ai.krill.health.pong"]


def test_message_endpoint_conversation_falls_through(client, ctx):
    body = client.post("/krill/message", json={"text": "hello"}, headers=AUTH).json()
    assert body == {"handled": False, "replies": []}
    assert ctx.clock.is_active()


def test_status_is_public(client):
    body = client.get("/api/status").json()
    assert body["ok"] is True
    assert body["gateway_id"] == "gw-test"
    assert body["config_update"] == {"busy": False, "state": "idle"}


def test_verify_with_non_ascii_hash_is_invalid_not_500(client):
    resp = client.post(
        "/krill/verify",
        json={
            "agent_mxid": "@bot:krillbot.network",
            "gateway_id": "gw-test",
            "verification_hash": "é" * 64,
            "enrolled_at": 1700000000,
        },
    )
    assert resp.status_code == 200
    assert resp.json() == {"valid": False, "error": "Hash mismatch"}


def test_location_route_requires_token_and_reads_tracker(client, ctx):
    assert client.get("/krill/senses/location").status_code == 401

    empty = client.get("/krill/senses/location", params={"day": "2026-02-26"}, headers=AUTH).json()
    assert empty == {"current": None, "day": "2026-02-26", "history": [], "geofences": []}

    pid_token = client.post("/krill/pair", json={"user_mxid": "@u:x", "device_id": "d1"}, headers=AUTH).json()
    token = pid_token["pairing"]["pairing_token"]
    client.post(
        "/krill/message",
        json={
            "type": "ai.krill.sense.location",
            "content": {"latitude": 41.0, "longitude": 2.0, "timestamp": 1772064000},
            "ai.krill.auth": {"pairing_token": token},
        },
        headers=AUTH,
    )

    body = client.get("/krill/senses/location", params={"day": "2026-02-26"}, headers=AUTH).json()
    assert body["current"]["current"]["latitude"] == 41.0
    assert len(body["history"]) == 1
    assert client.get("/krill/senses/location", params={"day": "../x"}, headers=AUTH).status_code == 422
