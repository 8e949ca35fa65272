from __future__ import annotations

import pytest

from krill.services.settings import AgentIdentity
from krill.services.verification import (
    VerificationService,
    generate_enrollment_hash,
    verify_enrollment_hash,
)

AGENT = AgentIdentity(mxid="@bot:krillbot.network", display_name="Bot", capabilities=["chat"])


def test_hash_matches_known_format():
    h = generate_enrollment_hash("secret", "@bot:x", "gw1", 1700000000)
    assert len(h) == 64
    assert h == generate_enrollment_hash("secret", "@bot:x", "gw1", 1700000000)


@pytest.mark.parametrize(
    "secret,agent,gateway,ts",
    [
        ("other", "@bot:x", "gw1", 1700000000),
        ("secret", "@evil:x", "gw1", 1700000000),
        ("secret", "@bot:x", "gw2", 1700000000),
        ("secret", "@bot:x", "gw1", 1700000001),
    ],
)
def test_changing_any_input_fails_verification(secret, agent, gateway, ts):
    good = generate_enrollment_hash("secret", "@bot:x", "gw1", 1700000000)
    assert verify_enrollment_hash("secret", "@bot:x", "gw1", 1700000000, good)
    assert not verify_enrollment_hash(secret, agent, gateway, ts, good)


def test_foreign_gateway_rejected_before_hmac(monkeypatch):
    calls = []
    monkeypatch.setattr(
        "krill.services.verification.generate_enrollment_hash",
        lambda *a: calls.append(a) or "x",
    )
    assert not verify_enrollment_hash("s", "@a:x", "gw-other", 1, "x", expected_gateway_id="gw-mine")
    assert calls == []


def test_challenge_echoed_with_agent_metadata():
    svc = VerificationService(gateway_id="gw1", secret="secret", agent=AGENT)
    resp = svc.respond_to_challenge("nonce-123")

    assert resp["challenge"] == "nonce-123"
    assert resp["verified"] is True
    assert resp["agent"] == {
        "mxid": "@bot:krillbot.network",
        "display_name": "Bot",
        "gateway_id": "gw1",
        "capabilities": ["chat"],
        "status": "online",
    }
    assert "secret" not in repr(resp)


def test_challenge_without_agent():
    resp = VerificationService(gateway_id="gw1", secret="secret", agent=None).respond_to_challenge("n")
    assert resp["verified"] is False
    assert resp["error"] == "AGENT_NOT_FOUND"
    assert resp["challenge"] == "n"


def test_stale_challenge_expires():
    svc = VerificationService(gateway_id="gw1", secret="secret", agent=AGENT, challenge_max_age_seconds=60)
    assert svc.respond_to_challenge("n", 1000, now=1050)["verified"] is True
    expired = svc.respond_to_challenge("n", 1000, now=1061)
    assert expired["verified"] is False
    assert expired["error"] == "CHALLENGE_EXPIRED"


def test_enrollment_event_verifies():
    svc = VerificationService(gateway_id="gw1", secret="secret", agent=AGENT, gateway_url="https://gw")
    event = svc.build_enrollment("@bot:krillbot.network", "Bot", enrolled_at=1700000000)

    assert event["type"] == "ai.krill.agent"
    assert event["state_key"] == "@bot:krillbot.network"
    content = event["content"]
    assert content["gateway_url"] == "https://gw"
    assert content["capabilities"] == ["chat"]
    assert svc.verify_enrollment("@bot:krillbot.network", "gw1", 1700000000, content["verification_hash"])
    assert not svc.verify_enrollment("@bot:krillbot.network", "gw2", 1700000000, content["verification_hash"])


@pytest.mark.parametrize("claimed", ["é" * 64, "z" * 64, "ab" * 31, "", None, 12345])
def test_malformed_claimed_hash_is_rejected_not_raised(claimed):
    assert verify_enrollment_hash("secret", "@bot:x", "gw1", 1700000000, claimed) is False


def test_uppercase_hash_still_verifies():
    h = generate_enrollment_hash("secret", "@bot:x", "gw1", 1700000000)
    assert verify_enrollment_hash("secret", "@bot:x", "gw1", 1700000000, h.upper())
