from __future__ import annotations

import json

import pytest

ADMIN = "@admin:krillbot.network"


def _allow(doc_path):
    return json.loads(doc_path.read_text())["channels"]["matrix"]


@pytest.mark.anyio
async def test_add_and_remove(ctx, gateway_config):
    added = await ctx.allowlist.handle({"action": "add", "mxid": "@new:krillbot.network", "reason": "hire"}, ADMIN)
    assert added["success"] is True
    assert added["allowlist"] == ["@owner:krillbot.network", "@new:krillbot.network"]
    assert _allow(gateway_config)["dmPolicy"] == "allowlist"

    again = await ctx.allowlist.handle({"action": "add", "mxid": "@new:krillbot.network"}, ADMIN)
    assert again["allowlist"].count("@new:krillbot.network") == 1

    removed = await ctx.allowlist.handle({"action": "remove", "mxid": "@new:krillbot.network"}, ADMIN)
    assert removed["allowlist"] == ["@owner:krillbot.network"]
    assert _allow(gateway_config)["allowFrom"] == ["@owner:krillbot.network"]


@pytest.mark.anyio
@pytest.mark.parametrize(
    "content,error",
    [
        ({"action": "add", "mxid": "bob"}, "INVALID_MXID"),
        ({"action": "add", "mxid": "@bob"}, "INVALID_MXID"),
        ({"action": "promote", "mxid": "@bob:x"}, "INVALID_ACTION"),
    ],
)
async def test_rejections(ctx, gateway_config, content, error):
    before = gateway_config.read_bytes()
    resp = await ctx.allowlist.handle(content, ADMIN)
    assert resp["success"] is False
    assert resp["error"] == error
    assert gateway_config.read_bytes() == before


@pytest.mark.anyio
async def test_missing_config_is_read_error(ctx, gateway_config):
    gateway_config.unlink()
    resp = await ctx.allowlist.handle({"action": "add", "mxid": "@bob:x"}, ADMIN)
    assert resp["error"] == "CONFIG_READ_ERROR"


@pytest.mark.anyio
async def test_busy_while_config_update_runs(ctx):
    async with ctx.config_store.lock:
        resp = await ctx.allowlist.handle({"action": "add", "mxid": "@bob:x"}, ADMIN)
    assert resp["error"] == "CONFIG_BUSY"


@pytest.mark.anyio
async def test_unauthorized_sender_via_dispatcher(ctx, replies, gateway_config):
    before = gateway_config.read_bytes()
    envelope = {"type": "ai.krill.allowlist", "content": {"action": "add", "mxid": "@bob:x"}}
    await ctx.dispatcher.handle_text(envelope, "@mallory:x", replies)

    resp = replies.last()
    assert resp["type"] == "ai.krill.allowlist.response"
    assert resp["content"]["error"] == "UNAUTHORIZED_SENDER"
    assert resp["content"]["mxid"] == "@bob:x"
    assert gateway_config.read_bytes() == before
