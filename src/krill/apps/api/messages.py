from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, Header

from krill.apps.api.auth import require_token
from krill.services.gateway_context import GatewayContext, get_ctx

router = APIRouter(tags=["messages"], dependencies=[Depends(require_token)])


@router.post("/krill/message")
async def deliver_message(
    envelope: Dict[str, Any] = Body(...),
    x_krill_sender: str | None = Header(default=None),
    ctx: GatewayContext = Depends(get_ctx),
):
    """
    Deliver one envelope over HTTP.  Replies are collected and returned in the
    response body instead of being sent back over chat.
    """
    replies: List[Dict[str, Any]] = []

    async def _collect(reply: Dict[str, Any]) -> None:
        replies.append(reply)

    handled = await ctx.dispatcher.handle_text(envelope, x_krill_sender, _collect)
    return {"handled": handled, "replies": replies}
