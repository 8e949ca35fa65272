from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from krill.apps.api.auth import require_token
from krill.services.errors import MalformedInputError, PairingNotFoundError
from krill.services.gateway_context import GatewayContext, get_ctx
from krill.services.pairing.manager import PairingManager

router = APIRouter(tags=["pairing"])


def _get_manager(ctx: GatewayContext = Depends(get_ctx)) -> PairingManager:
    return ctx.pairing


class PairReq(BaseModel):
    user_mxid: str
    device_id: str
    agent_mxid: Optional[str] = None
    device_name: Optional[str] = None
    device_type: Optional[str] = None


class ValidateReq(BaseModel):
    pairing_token: Optional[str] = None


@router.post("/krill/pair", dependencies=[Depends(require_token)])
async def create_pairing(body: PairReq, mgr: PairingManager = Depends(_get_manager)):
    if mgr.agent is not None and body.agent_mxid and body.agent_mxid != mgr.agent.mxid:
        return JSONResponse(status_code=400, content={"success": False, "error": "Unknown agent"})
    try:
        result = await mgr.request_pairing(body.user_mxid, body.device_id, body.device_name or body.device_id, body.device_type)
    except MalformedInputError as exc:
        return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})
    if not result.success:
        return JSONResponse(status_code=503, content={"success": False, "error": result.error})
    return {
        "success": True,
        "pairing": {
            "pairing_id": result.pairing_id,
            "pairing_token": result.token,
            "agent_mxid": result.agent["mxid"],
            "created_at": result.created_at,
        },
    }


@router.get("/krill/pairings", dependencies=[Depends(require_token)])
async def list_pairings(agent: Optional[str] = None, mgr: PairingManager = Depends(_get_manager)):
    return {"pairings": await mgr.list_pairings(agent)}


@router.post("/krill/validate")
async def validate(body: ValidateReq, mgr: PairingManager = Depends(_get_manager)):
    if not body.pairing_token:
        return JSONResponse(status_code=400, content={"valid": False, "error": "Missing pairing_token"})
    pairing = await mgr.validate_token(body.pairing_token)
    if pairing is None:
        return {"valid": False, "error": "Invalid or expired token"}
    return {
        "valid": True,
        "pairing": {
            "pairing_id": pairing.pairing_id,
            "agent_mxid": pairing.agent_mxid,
            "user_mxid": pairing.user_mxid,
            "device_id": pairing.device_id,
            "senses": pairing.senses,
        },
    }


@router.delete("/krill/pair/{pairing_id}", dependencies=[Depends(require_token)])
async def revoke(pairing_id: str, mgr: PairingManager = Depends(_get_manager)):
    if not await mgr.revoke_pairing(pairing_id):
        return JSONResponse(status_code=404, content={"success": False, "error": "Pairing not found"})
    return {"success": True, "revoked": pairing_id}


@router.post("/krill/pair/{pairing_id}/senses", dependencies=[Depends(require_token)])
async def update_senses(
    pairing_id: str,
    senses: Dict[str, Any] = Body(...),
    mgr: PairingManager = Depends(_get_manager),
):
    try:
        merged = await mgr.update_senses(pairing_id, senses)
    except PairingNotFoundError:
        return JSONResponse(status_code=404, content={"success": False, "error": "Pairing not found"})
    except MalformedInputError as exc:
        return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})
    return {"success": True, "senses": merged}
