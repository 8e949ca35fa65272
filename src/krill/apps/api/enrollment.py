from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from krill.apps.api.auth import require_token
from krill.services.gateway_context import GatewayContext, get_ctx
from krill.services.verification import VerificationService

router = APIRouter(tags=["enrollment"])


def _get_service(ctx: GatewayContext = Depends(get_ctx)) -> VerificationService:
    return ctx.verification


class VerifyReq(BaseModel):
    agent_mxid: str
    gateway_id: str
    verification_hash: str
    enrolled_at: int


class EnrollReq(BaseModel):
    agent_mxid: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    capabilities: Optional[List[str]] = None


@router.post("/krill/verify")
async def verify(body: VerifyReq, svc: VerificationService = Depends(_get_service)):
    """Check an enrollment hash issued by this gateway."""
    if body.gateway_id != svc.gateway_id:
        return {"valid": False, "error": "Gateway ID mismatch"}
    if not svc.verify_enrollment(body.agent_mxid, body.gateway_id, body.enrolled_at, body.verification_hash):
        return {"valid": False, "error": "Hash mismatch"}
    agent = svc.agent
    return {
        "valid": True,
        "agent": (
            {
                "mxid": agent.mxid,
                "display_name": agent.display_name,
                "description": agent.description,
                "capabilities": list(agent.capabilities),
                "status": "online",
            }
            if agent is not None and agent.mxid == body.agent_mxid
            else None
        ),
    }


@router.post("/krill/enroll", dependencies=[Depends(require_token)])
async def enroll(body: EnrollReq, svc: VerificationService = Depends(_get_service)):
    event = svc.build_enrollment(body.agent_mxid, body.display_name, body.description, body.capabilities)
    return {"success": True, "enrollment": event}


@router.get("/krill/agents", dependencies=[Depends(require_token)])
async def agents(svc: VerificationService = Depends(_get_service)):
    return {"agents": svc.list_agents()}
