from fastapi import Depends, Header, HTTPException, status

from krill.services.gateway_context import GatewayContext, get_ctx


def _expected_token(ctx: GatewayContext) -> str:
    return ctx.settings.api_token or "dev-local-token"


async def require_token(
    x_krill_token: str | None = Header(default=None),
    authorization: str | None = Header(default=None),
    ctx: GatewayContext = Depends(get_ctx),
) -> None:
    """
    Accept either X-Krill-Token or Authorization: Bearer <token>.
    """
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    elif x_krill_token:
        token = x_krill_token

    if token != _expected_token(ctx):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing X-Krill-Token",
        )
