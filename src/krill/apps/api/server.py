# src/krill/apps/api/server.py
import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from krill.build_info import BUILD_INFO
from krill.services.gateway_context import GatewayContext, get_ctx

_log = logging.getLogger("krill.api")
_STARTED = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    ctx = get_ctx()
    app.state.ctx = ctx
    # background timers start only after the app is serving
    await ctx.start_background()
    _log.info("gateway %s up (version %s)", ctx.settings.gateway_id, BUILD_INFO.version)
    try:
        yield
    finally:
        await ctx.stop_background()
        _log.info("gateway %s stopped", ctx.settings.gateway_id)


def create_app() -> FastAPI:
    from krill.apps.api import enrollment, messages, pairing, senses

    application = FastAPI(title="Krill Gateway", version=BUILD_INFO.version, lifespan=lifespan)
    application.include_router(pairing.router)
    application.include_router(enrollment.router)
    application.include_router(messages.router)
    application.include_router(senses.router)

    @application.get("/api/status")
    async def status(ctx: GatewayContext = Depends(get_ctx)):
        last = ctx.updates.last_report
        return {
            "ok": True,
            "gateway_id": ctx.settings.gateway_id,
            "agent": ctx.settings.agent.mxid if ctx.settings.agent else None,
            "version": BUILD_INFO.version,
            "build_date": BUILD_INFO.build_date,
            "uptime_seconds": int(time.time() - _STARTED),
            "activity": ctx.clock.state().value,
            "config_update": {"busy": ctx.config_update.busy, "state": ctx.config_update.state.value},
            "scheduler": {"running": ctx.scheduler.running, "jobs": ctx.scheduler.jobs()},
            "last_update_check": last.to_dict() if last else None,
        }

    return application


app = create_app()
