from __future__ import annotations

import time
from typing import Optional

from fastapi import APIRouter, Depends, Query

from krill.apps.api.auth import require_token
from krill.services.gateway_context import GatewayContext, get_ctx
from krill.services.senses.location import LocationTracker

router = APIRouter(tags=["senses"], dependencies=[Depends(require_token)])


def _get_tracker(ctx: GatewayContext = Depends(get_ctx)) -> LocationTracker:
    return ctx.location


@router.get("/krill/senses/location")
async def location(
    day: Optional[str] = Query(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    tracker: LocationTracker = Depends(_get_tracker),
):
    """Latest fix, the day's history (UTC, default today) and the geofences."""
    day = day or time.strftime("%Y-%m-%d", time.gmtime())
    return {
        "current": await tracker.current_location(),
        "day": day,
        "history": await tracker.history(day),
        "geofences": [
            {"id": f.geofence_id, "name": f.name, "latitude": f.latitude, "longitude": f.longitude, "radius_meters": f.radius_meters}
            for f in await tracker.load_geofences()
        ],
    }
