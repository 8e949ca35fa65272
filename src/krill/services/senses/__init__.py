from krill.services.senses.location import (
    Geofence,
    GeofenceEvent,
    LocationPoint,
    LocationTracker,
    LocationUpdate,
    distance_meters,
)

__all__ = [
    "Geofence",
    "GeofenceEvent",
    "LocationPoint",
    "LocationTracker",
    "LocationUpdate",
    "distance_meters",
]
