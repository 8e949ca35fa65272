"""Location sense.

Devices stream ``ai.krill.sense.location`` fixes.  A fix that moved less than
the movement threshold only refreshes the timestamp of the current position;
a significant one replaces the current position, is appended to the day's
history and is checked against the geofences.  Entering or leaving a geofence
is the only thing the agent hears about.

Layout under the location directory::

    current.json           latest position
    geofences.json         {"<id>": {"name", "latitude", "longitude", "radius_meters"}}
    geofence-state.json    {"<id>": {"inside": bool, "since": iso}}
    history/YYYY-MM-DD.json
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from krill.adapters.fs.json_store import JsonDocumentStore
from krill.config import const
from krill.services.errors import MalformedInputError, StoreError

_log = logging.getLogger("krill.senses.location")

EARTH_RADIUS_METERS = 6_371_000.0
_OPTIONAL_FIELDS = ("accuracy", "altitude", "speed", "heading")


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle (haversine) distance."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(slots=True)
class LocationPoint:
    latitude: float
    longitude: float
    timestamp: str
    extra: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_content(cls, content: Mapping[str, Any], *, now: float) -> "LocationPoint":
        lat, lon = content.get("latitude"), content.get("longitude")
        if not _is_number(lat) or not _is_number(lon):
            raise MalformedInputError("sense.location requires numeric latitude and longitude")
        if not -90 <= lat <= 90 or not -180 <= lon <= 180:
            raise MalformedInputError("latitude/longitude out of range")
        ts = content.get("timestamp")
        try:
            stamp = _iso(ts if _is_number(ts) else now)
        except (OverflowError, OSError, ValueError) as exc:
            raise MalformedInputError(f"bad timestamp: {ts!r}") from exc
        return cls(
            latitude=float(lat),
            longitude=float(lon),
            timestamp=stamp,
            extra={k: float(content[k]) for k in _OPTIONAL_FIELDS if _is_number(content.get(k))},
        )

    @property
    def day(self) -> str:
        return self.timestamp[:10]

    def to_dict(self) -> Dict[str, Any]:
        return {"latitude": self.latitude, "longitude": self.longitude, **self.extra, "timestamp": self.timestamp}


@dataclass(slots=True)
class Geofence:
    geofence_id: str
    name: str
    latitude: float
    longitude: float
    radius_meters: float

    @classmethod
    def from_dict(cls, geofence_id: str, data: Any) -> Optional["Geofence"]:
        if not isinstance(data, Mapping):
            return None
        lat, lon, radius = data.get("latitude"), data.get("longitude"), data.get("radius_meters")
        if not (_is_number(lat) and _is_number(lon) and _is_number(radius)):
            return None
        return cls(geofence_id, str(data.get("name") or geofence_id), float(lat), float(lon), float(radius))

    def contains(self, point: LocationPoint) -> bool:
        return distance_meters(point.latitude, point.longitude, self.latitude, self.longitude) <= self.radius_meters


@dataclass(slots=True)
class GeofenceEvent:
    event: str  # "enter" | "exit"
    geofence: Geofence
    point: LocationPoint
    since: Optional[str] = None

    def to_content(self) -> Dict[str, Any]:
        content: Dict[str, Any] = {
            "event": self.event,
            "geofence": self.geofence.geofence_id,
            "name": self.geofence.name,
            "latitude": self.point.latitude,
            "longitude": self.point.longitude,
            "timestamp": self.point.timestamp,
        }
        if self.since:
            content["duration"] = f"since {self.since}"
        return content


@dataclass(slots=True)
class LocationUpdate:
    point: LocationPoint
    significant: bool
    distance_meters: Optional[float] = None
    geofence: Optional[str] = None
    events: List[GeofenceEvent] = field(default_factory=list)


class LocationTracker:
    def __init__(
        self,
        directory: str | Path,
        *,
        threshold_meters: float = const.LOCATION_MOVEMENT_THRESHOLD_METERS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.directory = Path(directory).expanduser()
        self.threshold_meters = threshold_meters
        self._clock = clock
        self.current = JsonDocumentStore(self.directory / "current.json")
        self.geofences = JsonDocumentStore(self.directory / "geofences.json")
        self.geofence_state = JsonDocumentStore(self.directory / "geofence-state.json")
        # one lock for the whole update; it spans several documents
        self._lock = asyncio.Lock()

    def history_store(self, day: str) -> JsonDocumentStore:
        return JsonDocumentStore(self.directory / "history" / f"{day}.json")

    async def _load(self, store: JsonDocumentStore, expected: type, default: Callable[[], Any]) -> Any:
        # corrupt sense files read as empty
        try:
            doc = await store.load(default)
        except StoreError as exc:
            _log.warning("ignoring unreadable sense file: %s", exc)
            return default()
        return doc if isinstance(doc, expected) else default()

    async def current_location(self) -> Optional[Dict[str, Any]]:
        doc = await self._load(self.current, dict, dict)
        return doc or None

    async def history(self, day: str) -> List[Dict[str, Any]]:
        return await self._load(self.history_store(day), list, list)

    async def load_geofences(self) -> List[Geofence]:
        raw = await self._load(self.geofences, dict, dict)
        fences = []
        for gid, data in raw.items():
            fence = Geofence.from_dict(str(gid), data)
            if fence is None:
                _log.warning("skipping malformed geofence id=%s", gid)
                continue
            fences.append(fence)
        return fences

    async def record(self, content: Mapping[str, Any]) -> LocationUpdate:
        now = self._clock()
        point = LocationPoint.from_content(content, now=now)

        async with self._lock:
            current = await self._load(self.current, dict, dict)
            previous = current.get("current")
            distance: Optional[float] = None
            if isinstance(previous, dict) and _is_number(previous.get("latitude")) and _is_number(previous.get("longitude")):
                distance = distance_meters(previous["latitude"], previous["longitude"], point.latitude, point.longitude)
                if distance < self.threshold_meters:
                    _log.debug("movement %.0fm below %.0fm threshold", distance, self.threshold_meters)
                    current["current"] = {**previous, "timestamp": point.timestamp}
                    current["updated_at"] = _iso(now)
                    await self.current.replace(current)
                    return LocationUpdate(point=point, significant=False, distance_meters=distance)
                _log.info("significant movement %.0fm", distance)
            else:
                _log.info("first location fix %.4f, %.4f", point.latitude, point.longitude)

            fences = await self.load_geofences()
            inside = next((f.name for f in fences if f.contains(point)), None)
            doc: Dict[str, Any] = {"current": point.to_dict(), "updated_at": _iso(now)}
            if inside:
                doc["geofence"] = inside
            await self.current.replace(doc)

            history_store = self.history_store(point.day)
            history = await self._load(history_store, list, list)
            history.append(point.to_dict())
            await history_store.replace(history)

            events = await self._check_geofences(point, fences)

        return LocationUpdate(point=point, significant=True, distance_meters=distance, geofence=inside, events=events)

    async def _check_geofences(self, point: LocationPoint, fences: List[Geofence]) -> List[GeofenceEvent]:
        if not fences:
            return []
        state = await self._load(self.geofence_state, dict, dict)
        events: List[GeofenceEvent] = []
        for fence in fences:
            entry = state.get(fence.geofence_id)
            was_inside = bool(entry.get("inside")) if isinstance(entry, dict) else False
            is_inside = fence.contains(point)
            if is_inside and not was_inside:
                state[fence.geofence_id] = {"inside": True, "since": point.timestamp}
                events.append(GeofenceEvent("enter", fence, point))
                _log.info("geofence enter id=%s name=%s", fence.geofence_id, fence.name)
            elif was_inside and not is_inside:
                since = entry.get("since") if isinstance(entry, dict) else None
                state[fence.geofence_id] = {"inside": False}
                events.append(GeofenceEvent("exit", fence, point, since=since))
                _log.info("geofence exit id=%s name=%s", fence.geofence_id, fence.name)
        if events:
            await self.geofence_state.replace(state)
        return events
