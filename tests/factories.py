"""
Plain helpers shared by the test modules: points, requests, a recording
event emitter and a controllable clock.
"""
import math
from datetime import datetime, timedelta

from app.schemas.schemas import RideCreateRequest
from app.services.geo import EARTH_RADIUS_KM, Point
from app.services.notifications import EventEmitter

ORIGIN = Point(12.9716, 77.5946)


def offset(point: Point, north_km: float = 0.0, east_km: float = 0.0) -> Point:
    """A point `north_km` north and `east_km` east of `point`."""
    dlat = math.degrees(north_km / EARTH_RADIUS_KM)
    dlng = math.degrees(east_km / (EARTH_RADIUS_KM * math.cos(math.radians(point.lat))))
    return Point(point.lat + dlat, point.lng + dlng)


def ride_request(
    pickup: Point = ORIGIN,
    dropoff: Point | None = None,
    fare: int = 1000,
    mode: str = "PRIVATE",
    **extra,
) -> RideCreateRequest:
    dropoff = dropoff or offset(ORIGIN, north_km=8)
    return RideCreateRequest(
        mode=mode,
        pickup_address="MG Road Metro",
        dropoff_address="Indiranagar 100ft Road",
        pickup_lat=pickup.lat,
        pickup_lng=pickup.lng,
        dropoff_lat=dropoff.lat,
        dropoff_lng=dropoff.lng,
        fare_estimate=fare,
        **extra,
    )


class RecordingEmitter(EventEmitter):
    def __init__(self):
        self.events = []

    async def _deliver(self, event):
        self.events.append(event)

    def kinds(self):
        return [e.kind.value for e in self.events]

    def of_kind(self, kind: str):
        return [e for e in self.events if e.kind.value == kind]


class FakeClock:
    """Advances one millisecond per read so join order stays deterministic."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(milliseconds=1)
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now
