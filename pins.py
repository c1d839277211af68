"""
Pins and the minimum-distance rule between them.

No two pins may sit within ``MIN_PIN_DISTANCE_METERS`` of each other. The
nearby check and the insert run in one transaction after touching the
``pin_lock`` documents for the cells around the point; two concurrent
creations close together therefore write the same lock document, one of
them is aborted and replayed, and on replay it sees the other's pin.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId

from config import DEFAULT_SEARCH_RADIUS_METERS, MAX_SEARCH_RADIUS_METERS, MIN_PIN_DISTANCE_METERS
from database import Store, now, run_in_transaction
from errors import BadRequestError, ConflictError
from geo import haversine_m, radius_filter
from geocoding import GoogleGeocoder, Location

logger = logging.getLogger(__name__)

# one band is ~111 m of latitude, wider than the minimum pin distance
LOCK_BAND_DEGREES = 0.001
MAX_SEARCH_RESULTS = 100
MAX_PIN_NAME_LENGTH = 200


def validate_coordinates(lat: Optional[float], lng: Optional[float]) -> Tuple[float, float]:
    if lat is None or lng is None:
        raise BadRequestError("lat and lng are required")
    if not (-90 <= lat <= 90) or not (-180 <= lng <= 180):
        raise BadRequestError("lat must be within [-90, 90] and lng within [-180, 180]")
    return float(lat), float(lng)


def validate_pin_name(name: Optional[str]) -> str:
    trimmed = (name or "").strip()
    if len(trimmed) < 1 or len(trimmed) > MAX_PIN_NAME_LENGTH:
        raise BadRequestError(f"Pin name must be between 1 and {MAX_PIN_NAME_LENGTH} characters")
    return trimmed


def _cells_in_band(band: int) -> int:
    # cells stay at least one band (~111 m) wide along the band's poleward edge
    edge = min(90.0, max(abs(band * LOCK_BAND_DEGREES), abs((band + 1) * LOCK_BAND_DEGREES)))
    return max(1, int(360 * math.cos(math.radians(edge)) / LOCK_BAND_DEGREES))


def lock_keys(lat: float, lng: float) -> List[str]:
    """Lock cells around a point: its latitude band and both neighbours, and
    within each band its longitude cell and both neighbours, wrapping at 180.

    Two points within ``MIN_PIN_DISTANCE_METERS`` always share a key.
    """
    keys = []
    band = math.floor(lat / LOCK_BAND_DEGREES)
    for b in (band - 1, band, band + 1):
        cells = _cells_in_band(b)
        cell = math.floor((lng + 180.0) * cells / 360.0) % cells
        for c in sorted({(cell - 1) % cells, cell, (cell + 1) % cells}):
            keys.append(f"{b}:{c}")
    return keys


def lock_area(store: Store, lat: float, lng: float, session=None):
    for key in lock_keys(lat, lng):
        store.pin_locks.update_one({"_id": key}, {"$inc": {"version": 1}}, upsert=True, session=session)


def find_nearby(
    store: Store,
    lat: float,
    lng: float,
    radius: float,
    limit: Optional[int] = None,
    session=None,
) -> List[Dict[str, Any]]:
    """Pins within ``radius`` meters, nearest first, each with ``distance``."""
    rows = []
    for pin in store.pins.find(radius_filter(lat, lng, radius), session=session):
        distance = haversine_m(lat, lng, pin["lat"], pin["lng"])
        if distance <= radius:
            rows.append({**pin, "distance": distance})
    rows.sort(key=lambda p: (p["distance"], str(p["_id"])))
    return rows[:limit] if limit else rows


def search(store: Store, lat: float, lng: float, radius: Optional[float] = None) -> List[Dict[str, Any]]:
    lat, lng = validate_coordinates(lat, lng)
    radius_m = radius if radius and radius > 0 else DEFAULT_SEARCH_RADIUS_METERS
    radius_m = min(radius_m, MAX_SEARCH_RADIUS_METERS)
    return find_nearby(store, lat, lng, radius_m, limit=MAX_SEARCH_RESULTS)


def _insert_pin(store: Store, session, user_id: ObjectId, name: str, lat: float, lng: float,
                google_place_id: Optional[str], location: Location) -> Dict[str, Any]:
    doc = {
        "name": name,
        "lat": lat,
        "lng": lng,
        "google_place_id": google_place_id or None,
        "city": location.city,
        "country": location.country,
        "created_by": user_id,
        "created_at": now(),
    }
    res = store.pins.insert_one(doc, session=session)
    doc["_id"] = res.inserted_id
    return doc


def _conflict(pin: Dict[str, Any]) -> ConflictError:
    return ConflictError(f'A pin already exists nearby: "{pin["name"]}"')


def create_pin(
    store: Store,
    geocoder: GoogleGeocoder,
    user_id: ObjectId,
    name: str,
    lat: float,
    lng: float,
    google_place_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Explicit creation: a pin already within range is a conflict."""
    lat, lng = validate_coordinates(lat, lng)
    name = validate_pin_name(name)

    # cheap pre-check so a duplicate never costs a geocoding call
    nearby = find_nearby(store, lat, lng, MIN_PIN_DISTANCE_METERS, limit=1)
    if nearby:
        raise _conflict(nearby[0])

    location = geocoder.reverse_geocode(lat, lng)
    if not location.country:
        raise BadRequestError("Could not determine location country")

    def work(session):
        lock_area(store, lat, lng, session)
        existing = find_nearby(store, lat, lng, MIN_PIN_DISTANCE_METERS, limit=1, session=session)
        if existing:
            raise _conflict(existing[0])
        return _insert_pin(store, session, user_id, name, lat, lng, google_place_id, location)

    pin = run_in_transaction(store, work)
    logger.info("Pin %s created at (%s, %s) by user %s", pin["_id"], lat, lng, user_id)
    return pin


def resolve_pin_for_comment(
    store: Store,
    session,
    user_id: ObjectId,
    name: str,
    lat: float,
    lng: float,
    google_place_id: Optional[str],
    location: Location,
) -> Tuple[Dict[str, Any], bool]:
    """Implicit creation while commenting: reuse the nearest pin in range.

    Runs inside the caller's transaction. Returns ``(pin, created)``.
    """
    lock_area(store, lat, lng, session)
    existing = find_nearby(store, lat, lng, MIN_PIN_DISTANCE_METERS, limit=1, session=session)
    if existing:
        return existing[0], False
    return _insert_pin(store, session, user_id, name, lat, lng, google_place_id, location), True
