import math
from typing import Any, Dict

EARTH_RADIUS_M = 6371000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    R = EARTH_RADIUS_M
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * R * math.asin(min(1.0, math.sqrt(a)))


def _lng_range(min_lng: float, max_lng: float, field: str = "lng") -> Dict[str, Any]:
    # min_lng > max_lng means the range wraps across the antimeridian
    if min_lng <= max_lng:
        return {field: {"$gte": min_lng, "$lte": max_lng}}
    return {"$or": [{field: {"$gte": min_lng}}, {field: {"$lte": max_lng}}]}


def box_filter(min_lat: float, max_lat: float, min_lng: float, max_lng: float, prefix: str = "") -> Dict[str, Any]:
    """``prefix`` targets an embedded document, e.g. ``"pin."`` after a lookup."""
    query: Dict[str, Any] = {f"{prefix}lat": {"$gte": min_lat, "$lte": max_lat}}
    query.update(_lng_range(min_lng, max_lng, f"{prefix}lng"))
    return query


def radius_filter(lat: float, lng: float, radius_m: float) -> Dict[str, Any]:
    """Bounding box that contains every point within ``radius_m`` of (lat, lng).

    Candidates still need an exact ``haversine_m`` check.
    """
    ang = radius_m / EARTH_RADIUS_M
    dlat = math.degrees(ang)
    min_lat, max_lat = lat - dlat, lat + dlat
    if min_lat <= -90 or max_lat >= 90:
        # circle covers a pole: every longitude qualifies
        return {"lat": {"$gte": max(min_lat, -90.0), "$lte": min(max_lat, 90.0)}}

    dlng = math.degrees(math.asin(math.sin(ang) / math.cos(math.radians(lat))))
    if dlng >= 180:
        return {"lat": {"$gte": min_lat, "$lte": max_lat}}

    min_lng, max_lng = lng - dlng, lng + dlng
    if min_lng < -180:
        min_lng += 360
    if max_lng > 180:
        max_lng -= 360
    return box_filter(min_lat, max_lat, min_lng, max_lng)
