import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import googlemaps
from googlemaps.exceptions import ApiError, Timeout, TransportError

logger = logging.getLogger(__name__)

SUGGESTION_RADIUS_METERS = 50


@dataclass(frozen=True)
class Location:
    city: Optional[str] = None
    country: Optional[str] = None


@dataclass(frozen=True)
class PlaceSuggestion:
    place_id: str
    name: str
    lat: float
    lng: float
    types: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "placeId": self.place_id,
            "name": self.name,
            "types": self.types,
            "location": {"lat": self.lat, "lng": self.lng},
        }


def location_from_results(results: List[Dict[str, Any]]) -> Location:
    """First locality and first country found across geocoder results."""
    city = None
    country = None
    for result in results or []:
        for component in result.get("address_components", []):
            types = component.get("types", [])
            if "locality" in types and not city:
                city = component.get("long_name")
            if "country" in types and not country:
                country = component.get("long_name")
        if city and country:
            break
    return Location(city=city, country=country)


class GoogleGeocoder:
    def __init__(self, api_key: Optional[str], timeout: float = 5.0, client=None):
        if client is not None:
            self.client = client
        elif api_key:
            self.client = googlemaps.Client(key=api_key, timeout=timeout, retry_timeout=timeout)
        else:
            self.client = None

    def reverse_geocode(self, lat: float, lng: float) -> Location:
        if self.client is None:
            logger.warning("Google Places API key not configured")
            return Location()
        try:
            results = self.client.reverse_geocode((lat, lng))
        except (ApiError, TransportError, Timeout) as exc:
            logger.error("Error reverse geocoding (%s, %s): %s", lat, lng, exc)
            return Location()
        return location_from_results(results)

    def suggest_places(self, lat: float, lng: float, radius: int = SUGGESTION_RADIUS_METERS) -> List[PlaceSuggestion]:
        if self.client is None:
            logger.warning("Google Places API key not configured")
            return []
        try:
            response = self.client.places_nearby(location=(lat, lng), radius=radius)
        except (ApiError, TransportError, Timeout) as exc:
            logger.error("Error fetching nearby places: %s", exc)
            return []

        suggestions = []
        for place in response.get("results", []):
            loc = place.get("geometry", {}).get("location", {})
            suggestions.append(PlaceSuggestion(
                place_id=place.get("place_id"),
                name=place.get("name"),
                lat=loc.get("lat"),
                lng=loc.get("lng"),
                types=place.get("types", []),
            ))
        return suggestions
