"""
Mapbox Geocoding API service and the per-session geocoding cache.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

import requests
from asgiref.sync import sync_to_async
from django.conf import settings

from ..exceptions import PlaceNotFound
from .geometry import Coordinates

logger = logging.getLogger(__name__)


class GeocodingAPIError(Exception):
    """Exception raised for Mapbox Geocoding API errors."""
    pass


@dataclass(frozen=True)
class PlaceCandidate:
    """A single geocoding result."""
    place_name: str
    coordinates: Coordinates  # (lon, lat)
    feature_id: str = ''
    text: str = ''
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)  # (id, text) pairs

    @property
    def country(self) -> Optional[str]:
        """Administrative country of this place, if the provider reported one."""
        if self.feature_id.startswith('country'):
            return self.text or self.place_name
        for context_id, context_text in self.context:
            if context_id.startswith('country'):
                return context_text
        return None


class MapboxGeocodingService:
    """
    Service for interacting with the Mapbox Geocoding API.

    Responsibilities:
    - Forward geocoding: free text to candidate places
    - Reverse geocoding: coordinates to candidate places with admin context
    - Turn transport and API failures into GeocodingAPIError
    """

    BASE_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"

    def __init__(self, access_token: Optional[str] = None, timeout: float = 10):
        self.access_token = access_token if access_token is not None else settings.MAPBOX_ACCESS_TOKEN
        self.timeout = timeout

    def forward_geocode(self, text: str) -> List[PlaceCandidate]:
        """Return candidate places for a free-text query, best first."""
        return self._search(text)

    def reverse_geocode(self, coordinates: Coordinates) -> List[PlaceCandidate]:
        """Return candidate places at the given (lon, lat), best first."""
        lon, lat = coordinates
        return self._search(f"{lon},{lat}")

    def _search(self, query: str) -> List[PlaceCandidate]:
        if not self.access_token:
            raise GeocodingAPIError("Mapbox access token is not configured")

        url = f"{self.BASE_URL}/{quote(query, safe=',')}.json"
        params = {'access_token': self.access_token}

        try:
            response = requests.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise GeocodingAPIError(f"API request failed: {str(e)}")
        except ValueError as e:
            raise GeocodingAPIError(f"Malformed response: {str(e)}")

        features = data.get('features')
        if features is None:
            raise GeocodingAPIError(f"Geocoding API error: {data.get('message', 'no features in response')}")

        try:
            return [self._parse_feature(feature) for feature in features]
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodingAPIError(f"Malformed feature: {str(e)}")

    @staticmethod
    def _parse_feature(feature: dict) -> PlaceCandidate:
        lon, lat = feature['center']
        return PlaceCandidate(
            place_name=feature.get('place_name', ''),
            coordinates=(float(lon), float(lat)),
            feature_id=feature.get('id', ''),
            text=feature.get('text', ''),
            context=tuple(
                (ctx.get('id', ''), ctx.get('text', ''))
                for ctx in feature.get('context', [])
            ),
        )


class GeocodingCache:
    """
    Memoizes place-name to coordinate lookups for one booking session.

    Entries are keyed by the exact place-name string. A hit never touches the
    provider; failures are never stored. Concurrent lookups of the same name
    are not deduplicated.
    """

    def __init__(self, provider: MapboxGeocodingService, entries: Optional[Dict[str, Coordinates]] = None):
        self.provider = provider
        self.entries = entries if entries is not None else {}

    def __contains__(self, place_name: str) -> bool:
        return place_name in self.entries

    def get(self, place_name: str) -> Optional[Coordinates]:
        return self.entries.get(place_name)

    async def resolve(self, place_name: str) -> Coordinates:
        """
        Resolve a place name to (lon, lat).

        Raises:
            PlaceNotFound: If the provider has no candidates for the name
            GeocodingAPIError: If the provider request fails
        """
        cached = self.entries.get(place_name)
        if cached is not None:
            return cached

        candidates = await sync_to_async(self.provider.forward_geocode)(place_name)
        if not candidates:
            raise PlaceNotFound(f"No place found for '{place_name}'")

        coordinates = candidates[0].coordinates
        self.entries[place_name] = coordinates
        logger.debug(f"Geocoded '{place_name}' to {coordinates}")
        return coordinates
