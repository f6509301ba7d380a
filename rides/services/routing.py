"""
Route resolution: place names to a distance-checked, framed route quote.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from asgiref.sync import sync_to_async
from django.conf import settings

from ..exceptions import (
    CrossBorderNotAllowed,
    DistanceExceeded,
    InvalidLocation,
    NoRouteAvailable,
    PlaceNotFound,
)
from .directions import DirectionsAPIError, MapboxDirectionsService
from .fares import round_half_up
from .geocoding import GeocodingAPIError, GeocodingCache, MapboxGeocodingService, PlaceCandidate
from .geometry import Coordinates, Viewport, path_length_meters, viewport_for_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Location:
    """A place name and, once geocoded, its (lon, lat)."""
    place_name: str
    coordinates: Optional[Coordinates] = None

    def to_dict(self) -> dict:
        return {
            'place_name': self.place_name,
            'coordinates': list(self.coordinates) if self.coordinates else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Location':
        coordinates = data.get('coordinates')
        return cls(
            place_name=data['place_name'],
            coordinates=tuple(coordinates) if coordinates else None,
        )


@dataclass(frozen=True)
class RouteQuote:
    """
    A priced-ready route between two resolved locations.

    Immutable: a new planning call produces a new quote, it never edits one.
    """
    pickup: Location
    destination: Location
    distance_km: int
    path: Tuple[Coordinates, ...]
    viewport: Viewport

    def matches(self, pickup_name: str, destination_name: str) -> bool:
        """Whether this quote was computed for exactly these inputs."""
        return (
            self.pickup.place_name == pickup_name
            and self.destination.place_name == destination_name
        )

    def to_dict(self) -> dict:
        return {
            'pickup': self.pickup.to_dict(),
            'destination': self.destination.to_dict(),
            'distance_km': self.distance_km,
            'path': [list(point) for point in self.path],
            'viewport': {
                'center': list(self.viewport.center),
                'zoom': self.viewport.zoom,
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'RouteQuote':
        return cls(
            pickup=Location.from_dict(data['pickup']),
            destination=Location.from_dict(data['destination']),
            distance_km=data['distance_km'],
            path=tuple(tuple(point) for point in data['path']),
            viewport=Viewport(
                center=tuple(data['viewport']['center']),
                zoom=data['viewport']['zoom'],
            ),
        )


class RouteResolver:
    """
    Plans routes between two free-text locations.

    Steps:
    1. Geocode both names concurrently through the session cache
    2. Require both points to be in the same country
    3. Fetch a driving route
    4. Enforce the maximum distance
    5. Frame the route for display

    Provider failures are normalized into InvalidLocation (geocoding) and
    NoRouteAvailable (routing).
    """

    def __init__(
        self,
        cache: GeocodingCache,
        directions: Optional[MapboxDirectionsService] = None,
        max_distance_km: Optional[int] = None,
        max_zoom: Optional[float] = None,
    ):
        self.cache = cache
        self.directions = directions or MapboxDirectionsService()
        self.max_distance_km = max_distance_km if max_distance_km is not None else settings.MAX_ROUTE_DISTANCE_KM
        self.max_zoom = max_zoom if max_zoom is not None else settings.MAX_MAP_ZOOM

    @property
    def geocoder(self) -> MapboxGeocodingService:
        return self.cache.provider

    async def plan_route(self, pickup_name: str, destination_name: str) -> RouteQuote:
        """
        Resolve, validate and frame a route.

        Raises:
            InvalidLocation: If either name cannot be geocoded
            CrossBorderNotAllowed: If the two points are in different countries
            NoRouteAvailable: If the routing provider has no route
            DistanceExceeded: If the route is longer than the maximum
        """
        if not pickup_name or not destination_name:
            raise InvalidLocation()

        try:
            pickup_coords, destination_coords = await asyncio.gather(
                self.cache.resolve(pickup_name),
                self.cache.resolve(destination_name),
            )
        except PlaceNotFound as e:
            raise InvalidLocation(str(e))
        except GeocodingAPIError as e:
            logger.warning(f"Geocoding failed for '{pickup_name}' / '{destination_name}': {e}")
            raise InvalidLocation()

        pickup_country, destination_country = await asyncio.gather(
            self._country_of(pickup_coords),
            self._country_of(destination_coords),
        )
        if pickup_country != destination_country:
            raise CrossBorderNotAllowed()

        try:
            candidates = await sync_to_async(self.directions.route)(pickup_coords, destination_coords)
        except DirectionsAPIError as e:
            logger.warning(f"Directions failed for '{pickup_name}' -> '{destination_name}': {e}")
            raise NoRouteAvailable()

        if not candidates or not candidates[0].coordinates:
            raise NoRouteAvailable()
        best = candidates[0]

        length_meters = best.distance_meters
        if length_meters is None:
            length_meters = path_length_meters(best.coordinates)
        distance_km = round_half_up(length_meters / 1000)

        if distance_km > self.max_distance_km:
            raise DistanceExceeded(f"Maximum allowed distance is {self.max_distance_km} km")

        quote = RouteQuote(
            pickup=Location(pickup_name, pickup_coords),
            destination=Location(destination_name, destination_coords),
            distance_km=distance_km,
            path=tuple(best.coordinates),
            viewport=viewport_for_path(best.coordinates, self.max_zoom),
        )
        logger.info(f"Planned route '{pickup_name}' -> '{destination_name}': {distance_km} km")
        return quote

    async def suggest_places(self, query: str) -> List[PlaceCandidate]:
        """Autocomplete candidates for a partially typed place name."""
        if not query or not query.strip():
            return []
        try:
            return await sync_to_async(self.geocoder.forward_geocode)(query)
        except GeocodingAPIError as e:
            logger.error(f"Error fetching suggestions for '{query}': {e}")
            return []

    async def _country_of(self, coordinates: Coordinates) -> str:
        try:
            candidates = await sync_to_async(self.geocoder.reverse_geocode)(coordinates)
        except GeocodingAPIError as e:
            logger.warning(f"Reverse geocoding failed for {coordinates}: {e}")
            raise InvalidLocation()

        country = candidates[0].country if candidates else None
        if not country:
            raise InvalidLocation(f"Could not determine the country of {coordinates}")
        return country
