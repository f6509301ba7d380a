"""
Mapbox Directions API service for fetching driving routes.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import polyline
import requests
from django.conf import settings

from .geometry import Coordinates

logger = logging.getLogger(__name__)


class DirectionsAPIError(Exception):
    """Exception raised for Mapbox Directions API errors."""
    pass


@dataclass(frozen=True)
class RouteCandidate:
    """One driving route returned by the provider."""
    distance_meters: Optional[float]
    coordinates: Tuple[Coordinates, ...]  # (lon, lat) vertices


class MapboxDirectionsService:
    """
    Service for interacting with the Mapbox Directions API.

    Responsibilities:
    - Fetch candidate driving routes between two coordinates
    - Decode the route polyline into (lon, lat) vertices
    - Turn transport and API failures into DirectionsAPIError
    """

    BASE_URL = "https://api.mapbox.com/directions/v5/mapbox/driving"
    POLYLINE_PRECISION = 5

    def __init__(self, access_token: Optional[str] = None, timeout: float = 10):
        self.access_token = access_token if access_token is not None else settings.MAPBOX_ACCESS_TOKEN
        self.timeout = timeout

    def route(self, origin: Coordinates, destination: Coordinates) -> List[RouteCandidate]:
        """
        Fetch driving routes between two points.

        Args:
            origin: (lon, lat) of the start
            destination: (lon, lat) of the end

        Returns:
            List of RouteCandidate, best first; empty when no route exists

        Raises:
            DirectionsAPIError: If the API request fails or the response is malformed
        """
        if not self.access_token:
            raise DirectionsAPIError("Mapbox access token is not configured")

        url = (
            f"{self.BASE_URL}/"
            f"{origin[0]},{origin[1]};{destination[0]},{destination[1]}"
        )
        params = {
            'geometries': 'polyline',
            'overview': 'full',
            'access_token': self.access_token,
        }

        try:
            response = requests.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise DirectionsAPIError(f"API request failed: {str(e)}")
        except ValueError as e:
            raise DirectionsAPIError(f"Malformed response: {str(e)}")

        code = data.get('code')
        if code == 'NoRoute':
            return []
        if code != 'Ok':
            error_message = data.get('message', code or 'Unknown error')
            raise DirectionsAPIError(f"Directions API error: {error_message}")

        candidates = []
        for route in data.get('routes', []):
            geometry = route.get('geometry') or ''
            try:
                points = polyline.decode(geometry, self.POLYLINE_PRECISION)
            except (ValueError, IndexError, TypeError) as e:
                raise DirectionsAPIError(f"Malformed route geometry: {str(e)}")
            candidates.append(RouteCandidate(
                distance_meters=route.get('distance'),
                coordinates=tuple((lon, lat) for lat, lon in points),
            ))

        logger.debug(f"Directions returned {len(candidates)} route(s)")
        return candidates
