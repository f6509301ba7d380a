"""
Geometry helpers for route paths.

Coordinates are ``(longitude, latitude)`` pairs throughout, matching the
order used by the map providers.
"""

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

Coordinates = Tuple[float, float]

EARTH_RADIUS_METERS = 6371000  # Earth's radius in meters


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box around a set of coordinates."""
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @property
    def width(self) -> float:
        return self.max_lon - self.min_lon

    @property
    def center(self) -> Coordinates:
        return (
            (self.min_lon + self.max_lon) / 2,
            (self.min_lat + self.max_lat) / 2,
        )


@dataclass(frozen=True)
class Viewport:
    """Camera framing for displaying a route."""
    center: Coordinates
    zoom: float


def haversine_distance(origin: Coordinates, destination: Coordinates) -> float:
    """
    Calculate the distance between two points on Earth using Haversine formula.

    Args:
        origin: (lon, lat) of the first point
        destination: (lon, lat) of the second point

    Returns:
        Distance in meters
    """
    lon1, lat1 = origin
    lon2, lat2 = destination
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def path_length_meters(path: Sequence[Coordinates]) -> float:
    """Sum of the haversine lengths of consecutive path segments."""
    total_distance = 0.0
    for i in range(1, len(path)):
        total_distance += haversine_distance(path[i - 1], path[i])
    return total_distance


def bounding_box(path: Sequence[Coordinates]) -> BoundingBox:
    """
    Compute the bounding box over all path vertices.

    Raises:
        ValueError: If the path is empty
    """
    if not path:
        raise ValueError("Cannot compute the bounding box of an empty path")

    lons = [lon for lon, _ in path]
    lats = [lat for _, lat in path]
    return BoundingBox(
        min_lon=min(lons),
        min_lat=min(lats),
        max_lon=max(lons),
        max_lat=max(lats),
    )


def viewport_for_path(path: Sequence[Coordinates], max_zoom: float) -> Viewport:
    """
    Frame a path: center on the box midpoint, zoom = log2(360 / box width).

    The zoom is capped at ``max_zoom``; a zero-width box (a path running due
    north/south or a single point) gets ``max_zoom`` directly.
    """
    box = bounding_box(path)
    if box.width <= 0:
        zoom = float(max_zoom)
    else:
        zoom = min(math.log2(360 / box.width), max_zoom)
    return Viewport(center=box.center, zoom=zoom)
