"""
WasteWatch - Geospatial Utilities
Common geospatial calculations used by dispatch and analytics queries.
"""

import math
from typing import List, Tuple, Optional
from dataclasses import dataclass

from src.core.constants import HOTSPOT_GRID_PRECISION, HOTSPOT_SEVERITY_THRESHOLDS

# Earth's radius in kilometers
EARTH_RADIUS_KM = 6371.0


@dataclass
class Point:
    """Geographic point with latitude and longitude."""
    latitude: float
    longitude: float


@dataclass
class BoundingBox:
    """Geographic bounding box."""
    west: float   # min longitude
    south: float  # min latitude
    east: float   # max longitude
    north: float  # max latitude

    def contains(self, point: Point) -> bool:
        """Check if a point is within the bounding box."""
        return (
            self.west <= point.longitude <= self.east and
            self.south <= point.latitude <= self.north
        )


def is_valid_coordinate(latitude: float, longitude: float) -> bool:
    """Check latitude is within [-90, 90] and longitude within [-180, 180]."""
    if latitude is None or longitude is None:
        return False
    if math.isnan(latitude) or math.isnan(longitude):
        return False
    return -90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0


def haversine_distance(
    lat1: float, lon1: float,
    lat2: float, lon2: float
) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates in decimal degrees
        lat2, lon2: Second point coordinates in decimal degrees

    Returns:
        Distance in kilometers
    """
    # Convert to radians
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    # Haversine formula
    a = (
        math.sin(delta_lat / 2) ** 2 +
        math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def bounding_box_around(
    latitude: float,
    longitude: float,
    radius_km: float
) -> BoundingBox:
    """
    Bounding box enclosing a circle of radius_km around a point.

    Used as a cheap prefilter before the exact haversine check. Near the
    poles or across the antimeridian the longitude span widens to the
    full [-180, 180] range.

    Args:
        latitude, longitude: Circle center in decimal degrees
        radius_km: Circle radius in kilometers

    Returns:
        BoundingBox clamped to valid coordinates
    """
    delta_lat = math.degrees(radius_km / EARTH_RADIUS_KM)
    south = max(-90.0, latitude - delta_lat)
    north = min(90.0, latitude + delta_lat)

    cos_lat = math.cos(math.radians(latitude))
    if cos_lat < 1e-6 or south <= -90.0 or north >= 90.0:
        return BoundingBox(west=-180.0, south=south, east=180.0, north=north)

    delta_lon = math.degrees(radius_km / (EARTH_RADIUS_KM * cos_lat))
    west = longitude - delta_lon
    east = longitude + delta_lon
    if west < -180.0 or east > 180.0:
        west, east = -180.0, 180.0

    return BoundingBox(west=west, south=south, east=east, north=north)


def grid_cell(
    latitude: float,
    longitude: float,
    precision: int = HOTSPOT_GRID_PRECISION
) -> Tuple[float, float]:
    """Snap a coordinate to its grid cell key (2 decimals ~ 1.1 km)."""
    return (round(latitude, precision), round(longitude, precision))


def hotspot_severity(report_count: int) -> str:
    """Severity label for a hotspot cell: low (<10), medium (<20), high."""
    for min_count, label in HOTSPOT_SEVERITY_THRESHOLDS:
        if report_count >= min_count:
            return label
    return "low"


def calculate_centroid(
    points: List[Tuple[float, float]]
) -> Optional[Tuple[float, float]]:
    """
    Calculate the centroid (center of mass) of a set of points.

    Args:
        points: List of (latitude, longitude) tuples

    Returns:
        Tuple of (latitude, longitude) of the centroid, None when empty
    """
    if not points:
        return None

    lat_sum = sum(p[0] for p in points)
    lon_sum = sum(p[1] for p in points)
    n = len(points)

    return (lat_sum / n, lon_sum / n)
