"""
Tests for geospatial helpers and hotspot bucketing
"""
import pytest

import sys
sys.path.insert(0, '.')

from src.core.geo_utils import (
    Point,
    bounding_box_around,
    calculate_centroid,
    grid_cell,
    haversine_distance,
    hotspot_severity,
    is_valid_coordinate,
)
from src.crowdsource.geo_queries import find_hotspots
from src.database.models import ReportStatus

NYC = (40.7128, -74.0060)
CHICAGO = (41.8781, -87.6298)


class TestHaversine:
    """Test suite for great-circle distance."""

    def test_same_point_is_zero(self):
        """Distance from a point to itself is zero."""
        assert haversine_distance(*NYC, *NYC) == 0.0

    def test_symmetric(self):
        """Distance does not depend on direction."""
        assert haversine_distance(*NYC, *CHICAGO) == pytest.approx(haversine_distance(*CHICAGO, *NYC))

    def test_nyc_to_chicago(self):
        """Known city pair is about 1145 km apart."""
        assert haversine_distance(*NYC, *CHICAGO) == pytest.approx(1145, rel=0.01)

    def test_one_degree_of_latitude(self):
        """One degree along a meridian is about 111 km."""
        assert haversine_distance(0, 0, 1, 0) == pytest.approx(111.19, rel=0.001)


class TestCoordinates:
    """Test suite for coordinate validation and boxes."""

    @pytest.mark.parametrize("lat,lng", [(0, 0), (90, 180), (-90, -180), (40.7, -74.0)])
    def test_valid_coordinates(self, lat, lng):
        assert is_valid_coordinate(lat, lng)

    @pytest.mark.parametrize("lat,lng", [(91, 0), (-90.5, 0), (0, 181), (0, -180.1), (None, 0), (float("nan"), 0)])
    def test_invalid_coordinates(self, lat, lng):
        assert not is_valid_coordinate(lat, lng)

    def test_bounding_box_contains_circle_edge(self):
        """A point just inside the radius lies inside the prefilter box."""
        box = bounding_box_around(*NYC, radius_km=5)
        assert box.contains(Point(*NYC))
        # ~4.9 km north
        assert box.contains(Point(NYC[0] + 0.044, NYC[1]))
        assert not box.contains(Point(*CHICAGO))

    def test_bounding_box_near_pole_spans_all_longitudes(self):
        box = bounding_box_around(89.99, 10.0, radius_km=5)
        assert box.west == -180.0
        assert box.east == 180.0
        assert box.north == 90.0

    def test_bounding_box_across_antimeridian(self):
        box = bounding_box_around(0.0, 179.99, radius_km=10)
        assert box.west == -180.0
        assert box.east == 180.0
        assert box.contains(Point(0.0, -179.99))


class TestHotspots:
    """Test suite for grid hotspot detection."""

    def test_grid_cell_rounds_to_two_decimals(self):
        assert grid_cell(40.71284, -74.00601) == (40.71, -74.01)

    @pytest.mark.parametrize("count,severity", [(5, "low"), (9, "low"), (10, "medium"), (19, "medium"), (20, "high"), (75, "high")])
    def test_severity_thresholds(self, count, severity):
        assert hotspot_severity(count) == severity

    def test_centroid(self):
        assert calculate_centroid([(0, 0), (2, 4)]) == (1, 2)
        assert calculate_centroid([]) is None

    def test_find_hotspots_filters_and_orders(self):
        """Cells below min_reports are dropped, busiest cell first."""
        busy = [(40.711, -74.001, ReportStatus.SUBMITTED)] * 12
        quiet = [(41.881, -87.631, ReportStatus.COMPLETED)] * 6
        sparse = [(34.05, -118.24, ReportStatus.VERIFIED)] * 3

        hotspots = find_hotspots(busy + quiet + sparse, min_reports=5, limit=20)

        assert [h.report_count for h in hotspots] == [12, 6]
        assert hotspots[0].severity == "medium"
        assert hotspots[1].severity == "low"
        assert hotspots[0].cell == (40.71, -74.0)
        assert hotspots[0].status_breakdown == {"submitted": 12}

    def test_find_hotspots_mean_centre_and_breakdown(self):
        locations = [
            (40.711, -74.001, ReportStatus.SUBMITTED),
            (40.713, -74.003, ReportStatus.COMPLETED),
            (40.712, -74.002, ReportStatus.COMPLETED),
        ]
        [hotspot] = find_hotspots(locations, min_reports=3)

        assert hotspot.latitude == pytest.approx(40.712)
        assert hotspot.longitude == pytest.approx(-74.002)
        assert hotspot.status_breakdown == {"submitted": 1, "completed": 2}

    def test_find_hotspots_limit(self):
        locations = []
        for i in range(30):
            locations += [(10 + i * 0.1, 20.0, ReportStatus.SUBMITTED)] * (i + 1)

        hotspots = find_hotspots(locations, min_reports=1, limit=20)

        assert len(hotspots) == 20
        assert hotspots[0].report_count == 30
