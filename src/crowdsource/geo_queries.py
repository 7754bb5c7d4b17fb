"""
Geospatial queries over waste reports
Radius search for dispatch and grid hotspots for analytics
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.core.config import settings
from src.core.geo_utils import (
    bounding_box_around,
    calculate_centroid,
    grid_cell,
    haversine_distance,
    hotspot_severity,
)
from src.database.models import Report, ReportStatus


@dataclass
class NearbyReport:
    """A report together with its distance from the query point."""
    report: Report
    distance_km: float

    def to_dict(self) -> Dict[str, Any]:
        data = self.report.to_dict()
        data["distance_km"] = round(self.distance_km, 3)
        return data


@dataclass
class Hotspot:
    """Grid cell with enough reports to stand out."""
    cell: Tuple[float, float]
    latitude: float
    longitude: float
    report_count: int
    severity: str
    status_breakdown: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cell": {"latitude": self.cell[0], "longitude": self.cell[1]},
            "location": {"latitude": self.latitude, "longitude": self.longitude},
            "report_count": self.report_count,
            "severity": self.severity,
            "status_breakdown": self.status_breakdown,
        }


def find_hotspots(
    locations: Iterable[Tuple[float, float, ReportStatus]],
    min_reports: Optional[int] = None,
    limit: Optional[int] = None
) -> List[Hotspot]:
    """
    Bucket report locations into grid cells.

    Args:
        locations: (latitude, longitude, status) per report
        min_reports: Smallest count a cell needs to qualify
        limit: Maximum number of hotspots returned

    Returns:
        Hotspots ordered by report count, largest first
    """
    min_reports = settings.hotspot_min_reports if min_reports is None else min_reports
    limit = settings.hotspot_limit if limit is None else limit

    cells: Dict[Tuple[float, float], List[Tuple[float, float, ReportStatus]]] = defaultdict(list)
    for latitude, longitude, status in locations:
        cells[grid_cell(latitude, longitude)].append((latitude, longitude, status))

    hotspots = []
    for cell, members in cells.items():
        if len(members) < min_reports:
            continue
        centre = calculate_centroid([(lat, lng) for lat, lng, _ in members])
        breakdown: Dict[str, int] = defaultdict(int)
        for _, _, status in members:
            breakdown[ReportStatus(status).value] += 1
        hotspots.append(Hotspot(
            cell=cell,
            latitude=centre[0],
            longitude=centre[1],
            report_count=len(members),
            severity=hotspot_severity(len(members)),
            status_breakdown=dict(breakdown),
        ))

    hotspots.sort(key=lambda h: (-h.report_count, h.cell))
    return hotspots[:limit]


def find_nearby(
    session: Session,
    latitude: float,
    longitude: float,
    radius_km: float,
    statuses: Optional[Iterable[ReportStatus]] = None
) -> List[NearbyReport]:
    """
    Reports within radius_km of a point, nearest first.

    A bounding box narrows the rows in SQL; the haversine distance then
    decides membership exactly.
    """
    box = bounding_box_around(latitude, longitude, radius_km)
    query = select(Report).where(
        Report.latitude.between(box.south, box.north),
        Report.longitude.between(box.west, box.east),
    )
    if statuses is not None:
        query = query.where(Report.status.in_(list(statuses)))

    results = []
    for report in session.scalars(query):
        distance = haversine_distance(latitude, longitude, report.latitude, report.longitude)
        if distance <= radius_km:
            results.append(NearbyReport(report=report, distance_km=distance))

    results.sort(key=lambda r: (r.distance_km, r.report.id))
    return results
