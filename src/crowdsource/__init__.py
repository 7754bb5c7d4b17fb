"""
WasteWatch - Crowdsource Module
Citizen waste reports, their lifecycle and the photos attached to them.
"""

from src.crowdsource.lifecycle import ReportLifecycleManager
from src.crowdsource.geo_queries import (
    Hotspot,
    NearbyReport,
    find_hotspots,
    find_nearby,
)
from src.crowdsource.image_store import (
    InMemoryImageStore,
    LocalImageStore,
    validate_image,
)
from src.crowdsource.waste_classifier import (
    Classification,
    MockWasteClassifier,
)

__all__ = [
    # Lifecycle
    "ReportLifecycleManager",
    # Geospatial queries
    "Hotspot",
    "NearbyReport",
    "find_hotspots",
    "find_nearby",
    # Images
    "InMemoryImageStore",
    "LocalImageStore",
    "validate_image",
    # Classifier
    "Classification",
    "MockWasteClassifier",
]
