"""
WasteWatch - Core Utilities
Central configuration, errors, locking and geospatial helpers.
"""

from src.core.config import settings
from src.core.exceptions import (
    WasteWatchError,
    ValidationError,
    NotFoundError,
    InvalidStateTransition,
    AlreadyAwardedError,
    InsufficientPointsError,
    RewardUnavailableError,
    AlreadyUsedError,
    RedemptionExpiredError,
    PermissionDenied,
)
from src.core.geo_utils import (
    haversine_distance,
    bounding_box_around,
    grid_cell,
    hotspot_severity,
    is_valid_coordinate,
)
from src.core.locks import KeyedLocks, entity_locks

__all__ = [
    "settings",
    "WasteWatchError",
    "ValidationError",
    "NotFoundError",
    "InvalidStateTransition",
    "AlreadyAwardedError",
    "InsufficientPointsError",
    "RewardUnavailableError",
    "AlreadyUsedError",
    "RedemptionExpiredError",
    "PermissionDenied",
    "haversine_distance",
    "bounding_box_around",
    "grid_cell",
    "hotspot_severity",
    "is_valid_coordinate",
    "KeyedLocks",
    "entity_locks",
]
