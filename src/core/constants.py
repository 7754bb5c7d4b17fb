"""
WasteWatch - Constants and Reference Data
Static values used throughout the application.
"""

from typing import Dict, List, Tuple

# =============================================================================
# REPORTS
# =============================================================================

# Waste categories a report can be filed under
WASTE_TYPES: List[str] = [
    "plastic",
    "organic",
    "metal",
    "glass",
    "paper",
    "electronic",
    "hazardous",
    "mixed",
    "unknown",
]

REPORT_PRIORITIES: List[str] = ["low", "medium", "high", "urgent"]

# Human readable report id, e.g. WR000042
REPORT_ID_PREFIX = "WR"
REPORT_ID_DIGITS = 6

# =============================================================================
# GEOSPATIAL ANALYTICS
# =============================================================================

# Decimal places used to bucket coordinates into hotspot cells (~1.1 km)
HOTSPOT_GRID_PRECISION = 2

# Hotspot severity by report count: (min_count, label), checked top-down
HOTSPOT_SEVERITY_THRESHOLDS: List[Tuple[int, str]] = [
    (20, "high"),
    (10, "medium"),
    (0, "low"),
]

# =============================================================================
# REWARDS
# =============================================================================

REWARD_TYPES: List[str] = [
    "coupon",
    "discount",
    "gift_card",
    "merchandise",
    "service",
]

COUPON_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

# =============================================================================
# IMAGES
# =============================================================================

ALLOWED_IMAGE_TYPES: Dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}

# Classifier labels (mock model) mapped onto report waste types
CLASSIFIER_LABELS: Dict[str, str] = {
    "plastic_bottle": "plastic",
    "aluminum_can": "metal",
    "paper_waste": "paper",
    "organic_waste": "organic",
    "glass_bottle": "glass",
    "electronic_waste": "electronic",
    "textile_waste": "mixed",
    "hazardous_waste": "hazardous",
    "mixed_waste": "mixed",
}
