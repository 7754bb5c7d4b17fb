"""
Ledger module for WasteWatch
Citizen points, reward catalog and coupon redemptions
"""

from .coupons import generate_coupon_code
from .points import PointsLedger
from .rewards import RewardsLedger, is_available

__all__ = [
    "generate_coupon_code",
    "PointsLedger",
    "RewardsLedger",
    "is_available",
]
