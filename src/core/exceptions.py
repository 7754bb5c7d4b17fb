"""
WasteWatch - Domain Exceptions
Typed errors raised by the report lifecycle and the points ledger.

Every error is scoped to a single request and carries the HTTP status and
machine-readable code the API layer answers with.
"""

from typing import Any, Dict, Optional


class WasteWatchError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    error_code: str = "WASTEWATCH_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detail": self.message, "error": self.error_code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(WasteWatchError):
    """Malformed input: bad coordinates, missing required field."""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class NotFoundError(WasteWatchError):
    """Referenced report, reward, redemption or user does not exist."""

    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} not found: {entity_id}",
            {"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class InvalidStateTransition(WasteWatchError):
    """Operation attempted while the entity is in the wrong status."""

    status_code = 409
    error_code = "INVALID_STATUS"


class AlreadyAwardedError(WasteWatchError):
    """Points were already awarded for the report."""

    status_code = 409
    error_code = "POINTS_ALREADY_AWARDED"


class InsufficientPointsError(WasteWatchError):
    """Deduction or redemption exceeds the user's balance."""

    status_code = 400
    error_code = "INSUFFICIENT_POINTS"

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient points: {required} required, {available} available",
            {"required": required, "available": available},
        )
        self.required = required
        self.available = available


class RewardUnavailableError(WasteWatchError):
    """Reward is inactive, outside its validity window, or out of stock."""

    status_code = 409
    error_code = "REWARD_UNAVAILABLE"


class AlreadyUsedError(WasteWatchError):
    """Redemption was already marked as used."""

    status_code = 409
    error_code = "REDEMPTION_ALREADY_USED"


class RedemptionExpiredError(WasteWatchError):
    """Redemption expired before it was used."""

    status_code = 410
    error_code = "REDEMPTION_EXPIRED"


class PermissionDenied(WasteWatchError):
    """Actor lacks the role or assignment the operation requires."""

    status_code = 403
    error_code = "ACCESS_DENIED"
