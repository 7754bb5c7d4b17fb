"""
WasteWatch - REST API

FastAPI application for citizen waste reports, collector dispatch and the
points and rewards program.

Callers identify themselves with the X-User-Id and X-User-Role headers;
authentication happens upstream.

Run with: uvicorn src.api.main:app --reload
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, List

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.api.services import Services, get_services
from src.core.config import settings
from src.core.exceptions import PermissionDenied, WasteWatchError
from src.core.logging import setup_logging
from src.database.models import RedemptionStatus, ReportStatus, UserRole, utcnow

setup_logging()
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

# FastAPI app
app = FastAPI(
    title="WasteWatch",
    description="Crowdsourced waste reporting, cleanup dispatch and citizen rewards API",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WasteWatchError)
async def handle_domain_error(request: Request, exc: WasteWatchError) -> JSONResponse:
    """Answer every domain error with its status and machine code."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ============================================================================
# Identity
# ============================================================================

@dataclass
class Actor:
    """Caller identity supplied by the upstream auth layer."""
    user_id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def _parse_actor(user_id: Optional[str], role: Optional[str]) -> Actor:
    try:
        return Actor(user_id=int(user_id), role=UserRole(role.lower()))
    except (TypeError, ValueError, AttributeError):
        raise HTTPException(status_code=400, detail="Invalid X-User-Id or X-User-Role header")


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    if x_user_id is None or x_user_role is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id or X-User-Role header")
    return _parse_actor(x_user_id, x_user_role)


def get_optional_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Optional[Actor]:
    if x_user_id is None or x_user_role is None:
        return None
    return _parse_actor(x_user_id, x_user_role)


def require_role(*roles: UserRole):
    """Dependency factory admitting only the given roles."""
    def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise PermissionDenied(
                f"Requires role: {', '.join(role.value for role in roles)}"
            )
        return actor
    return dependency


require_admin = require_role(UserRole.ADMIN)
require_citizen = require_role(UserRole.CITIZEN)
require_collector = require_role(UserRole.COLLECTOR)


def _read_upload(upload: UploadFile) -> bytes:
    try:
        return upload.file.read()
    finally:
        upload.file.close()


def _naive_datetimes(values: Dict[str, Any]) -> Dict[str, Any]:
    # Stored timestamps are naive UTC
    return {
        key: value.astimezone(timezone.utc).replace(tzinfo=None)
        if isinstance(value, datetime) and value.tzinfo is not None else value
        for key, value in values.items()
    }


# ============================================================================
# Pydantic Models
# ============================================================================

class HealthResponse(BaseModel):
    """API health status."""
    status: str
    version: str
    timestamp: str
    database: bool


class VerifyRequest(BaseModel):
    """Admin verification decision."""
    approve: bool
    notes: Optional[str] = Field(default=None, max_length=500)


class AssignRequest(BaseModel):
    """Collector dispatch."""
    collector_id: int = Field(..., ge=1)


class AwardPointsRequest(BaseModel):
    """Points for a completed report."""
    points: int = Field(..., description="Points credited to the reporting citizen")


class ReportListResponse(BaseModel):
    """Page of reports."""
    total: int
    limit: int
    offset: int
    reports: List[dict]


class RewardCreateRequest(BaseModel):
    """New catalog entry."""
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=500)
    reward_type: str = Field(default="coupon")
    partner_name: Optional[str] = Field(default=None, max_length=100)
    terms: Optional[str] = None
    points_cost: int = Field(..., ge=1)
    total_quantity: int = Field(..., ge=1)
    valid_from: Optional[datetime] = None
    valid_until: datetime


class RewardUpdateRequest(BaseModel):
    """Partial catalog update."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    reward_type: Optional[str] = None
    partner_name: Optional[str] = Field(default=None, max_length=100)
    terms: Optional[str] = None
    points_cost: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class RestockRequest(BaseModel):
    """Extra stock for a reward."""
    quantity: int = Field(..., ge=1)


class UserCreateRequest(BaseModel):
    """Account registration."""
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=120)
    role: UserRole = UserRole.CITIZEN


class UserStatusRequest(BaseModel):
    """Account activation switch."""
    is_active: bool
    reason: Optional[str] = Field(default=None, max_length=500)


class PointsResponse(BaseModel):
    """Current balance."""
    user_id: int
    points: int


class PointsAdjustRequest(BaseModel):
    """Manual admin correction."""
    amount: int = Field(..., ge=1)
    operation: str = Field(..., pattern="^(add|subtract)$")
    reason: str = Field(..., min_length=1, max_length=500)


# ============================================================================
# System Routes
# ============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
def health_check(services: Services = Depends(get_services)):
    """Check API health and database connectivity."""
    database_ok = services.db.check_connection()
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=API_VERSION,
        timestamp=utcnow().isoformat(),
        database=database_ok,
    )


# ============================================================================
# Report Routes
# ============================================================================

@app.post("/api/v1/reports", status_code=201, tags=["Reports"])
def submit_report(
    description: str = Form(...),
    latitude: float = Form(...),
    longitude: float = Form(...),
    waste_type: str = Form("unknown"),
    title: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    landmark: Optional[str] = Form(None),
    priority: str = Form("medium"),
    image: UploadFile = File(...),
    actor: Actor = Depends(require_citizen),
    services: Services = Depends(get_services),
):
    """
    Submit a waste report with a photo.

    The photo is classified by the mock model; the result is stored as an
    annotation and never rejects the report.
    """
    data = _read_upload(image)
    image_url = services.image_store.save(data, image.content_type)
    classification = services.classifier.classify(data)

    report = services.reports.submit(
        citizen_id=actor.user_id,
        description=description,
        latitude=latitude,
        longitude=longitude,
        image_url=image_url,
        waste_type=waste_type,
        title=title,
        address=address,
        landmark=landmark,
        priority=priority,
        classification=classification,
    )
    return report.to_dict()


@app.get("/api/v1/reports", response_model=ReportListResponse, tags=["Reports"])
def list_reports(
    status: Optional[ReportStatus] = Query(None, description="Filter by status"),
    priority: Optional[str] = Query(None, description="Filter by priority"),
    waste_type: Optional[str] = Query(None, description="Filter by waste type"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """
    List reports visible to the caller.

    Citizens see their own reports, collectors the ones assigned to them,
    admins everything.
    """
    citizen_id = actor.user_id if actor.role == UserRole.CITIZEN else None
    assigned_to = actor.user_id if actor.role == UserRole.COLLECTOR else None

    reports, total = services.reports.list_reports(
        status=status,
        priority=priority,
        waste_type=waste_type,
        citizen_id=citizen_id,
        assigned_to=assigned_to,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return ReportListResponse(
        total=total,
        limit=limit,
        offset=offset,
        reports=[report.to_dict() for report in reports],
    )


@app.get("/api/v1/reports/nearby", tags=["Reports"])
def nearby_reports(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(default=settings.nearby_default_radius_km, gt=0),
    status: Optional[List[ReportStatus]] = Query(None, description="Only these statuses"),
    actor: Actor = Depends(require_role(UserRole.COLLECTOR, UserRole.ADMIN)),
    services: Services = Depends(get_services),
):
    """Reports within radius_km of a point, nearest first."""
    results = services.reports.nearby(latitude, longitude, radius_km, statuses=status)
    return {
        "count": len(results),
        "center": {"latitude": latitude, "longitude": longitude},
        "radius_km": radius_km,
        "reports": [result.to_dict() for result in results],
    }


@app.get("/api/v1/reports/{report_id}", tags=["Reports"])
def get_report(
    report_id: str,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Report details including the full status history."""
    report = services.reports.get_report(report_id)
    if actor.role == UserRole.CITIZEN and report.citizen_id != actor.user_id:
        raise PermissionDenied("Citizens can only view their own reports")
    if actor.role == UserRole.COLLECTOR and report.assigned_to != actor.user_id:
        raise PermissionDenied("Collectors can only view reports assigned to them")
    return report.to_dict()


@app.put("/api/v1/reports/{report_id}/verify", tags=["Reports"])
def verify_report(
    report_id: str,
    request: VerifyRequest,
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Approve or reject a submitted report."""
    report = services.reports.verify(report_id, actor.user_id, request.approve, request.notes)
    return report.to_dict()


@app.put("/api/v1/reports/{report_id}/assign", tags=["Reports"])
def assign_report(
    report_id: str,
    request: AssignRequest,
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Dispatch a verified report to a collector."""
    report = services.reports.assign(report_id, actor.user_id, request.collector_id)
    return report.to_dict()


@app.put("/api/v1/reports/{report_id}/start", tags=["Reports"])
def start_cleanup(
    report_id: str,
    before_image: Optional[UploadFile] = File(None),
    actor: Actor = Depends(require_collector),
    services: Services = Depends(get_services),
):
    """Assigned collector starts the cleanup, optionally with a before photo."""
    before_url = None
    if before_image is not None:
        before_url = services.image_store.save(_read_upload(before_image), before_image.content_type)
    report = services.reports.start(report_id, actor.user_id, before_image_url=before_url)
    return report.to_dict()


@app.put("/api/v1/reports/{report_id}/complete", tags=["Reports"])
def complete_cleanup(
    report_id: str,
    after_image: UploadFile = File(...),
    notes: Optional[str] = Form(None),
    actor: Actor = Depends(require_collector),
    services: Services = Depends(get_services),
):
    """Assigned collector completes the cleanup with an after photo."""
    after_url = services.image_store.save(_read_upload(after_image), after_image.content_type)
    report = services.reports.complete(report_id, actor.user_id, after_url, notes)
    return report.to_dict()


@app.post("/api/v1/reports/{report_id}/award-points", tags=["Reports"])
def award_points(
    report_id: str,
    request: AwardPointsRequest,
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Credit the reporting citizen for a completed report, once."""
    report = services.reports.award_points(report_id, request.points, actor.user_id)
    return {
        "report_id": report.report_id,
        "citizen_id": report.citizen_id,
        "points_awarded": report.points_awarded,
        "citizen_points": services.points.get_balance(report.citizen_id),
    }


# ============================================================================
# Analytics Routes
# ============================================================================

@app.get("/api/v1/analytics/summary", tags=["Analytics"])
def analytics_summary(
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Report and reward totals for the admin dashboard."""
    return {
        "reports": services.reports.get_statistics(),
        "rewards": services.rewards.get_analytics(),
        "generated_at": utcnow().isoformat(),
    }


@app.get("/api/v1/analytics/hotspots", tags=["Analytics"])
def analytics_hotspots(
    min_reports: int = Query(default=settings.hotspot_min_reports, ge=1),
    limit: int = Query(default=settings.hotspot_limit, ge=1, le=100),
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Grid cells with many reports, busiest first."""
    hotspots = services.reports.hotspots(min_reports=min_reports, limit=limit)
    return {
        "count": len(hotspots),
        "min_reports": min_reports,
        "hotspots": [hotspot.to_dict() for hotspot in hotspots],
    }


# ============================================================================
# Reward Routes
# ============================================================================

@app.get("/api/v1/rewards", tags=["Rewards"])
def list_rewards(
    include_inactive: bool = Query(False, description="Admins only: include withdrawn rewards"),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Rewards redeemable now, cheapest first; admins may list the whole catalog."""
    now = utcnow()
    if include_inactive and actor.is_admin:
        rewards = services.rewards.list_rewards(include_inactive=True)
    else:
        rewards = services.rewards.list_available_rewards(now)
    return {"count": len(rewards), "rewards": [reward.to_dict(now) for reward in rewards]}


@app.get("/api/v1/rewards/{reward_id}", tags=["Rewards"])
def get_reward(
    reward_id: int,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return services.rewards.get_reward(reward_id).to_dict(utcnow())


@app.post("/api/v1/rewards", status_code=201, tags=["Rewards"])
def create_reward(
    request: RewardCreateRequest,
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Add a reward to the catalog."""
    reward = services.rewards.create_reward(**_naive_datetimes(request.model_dump()))
    return reward.to_dict(utcnow())


@app.put("/api/v1/rewards/{reward_id}", tags=["Rewards"])
def update_reward(
    reward_id: int,
    request: RewardUpdateRequest,
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Change catalog fields of a reward."""
    reward = services.rewards.update_reward(reward_id, **_naive_datetimes(request.model_dump(exclude_unset=True)))
    return reward.to_dict(utcnow())


@app.post("/api/v1/rewards/{reward_id}/restock", tags=["Rewards"])
def restock_reward(
    reward_id: int,
    request: RestockRequest,
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    reward = services.rewards.restock(reward_id, request.quantity)
    return reward.to_dict(utcnow())


@app.delete("/api/v1/rewards/{reward_id}", tags=["Rewards"])
def deactivate_reward(
    reward_id: int,
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Withdraw a reward; redemptions already made stay valid."""
    reward = services.rewards.deactivate_reward(reward_id)
    return reward.to_dict(utcnow())


@app.post("/api/v1/rewards/{reward_id}/redeem", status_code=201, tags=["Rewards"])
def redeem_reward(
    reward_id: int,
    actor: Actor = Depends(require_citizen),
    services: Services = Depends(get_services),
):
    """Exchange points for a reward and receive a coupon code."""
    redemption = services.rewards.redeem(actor.user_id, reward_id)
    return {
        "redemption": redemption.to_dict(),
        "remaining_points": services.points.get_balance(actor.user_id),
    }


# ============================================================================
# Redemption Routes
# ============================================================================

@app.get("/api/v1/redemptions/mine", tags=["Redemptions"])
def my_redemptions(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(require_citizen),
    services: Services = Depends(get_services),
):
    """The caller's redemption history, newest first."""
    redemptions = services.rewards.list_redemptions(user_id=actor.user_id, limit=limit, offset=offset)
    return {"count": len(redemptions), "redemptions": [r.to_dict() for r in redemptions]}


@app.get("/api/v1/redemptions", tags=["Redemptions"])
def list_redemptions(
    user_id: Optional[int] = Query(None),
    reward_id: Optional[int] = Query(None),
    status: Optional[RedemptionStatus] = Query(None),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    redemptions = services.rewards.list_redemptions(
        user_id=user_id, reward_id=reward_id, status=status, limit=limit, offset=offset
    )
    return {"count": len(redemptions), "redemptions": [r.to_dict() for r in redemptions]}


@app.put("/api/v1/redemptions/{redemption_id}/use", tags=["Redemptions"])
def use_redemption(
    redemption_id: int,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Mark a coupon as used; owner or admin only."""
    redemption = services.rewards.mark_used(redemption_id, actor.user_id, is_admin=actor.is_admin)
    return redemption.to_dict()


@app.post("/api/v1/redemptions/expire", tags=["Redemptions"])
def expire_redemptions(
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Expire active redemptions whose validity has passed."""
    return {"expired": services.rewards.expire_redemptions()}


# ============================================================================
# User Routes
# ============================================================================

@app.post("/api/v1/users", status_code=201, tags=["Users"])
def create_user(
    request: UserCreateRequest,
    actor: Optional[Actor] = Depends(get_optional_actor),
    services: Services = Depends(get_services),
):
    """Register a citizen; collectors and admins are created by an admin."""
    if request.role != UserRole.CITIZEN and (actor is None or not actor.is_admin):
        raise PermissionDenied("Only admins can create collector or admin accounts")
    user = services.users.create_user(request.name, request.email, request.role)
    return user.to_dict()


@app.get("/api/v1/users", tags=["Users"])
def list_users(
    role: Optional[UserRole] = Query(None, description="Filter by role"),
    search: Optional[str] = Query(None, description="Match on name or email"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """All accounts, newest first."""
    users, total = services.users.list_users(role=role, search=search, limit=limit, offset=offset)
    return {
        "total": total,
        "limit": limit,
        "offset": offset,
        "users": [user.to_dict() for user in users],
    }


@app.put("/api/v1/users/{user_id}/status", tags=["Users"])
def set_user_status(
    user_id: int,
    request: UserStatusRequest,
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Activate or deactivate an account; admins cannot deactivate themselves."""
    user = services.users.set_active(user_id, request.is_active, actor.user_id)
    if request.reason:
        logger.info(f"Status change of user {user_id}: {request.reason}")
    return {
        "message": f"User {'activated' if user.is_active else 'deactivated'} successfully",
        "user": user.to_dict(),
    }


@app.get("/api/v1/users/leaderboard", tags=["Users"])
def leaderboard(
    limit: int = Query(default=10, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Top citizens by points."""
    return {"leaderboard": services.users.leaderboard(limit)}


@app.get("/api/v1/users/collectors/available", tags=["Users"])
def available_collectors(
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Active collectors with their current workload, least busy first."""
    return {"collectors": services.users.list_available_collectors()}


@app.get("/api/v1/users/{user_id}", tags=["Users"])
def get_user(
    user_id: int,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    if user_id != actor.user_id and not actor.is_admin:
        raise PermissionDenied("Users can only view their own profile")
    return services.users.get_user(user_id).to_dict()


@app.get("/api/v1/users/{user_id}/points", response_model=PointsResponse, tags=["Users"])
def get_points(
    user_id: int,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    if user_id != actor.user_id and not actor.is_admin:
        raise PermissionDenied("Users can only view their own points")
    return PointsResponse(user_id=user_id, points=services.points.get_balance(user_id))


@app.post("/api/v1/users/{user_id}/points/adjust", tags=["Users"])
def adjust_points(
    user_id: int,
    request: PointsAdjustRequest,
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Add or subtract points from a citizen, with a reason."""
    result = services.points.adjust_points(user_id, request.amount, request.operation, request.reason)
    result["adjusted_by"] = actor.user_id
    return result
