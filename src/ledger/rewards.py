"""
Rewards ledger for WasteWatch
Reward catalog, atomic redemption and coupon lifecycle
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from src.core.config import settings
from src.core.constants import REWARD_TYPES
from src.core.exceptions import (
    InsufficientPointsError,
    InvalidStateTransition,
    NotFoundError,
    PermissionDenied,
    RedemptionExpiredError,
    AlreadyUsedError,
    RewardUnavailableError,
    ValidationError,
)
from src.core.locks import KeyedLocks, entity_locks
from src.database.connection import DatabaseConnection
from src.database.models import (
    Redemption,
    RedemptionStatus,
    Reward,
    User,
    utcnow,
)
from src.ledger.coupons import CodeGenerator, generate_coupon_code
from src.ledger.points import PointsLedger

logger = logging.getLogger(__name__)

# Fields an admin may change on an existing reward
UPDATABLE_REWARD_FIELDS = (
    "title",
    "description",
    "reward_type",
    "partner_name",
    "terms",
    "points_cost",
    "is_active",
    "valid_from",
    "valid_until",
)


def is_available(reward: Reward, now: Optional[datetime] = None) -> bool:
    """Active, in stock and now within [valid_from, valid_until]."""
    return reward.is_available(now)


class RewardsLedger:
    """
    Owns rewards and redemptions.

    Redeeming takes one unit of stock with a guarded UPDATE
    (remaining_quantity > 0), deducts the cost through the points ledger
    and records the redemption, all in one transaction.
    """

    def __init__(
        self,
        db: DatabaseConnection,
        points: PointsLedger,
        code_generator: Optional[CodeGenerator] = None,
        clock: Callable[[], datetime] = utcnow,
        locks: Optional[KeyedLocks] = None,
        max_code_attempts: Optional[int] = None
    ):
        """
        Initialize the rewards ledger.

        Args:
            db: Database connection
            points: Points ledger used for the deduction
            code_generator: Coupon code factory
            clock: Source of "now" (naive UTC)
            locks: Per-entity lock registry
            max_code_attempts: Redeem attempts before giving up on code collisions
        """
        self.db = db
        self.points = points
        self.code_generator = code_generator or generate_coupon_code
        self.clock = clock
        self.locks = locks or entity_locks
        self.max_code_attempts = max_code_attempts or settings.coupon_max_attempts

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def create_reward(
        self,
        title: str,
        description: str,
        points_cost: int,
        total_quantity: int,
        valid_until: datetime,
        valid_from: Optional[datetime] = None,
        reward_type: str = "coupon",
        partner_name: Optional[str] = None,
        terms: Optional[str] = None,
        is_active: bool = True
    ) -> Reward:
        """Add a reward to the catalog with its full stock remaining."""
        valid_from = valid_from or self.clock()
        self._validate_reward_fields(
            title=title,
            description=description,
            points_cost=points_cost,
            reward_type=reward_type,
            valid_from=valid_from,
            valid_until=valid_until,
        )
        if not isinstance(total_quantity, int) or total_quantity < 1:
            raise ValidationError("Total quantity must be at least 1", {"total_quantity": total_quantity})

        reward = Reward(
            title=title.strip(),
            description=description.strip(),
            reward_type=reward_type,
            partner_name=partner_name,
            terms=terms,
            points_cost=points_cost,
            total_quantity=total_quantity,
            remaining_quantity=total_quantity,
            is_active=is_active,
            valid_from=valid_from,
            valid_until=valid_until,
        )
        with self.db.get_session() as session:
            session.add(reward)
            session.flush()

        logger.info(f"Reward {reward.id} created: {reward.title} ({points_cost} points x{total_quantity})")
        return reward

    def update_reward(self, reward_id: int, **changes: Any) -> Reward:
        """
        Change catalog fields of a reward.

        Stock is not editable here; use restock().
        """
        unknown = set(changes) - set(UPDATABLE_REWARD_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown reward fields: {sorted(unknown)}")

        with self.locks.hold(("reward", reward_id)), self.db.get_session() as session:
            reward = self._load_reward(session, reward_id)
            merged = {field: getattr(reward, field) for field in UPDATABLE_REWARD_FIELDS}
            merged.update(changes)
            self._validate_reward_fields(
                title=merged["title"],
                description=merged["description"],
                points_cost=merged["points_cost"],
                reward_type=merged["reward_type"],
                valid_from=merged["valid_from"],
                valid_until=merged["valid_until"],
            )
            for field, value in changes.items():
                setattr(reward, field, value)
            reward.updated_at = self.clock()

        logger.info(f"Reward {reward_id} updated: {sorted(changes)}")
        return reward

    def deactivate_reward(self, reward_id: int) -> Reward:
        """Withdraw a reward; existing redemptions stay valid."""
        return self.update_reward(reward_id, is_active=False)

    def restock(self, reward_id: int, quantity: int) -> Reward:
        """Add units to both the total and the remaining quantity."""
        if not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("Restock quantity must be at least 1", {"quantity": quantity})

        with self.locks.hold(("reward", reward_id)), self.db.get_session() as session:
            result = session.execute(
                update(Reward)
                .where(Reward.id == reward_id)
                .values(
                    total_quantity=Reward.total_quantity + quantity,
                    remaining_quantity=Reward.remaining_quantity + quantity,
                )
            )
            if result.rowcount == 0:
                raise NotFoundError("Reward", reward_id)
            reward = self._load_reward(session, reward_id)
            session.refresh(reward)

        logger.info(f"Reward {reward_id} restocked by {quantity} (remaining {reward.remaining_quantity})")
        return reward

    def get_reward(self, reward_id: int) -> Reward:
        with self.db.get_session() as session:
            return self._load_reward(session, reward_id)

    def list_rewards(self, include_inactive: bool = False) -> List[Reward]:
        """All catalog entries, cheapest first."""
        with self.db.get_session() as session:
            query = select(Reward).order_by(Reward.points_cost, Reward.id)
            if not include_inactive:
                query = query.where(Reward.is_active.is_(True))
            return list(session.scalars(query))

    def list_available_rewards(self, now: Optional[datetime] = None) -> List[Reward]:
        """Rewards that can be redeemed right now, cheapest first."""
        now = now or self.clock()
        with self.db.get_session() as session:
            query = (
                select(Reward)
                .where(
                    Reward.is_active.is_(True),
                    Reward.remaining_quantity > 0,
                    Reward.valid_from <= now,
                    Reward.valid_until >= now,
                )
                .order_by(Reward.points_cost, Reward.id)
            )
            return list(session.scalars(query))

    # ------------------------------------------------------------------
    # Redemption
    # ------------------------------------------------------------------

    def redeem(self, user_id: int, reward_id: int) -> Redemption:
        """
        Exchange points for one unit of a reward.

        Raises:
            NotFoundError: unknown user or reward
            RewardUnavailableError: inactive, outside validity or out of stock
            InsufficientPointsError: balance below the reward cost

        Returns:
            The active Redemption with its coupon code
        """
        for attempt in range(1, self.max_code_attempts + 1):
            code = self.code_generator()
            try:
                return self._redeem_once(user_id, reward_id, code)
            except IntegrityError:
                if not self._code_exists(code):
                    raise
                logger.warning(
                    f"Coupon code collision on attempt {attempt} "
                    f"(user {user_id}, reward {reward_id}); retrying"
                )

        raise RewardUnavailableError(
            f"Could not generate a unique coupon code after {self.max_code_attempts} attempts"
        )

    def _redeem_once(self, user_id: int, reward_id: int, code: str) -> Redemption:
        now = self.clock()

        with self.locks.hold(("reward", reward_id), ("user", user_id)):
            with self.db.get_session() as session:
                reward = self._load_reward(session, reward_id)
                if not reward.is_available(now):
                    logger.warning(f"Redeem of reward {reward_id} by user {user_id} rejected: unavailable")
                    raise RewardUnavailableError(
                        f"Reward {reward_id} is not available for redemption",
                        self._unavailable_reason(reward, now),
                    )

                user = session.get(User, user_id)
                if user is None:
                    raise NotFoundError("User", user_id)

                cost = reward.points_cost
                if user.points < cost:
                    raise InsufficientPointsError(required=cost, available=user.points)

                taken = session.execute(
                    update(Reward)
                    .where(
                        Reward.id == reward_id,
                        Reward.is_active.is_(True),
                        Reward.remaining_quantity > 0,
                    )
                    .values(remaining_quantity=Reward.remaining_quantity - 1)
                ).rowcount
                if taken == 0:
                    logger.warning(f"Reward {reward_id} ran out of stock during redeem by user {user_id}")
                    raise RewardUnavailableError(
                        f"Reward {reward_id} is out of stock",
                        {"reason": "out_of_stock"},
                    )

                self.points.deduct_points(user_id, cost, session=session)

                redemption = Redemption(
                    user_id=user_id,
                    reward_id=reward_id,
                    points_used=cost,
                    generated_code=code,
                    status=RedemptionStatus.ACTIVE,
                    expires_at=reward.valid_until,
                    redeemed_at=now,
                )
                redemption.reward = reward
                session.add(redemption)
                session.flush()

        logger.info(
            f"Reward {reward_id} redeemed by user {user_id} for {cost} points "
            f"(redemption {redemption.id})"
        )
        return redemption

    def _code_exists(self, code: str) -> bool:
        with self.db.get_session() as session:
            return session.execute(
                select(Redemption.id).where(Redemption.generated_code == code)
            ).first() is not None

    def mark_used(
        self,
        redemption_id: int,
        actor_id: int,
        is_admin: bool = False
    ) -> Redemption:
        """
        Mark a coupon as consumed.

        Args:
            redemption_id: Redemption to consume
            actor_id: Caller; must own the redemption unless admin
            is_admin: Caller has the admin role
        """
        now = self.clock()

        with self.locks.hold(("redemption", redemption_id)), self.db.get_session() as session:
            redemption = session.get(Redemption, redemption_id)
            if redemption is None:
                raise NotFoundError("Redemption", redemption_id)

            if redemption.user_id != actor_id and not is_admin:
                raise PermissionDenied("Only the owner or an admin can use this redemption")

            if redemption.status == RedemptionStatus.USED:
                raise AlreadyUsedError(f"Redemption {redemption_id} was already used")
            if redemption.status == RedemptionStatus.EXPIRED or now >= redemption.expires_at:
                raise RedemptionExpiredError(f"Redemption {redemption_id} has expired")
            if redemption.status != RedemptionStatus.ACTIVE:
                raise InvalidStateTransition(
                    f"Redemption {redemption_id} is {redemption.status.value}"
                )

            redemption.status = RedemptionStatus.USED
            redemption.used_at = now
            redemption.updated_at = now

        logger.info(f"Redemption {redemption_id} marked used by {actor_id}")
        return redemption

    def expire_redemptions(self, now: Optional[datetime] = None) -> int:
        """Flip active redemptions past their expiry to expired."""
        now = now or self.clock()
        with self.db.get_session() as session:
            result = session.execute(
                update(Redemption)
                .where(
                    Redemption.status == RedemptionStatus.ACTIVE,
                    Redemption.expires_at <= now,
                )
                .values(status=RedemptionStatus.EXPIRED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount

        if count:
            logger.info(f"Expired {count} redemptions")
        return count

    def get_redemption(self, redemption_id: int) -> Redemption:
        with self.db.get_session() as session:
            redemption = session.get(Redemption, redemption_id)
            if redemption is None:
                raise NotFoundError("Redemption", redemption_id)
            return redemption

    def list_redemptions(
        self,
        user_id: Optional[int] = None,
        reward_id: Optional[int] = None,
        status: Optional[RedemptionStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Redemption]:
        """Redemption history, newest first."""
        with self.db.get_session() as session:
            query = select(Redemption).order_by(Redemption.redeemed_at.desc(), Redemption.id.desc())
            if user_id is not None:
                query = query.where(Redemption.user_id == user_id)
            if reward_id is not None:
                query = query.where(Redemption.reward_id == reward_id)
            if status is not None:
                query = query.where(Redemption.status == status)
            return list(session.scalars(query.limit(limit).offset(offset)).unique())

    def count_redemptions(self, reward_id: int) -> int:
        with self.db.get_session() as session:
            return session.execute(
                select(func.count(Redemption.id)).where(Redemption.reward_id == reward_id)
            ).scalar_one()

    def get_analytics(self) -> Dict[str, Any]:
        """Catalog and redemption totals for the admin dashboard."""
        with self.db.get_session() as session:
            total_rewards = session.execute(select(func.count(Reward.id))).scalar_one()
            active_rewards = session.execute(
                select(func.count(Reward.id)).where(Reward.is_active.is_(True))
            ).scalar_one()
            total_redemptions, points_redeemed = session.execute(
                select(func.count(Redemption.id), func.coalesce(func.sum(Redemption.points_used), 0))
            ).one()
            used_redemptions = session.execute(
                select(func.count(Redemption.id)).where(Redemption.status == RedemptionStatus.USED)
            ).scalar_one()

            redeemed_count = (Reward.total_quantity - Reward.remaining_quantity).label("redeemed_count")
            popular = session.execute(
                select(Reward.id, Reward.title, redeemed_count)
                .order_by(redeemed_count.desc(), Reward.id)
                .limit(5)
            ).all()

        return {
            "total_rewards": total_rewards,
            "active_rewards": active_rewards,
            "total_redemptions": total_redemptions,
            "used_redemptions": used_redemptions,
            "total_points_redeemed": int(points_redeemed),
            "popular_rewards": [
                {"id": row.id, "title": row.title, "redemption_count": row.redeemed_count}
                for row in popular
            ],
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _load_reward(session, reward_id: int) -> Reward:
        reward = session.get(Reward, reward_id)
        if reward is None:
            raise NotFoundError("Reward", reward_id)
        return reward

    @staticmethod
    def _unavailable_reason(reward: Reward, now: datetime) -> Dict[str, str]:
        if not reward.is_active:
            return {"reason": "inactive"}
        if reward.remaining_quantity <= 0:
            return {"reason": "out_of_stock"}
        if now < reward.valid_from:
            return {"reason": "not_yet_valid"}
        return {"reason": "expired"}

    @staticmethod
    def _validate_reward_fields(
        title: str,
        description: str,
        points_cost: int,
        reward_type: str,
        valid_from: datetime,
        valid_until: datetime
    ) -> None:
        if not title or not title.strip():
            raise ValidationError("Title is required")
        if not description or not description.strip():
            raise ValidationError("Description is required")
        if isinstance(points_cost, bool) or not isinstance(points_cost, int) or points_cost < 1:
            raise ValidationError("Points cost must be at least 1", {"points_cost": points_cost})
        if reward_type not in REWARD_TYPES:
            raise ValidationError(f"Unknown reward type: {reward_type}", {"allowed": REWARD_TYPES})
        if valid_until is None or valid_until <= valid_from:
            raise ValidationError("valid_until must be after valid_from")
