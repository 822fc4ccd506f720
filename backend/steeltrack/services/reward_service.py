# Overview: Service-layer operations for rewards; period aggregation, summary and claims.

"""
Reward Engine

For a period (calendar month by default):
- total_kg: sales volume (a Dealer's sales made, a Barbender's sales received)
- eligible_kg = floor(total_kg / threshold) * threshold
- reward_kg = floor(eligible_kg * rate)

Claims settle eligible kg, not raw totals. Each claim stores the eligible
kg it consumed (claimed_eligible_kg); the next claim for the same period
only sees eligible_kg minus what was already settled. This is what stops
the same period's volume from being claimed twice while still allowing a
top-up claim once more volume crosses the next threshold.

Outside purchases credit balances but are not sales and do not count here.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_FLOOR

from flask import current_app

from ..extensions import db
from ..errors import NothingToClaim, ValidationError
from ..models import BarbenderSale, Reward, User
from ..models.identity import ROLE_BARBENDER, ROLE_DEALER
from ..models.rewards import REWARD_STATUS_CLAIMED
from ..models.stock import ACCOUNT_REWARD
from ..permissions import authorize
from . import ledger_service
from .concurrency import lock_for_update, run_with_retry
from .identity_service import ensure_can_transact, get_user
from steeltrack.time_utils import month_bounds, utcnow


def _threshold() -> Decimal:
    return Decimal(str(current_app.config.get("REWARD_THRESHOLD_KG", "100")))


def _rate() -> Decimal:
    return Decimal(str(current_app.config.get("REWARD_RATE", "0.05")))


def _floor(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_FLOOR)


def reward_period(month: str | None = None) -> tuple[datetime, datetime]:
    """
    Inclusive bounds of a reward period.

    month is "YYYY-MM"; None means the current calendar month.
    """
    if month is None or month == "":
        now = utcnow()
        return month_bounds(now.year, now.month)
    if not isinstance(month, str):
        raise ValidationError("month must be formatted as YYYY-MM")
    try:
        year_s, month_s = month.strip().split("-")
        year, mon = int(year_s), int(month_s)
    except ValueError:
        raise ValidationError("month must be formatted as YYYY-MM")
    if not 1 <= mon <= 12 or year < 1:
        raise ValidationError("month must be formatted as YYYY-MM")
    return month_bounds(year, mon)


def compute_reward(total_kg: Decimal) -> tuple[Decimal, Decimal]:
    """Return (eligible_kg, reward_kg) for a transacted total."""
    threshold = _threshold()
    total = Decimal(total_kg)
    if total <= 0:
        return Decimal("0"), Decimal("0")
    eligible = _floor(total / threshold) * threshold
    reward = _floor(eligible * _rate())
    return eligible, reward


def total_transacted(user: User, start: datetime, end: datetime) -> Decimal:
    if user.role == ROLE_DEALER:
        party = BarbenderSale.dealer_id
    elif user.role == ROLE_BARBENDER:
        party = BarbenderSale.barbender_id
    else:
        return Decimal("0")

    total = db.session.query(db.func.coalesce(db.func.sum(BarbenderSale.quantity_kg), 0)).filter(
        party == user.id,
        BarbenderSale.sold_at >= start,
        BarbenderSale.sold_at <= end,
    ).scalar()
    return Decimal(str(total)).quantize(ledger_service.QUANTITY_PLACES)


def already_claimed_eligible(user_id: int, start: datetime) -> Decimal:
    total = db.session.query(db.func.coalesce(db.func.sum(Reward.claimed_eligible_kg), 0)).filter(
        Reward.user_id == user_id,
        Reward.period_start == start,
        Reward.status == REWARD_STATUS_CLAIMED,
    ).scalar()
    return Decimal(str(total)).quantize(ledger_service.QUANTITY_PLACES)


def reward_summary(user_id: int, month: str | None = None) -> dict:
    """Read-only reward position for the period."""
    user = get_user(user_id)
    authorize(user, "VIEW_REWARDS")

    start, end = reward_period(month)
    total = total_transacted(user, start, end)
    eligible, reward = compute_reward(total)
    claimed = already_claimed_eligible(user.id, start)
    claimable_eligible = max(Decimal("0"), eligible - claimed)

    return {
        "user_id": user.id,
        "role": user.role,
        "period_start": start.isoformat(),
        "period_end": end.isoformat(),
        "total_kg": float(total),
        "eligible_kg": float(eligible),
        "reward_kg": float(reward),
        "already_claimed_eligible_kg": float(claimed),
        "claimable_reward_kg": float(_floor(claimable_eligible * _rate())),
        "threshold_kg": float(_threshold()),
        "rate": float(_rate()),
        "current_balance": float(ledger_service.get_balance(user, ACCOUNT_REWARD)),
    }


def claim_reward(user_id: int, month: str | None = None) -> Reward:
    """
    Settle the unclaimed eligible kg of the period.

    Raises NothingToClaim when the claimable reward is 0.
    """
    start, end = reward_period(month)

    def _op():
        user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if user is None:
            user = get_user(user_id)
        authorize(user, "CLAIM_REWARD")
        ensure_can_transact(user)

        total = total_transacted(user, start, end)
        eligible, _reward = compute_reward(total)
        claimed = already_claimed_eligible(user.id, start)
        claimable_eligible = eligible - claimed
        reward_kg = _floor(claimable_eligible * _rate()) if claimable_eligible > 0 else Decimal("0")

        if reward_kg <= 0:
            raise NothingToClaim(
                "No rewards to claim",
                details={
                    "total_kg": float(total),
                    "eligible_kg": float(eligible),
                    "already_claimed_eligible_kg": float(claimed),
                },
            )

        now = utcnow()
        reward = Reward(
            user_id=user.id,
            user_role=user.role,
            period_start=start,
            period_end=end,
            total_kg=total,
            eligible_kg=eligible,
            claimed_eligible_kg=claimable_eligible,
            reward_kg=reward_kg,
            status=REWARD_STATUS_CLAIMED,
            claimed_at=now,
        )
        db.session.add(reward)
        db.session.flush()

        ledger_service.credit(
            user.id,
            ACCOUNT_REWARD,
            reward_kg,
            entry_type="REWARD_CLAIM",
            reference_type="reward",
            reference_id=reward.id,
            occurred_at=now,
        )
        return reward

    return run_with_retry(_op)


def list_rewards(user_id: int) -> list[Reward]:
    user = get_user(user_id)
    authorize(user, "VIEW_REWARDS")
    return db.session.query(Reward).filter(
        Reward.user_id == user.id
    ).order_by(Reward.claimed_at.desc(), Reward.id.desc()).all()
