from __future__ import annotations

from ..extensions import db
from steeltrack.time_utils import to_utc_z
from .identity import qty_to_float


REWARD_STATUS_PENDING = "PENDING"
REWARD_STATUS_CLAIMED = "CLAIMED"


class Reward(db.Model):
    """
    Committed reward claim snapshot.

    total_kg / eligible_kg describe the whole period at claim time;
    claimed_eligible_kg is the part of eligible_kg this claim settled.
    The sum of claimed_eligible_kg per (user, period) never exceeds the
    period's eligible_kg, which is what blocks claiming the same kg twice.

    IMMUTABLE: claims are never edited.
    """
    __tablename__ = "rewards"
    __table_args__ = (
        db.Index("ix_rewards_user_period", "user_id", "period_start"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    user_role = db.Column(db.String(16), nullable=False)

    period_start = db.Column(db.DateTime(timezone=True), nullable=False)
    period_end = db.Column(db.DateTime(timezone=True), nullable=False)

    total_kg = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    eligible_kg = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    claimed_eligible_kg = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    reward_kg = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=REWARD_STATUS_PENDING)
    claimed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("rewards", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_role": self.user_role,
            "user_name": self.user.name if self.user else None,
            "period_start": to_utc_z(self.period_start),
            "period_end": to_utc_z(self.period_end),
            "total_kg": qty_to_float(self.total_kg),
            "eligible_kg": qty_to_float(self.eligible_kg),
            "claimed_eligible_kg": qty_to_float(self.claimed_eligible_kg),
            "reward_kg": qty_to_float(self.reward_kg),
            "status": self.status,
            "claimed_at": to_utc_z(self.claimed_at),
        }
