from __future__ import annotations

import uuid
from decimal import Decimal

from ..extensions import db
from steeltrack.time_utils import to_utc_z


ROLE_SUPER_ADMIN = "SUPER_ADMIN"
ROLE_ASO = "ASO"
ROLE_DEALER = "DEALER"
ROLE_BARBENDER = "BARBENDER"
ROLES = (ROLE_SUPER_ADMIN, ROLE_ASO, ROLE_DEALER, ROLE_BARBENDER)

ROLE_DISPLAY_NAMES = {
    ROLE_SUPER_ADMIN: "Super Admin",
    ROLE_ASO: "Area Sales Officer",
    ROLE_DEALER: "Dealer",
    ROLE_BARBENDER: "Barbender",
}

STATUS_PENDING = "PENDING"
STATUS_ACTIVE = "ACTIVE"
STATUS_BLOCKED = "BLOCKED"
STATUS_DELETED = "DELETED"
STATUSES = (STATUS_PENDING, STATUS_ACTIVE, STATUS_BLOCKED, STATUS_DELETED)


def _new_public_id() -> str:
    return uuid.uuid4().hex


def qty_to_float(value) -> float:
    """JSON rendering for Numeric kg columns."""
    if value is None:
        return 0.0
    return float(value)


class User(db.Model):
    """
    Provisioned identity, keyed by phone number.

    LIFECYCLE: created PENDING by a superior (Super Admin for ASO/Dealer,
    Dealer for its Barbenders); becomes ACTIVE on first successful OTP
    verification; may be BLOCKED or DELETED later. DELETED is terminal.

    BALANCES: available_qty and reward_eligible_qty are cached folds of
    balance_entries. Only ledger_service writes them.

    role is immutable after creation (no service exposes a role update).
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("phone_no", name="uq_users_phone_no"),
        db.UniqueConstraint("public_id", name="uq_users_public_id"),
        db.CheckConstraint("available_qty >= 0", name="available_qty_non_negative"),
        db.CheckConstraint("reward_eligible_qty >= 0", name="reward_eligible_qty_non_negative"),
        db.Index("ix_users_role_status", "role", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Opaque identifier bound into session tokens
    public_id = db.Column(db.String(32), nullable=False, default=_new_public_id)

    country_code = db.Column(db.String(8), nullable=False, default="91")
    phone_no = db.Column(db.String(15), nullable=False)
    name = db.Column(db.String(128), nullable=False)

    role = db.Column(db.String(16), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING, index=True)

    available_qty = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0"))
    reward_eligible_qty = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0"))

    # Dealer -> ASO (forward reference of the active mapping)
    assigned_aso_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    # Barbender -> owning Dealer
    dealer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    last_otp_validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    assigned_aso = db.relationship(
        "User",
        remote_side=[id],
        foreign_keys=[assigned_aso_id],
        backref=db.backref("mapped_dealers", lazy=True),
    )
    dealer = db.relationship(
        "User",
        remote_side=[id],
        foreign_keys=[dealer_id],
        backref=db.backref("barbenders", lazy=True),
    )
    created_by = db.relationship("User", remote_side=[id], foreign_keys=[created_by_id])

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def phone_key(self) -> str:
        return f"{self.country_code}-{self.phone_no}"

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "public_id": self.public_id,
            "country_code": self.country_code,
            "phone_no": self.phone_no,
            "name": self.name,
            "role": self.role,
            "role_name": ROLE_DISPLAY_NAMES.get(self.role, self.role),
            "status": self.status,
            "available_qty": qty_to_float(self.available_qty),
            "reward_eligible_qty": qty_to_float(self.reward_eligible_qty),
            "assigned_aso_id": self.assigned_aso_id,
            "dealer_id": self.dealer_id,
            "created_by_id": self.created_by_id,
            "last_otp_validated_at": to_utc_z(self.last_otp_validated_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

    def to_summary_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone_no": self.phone_no,
            "role": self.role,
            "status": self.status,
        }


class AsoDealerMapping(db.Model):
    """
    Audit entry for an ASO <-> Dealer hierarchy edge.

    INVARIANT: at most one active mapping per dealer (partial unique index).
    The forward reference users.assigned_aso_id and this row are written in
    the same transaction; mapping_service.reconcile_mappings() repairs drift.
    """
    __tablename__ = "aso_dealer_mappings"
    __table_args__ = (
        db.Index(
            "uq_aso_dealer_mappings_active_dealer",
            "dealer_id",
            unique=True,
            sqlite_where=db.text("is_active = 1"),
            postgresql_where=db.text("is_active"),
        ),
        db.Index("ix_aso_dealer_mappings_aso_active", "aso_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    aso_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    dealer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    aso = db.relationship("User", foreign_keys=[aso_id])
    dealer = db.relationship("User", foreign_keys=[dealer_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "aso_id": self.aso_id,
            "aso_name": self.aso.name if self.aso else None,
            "aso_phone_no": self.aso.phone_no if self.aso else None,
            "dealer_id": self.dealer_id,
            "dealer_name": self.dealer.name if self.dealer else None,
            "dealer_phone_no": self.dealer.phone_no if self.dealer else None,
            "is_active": self.is_active,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
        }
