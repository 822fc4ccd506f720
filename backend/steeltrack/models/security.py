from __future__ import annotations

from ..extensions import db
from steeltrack.time_utils import to_utc_z


# Written by the OTP, identity, mapping and authorization paths
SECURITY_EVENT_TYPES = (
    "OTP_SENT",
    "OTP_VERIFY_FAILED",
    "LOGIN_SUCCESS",
    "PERMISSION_DENIED",
    "USER_PROVISIONED",
    "USER_STATUS_CHANGED",
    "MAPPING_CREATED",
    "MAPPING_REMOVED",
)


class SecurityEvent(db.Model):
    """
    One row per login step, denied request or hierarchy change.

    Login events are recorded before anyone is authenticated, so they are
    keyed by phone_key and user_id may be empty. Rows are only ever inserted;
    `flask maintenance cleanup-security-events` is the one thing that deletes
    them.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    phone_key = db.Column(db.String(32), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)
    # Route path for denials, target role for provisioning
    resource = db.Column(db.String(128), nullable=True)
    action = db.Column(db.String(64), nullable=True)

    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    user = db.relationship("User", backref=db.backref("security_events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "phone_key": self.phone_key,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
