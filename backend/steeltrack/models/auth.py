from __future__ import annotations

from ..extensions import db
from steeltrack.time_utils import to_utc_z


class OtpCode(db.Model):
    """
    Short-lived one-time login code.

    INVARIANTS:
    - At most one live row per phone_key (unique, upserted on send)
    - Code stored as a bcrypt hash, never in plaintext
    - Deleted on successful verification, on expiry and on attempt exhaustion
    - Rows past expires_at are purged by maintenance (TTL replacement)
    """
    __tablename__ = "otp_codes"
    __table_args__ = (
        db.UniqueConstraint("phone_key", name="uq_otp_codes_phone_key"),
        db.Index("ix_otp_codes_expires_at", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    phone_key = db.Column(db.String(32), nullable=False)
    country_code = db.Column(db.String(8), nullable=False)
    phone_no = db.Column(db.String(15), nullable=False)

    code_hash = db.Column(db.String(255), nullable=False)
    attempts = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "phone_key": self.phone_key,
            "attempts": self.attempts,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
        }


class OtpRateLimit(db.Model):
    """
    Per-phone OTP request throttle, independent of OtpCode.

    The daily counter resets implicitly: once expires_at (24h after the
    latest request) passes, the row is treated as absent and recreated.
    """
    __tablename__ = "otp_rate_limits"
    __table_args__ = (
        db.UniqueConstraint("phone_key", name="uq_otp_rate_limits_phone_key"),
        db.Index("ix_otp_rate_limits_expires_at", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    phone_key = db.Column(db.String(32), nullable=False)
    country_code = db.Column(db.String(8), nullable=False)
    phone_no = db.Column(db.String(15), nullable=False)

    last_request_at = db.Column(db.DateTime(timezone=True), nullable=False)
    daily_request_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "phone_key": self.phone_key,
            "last_request_at": to_utc_z(self.last_request_at),
            "daily_request_count": self.daily_request_count,
            "expires_at": to_utc_z(self.expires_at),
        }
