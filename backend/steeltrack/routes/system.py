# backend/steeltrack/routes/system.py
"""
System health endpoint.

Reports database reachability and pending maintenance (expired OTP and
throttle rows awaiting purge) for deployment debugging.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import User, OtpCode, OtpRateLimit
from ..services.sms_service import Fast2SmsSender
from steeltrack.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        now = utcnow()
        expired_otps = db.session.query(OtpCode).filter(OtpCode.expires_at <= now).count()
        expired_limits = db.session.query(OtpRateLimit).filter(OtpRateLimit.expires_at <= now).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "expired_otp_codes": expired_otps,
                "expired_rate_limits": expired_limits,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_sms_health() -> dict:
    sender = current_app.extensions.get("sms_sender")
    return {
        "status": "healthy" if sender is not None else "unhealthy",
        "mode": "gateway" if isinstance(sender, Fast2SmsSender) else "console",
    }


@system_bp.get("/health")
def health():
    """Overall status is unhealthy when any check is."""
    checks = {
        "database": check_database_health(),
        "sms": check_sms_health(),
    }
    overall = "healthy" if all(c["status"] == "healthy" for c in checks.values()) else "unhealthy"
    return {
        "status": overall,
        "timestamp": utcnow().isoformat() + "Z",
        "checks": checks,
    }, 200 if overall == "healthy" else 503
