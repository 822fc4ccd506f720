# Overview: Per-phone OTP request throttling (cooldown window and daily quota).

"""
OTP Request Throttling

Independent of OTP validity: a phone may only request a code once per
cooldown window, and at most MAX_DAILY_REQUESTS times per record lifetime.

The record lives RECORD_TTL after the latest request. Once expired it is
treated as absent, which is what resets the daily counter.
"""

from __future__ import annotations

import math
from datetime import timedelta

from ..extensions import db
from ..errors import QuotaExceeded, RateLimited
from ..models import OtpRateLimit
from steeltrack.time_utils import utcnow


COOLDOWN = timedelta(seconds=60)
RECORD_TTL = timedelta(hours=24)
MAX_DAILY_REQUESTS = 10


def _live_record(phone_key: str, now) -> OtpRateLimit | None:
    """Return the unexpired record for phone_key, deleting a stale one."""
    record = db.session.query(OtpRateLimit).filter_by(phone_key=phone_key).first()
    if record is None:
        return None
    if record.expires_at <= now:
        db.session.delete(record)
        db.session.flush()
        return None
    return record


def check_rate_limit(phone_key: str) -> None:
    """
    Raise RateLimited or QuotaExceeded if phone_key may not request a code now.

    RateLimited carries retry_after_seconds (rounded up).
    """
    now = utcnow()
    record = _live_record(phone_key, now)
    if record is None:
        return

    elapsed = now - record.last_request_at
    if elapsed < COOLDOWN:
        wait = math.ceil((COOLDOWN - elapsed).total_seconds())
        raise RateLimited(
            f"Please wait {wait} seconds before requesting another code",
            details={"retry_after_seconds": wait},
        )

    if record.daily_request_count >= MAX_DAILY_REQUESTS:
        raise QuotaExceeded(
            "Daily OTP request limit reached. Please try again tomorrow.",
            details={"max_daily_requests": MAX_DAILY_REQUESTS},
        )


def record_request(phone_key: str, country_code: str, phone_no: str) -> OtpRateLimit:
    """Upsert the throttle record: counter +1, last request now, expiry refreshed."""
    now = utcnow()
    record = _live_record(phone_key, now)
    if record is None:
        record = OtpRateLimit(
            phone_key=phone_key,
            country_code=country_code,
            phone_no=phone_no,
            daily_request_count=0,
            created_at=now,
        )
        db.session.add(record)

    record.daily_request_count = (record.daily_request_count or 0) + 1
    record.last_request_at = now
    record.expires_at = now + RECORD_TTL
    db.session.flush()
    return record


def get_rate_limit_status(phone_key: str) -> dict:
    """Read-only view of the throttle state for phone_key."""
    now = utcnow()
    record = db.session.query(OtpRateLimit).filter_by(phone_key=phone_key).first()
    if record is None or record.expires_at <= now:
        return {
            "requests_today": 0,
            "remaining_requests": MAX_DAILY_REQUESTS,
            "retry_after_seconds": 0,
        }

    elapsed = now - record.last_request_at
    wait = math.ceil((COOLDOWN - elapsed).total_seconds()) if elapsed < COOLDOWN else 0
    return {
        "requests_today": record.daily_request_count,
        "remaining_requests": max(0, MAX_DAILY_REQUESTS - record.daily_request_count),
        "retry_after_seconds": wait,
    }


def purge_expired() -> int:
    deleted = db.session.query(OtpRateLimit).filter(
        OtpRateLimit.expires_at <= utcnow()
    ).delete(synchronize_session=False)
    return deleted
