# Overview: OTP issuance and verification; the only login path into the system.

"""
OTP Login

SEND:
1. Phone validated and resolved to a provisioned identity (no self-signup)
2. Throttle checked (cooldown + daily quota)
3. Fresh 6-digit code hashed and upserted (attempts reset, 5 minute expiry)
4. Throttle record bumped
5. Code handed to the SMS sender; delivery failure only downgrades sms_status

VERIFY (failure order):
OtpNotFound -> OtpExpired (record purged) -> AttemptsExhausted (record purged,
checked before comparing) -> InvalidOtp (attempts + 1, malformed codes included)

On success the record is deleted (one-time use), a PENDING identity becomes
ACTIVE and a session token is issued.

Failure paths that change state (attempt counter, purged records) commit
before raising, so the caller's rollback cannot undo them.
"""

from __future__ import annotations

import re
import secrets
from datetime import timedelta

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    AttemptsExhausted,
    InvalidOtp,
    NotAuthorized,
    OtpExpired,
    OtpNotFound,
    RateLimited,
    ValidationError,
)
from ..models import OtpCode
from ..models.identity import ROLE_DISPLAY_NAMES
from . import identity_service, rate_limit_service, token_service
from .security_service import log_security_event
from .sms_service import get_sms_sender
from steeltrack.time_utils import utcnow


OTP_TTL = timedelta(minutes=5)
MAX_OTP_ATTEMPTS = 5
CODE_PATTERN = re.compile(r"^\d{6}$")


def generate_code() -> str:
    """Uniformly random 6-digit code (100000-999999)."""
    return str(secrets.randbelow(900000) + 100000)


def hash_code(code: str) -> str:
    rounds = current_app.config.get("OTP_HASH_ROUNDS", 10)
    return bcrypt.hashpw(code.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_code(code: str, code_hash: str) -> bool:
    try:
        return bcrypt.checkpw(code.encode("utf-8"), code_hash.encode("utf-8"))
    except ValueError:
        return False


def _resolve_login_identity(country_code, phone_no):
    cc, phone = identity_service.normalize_phone(country_code, phone_no)
    user = identity_service.find_user_by_phone(cc, phone)
    if user is None:
        raise NotAuthorized("This phone number is not registered. Please contact your administrator.")
    identity_service.ensure_login_allowed(user)
    return cc, phone, user


def send_code(country_code, phone_no, ip_address: str | None = None, user_agent: str | None = None) -> dict:
    """
    Issue a login code for a provisioned phone number.

    Returns dict with expires_in (seconds), role, role_name, sms_status, message.
    """
    cc, phone, user = _resolve_login_identity(country_code, phone_no)
    phone_key = identity_service.make_phone_key(cc, phone)

    rate_limit_service.check_rate_limit(phone_key)

    now = utcnow()
    code = generate_code()

    record = db.session.query(OtpCode).filter_by(phone_key=phone_key).first()
    if record is None:
        record = OtpCode(phone_key=phone_key, country_code=cc, phone_no=phone)
        db.session.add(record)
    record.code_hash = hash_code(code)
    record.attempts = 0
    record.created_at = now
    record.expires_at = now + OTP_TTL

    try:
        rate_limit_service.record_request(phone_key, cc, phone)
        db.session.commit()
    except IntegrityError:
        # A concurrent send for the same phone won the unique phone_key insert
        db.session.rollback()
        raise RateLimited(
            "Another code request is in progress. Please wait before retrying.",
            details={"retry_after_seconds": int(rate_limit_service.COOLDOWN.total_seconds())},
        )

    # The code is already committed; delivery trouble only leaves it pending
    try:
        delivered = get_sms_sender().send(cc, phone, code)
    except Exception:
        current_app.logger.exception("SMS sender failed for user %s", user.id)
        delivered = False
    sms_status = "sent" if delivered else "pending"

    log_security_event(
        event_type="OTP_SENT",
        success=True,
        user_id=user.id,
        phone_key=phone_key,
        reason=f"sms_status={sms_status}",
        ip_address=ip_address,
        user_agent=user_agent,
        commit=True,
    )
    current_app.logger.info("OTP issued for user %s (sms %s)", user.id, sms_status)

    return {
        "expires_in": int(OTP_TTL.total_seconds()),
        "role": user.role,
        "role_name": ROLE_DISPLAY_NAMES.get(user.role, user.role),
        "sms_status": sms_status,
        "message": "OTP sent successfully" if delivered else "OTP generated; SMS delivery pending",
    }


def verify_code(country_code, phone_no, code, ip_address: str | None = None, user_agent: str | None = None) -> dict:
    """
    Consume a login code and open a session.

    Returns dict with token, expires_at, user, is_first_login, message.

    A malformed code is a mismatch like any other and uses up an attempt;
    only a missing code is rejected up front.
    """
    code = str(code).strip() if code is not None else ""
    if not code:
        raise ValidationError("OTP is required")

    cc, phone, user = _resolve_login_identity(country_code, phone_no)
    phone_key = identity_service.make_phone_key(cc, phone)

    record = db.session.query(OtpCode).filter_by(phone_key=phone_key).first()
    if record is None:
        raise OtpNotFound("No OTP found for this number. Please request a new code.")

    if utcnow() > record.expires_at:
        db.session.delete(record)
        db.session.commit()
        raise OtpExpired("OTP has expired. Please request a new code.")

    if record.attempts >= MAX_OTP_ATTEMPTS:
        db.session.delete(record)
        db.session.commit()
        raise AttemptsExhausted("Too many failed attempts. Please request a new code.")

    if not CODE_PATTERN.match(code) or not check_code(code, record.code_hash):
        record.attempts += 1
        remaining = max(0, MAX_OTP_ATTEMPTS - record.attempts)
        log_security_event(
            event_type="OTP_VERIFY_FAILED",
            success=False,
            user_id=user.id,
            phone_key=phone_key,
            reason=f"remaining_attempts={remaining}",
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.session.commit()
        raise InvalidOtp(
            "Invalid OTP",
            details={"remaining_attempts": remaining},
        )

    db.session.delete(record)
    is_first_login = identity_service.activate_on_login(user)
    issued = token_service.issue(user)

    log_security_event(
        event_type="LOGIN_SUCCESS",
        success=True,
        user_id=user.id,
        phone_key=phone_key,
        reason="first_login" if is_first_login else None,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.session.commit()

    return {
        "token": issued.token,
        "expires_at": issued.to_dict()["expires_at"],
        "user": user.to_dict(),
        "is_first_login": is_first_login,
        "message": "Login successful",
    }


def purge_expired() -> int:
    deleted = db.session.query(OtpCode).filter(
        OtpCode.expires_at <= utcnow()
    ).delete(synchronize_session=False)
    return deleted


def purge_expired_records() -> dict:
    """Bulk-delete expired OTP and throttle rows."""
    result = {
        "otp_codes": purge_expired(),
        "rate_limits": rate_limit_service.purge_expired(),
    }
    db.session.commit()
    return result
