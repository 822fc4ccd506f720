# Overview: Flask API routes for OTP login and session tokens; parses input and returns JSON responses.

"""
Authentication API routes

SECURITY FEATURES:
- Closed registration: only pre-provisioned phone numbers receive codes
- Per-phone cooldown and daily quota on code requests
- Codes hashed at rest, single use, 5 attempts max
- Tokens re-checked against the live identity on every request
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..errors import ServiceError, error_response
from ..decorators import require_auth, bearer_token
from ..permissions import capabilities_for_role
from ..services import otp_service, token_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _client():
    return request.remote_addr, request.headers.get("User-Agent")


@auth_bp.post("/send-code")
def send_code_route():
    """
    Request a login code by SMS.

    Request body: {"country_code": "91", "phone_no": "9876543210"}

    Returns:
        200: {expires_in, role, role_name, sms_status, message}
        400: malformed phone
        403: unknown, blocked or deleted identity
        429: cooldown or daily quota
    """
    data = request.get_json(silent=True) or {}
    ip_address, user_agent = _client()

    try:
        result = otp_service.send_code(
            data.get("country_code", "91"),
            data.get("phone_no"),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return jsonify({"success": True, **result}), 200

    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to send OTP")
        return jsonify({"error": "Failed to send OTP"}), 500


@auth_bp.post("/verify-code")
def verify_code_route():
    """
    Exchange a login code for a session token.

    Request body: {"country_code": "91", "phone_no": "9876543210", "otp": "123456"}

    Returns:
        200: {token, expires_at, user, is_first_login, message}
        400: malformed input, no code issued, code expired
        401: wrong code (remaining_attempts included)
        429: attempts exhausted
    """
    data = request.get_json(silent=True) or {}
    ip_address, user_agent = _client()

    try:
        result = otp_service.verify_code(
            data.get("country_code", "91"),
            data.get("phone_no"),
            data.get("otp"),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return jsonify({"success": True, **result}), 200

    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to verify OTP")
        return jsonify({"error": "Failed to verify OTP"}), 500


@auth_bp.post("/refresh-token")
def refresh_token_route():
    """
    Re-issue a session token. The old token may be expired but must be authentic.

    Accepts the old token as a Bearer header or {"token": "..."}.
    """
    data = request.get_json(silent=True) or {}
    token = bearer_token() or data.get("token")
    if not token:
        return jsonify({"error": "Token required", "kind": "TokenInvalid"}), 401

    try:
        issued = token_service.refresh(token)
        return jsonify({"success": True, **issued.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)


@auth_bp.get("/profile")
@require_auth
def profile_route():
    """Current identity plus the capabilities its role holds."""
    user = g.current_user
    profile = user.to_dict()
    if user.assigned_aso is not None:
        profile["assigned_aso"] = user.assigned_aso.to_summary_dict()
    if user.dealer is not None:
        profile["dealer"] = user.dealer.to_summary_dict()

    return jsonify({
        "user": profile,
        "capabilities": capabilities_for_role(user.role),
    }), 200
