# Overview: Request and capability decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .errors import ServiceError, error_response
from .permissions import has_capability
from .services import token_service
from .services.security_service import log_security_event


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid session token.

    Sets g.current_user to the live User the token refers to.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Token malformed, badly signed or expired
    - User deleted since the token was issued
    Returns 403 if the user is blocked.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required", "kind": "TokenInvalid"}), 401

        try:
            user = token_service.verify(token)
        except ServiceError as e:
            return error_response(e)

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_capability(capability: str):
    """
    Require the caller's role to hold a capability.

    Ownership of the specific target is checked again in the service layer.
    Denials are written to security_events before responding.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "kind": "TokenInvalid"}), 401

            user = g.current_user
            if not has_capability(user.role, capability):
                log_security_event(
                    event_type="PERMISSION_DENIED",
                    success=False,
                    user_id=user.id,
                    phone_key=user.phone_key,
                    resource=request.path,
                    action=request.method,
                    reason=f"{user.role} lacks {capability}",
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                    commit=True,
                )
                return jsonify({
                    "error": "Permission denied",
                    "kind": "NotAuthorized",
                    "required_capability": capability,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
