# Overview: Structured service errors surfaced to API callers as kind + message.

"""
Service error hierarchy.

Every failure a caller can trigger is a ServiceError subclass carrying:
- kind: stable machine-readable name (e.g. "InsufficientStock")
- status_code: HTTP status the API layer responds with
- message: human readable explanation
- details: extra fields merged into the JSON body (e.g. remaining_attempts)

Services raise these; routes roll back and render them with error_response().
Nothing here is fatal to the process.
"""

from __future__ import annotations

from flask import jsonify


class ServiceError(Exception):
    """Base class for all expected, caller-visible failures."""
    kind = "ServiceError"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind, **self.details}


class ValidationError(ServiceError):
    """Malformed phone, quantity, role or other input."""
    kind = "ValidationError"
    status_code = 400


class NotFound(ServiceError):
    kind = "NotFound"
    status_code = 404


class AlreadyExists(ServiceError):
    kind = "AlreadyExists"
    status_code = 409


class NotAuthorized(ServiceError):
    """Unknown phone number or insufficient role/ownership."""
    kind = "NotAuthorized"
    status_code = 403


class AccountBlocked(ServiceError):
    kind = "AccountBlocked"
    status_code = 403


class AccountDeleted(ServiceError):
    kind = "AccountDeleted"
    status_code = 403


class RateLimited(ServiceError):
    kind = "RateLimited"
    status_code = 429


class QuotaExceeded(ServiceError):
    kind = "QuotaExceeded"
    status_code = 429


class OtpNotFound(ServiceError):
    kind = "OtpNotFound"
    status_code = 400


class OtpExpired(ServiceError):
    kind = "OtpExpired"
    status_code = 400


class InvalidOtp(ServiceError):
    kind = "InvalidOtp"
    status_code = 401


class AttemptsExhausted(ServiceError):
    kind = "AttemptsExhausted"
    status_code = 429


class TokenInvalid(ServiceError):
    kind = "TokenInvalid"
    status_code = 401


class TokenExpired(ServiceError):
    kind = "TokenExpired"
    status_code = 401


class UserNotFound(ServiceError):
    """Token refers to an identity that no longer exists."""
    kind = "UserNotFound"
    status_code = 401


class AlreadyMapped(ServiceError):
    kind = "AlreadyMapped"
    status_code = 409


class NotMapped(ServiceError):
    kind = "NotMapped"
    status_code = 409


class InsufficientStock(ServiceError):
    kind = "InsufficientStock"
    status_code = 409


class AlreadyProcessed(ServiceError):
    kind = "AlreadyProcessed"
    status_code = 409


class NothingToClaim(ServiceError):
    kind = "NothingToClaim"
    status_code = 400


def error_response(exc: ServiceError):
    """Render a ServiceError as a (json, status) Flask response tuple."""
    return jsonify(exc.to_dict()), exc.status_code
