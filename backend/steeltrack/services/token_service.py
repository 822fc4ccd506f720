# Overview: Signed session tokens bound to a user's opaque public id.

"""
Session Tokens

HS256 JWTs carrying:
- sub: users.public_id (never the numeric primary key or phone number)
- role: role at issue time (informational; authorization re-reads the user)
- iat / exp: integer UTC timestamps

A token is never trusted on its own: verify() re-resolves the identity
from the database on every request, so deleting or blocking a user takes
effect immediately even though the token is still signed and unexpired.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from flask import current_app
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from ..extensions import db
from ..errors import AccountBlocked, TokenExpired, TokenInvalid, UserNotFound
from ..models import User
from ..models.identity import STATUS_BLOCKED, STATUS_DELETED
from steeltrack.time_utils import to_utc_z, utcnow


@dataclass
class IssuedToken:
    token: str
    expires_at: datetime

    def to_dict(self) -> dict:
        return {"token": self.token, "expires_at": to_utc_z(self.expires_at)}


def _epoch(dt: datetime) -> int:
    return int(dt.replace(tzinfo=timezone.utc).timestamp())


def _secret() -> str:
    return current_app.config["JWT_SECRET"]


def _algorithm() -> str:
    return current_app.config.get("JWT_ALGORITHM", "HS256")


def issue(user: User) -> IssuedToken:
    """Sign a new token for user, valid for JWT_EXPIRES_DAYS."""
    now = utcnow().replace(microsecond=0)
    expires_at = now + timedelta(days=current_app.config.get("JWT_EXPIRES_DAYS", 7))
    claims = {
        "sub": user.public_id,
        "role": user.role,
        "iat": _epoch(now),
        "exp": _epoch(expires_at),
    }
    token = jwt.encode(claims, _secret(), algorithm=_algorithm())
    return IssuedToken(token=token, expires_at=expires_at)


def decode(token: str, verify_exp: bool = True) -> dict:
    """
    Decode and check the signature of token.

    Raises:
        TokenExpired: signature valid but exp has passed (only when verify_exp)
        TokenInvalid: malformed token or bad signature
    """
    if not token:
        raise TokenInvalid("Missing token")
    if not isinstance(token, str):
        raise TokenInvalid("Invalid token")
    try:
        claims = jwt.decode(
            token,
            _secret(),
            algorithms=[_algorithm()],
            options={"verify_exp": verify_exp},
        )
    except ExpiredSignatureError:
        raise TokenExpired("Token has expired")
    except JWTError:
        raise TokenInvalid("Invalid token")

    if not claims.get("sub"):
        raise TokenInvalid("Invalid token")
    return claims


def _resolve(claims: dict) -> User:
    user = db.session.query(User).filter_by(public_id=claims["sub"]).first()
    if user is None or user.status == STATUS_DELETED:
        raise UserNotFound("User not found")
    if user.status == STATUS_BLOCKED:
        raise AccountBlocked("Account is blocked. Please contact administrator.")
    return user


def verify(token: str) -> User:
    """Return the live identity a valid, unexpired token refers to."""
    return _resolve(decode(token))


def refresh(old_token: str) -> IssuedToken:
    """
    Re-issue a token. Expiry of old_token is ignored; its signature is not.
    """
    claims = decode(old_token, verify_exp=False)
    user = _resolve(claims)
    return issue(user)
