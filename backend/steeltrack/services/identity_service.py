# Overview: Service-layer operations for identities; provisioning, lookup and status lifecycle.

"""
Identity Store

Identities are keyed by phone number and always pre-provisioned by a
superior. There is no self-signup: OTP login only ever activates an existing
PENDING record (two-phase lifecycle).

LIFECYCLE:
- PENDING: provisioned, never logged in
- ACTIVE: first successful OTP verification done
- BLOCKED: suspended by a superior, may be unblocked
- DELETED: terminal; hierarchy edges are torn down on deletion

Provisioning rules:
- Super Admin provisions ASOs and Dealers
- An ACTIVE Dealer provisions its own Barbenders
- Super Admins themselves come only from the CLI bootstrap
"""

from __future__ import annotations

import re

from ..extensions import db
from ..errors import (
    AccountBlocked,
    AccountDeleted,
    AlreadyExists,
    NotAuthorized,
    NotFound,
    ValidationError,
)
from ..models import User, AsoDealerMapping
from ..models.identity import (
    ROLES,
    ROLE_SUPER_ADMIN,
    ROLE_ASO,
    ROLE_DEALER,
    ROLE_BARBENDER,
    STATUS_PENDING,
    STATUS_ACTIVE,
    STATUS_BLOCKED,
    STATUS_DELETED,
)
from ..permissions import PROVISIONING_CAPABILITY, authorize
from ..validation import clean_text
from .security_service import log_security_event
from steeltrack.time_utils import utcnow


PHONE_PATTERN = re.compile(r"^\d{10,15}$")
COUNTRY_CODE_PATTERN = re.compile(r"^\d{1,4}$")

# Status a superior may move an identity to
MANAGEABLE_STATUSES = (STATUS_ACTIVE, STATUS_BLOCKED, STATUS_DELETED)


def normalize_phone(country_code: str | None, phone_no: str | int | None) -> tuple[str, str]:
    """
    Validate and canonicalize (country_code, phone_no).

    Accepts "+91"/"91" country codes and digit-only phone numbers of
    10-15 digits. Raises ValidationError otherwise.
    """
    if country_code is None or phone_no is None:
        raise ValidationError("Country code and phone number are required")

    cc = str(country_code).strip().lstrip("+")
    phone = str(phone_no).strip()

    if not COUNTRY_CODE_PATTERN.match(cc):
        raise ValidationError("Invalid country code format")
    if not PHONE_PATTERN.match(phone):
        raise ValidationError("Invalid phone number format. Must be 10-15 digits.")

    return cc, phone


def make_phone_key(country_code: str, phone_no: str) -> str:
    """Canonical lookup key for OTP and rate-limit records."""
    return f"{country_code}-{phone_no}"


def find_user_by_phone(country_code: str, phone_no: str) -> User | None:
    return db.session.query(User).filter_by(
        country_code=country_code,
        phone_no=phone_no,
    ).first()


def get_user(user_id: int) -> User:
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise NotFound(f"User {user_id} not found")
    return user


def ensure_login_allowed(user: User) -> None:
    """Reject identities whose status forbids authentication."""
    if user.status == STATUS_DELETED:
        raise AccountDeleted("Account has been deleted. Please contact administrator.")
    if user.status == STATUS_BLOCKED:
        raise AccountBlocked("Account is blocked. Please contact administrator.")


def ensure_can_transact(user: User, label: str = "User") -> None:
    """BLOCKED, DELETED and never-activated identities cannot start transactions."""
    if user.status == STATUS_DELETED:
        raise AccountDeleted(f"{label} account has been deleted")
    if user.status == STATUS_BLOCKED:
        raise AccountBlocked(f"{label} account is blocked")
    if user.status != STATUS_ACTIVE:
        raise NotAuthorized(f"{label} account is not active yet")


def activate_on_login(user: User) -> bool:
    """
    Stamp a successful OTP login. PENDING identities become ACTIVE.

    Returns True when this was the identity's first login.
    """
    first_login = user.status == STATUS_PENDING
    if first_login:
        user.status = STATUS_ACTIVE
    user.last_otp_validated_at = utcnow()
    db.session.flush()
    return first_login


def provision_user(
    actor_id: int,
    role: str,
    country_code: str,
    phone_no: str,
    name: str,
) -> User:
    """
    Create a PENDING identity on behalf of actor.

    Raises:
        ValidationError: bad role, phone or name
        NotAuthorized: actor may not create this role
        AlreadyExists: phone number already registered
    """
    role = clean_text(role, "role").upper()
    if role not in PROVISIONING_CAPABILITY:
        raise ValidationError(
            f"Role must be one of: {', '.join(PROVISIONING_CAPABILITY)}"
        )

    name = clean_text(name, "name")
    if not name:
        raise ValidationError("Name is required")

    cc, phone = normalize_phone(country_code, phone_no)

    actor = get_user(actor_id)
    authorize(actor, PROVISIONING_CAPABILITY[role])
    ensure_can_transact(actor, "Caller")

    existing = db.session.query(User).filter_by(phone_no=phone).first()
    if existing:
        raise AlreadyExists("Phone number already registered")

    user = User(
        country_code=cc,
        phone_no=phone,
        name=name,
        role=role,
        status=STATUS_PENDING,
        created_by_id=actor.id,
        dealer_id=actor.id if role == ROLE_BARBENDER else None,
    )
    db.session.add(user)
    db.session.flush()

    log_security_event(
        event_type="USER_PROVISIONED",
        success=True,
        user_id=actor.id,
        phone_key=user.phone_key,
        action=role,
        reason=f"Provisioned {role} {user.id}",
    )
    return user


def bootstrap_super_admin(country_code: str, phone_no: str, name: str) -> User:
    """
    Create (or return) a Super Admin identity. CLI only.

    Idempotent on phone number; refuses to repurpose a non-admin identity.
    """
    cc, phone = normalize_phone(country_code, phone_no)
    existing = db.session.query(User).filter_by(phone_no=phone).first()
    if existing:
        if existing.role != ROLE_SUPER_ADMIN:
            raise AlreadyExists(f"Phone number already registered as {existing.role}")
        return existing

    user = User(
        country_code=cc,
        phone_no=phone,
        name=clean_text(name, "name", default="Super Admin") or "Super Admin",
        role=ROLE_SUPER_ADMIN,
        status=STATUS_PENDING,
    )
    db.session.add(user)
    db.session.commit()
    return user


def change_status(actor_id: int, user_id: int, new_status: str) -> User:
    """
    Move a subordinate identity to ACTIVE (unblock), BLOCKED or DELETED.

    - DELETED is terminal
    - Unblocking an identity that never logged in returns it to PENDING
    - Deleting a Dealer unmaps it; deleting an ASO unmaps all its dealers
    """
    new_status = clean_text(new_status, "status").upper()
    if new_status not in MANAGEABLE_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(MANAGEABLE_STATUSES)}")

    actor = get_user(actor_id)
    target = get_user(user_id)
    authorize(actor, "MANAGE_USERS", target)

    if target.status == STATUS_DELETED:
        raise AccountDeleted("Account has been deleted and cannot change status")

    previous = target.status
    if new_status == STATUS_ACTIVE:
        if target.status != STATUS_BLOCKED:
            return target
        target.status = STATUS_ACTIVE if target.last_otp_validated_at else STATUS_PENDING
    elif new_status == STATUS_DELETED:
        _detach_hierarchy(target)
        target.status = STATUS_DELETED
    else:
        target.status = new_status

    db.session.flush()

    log_security_event(
        event_type="USER_STATUS_CHANGED",
        success=True,
        user_id=actor.id,
        phone_key=target.phone_key,
        action=target.status,
        reason=f"User {target.id}: {previous} -> {target.status}",
    )
    return target


def _detach_hierarchy(user: User) -> None:
    """Remove the ASO-dealer edges touching user, on both sides."""
    if user.role == ROLE_DEALER:
        user.assigned_aso_id = None
        db.session.query(AsoDealerMapping).filter_by(dealer_id=user.id).delete(synchronize_session=False)
    elif user.role == ROLE_ASO:
        for dealer in db.session.query(User).filter_by(assigned_aso_id=user.id).all():
            dealer.assigned_aso_id = None
        db.session.query(AsoDealerMapping).filter_by(aso_id=user.id).delete(synchronize_session=False)


def list_users(actor_id: int, role: str | None = None, status: str | None = None, include_deleted: bool = False) -> list[User]:
    """
    Identities visible to actor.

    Super Admin sees everyone, an ASO its mapped dealers, a Dealer its barbenders.
    """
    actor = get_user(actor_id)
    authorize(actor, "VIEW_USERS")

    query = db.session.query(User)
    if actor.role == ROLE_ASO:
        query = query.filter(User.role == ROLE_DEALER, User.assigned_aso_id == actor.id)
    elif actor.role == ROLE_DEALER:
        query = query.filter(User.role == ROLE_BARBENDER, User.dealer_id == actor.id)

    if role:
        role = clean_text(role, "role").upper()
        if role not in ROLES:
            raise ValidationError(f"Unknown role {role}")
        query = query.filter(User.role == role)
    if status:
        query = query.filter(User.status == clean_text(status, "status").upper())
    elif not include_deleted:
        query = query.filter(User.status != STATUS_DELETED)

    return query.order_by(User.name, User.id).all()


def get_visible_user(actor_id: int, user_id: int) -> User:
    actor = get_user(actor_id)
    target = get_user(user_id)
    authorize(actor, "VIEW_USERS", target)
    return target


def list_barbenders(dealer_id: int) -> list[User]:
    """Non-deleted barbenders owned by a dealer."""
    return db.session.query(User).filter(
        User.role == ROLE_BARBENDER,
        User.dealer_id == dealer_id,
        User.status != STATUS_DELETED,
    ).order_by(User.name, User.id).all()
