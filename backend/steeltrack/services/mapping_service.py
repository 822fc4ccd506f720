# Overview: Service-layer operations for the ASO-Dealer hierarchy; mapping, unmapping and repair.

"""
ASO <-> Dealer Mapping

Two records describe one edge and are always written together:
- users.assigned_aso_id on the dealer (forward reference; the ASO's
  membership set is the mapped_dealers relationship over this column)
- an active AsoDealerMapping row (audit entry, unique per dealer)

reconcile_mappings() reports dealers where the two disagree and can repair
them, with the forward reference treated as authoritative.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import AccountDeleted, AlreadyMapped, ValidationError
from ..models import AsoDealerMapping, User
from ..models.identity import ROLE_ASO, ROLE_DEALER, STATUS_DELETED
from ..permissions import authorize
from .concurrency import lock_for_update
from .identity_service import get_user
from .security_service import log_security_event


def _require_role(user: User, role: str, label: str) -> None:
    if user.role != role:
        raise ValidationError(f"User {user.id} does not have role {role}")
    if user.status == STATUS_DELETED:
        raise AccountDeleted(f"{label} account has been deleted")


def map_dealer_to_aso(admin_id: int, aso_id: int, dealer_id: int) -> AsoDealerMapping:
    """
    Assign a dealer to an ASO.

    Raises:
        NotAuthorized: caller is not a Super Admin
        ValidationError: wrong roles
        AlreadyMapped: dealer already has an active ASO
    """
    admin = get_user(admin_id)
    authorize(admin, "MANAGE_MAPPINGS")

    aso = get_user(aso_id)
    _require_role(aso, ROLE_ASO, "ASO")

    dealer = lock_for_update(db.session.query(User).filter_by(id=dealer_id)).first()
    if dealer is None:
        dealer = get_user(dealer_id)
    _require_role(dealer, ROLE_DEALER, "Dealer")

    existing = db.session.query(AsoDealerMapping).filter_by(dealer_id=dealer.id, is_active=True).first()
    if dealer.assigned_aso_id is not None or existing is not None:
        current = dealer.assigned_aso_id or existing.aso_id
        raise AlreadyMapped(
            "Dealer is already mapped to an ASO",
            details={"current_aso_id": current},
        )

    dealer.assigned_aso_id = aso.id
    mapping = AsoDealerMapping(
        aso_id=aso.id,
        dealer_id=dealer.id,
        is_active=True,
        created_by_id=admin.id,
    )
    db.session.add(mapping)
    try:
        db.session.flush()
    except IntegrityError:
        # Concurrent mapping of the same dealer hit the partial unique index
        db.session.rollback()
        raise AlreadyMapped("Dealer is already mapped to an ASO")

    log_security_event(
        event_type="MAPPING_CREATED",
        success=True,
        user_id=admin.id,
        resource="aso_dealer_mapping",
        action="MAP",
        reason=f"dealer {dealer.id} -> aso {aso.id}",
    )
    return mapping


def unmap_dealer(admin_id: int, dealer_id: int) -> bool:
    """
    Remove a dealer's ASO assignment (forward reference and mapping row).

    Idempotent: returns False when the dealer was not mapped.
    """
    admin = get_user(admin_id)
    authorize(admin, "MANAGE_MAPPINGS")

    dealer = get_user(dealer_id)
    if dealer.role != ROLE_DEALER:
        raise ValidationError(f"User {dealer.id} is not a Dealer")

    previous_aso_id = dealer.assigned_aso_id
    dealer.assigned_aso_id = None
    removed = db.session.query(AsoDealerMapping).filter_by(
        dealer_id=dealer.id
    ).delete(synchronize_session=False)
    db.session.flush()

    changed = previous_aso_id is not None or removed > 0
    if changed:
        log_security_event(
            event_type="MAPPING_REMOVED",
            success=True,
            user_id=admin.id,
            resource="aso_dealer_mapping",
            action="UNMAP",
            reason=f"dealer {dealer.id} <- aso {previous_aso_id}",
        )
    return changed


def list_mappings(actor_id: int, aso_id: int | None = None) -> list[AsoDealerMapping]:
    actor = get_user(actor_id)
    authorize(actor, "VIEW_MAPPINGS")

    query = db.session.query(AsoDealerMapping).filter(AsoDealerMapping.is_active.is_(True))
    if actor.role == ROLE_ASO:
        query = query.filter(AsoDealerMapping.aso_id == actor.id)
    elif aso_id is not None:
        query = query.filter(AsoDealerMapping.aso_id == aso_id)
    return query.order_by(AsoDealerMapping.created_at.desc(), AsoDealerMapping.id.desc()).all()


def list_unmapped_dealers(actor_id: int) -> list[User]:
    actor = get_user(actor_id)
    authorize(actor, "MANAGE_MAPPINGS")
    return db.session.query(User).filter(
        User.role == ROLE_DEALER,
        User.assigned_aso_id.is_(None),
        User.status != STATUS_DELETED,
    ).order_by(User.name, User.id).all()


def list_dealers_for_aso(aso_id: int) -> list[User]:
    """The ASO's membership set: non-deleted dealers pointing at it."""
    return db.session.query(User).filter(
        User.role == ROLE_DEALER,
        User.assigned_aso_id == aso_id,
        User.status != STATUS_DELETED,
    ).order_by(User.name, User.id).all()


def reconcile_mappings(fix: bool = False) -> list[dict]:
    """
    Find dealers whose forward reference and active mapping row disagree.

    With fix=True the mapping rows are rewritten to match assigned_aso_id
    (and a deleted dealer or ASO loses its edges). Returns the issues found.
    """
    issues = []
    dealers = db.session.query(User).filter(User.role == ROLE_DEALER).order_by(User.id).all()
    for dealer in dealers:
        active = db.session.query(AsoDealerMapping).filter_by(dealer_id=dealer.id, is_active=True).first()
        expected_aso_id = dealer.assigned_aso_id

        if expected_aso_id is not None:
            aso = db.session.query(User).filter_by(id=expected_aso_id).first()
            if dealer.status == STATUS_DELETED or aso is None or aso.status == STATUS_DELETED or aso.role != ROLE_ASO:
                issues.append({"dealer_id": dealer.id, "issue": "dangling_reference", "aso_id": expected_aso_id})
                if fix:
                    dealer.assigned_aso_id = None
                    expected_aso_id = None

        mapped_aso_id = active.aso_id if active else None
        if mapped_aso_id == expected_aso_id:
            continue

        if expected_aso_id is None:
            issues.append({"dealer_id": dealer.id, "issue": "orphan_mapping_row", "aso_id": mapped_aso_id})
        elif mapped_aso_id is None:
            issues.append({"dealer_id": dealer.id, "issue": "missing_mapping_row", "aso_id": expected_aso_id})
        else:
            issues.append({
                "dealer_id": dealer.id,
                "issue": "aso_mismatch",
                "aso_id": expected_aso_id,
                "mapped_aso_id": mapped_aso_id,
            })

        if fix:
            db.session.query(AsoDealerMapping).filter_by(dealer_id=dealer.id).delete(synchronize_session=False)
            if expected_aso_id is not None:
                db.session.add(AsoDealerMapping(
                    aso_id=expected_aso_id,
                    dealer_id=dealer.id,
                    is_active=True,
                    created_by_id=dealer.created_by_id or expected_aso_id,
                ))
            db.session.flush()

    if fix:
        db.session.commit()
    return issues
