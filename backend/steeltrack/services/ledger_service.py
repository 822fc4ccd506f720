# Overview: Service-layer operations for balances; the only writer of users.available_qty and users.reward_eligible_qty.

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from ..extensions import db
from ..errors import InsufficientStock, NotFound, ValidationError
from ..models import BalanceEntry, User
from ..models.stock import ACCOUNT_AVAILABLE, ACCOUNT_REWARD
from .concurrency import lock_for_update
from steeltrack.time_utils import utcnow
"""
Balance Ledger Invariants (authoritative)

- Every balance mutation appends exactly one BalanceEntry in the same
  transaction as the domain event that caused it.
- The cached column on users equals the sum of delta over that user's
  entries for the account (replay_balance / verify_balances check this).
- Balances never go negative; a debit that would overdraw raises
  InsufficientStock and writes nothing.
- Entries are never updated or deleted.
"""


ACCOUNT_COLUMNS = {
    ACCOUNT_AVAILABLE: "available_qty",
    ACCOUNT_REWARD: "reward_eligible_qty",
}

QUANTITY_PLACES = Decimal("0.001")


def to_quantity(value, field: str = "quantity_kg") -> Decimal:
    """
    Parse a positive kg quantity (3 decimal places).

    Raises ValidationError for missing, non-numeric, non-finite or <= 0 values.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        qty = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not qty.is_finite():
        raise ValidationError(f"{field} must be a number")
    qty = qty.quantize(QUANTITY_PLACES)
    if qty <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    return qty


def _account_column(account: str) -> str:
    column = ACCOUNT_COLUMNS.get(account)
    if column is None:
        raise ValidationError(f"Unknown balance account {account}")
    return column


def _locked_user(user_id: int) -> User:
    user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
    if not user:
        raise NotFound(f"User {user_id} not found")
    return user


def get_balance(user: User, account: str) -> Decimal:
    return Decimal(getattr(user, _account_column(account)) or 0)


def _post(
    user_id: int,
    account: str,
    delta: Decimal,
    entry_type: str,
    reference_type: str | None,
    reference_id: int | None,
    occurred_at,
) -> BalanceEntry:
    column = _account_column(account)
    user = _locked_user(user_id)

    current = Decimal(getattr(user, column) or 0)
    new_balance = current + delta
    if new_balance < 0:
        raise InsufficientStock(
            f"Insufficient stock. Available: {current} kg, requested: {-delta} kg",
            details={"available_qty": float(current), "requested_qty": float(-delta)},
        )

    setattr(user, column, new_balance)

    entry = BalanceEntry(
        user_id=user.id,
        account=account,
        entry_type=entry_type,
        delta=delta,
        balance_after=new_balance,
        reference_type=reference_type,
        reference_id=reference_id,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def credit(
    user_id: int,
    account: str,
    qty,
    *,
    entry_type: str,
    reference_type: str | None = None,
    reference_id: int | None = None,
    occurred_at=None,
) -> BalanceEntry:
    """Add qty (> 0) to a user's account."""
    amount = to_quantity(qty)
    return _post(user_id, account, amount, entry_type, reference_type, reference_id, occurred_at)


def debit(
    user_id: int,
    account: str,
    qty,
    *,
    entry_type: str,
    reference_type: str | None = None,
    reference_id: int | None = None,
    occurred_at=None,
) -> BalanceEntry:
    """Remove qty (> 0) from a user's account. Raises InsufficientStock on overdraw."""
    amount = to_quantity(qty)
    return _post(user_id, account, -amount, entry_type, reference_type, reference_id, occurred_at)


def replay_balance(user_id: int, account: str) -> Decimal:
    """Fold the entry history into a balance."""
    _account_column(account)
    total = db.session.query(db.func.coalesce(db.func.sum(BalanceEntry.delta), 0)).filter(
        BalanceEntry.user_id == user_id,
        BalanceEntry.account == account,
    ).scalar()
    return Decimal(str(total)).quantize(QUANTITY_PLACES)


def list_entries(user_id: int, account: str | None = None, limit: int = 200) -> list[BalanceEntry]:
    query = db.session.query(BalanceEntry).filter(BalanceEntry.user_id == user_id)
    if account:
        query = query.filter(BalanceEntry.account == account)
    return query.order_by(BalanceEntry.id.desc()).limit(limit).all()


def verify_balances() -> list[dict]:
    """
    Compare every cached balance with its replayed history.

    Returns one dict per mismatch (empty list when consistent).
    """
    mismatches = []
    for user in db.session.query(User).order_by(User.id).all():
        for account in (ACCOUNT_AVAILABLE, ACCOUNT_REWARD):
            cached = get_balance(user, account).quantize(QUANTITY_PLACES)
            replayed = replay_balance(user.id, account)
            if cached != replayed:
                mismatches.append({
                    "user_id": user.id,
                    "account": account,
                    "cached": float(cached),
                    "replayed": float(replayed),
                })
    return mismatches
