# Overview: Service-layer operations for stock; dispatch, receive, sell and purchase with daily aggregates.

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..errors import (
    AccountBlocked,
    AccountDeleted,
    AlreadyProcessed,
    InsufficientStock,
    NotFound,
    NotMapped,
    ValidationError,
)
from ..models import BarbenderSale, DailyStock, Product, Purchase, StockDispatch, User
from ..models.identity import (
    ROLE_ASO,
    ROLE_BARBENDER,
    ROLE_DEALER,
    ROLE_SUPER_ADMIN,
    STATUS_BLOCKED,
    STATUS_DELETED,
)
from ..models.stock import (
    ACCOUNT_AVAILABLE,
    ACCOUNT_REWARD,
    DISPATCH_STATUS_CANCELLED,
    DISPATCH_STATUS_PENDING,
    DISPATCH_STATUS_RECEIVED,
)
from ..permissions import authorize
from ..validation import clean_optional_text, clean_text
from . import ledger_service
from .concurrency import lock_for_update, run_with_retry
from .identity_service import ensure_can_transact, get_user
from steeltrack.time_utils import utcnow
"""
Stock Movement Invariants (authoritative)

- ASO -> Dealer: dispatch is PENDING until the dealer receives it. No balance
  moves before receipt. PENDING -> RECEIVED and PENDING -> CANCELLED are the
  only transitions; a dispatch is received at most once.
- Dealer -> Barbender: a sale is immediate and immutable. The dealer's
  available balance can never go below zero.
- Every balance change goes through ledger_service (credit/debit).
- DailyStock: one row per (dealer, date). The first row of a day opens with
  the previous row's closing balance; closing = opening + received - dispatched.
- Each operation is one all-or-nothing unit; routes commit once.
"""


def _epoch() -> date:
    value = current_app.config.get("STOCK_EPOCH", "2025-01-01")
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def sequential_day(when: datetime | date) -> int:
    """Human-readable day ordinal: 1 on the epoch date."""
    day = when.date() if isinstance(when, datetime) else when
    return (day - _epoch()).days + 1


def _active_product(product_id) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if not product:
        raise NotFound(f"Product {product_id} not found")
    if not product.is_active:
        raise ValidationError(f"Product {product.code} is not active")
    return product


def _record_daily_stock(dealer_id: int, when: datetime, received=Decimal("0"), dispatched=Decimal("0")) -> DailyStock:
    """Upsert the dealer's DailyStock row for when.date() and apply the day's deltas."""
    day = when.date()
    row = lock_for_update(
        db.session.query(DailyStock).filter_by(dealer_id=dealer_id, date=day)
    ).first()

    if row is None:
        previous = db.session.query(DailyStock).filter(
            DailyStock.dealer_id == dealer_id,
            DailyStock.date < day,
        ).order_by(DailyStock.date.desc()).first()
        opening = Decimal(previous.available_balance_kg) if previous else Decimal("0")
        row = DailyStock(
            dealer_id=dealer_id,
            date=day,
            sequential_day=sequential_day(day),
            opening_balance_kg=opening,
            total_received_kg=Decimal("0"),
            total_dispatched_kg=Decimal("0"),
            available_balance_kg=opening,
        )
        db.session.add(row)

    row.total_received_kg = Decimal(row.total_received_kg or 0) + received
    row.total_dispatched_kg = Decimal(row.total_dispatched_kg or 0) + dispatched
    row.available_balance_kg = (
        Decimal(row.opening_balance_kg or 0)
        + Decimal(row.total_received_kg)
        - Decimal(row.total_dispatched_kg)
    )
    db.session.flush()
    return row


# -- ASO -> DEALER --

def dispatch_stock(aso_id: int, dealer_id: int, product_id: int, quantity_kg) -> StockDispatch:
    """
    Create a PENDING dispatch from an ASO to one of its mapped dealers.

    Raises:
        ValidationError: bad quantity, target is not a dealer, inactive product
        NotMapped: dealer is not mapped to this ASO
        NotAuthorized / AccountBlocked / AccountDeleted: party not allowed to transact
    """
    qty = ledger_service.to_quantity(quantity_kg)

    def _op():
        aso = get_user(aso_id)
        authorize(aso, "DISPATCH_STOCK")
        ensure_can_transact(aso, "ASO")

        dealer = get_user(dealer_id)
        if dealer.role != ROLE_DEALER:
            raise ValidationError(f"User {dealer_id} is not a dealer")
        ensure_can_transact(dealer, "Dealer")
        if dealer.assigned_aso_id != aso.id:
            raise NotMapped("Dealer is not mapped to this ASO")

        product = _active_product(product_id)

        now = utcnow()
        dispatch = StockDispatch(
            aso_id=aso.id,
            dealer_id=dealer.id,
            product_id=product.id,
            quantity_kg=qty,
            dispatched_at=now,
            sequential_day=sequential_day(now),
            status=DISPATCH_STATUS_PENDING,
        )
        db.session.add(dispatch)
        db.session.flush()
        return dispatch

    return run_with_retry(_op)


def receive_dispatch(dealer_id: int, dispatch_id: int) -> StockDispatch:
    """
    Dealer confirms a PENDING dispatch.

    Effects (one unit): status RECEIVED, dealer AVAILABLE credited,
    today's DailyStock received total increased.
    """
    def _op():
        dispatch = lock_for_update(db.session.query(StockDispatch).filter_by(id=dispatch_id)).first()
        if not dispatch:
            raise NotFound(f"Dispatch {dispatch_id} not found")

        dealer = get_user(dealer_id)
        authorize(dealer, "RECEIVE_STOCK", dispatch)
        ensure_can_transact(dealer, "Dealer")

        if dispatch.status != DISPATCH_STATUS_PENDING:
            raise AlreadyProcessed(f"Dispatch {dispatch.id} is already {dispatch.status}")

        now = utcnow()
        qty = Decimal(dispatch.quantity_kg)

        dispatch.status = DISPATCH_STATUS_RECEIVED
        dispatch.received_at = now

        ledger_service.credit(
            dealer.id,
            ACCOUNT_AVAILABLE,
            qty,
            entry_type="DISPATCH_RECEIVED",
            reference_type="stock_dispatch",
            reference_id=dispatch.id,
            occurred_at=now,
        )
        _record_daily_stock(dealer.id, now, received=qty)
        return dispatch

    return run_with_retry(_op)


def cancel_dispatch(actor_id: int, dispatch_id: int, reason: str | None = None) -> StockDispatch:
    """Cancel a PENDING dispatch. Only the dispatching ASO or a Super Admin may."""
    def _op():
        dispatch = lock_for_update(db.session.query(StockDispatch).filter_by(id=dispatch_id)).first()
        if not dispatch:
            raise NotFound(f"Dispatch {dispatch_id} not found")

        actor = get_user(actor_id)
        authorize(actor, "CANCEL_DISPATCH", dispatch)

        if dispatch.status != DISPATCH_STATUS_PENDING:
            raise AlreadyProcessed(f"Dispatch {dispatch.id} is already {dispatch.status}")

        dispatch.status = DISPATCH_STATUS_CANCELLED
        dispatch.cancelled_at = utcnow()
        dispatch.cancelled_by_id = actor.id
        dispatch.cancellation_reason = clean_optional_text(reason, "reason")
        db.session.flush()
        return dispatch

    return run_with_retry(_op)


# -- DEALER -> BARBENDER --

def sell_to_barbender(
    dealer_id: int,
    barbender_id: int,
    product_id: int,
    quantity_kg,
    notes: str | None = None,
) -> BarbenderSale:
    """
    Immediate sale from a dealer to one of its own barbenders.

    Effects (one unit):
    - dealer AVAILABLE debited, dealer REWARD credited
    - barbender AVAILABLE and REWARD credited
    - today's DailyStock dispatched total increased

    Raises InsufficientStock (nothing written) if qty exceeds the dealer's balance.
    """
    qty = ledger_service.to_quantity(quantity_kg)

    def _op():
        dealer = get_user(dealer_id)
        authorize(dealer, "SELL_STOCK")
        ensure_can_transact(dealer, "Dealer")

        barbender = get_user(barbender_id)
        if barbender.role != ROLE_BARBENDER:
            raise ValidationError(f"User {barbender_id} is not a barbender")
        authorize(dealer, "SELL_STOCK", barbender)
        if barbender.status == STATUS_DELETED:
            raise AccountDeleted("Barbender account has been deleted")
        if barbender.status == STATUS_BLOCKED:
            raise AccountBlocked("Barbender account is blocked")

        product = _active_product(product_id)

        available = ledger_service.get_balance(dealer, ACCOUNT_AVAILABLE)
        if qty > available:
            raise InsufficientStock(
                f"Insufficient stock. Available: {available} kg, requested: {qty} kg",
                details={"available_qty": float(available), "requested_qty": float(qty)},
            )

        now = utcnow()
        sale = BarbenderSale(
            dealer_id=dealer.id,
            barbender_id=barbender.id,
            product_id=product.id,
            quantity_kg=qty,
            sold_at=now,
            sequential_day=sequential_day(now),
            notes=clean_optional_text(notes, "notes"),
        )
        db.session.add(sale)
        db.session.flush()

        ref = {"reference_type": "barbender_sale", "reference_id": sale.id, "occurred_at": now}
        ledger_service.debit(dealer.id, ACCOUNT_AVAILABLE, qty, entry_type="SALE_OUT", **ref)
        ledger_service.credit(dealer.id, ACCOUNT_REWARD, qty, entry_type="SALE_REWARD", **ref)
        ledger_service.credit(barbender.id, ACCOUNT_AVAILABLE, qty, entry_type="SALE_IN", **ref)
        ledger_service.credit(barbender.id, ACCOUNT_REWARD, qty, entry_type="SALE_REWARD", **ref)

        _record_daily_stock(dealer.id, now, dispatched=qty)
        return sale

    return run_with_retry(_op)


def record_purchase(
    barbender_id: int,
    quantity_kg,
    source_name: str | None = None,
    product_id: int | None = None,
    notes: str | None = None,
) -> Purchase:
    """Barbender records stock bought outside the dealer network."""
    qty = ledger_service.to_quantity(quantity_kg)

    def _op():
        barbender = get_user(barbender_id)
        authorize(barbender, "RECORD_PURCHASE")
        ensure_can_transact(barbender, "Barbender")

        product = None
        if product_id is not None:
            product = db.session.query(Product).filter_by(id=product_id).first()
            if not product:
                raise NotFound(f"Product {product_id} not found")

        now = utcnow()
        purchase = Purchase(
            barbender_id=barbender.id,
            source_name=clean_text(source_name, "source_name"),
            product_id=product.id if product else None,
            quantity_kg=qty,
            purchased_at=now,
            notes=clean_optional_text(notes, "notes"),
        )
        db.session.add(purchase)
        db.session.flush()

        ref = {"reference_type": "barbender_purchase", "reference_id": purchase.id, "occurred_at": now}
        ledger_service.credit(barbender.id, ACCOUNT_AVAILABLE, qty, entry_type="PURCHASE", **ref)
        ledger_service.credit(barbender.id, ACCOUNT_REWARD, qty, entry_type="PURCHASE", **ref)
        return purchase

    return run_with_retry(_op)


# -- QUERIES --

def _dealer_in_scope(actor: User, dealer_id) -> User:
    dealer = get_user(dealer_id)
    if dealer.role != ROLE_DEALER:
        raise ValidationError(f"User {dealer_id} is not a dealer")
    authorize(actor, "VIEW_DAILY_STOCK", dealer)
    return dealer


def list_dispatches(actor_id: int, status: str | None = None, dealer_id: int | None = None) -> list[StockDispatch]:
    """Dispatches sent by an ASO, received by a dealer, or all (Super Admin)."""
    actor = get_user(actor_id)
    authorize(actor, "VIEW_DISPATCHES")

    query = db.session.query(StockDispatch)
    if actor.role == ROLE_ASO:
        query = query.filter(StockDispatch.aso_id == actor.id)
        if dealer_id is not None:
            query = query.filter(StockDispatch.dealer_id == dealer_id)
    elif actor.role == ROLE_DEALER:
        query = query.filter(StockDispatch.dealer_id == actor.id)
    elif dealer_id is not None:
        query = query.filter(StockDispatch.dealer_id == dealer_id)

    if status:
        query = query.filter(StockDispatch.status == clean_text(status, "status").upper())

    return query.order_by(StockDispatch.dispatched_at.desc(), StockDispatch.id.desc()).all()


def day_wise_summary(actor_id: int, dealer_id: int | None = None) -> dict:
    """Received dispatches for a dealer grouped by sequential day."""
    actor = get_user(actor_id)
    dealer = _dealer_in_scope(actor, dealer_id if dealer_id is not None else actor.id)

    rows = db.session.query(
        StockDispatch.sequential_day,
        db.func.count(StockDispatch.id),
        db.func.sum(StockDispatch.quantity_kg),
        db.func.min(StockDispatch.dispatched_at),
    ).filter(
        StockDispatch.dealer_id == dealer.id,
        StockDispatch.status == DISPATCH_STATUS_RECEIVED,
    ).group_by(StockDispatch.sequential_day).order_by(StockDispatch.sequential_day).all()

    day_wise = []
    total = Decimal("0")
    for day, count, qty, first_at in rows:
        qty = Decimal(str(qty or 0))
        total += qty
        day_wise.append({
            "sequential_day": day,
            "dispatch_count": count,
            "total_kg": float(qty),
            "first_dispatched_at": first_at.isoformat() if isinstance(first_at, datetime) else first_at,
        })

    return {
        "dealer_id": dealer.id,
        "day_wise": day_wise,
        "total_received_kg": float(total),
    }


def daily_stock_report(actor_id: int, dealer_id: int | None = None, start: date | None = None, end: date | None = None) -> list[DailyStock]:
    actor = get_user(actor_id)
    dealer = _dealer_in_scope(actor, dealer_id if dealer_id is not None else actor.id)

    query = db.session.query(DailyStock).filter(DailyStock.dealer_id == dealer.id)
    if start:
        query = query.filter(DailyStock.date >= start)
    if end:
        query = query.filter(DailyStock.date <= end)
    return query.order_by(DailyStock.date).all()


def list_sales(actor_id: int, barbender_id: int | None = None) -> list[BarbenderSale]:
    """Sales made by a dealer, received by a barbender, or all (Super Admin)."""
    actor = get_user(actor_id)
    authorize(actor, "VIEW_SALES")

    query = db.session.query(BarbenderSale)
    if actor.role == ROLE_DEALER:
        query = query.filter(BarbenderSale.dealer_id == actor.id)
        if barbender_id is not None:
            query = query.filter(BarbenderSale.barbender_id == barbender_id)
    elif actor.role == ROLE_BARBENDER:
        query = query.filter(BarbenderSale.barbender_id == actor.id)
    elif barbender_id is not None:
        query = query.filter(BarbenderSale.barbender_id == barbender_id)

    return query.order_by(BarbenderSale.sold_at.desc(), BarbenderSale.id.desc()).all()


def list_purchases(actor_id: int, barbender_id: int | None = None) -> list[Purchase]:
    actor = get_user(actor_id)
    authorize(actor, "VIEW_PURCHASES")

    query = db.session.query(Purchase)
    if actor.role == ROLE_BARBENDER:
        query = query.filter(Purchase.barbender_id == actor.id)
    elif actor.role == ROLE_DEALER:
        owned = db.session.query(User.id).filter(
            User.role == ROLE_BARBENDER,
            User.dealer_id == actor.id,
        )
        query = query.filter(Purchase.barbender_id.in_(owned))
        if barbender_id is not None:
            query = query.filter(Purchase.barbender_id == barbender_id)
    elif actor.role == ROLE_SUPER_ADMIN and barbender_id is not None:
        query = query.filter(Purchase.barbender_id == barbender_id)

    return query.order_by(Purchase.purchased_at.desc(), Purchase.id.desc()).all()
