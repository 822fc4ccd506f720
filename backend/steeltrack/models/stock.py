from __future__ import annotations

from ..extensions import db
from steeltrack.time_utils import to_utc_z
from .identity import qty_to_float


PRODUCT_CATEGORIES = ("steel_rod", "tmt_bar")
PRODUCT_UNITS = ("kg", "ton", "piece", "meter")

DISPATCH_STATUS_PENDING = "PENDING"
DISPATCH_STATUS_RECEIVED = "RECEIVED"
DISPATCH_STATUS_CANCELLED = "CANCELLED"

ACCOUNT_AVAILABLE = "AVAILABLE"
ACCOUNT_REWARD = "REWARD"


class Product(db.Model):
    """Steel product catalog entry, managed by Super Admin."""
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_products_code"),
        db.Index("ix_products_category_active", "category", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(32), nullable=False, default="steel_rod")
    thickness_inch = db.Column(db.Numeric(8, 3), nullable=False)
    grade = db.Column(db.String(32), nullable=True)
    length = db.Column(db.Numeric(10, 3), nullable=True)
    weight_per_unit = db.Column(db.Numeric(10, 3), nullable=True)
    unit = db.Column(db.String(16), nullable=False, default="kg")
    price_per_unit = db.Column(db.Numeric(12, 2), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "category": self.category,
            "thickness_inch": qty_to_float(self.thickness_inch),
            "grade": self.grade,
            "length": float(self.length) if self.length is not None else None,
            "weight_per_unit": float(self.weight_per_unit) if self.weight_per_unit is not None else None,
            "unit": self.unit,
            "price_per_unit": qty_to_float(self.price_per_unit),
            "is_active": self.is_active,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockDispatch(db.Model):
    """
    Stock movement from an ASO to a mapped Dealer.

    LIFECYCLE:
    1. PENDING: created by the ASO, no balance moves
    2. RECEIVED: confirmed by the dealer, dealer balance credited (one-way)
    3. CANCELLED: optional terminal state, reachable only from PENDING

    quantity_kg is fixed at creation.
    """
    __tablename__ = "stock_dispatches"
    __table_args__ = (
        db.CheckConstraint("quantity_kg > 0", name="quantity_positive"),
        db.Index("ix_stock_dispatches_dealer_status", "dealer_id", "status"),
        db.Index("ix_stock_dispatches_dealer_day", "dealer_id", "sequential_day"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    aso_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    dealer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity_kg = db.Column(db.Numeric(14, 3), nullable=False)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=False)
    sequential_day = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=DISPATCH_STATUS_PENDING)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    aso = db.relationship("User", foreign_keys=[aso_id])
    dealer = db.relationship("User", foreign_keys=[dealer_id])
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "aso_id": self.aso_id,
            "aso_name": self.aso.name if self.aso else None,
            "dealer_id": self.dealer_id,
            "dealer_name": self.dealer.name if self.dealer else None,
            "product_id": self.product_id,
            "product_code": self.product.code if self.product else None,
            "product_name": self.product.name if self.product else None,
            "quantity_kg": qty_to_float(self.quantity_kg),
            "dispatched_at": to_utc_z(self.dispatched_at),
            "sequential_day": self.sequential_day,
            "status": self.status,
            "received_at": to_utc_z(self.received_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_id": self.cancelled_by_id,
            "cancellation_reason": self.cancellation_reason,
        }


class BarbenderSale(db.Model):
    """
    Immediate stock movement from a Dealer to one of its Barbenders.

    IMMUTABLE: never updated or deleted once created.
    """
    __tablename__ = "barbender_sales"
    __table_args__ = (
        db.CheckConstraint("quantity_kg > 0", name="quantity_positive"),
        db.Index("ix_barbender_sales_dealer_sold", "dealer_id", "sold_at"),
        db.Index("ix_barbender_sales_barbender_sold", "barbender_id", "sold_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    dealer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    barbender_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity_kg = db.Column(db.Numeric(14, 3), nullable=False)
    sold_at = db.Column(db.DateTime(timezone=True), nullable=False)
    sequential_day = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    dealer = db.relationship("User", foreign_keys=[dealer_id])
    barbender = db.relationship("User", foreign_keys=[barbender_id])
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "dealer_id": self.dealer_id,
            "dealer_name": self.dealer.name if self.dealer else None,
            "barbender_id": self.barbender_id,
            "barbender_name": self.barbender.name if self.barbender else None,
            "product_id": self.product_id,
            "product_code": self.product.code if self.product else None,
            "product_name": self.product.name if self.product else None,
            "quantity_kg": qty_to_float(self.quantity_kg),
            "sold_at": to_utc_z(self.sold_at),
            "sequential_day": self.sequential_day,
            "notes": self.notes,
        }


class Purchase(db.Model):
    """A Barbender's purchase from a source outside the dealer network."""
    __tablename__ = "barbender_purchases"
    __table_args__ = (
        db.CheckConstraint("quantity_kg > 0", name="quantity_positive"),
        db.Index("ix_barbender_purchases_barbender_purchased", "barbender_id", "purchased_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    barbender_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    source_name = db.Column(db.String(255), nullable=False, default="")
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    quantity_kg = db.Column(db.Numeric(14, 3), nullable=False)
    purchased_at = db.Column(db.DateTime(timezone=True), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    barbender = db.relationship("User", foreign_keys=[barbender_id])
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "barbender_id": self.barbender_id,
            "source_name": self.source_name,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity_kg": qty_to_float(self.quantity_kg),
            "purchased_at": to_utc_z(self.purchased_at),
            "notes": self.notes,
        }


class DailyStock(db.Model):
    """
    Per-dealer, per-day stock movement aggregate.

    INVARIANT: exactly one row per (dealer, date).
    available_balance_kg = opening_balance_kg + total_received_kg - total_dispatched_kg,
    with opening_balance_kg carried from the dealer's previous row, so each
    day is reconstructable from its own deltas.
    """
    __tablename__ = "daily_stock"
    __table_args__ = (
        db.UniqueConstraint("dealer_id", "date", name="uq_daily_stock_dealer_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    dealer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)
    sequential_day = db.Column(db.Integer, nullable=False, default=0)

    opening_balance_kg = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    total_received_kg = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    total_dispatched_kg = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    available_balance_kg = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    dealer = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "dealer_id": self.dealer_id,
            "date": self.date.isoformat() if self.date else None,
            "sequential_day": self.sequential_day,
            "opening_balance_kg": qty_to_float(self.opening_balance_kg),
            "total_received_kg": qty_to_float(self.total_received_kg),
            "total_dispatched_kg": qty_to_float(self.total_dispatched_kg),
            "available_balance_kg": qty_to_float(self.available_balance_kg),
        }


class BalanceEntry(db.Model):
    """
    Append-only ledger of balance mutations.

    ACCOUNTS:
    - AVAILABLE: stock on hand (users.available_qty)
    - REWARD: reward-eligible kg (users.reward_eligible_qty)

    The cached user balance always equals the sum of delta for that
    (user, account). IMMUTABLE: never updated or deleted.
    """
    __tablename__ = "balance_entries"
    __table_args__ = (
        db.Index("ix_balance_entries_user_account", "user_id", "account", "id"),
        db.Index("ix_balance_entries_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    account = db.Column(db.String(16), nullable=False)

    # DISPATCH_RECEIVED, SALE_OUT, SALE_IN, SALE_REWARD, PURCHASE, REWARD_CLAIM
    entry_type = db.Column(db.String(32), nullable=False)
    delta = db.Column(db.Numeric(14, 3), nullable=False)  # Positive credit, negative debit
    balance_after = db.Column(db.Numeric(14, 3), nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    user = db.relationship("User", backref=db.backref("balance_entries", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "account": self.account,
            "entry_type": self.entry_type,
            "delta": qty_to_float(self.delta),
            "balance_after": qty_to_float(self.balance_after),
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
