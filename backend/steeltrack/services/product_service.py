# Overview: Service-layer operations for the product catalog.

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from ..extensions import db
from ..errors import AlreadyExists, NotFound, ValidationError
from ..models import Product
from ..models.stock import PRODUCT_CATEGORIES, PRODUCT_UNITS
from ..permissions import authorize
from ..validation import clean_optional_text, clean_text
from .identity_service import get_user


# Fields a Super Admin may edit after creation (code is immutable)
UPDATABLE_FIELDS = (
    "name",
    "category",
    "thickness_inch",
    "grade",
    "length",
    "weight_per_unit",
    "unit",
    "price_per_unit",
    "is_active",
)

SAMPLE_PRODUCTS = [
    ("STL-001", "Steel Rod 6mm", "steel_rod", "0.236", "Fe 415", "12", "2.2", "65"),
    ("STL-002", "Steel Rod 8mm", "steel_rod", "0.315", "Fe 415", "12", "3.9", "115"),
    ("STL-003", "Steel Rod 10mm", "steel_rod", "0.394", "Fe 415", "12", "6.1", "180"),
    ("STL-004", "Steel Rod 12mm", "steel_rod", "0.472", "Fe 415", "12", "8.9", "262"),
    ("STL-005", "Steel Rod 16mm", "steel_rod", "0.63", "Fe 415", "12", "15.8", "465"),
    ("STL-006", "TMT Bar 8mm", "tmt_bar", "0.315", "Fe 500", "12", "3.9", "125"),
    ("STL-007", "TMT Bar 10mm", "tmt_bar", "0.394", "Fe 500", "12", "6.1", "195"),
    ("STL-008", "TMT Bar 12mm", "tmt_bar", "0.472", "Fe 500", "12", "8.9", "285"),
    ("STL-009", "TMT Bar 16mm", "tmt_bar", "0.63", "Fe 500", "12", "15.8", "495"),
    ("STL-010", "TMT Bar 20mm", "tmt_bar", "0.787", "Fe 500", "12", "24.7", "770"),
]


def _decimal(value, field: str, required: bool = False) -> Decimal | None:
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required")
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite() or result < 0:
        raise ValidationError(f"{field} must be a non-negative number")
    return result


def _clean(data: dict, partial: bool) -> dict:
    cleaned = {}

    if "name" in data or not partial:
        name = clean_text(data.get("name"), "name")
        if not name:
            raise ValidationError("name is required")
        cleaned["name"] = name

    if "category" in data or not partial:
        category = clean_text(data.get("category"), "category", default="steel_rod").lower() or "steel_rod"
        if category not in PRODUCT_CATEGORIES:
            raise ValidationError(f"category must be one of: {', '.join(PRODUCT_CATEGORIES)}")
        cleaned["category"] = category

    if "unit" in data or not partial:
        unit = clean_text(data.get("unit"), "unit", default="kg").lower() or "kg"
        if unit not in PRODUCT_UNITS:
            raise ValidationError(f"unit must be one of: {', '.join(PRODUCT_UNITS)}")
        cleaned["unit"] = unit

    if "thickness_inch" in data or not partial:
        cleaned["thickness_inch"] = _decimal(data.get("thickness_inch"), "thickness_inch", required=True)
    if "price_per_unit" in data or not partial:
        cleaned["price_per_unit"] = _decimal(data.get("price_per_unit"), "price_per_unit", required=True)
    for field in ("length", "weight_per_unit"):
        if field in data:
            cleaned[field] = _decimal(data.get(field), field)

    if "grade" in data:
        cleaned["grade"] = clean_optional_text(data.get("grade"), "grade")

    if "is_active" in data and partial:
        if not isinstance(data["is_active"], bool):
            raise ValidationError("is_active must be a boolean")
        cleaned["is_active"] = data["is_active"]

    return cleaned


def create_product(actor_id: int, data: dict) -> Product:
    actor = get_user(actor_id)
    authorize(actor, "MANAGE_PRODUCTS")

    code = clean_text(data.get("code"), "code").upper()
    if not code:
        raise ValidationError("code is required")

    cleaned = _clean(data, partial=False)

    if db.session.query(Product).filter_by(code=code).first():
        raise AlreadyExists(f"Product code {code} already exists")

    product = Product(code=code, created_by_id=actor.id, is_active=True, **cleaned)
    db.session.add(product)
    db.session.flush()
    return product


def get_product(product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if not product:
        raise NotFound(f"Product {product_id} not found")
    return product


def list_products(category: str | None = None, active_only: bool = True) -> list[Product]:
    query = db.session.query(Product)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    if category:
        query = query.filter(Product.category == clean_text(category, "category").lower())
    return query.order_by(Product.name, Product.id).all()


def update_product(actor_id: int, product_id: int, data: dict) -> Product:
    actor = get_user(actor_id)
    authorize(actor, "MANAGE_PRODUCTS")

    product = get_product(product_id)
    unknown = set(data) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    for field, value in _clean(data, partial=True).items():
        setattr(product, field, value)
    db.session.flush()
    return product


def deactivate_product(actor_id: int, product_id: int) -> Product:
    """Soft delete: existing dispatches and sales keep referencing the row."""
    actor = get_user(actor_id)
    authorize(actor, "MANAGE_PRODUCTS")

    product = get_product(product_id)
    product.is_active = False
    db.session.flush()
    return product


def seed_sample_products(actor_id: int) -> list[Product]:
    """Insert the standard rod/TMT catalog, skipping codes that already exist."""
    actor = get_user(actor_id)
    authorize(actor, "MANAGE_PRODUCTS")

    created = []
    for code, name, category, thickness, grade, length, weight, price in SAMPLE_PRODUCTS:
        if db.session.query(Product).filter_by(code=code).first():
            continue
        product = Product(
            code=code,
            name=name,
            category=category,
            thickness_inch=Decimal(thickness),
            grade=grade,
            length=Decimal(length),
            weight_per_unit=Decimal(weight),
            unit="kg",
            price_per_unit=Decimal(price),
            is_active=True,
            created_by_id=actor.id,
        )
        db.session.add(product)
        created.append(product)
    db.session.flush()
    return created
