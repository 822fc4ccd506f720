# Overview: Flask API routes for the product catalog.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..errors import ServiceError, error_response
from ..decorators import require_auth, require_capability
from ..services import product_service
from ..services.concurrency import commit_or_rollback


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.post("")
@require_auth
@require_capability("MANAGE_PRODUCTS")
def create_product_route():
    """
    Request body:
    {
        "code": str,
        "name": str,
        "category": "steel_rod" | "tmt_bar",
        "thickness_inch": number,
        "price_per_unit": number,
        "grade": str (optional),
        "length": number (optional),
        "weight_per_unit": number (optional),
        "unit": "kg" | "ton" | "piece" | "meter" (optional, default kg)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        product = product_service.create_product(g.current_user.id, data)
        commit_or_rollback()
        return jsonify({"success": True, "product": product.to_dict()}), 201

    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Failed to create product"}), 500


@products_bp.get("")
@require_auth
@require_capability("VIEW_PRODUCTS")
def list_products_route():
    """Query params: category, active_only=false to include deactivated products."""
    products = product_service.list_products(
        category=request.args.get("category"),
        active_only=request.args.get("active_only", "true").lower() != "false",
    )
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@products_bp.post("/seed-sample")
@require_auth
@require_capability("MANAGE_PRODUCTS")
def seed_sample_products_route():
    try:
        created = product_service.seed_sample_products(g.current_user.id)
        commit_or_rollback()
        return jsonify({
            "success": True,
            "message": f"{len(created)} sample products created",
            "products": [p.to_dict() for p in created],
        }), 201
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)


@products_bp.get("/<int:product_id>")
@require_auth
@require_capability("VIEW_PRODUCTS")
def get_product_route(product_id: int):
    try:
        product = product_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)


@products_bp.put("/<int:product_id>")
@require_auth
@require_capability("MANAGE_PRODUCTS")
def update_product_route(product_id: int):
    data = request.get_json(silent=True) or {}

    try:
        product = product_service.update_product(g.current_user.id, product_id, data)
        commit_or_rollback()
        return jsonify({"success": True, "product": product.to_dict()}), 200

    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update product %s", product_id)
        return jsonify({"error": "Failed to update product"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
@require_capability("MANAGE_PRODUCTS")
def deactivate_product_route(product_id: int):
    """Soft delete (is_active = false)."""
    try:
        product = product_service.deactivate_product(g.current_user.id, product_id)
        commit_or_rollback()
        return jsonify({"success": True, "message": "Product deactivated", "product": product.to_dict()}), 200

    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
