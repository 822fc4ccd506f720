# Overview: Flask API routes for dealer-to-barbender sales and barbender outside purchases.

from decimal import Decimal

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..errors import ServiceError, error_response
from ..decorators import require_auth, require_capability
from ..services import stock_service
from ..services.concurrency import commit_or_rollback
from ..validation import clean_id


sales_bp = Blueprint("sales", __name__, url_prefix="/api")


@sales_bp.post("/sales")
@require_auth
@require_capability("SELL_STOCK")
def sell_route():
    """
    Dealer sells stock to one of its barbenders.

    Request body:
    {
        "barbender_id": int,
        "product_id": int,
        "quantity_kg": number,
        "notes": str (optional)
    }

    Returns:
        201: {sale, dealer_balance}
        403: barbender belongs to another dealer
        409: insufficient stock (available_qty included)
    """
    data = request.get_json(silent=True) or {}

    try:
        sale = stock_service.sell_to_barbender(
            dealer_id=g.current_user.id,
            barbender_id=clean_id(data["barbender_id"], "barbender_id"),
            product_id=clean_id(data["product_id"], "product_id"),
            quantity_kg=data.get("quantity_kg"),
            notes=data.get("notes"),
        )
        commit_or_rollback()
        return jsonify({
            "success": True,
            "message": f"Sold {float(sale.quantity_kg)}kg to {sale.barbender.name}",
            "sale": sale.to_dict(),
            "dealer_balance": float(g.current_user.available_qty),
        }), 201

    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}", "kind": "ValidationError"}), 400
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record sale")
        return jsonify({"error": "Failed to record sale"}), 500


@sales_bp.get("/sales")
@require_auth
@require_capability("VIEW_SALES")
def list_sales_route():
    """Query params: barbender_id (dealers and admins only)."""
    try:
        sales = stock_service.list_sales(
            g.current_user.id,
            barbender_id=request.args.get("barbender_id", type=int),
        )
        total = sum((Decimal(s.quantity_kg) for s in sales), Decimal("0"))
        return jsonify({
            "sales": [s.to_dict() for s in sales],
            "total_kg": float(total),
        }), 200
    except ServiceError as e:
        return error_response(e)


@sales_bp.post("/purchases")
@require_auth
@require_capability("RECORD_PURCHASE")
def record_purchase_route():
    """
    Barbender records stock bought outside the dealer network.

    Request body:
    {
        "quantity_kg": number,
        "source_name": str (optional),
        "product_id": int (optional),
        "notes": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        purchase = stock_service.record_purchase(
            barbender_id=g.current_user.id,
            quantity_kg=data.get("quantity_kg"),
            source_name=data.get("source_name"),
            product_id=clean_id(data.get("product_id"), "product_id", required=False),
            notes=data.get("notes"),
        )
        commit_or_rollback()
        return jsonify({"success": True, "purchase": purchase.to_dict()}), 201

    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record purchase")
        return jsonify({"error": "Failed to record purchase"}), 500


@sales_bp.get("/purchases")
@require_auth
@require_capability("VIEW_PURCHASES")
def list_purchases_route():
    try:
        purchases = stock_service.list_purchases(
            g.current_user.id,
            barbender_id=request.args.get("barbender_id", type=int),
        )
        total = sum((Decimal(p.quantity_kg) for p in purchases), Decimal("0"))
        return jsonify({
            "purchases": [p.to_dict() for p in purchases],
            "total_kg": float(total),
        }), 200
    except ServiceError as e:
        return error_response(e)
