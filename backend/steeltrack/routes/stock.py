# Overview: Flask API routes for stock dispatch, receipt and daily stock.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..errors import ServiceError, error_response
from ..decorators import require_auth, require_capability
from ..services import stock_service
from ..services.concurrency import commit_or_rollback
from ..validation import clean_id
from steeltrack.time_utils import parse_iso_date


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.post("/dispatches")
@require_auth
@require_capability("DISPATCH_STOCK")
def create_dispatch_route():
    """
    ASO dispatches stock to a mapped dealer. Nothing moves until the dealer receives.

    Request body: {"dealer_id": int, "product_id": int, "quantity_kg": number}

    Returns:
        201: PENDING dispatch
        400: invalid quantity or product
        409: dealer not mapped to caller
    """
    data = request.get_json(silent=True) or {}

    try:
        dispatch = stock_service.dispatch_stock(
            aso_id=g.current_user.id,
            dealer_id=clean_id(data["dealer_id"], "dealer_id"),
            product_id=clean_id(data["product_id"], "product_id"),
            quantity_kg=data.get("quantity_kg"),
        )
        commit_or_rollback()
        return jsonify({"success": True, "dispatch": dispatch.to_dict()}), 201

    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}", "kind": "ValidationError"}), 400
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to dispatch stock")
        return jsonify({"error": "Failed to dispatch stock"}), 500


@stock_bp.get("/dispatches")
@require_auth
@require_capability("VIEW_DISPATCHES")
def list_dispatches_route():
    """Query params: status (PENDING | RECEIVED | CANCELLED), dealer_id."""
    try:
        dispatches = stock_service.list_dispatches(
            g.current_user.id,
            status=request.args.get("status"),
            dealer_id=request.args.get("dealer_id", type=int),
        )
        return jsonify({"dispatches": [d.to_dict() for d in dispatches]}), 200
    except ServiceError as e:
        return error_response(e)


@stock_bp.post("/dispatches/<int:dispatch_id>/receive")
@require_auth
@require_capability("RECEIVE_STOCK")
def receive_dispatch_route(dispatch_id: int):
    """
    Dealer confirms receipt; balance and daily stock update in one transaction.

    Returns:
        200: {dispatch, new_balance}
        403: dispatch addressed to another dealer
        409: already received or cancelled
    """
    try:
        dispatch = stock_service.receive_dispatch(g.current_user.id, dispatch_id)
        commit_or_rollback()
        return jsonify({
            "success": True,
            "message": f"Received {float(dispatch.quantity_kg)}kg successfully",
            "dispatch": dispatch.to_dict(),
            "new_balance": float(g.current_user.available_qty),
        }), 200

    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive dispatch %s", dispatch_id)
        return jsonify({"error": "Failed to receive dispatch"}), 500


@stock_bp.post("/dispatches/<int:dispatch_id>/cancel")
@require_auth
@require_capability("CANCEL_DISPATCH")
def cancel_dispatch_route(dispatch_id: int):
    """Request body: {"reason": str (optional)}"""
    data = request.get_json(silent=True) or {}

    try:
        dispatch = stock_service.cancel_dispatch(g.current_user.id, dispatch_id, data.get("reason"))
        commit_or_rollback()
        return jsonify({"success": True, "dispatch": dispatch.to_dict()}), 200

    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel dispatch %s", dispatch_id)
        return jsonify({"error": "Failed to cancel dispatch"}), 500


@stock_bp.get("/daily")
@require_auth
@require_capability("VIEW_DAILY_STOCK")
def daily_stock_route():
    """
    Per-day stock rows for a dealer (the caller when it is a dealer).

    Query params: dealer_id, start (YYYY-MM-DD), end (YYYY-MM-DD)
    """
    try:
        start = parse_iso_date(request.args.get("start"))
        end = parse_iso_date(request.args.get("end"))
    except ValueError:
        return jsonify({"error": "start and end must be YYYY-MM-DD", "kind": "ValidationError"}), 400

    try:
        rows = stock_service.daily_stock_report(
            g.current_user.id,
            dealer_id=request.args.get("dealer_id", type=int),
            start=start,
            end=end,
        )
        return jsonify({"daily_stock": [r.to_dict() for r in rows]}), 200
    except ServiceError as e:
        return error_response(e)


@stock_bp.get("/summary")
@require_auth
@require_capability("VIEW_DAILY_STOCK")
def day_wise_summary_route():
    """Received quantity grouped by sequential day. Query params: dealer_id."""
    try:
        summary = stock_service.day_wise_summary(
            g.current_user.id,
            dealer_id=request.args.get("dealer_id", type=int),
        )
        return jsonify(summary), 200
    except ServiceError as e:
        return error_response(e)
