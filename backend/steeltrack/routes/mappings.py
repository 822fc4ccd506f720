# Overview: Flask API routes for the ASO-Dealer hierarchy.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..errors import ServiceError, error_response
from ..decorators import require_auth, require_capability
from ..services import mapping_service
from ..services.concurrency import commit_or_rollback
from ..validation import clean_id


mappings_bp = Blueprint("mappings", __name__, url_prefix="/api/mappings")


@mappings_bp.post("/aso-dealer")
@require_auth
@require_capability("MANAGE_MAPPINGS")
def map_dealer_route():
    """
    Map a dealer to an ASO.

    Request body: {"aso_id": int, "dealer_id": int}

    Returns:
        201: mapping created
        409: dealer already mapped (current_aso_id included)
    """
    data = request.get_json(silent=True) or {}

    try:
        mapping = mapping_service.map_dealer_to_aso(
            admin_id=g.current_user.id,
            aso_id=clean_id(data["aso_id"], "aso_id"),
            dealer_id=clean_id(data["dealer_id"], "dealer_id"),
        )
        commit_or_rollback()
        return jsonify({"success": True, "mapping": mapping.to_dict()}), 201

    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}", "kind": "ValidationError"}), 400
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to map dealer")
        return jsonify({"error": "Failed to map dealer"}), 500


@mappings_bp.delete("/aso-dealer/<int:dealer_id>")
@require_auth
@require_capability("MANAGE_MAPPINGS")
def unmap_dealer_route(dealer_id: int):
    """Remove a dealer's ASO assignment. Succeeds when already unmapped."""
    try:
        changed = mapping_service.unmap_dealer(g.current_user.id, dealer_id)
        commit_or_rollback()
        return jsonify({
            "success": True,
            "message": "Dealer unmapped" if changed else "Dealer was not mapped",
        }), 200

    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to unmap dealer %s", dealer_id)
        return jsonify({"error": "Failed to unmap dealer"}), 500


@mappings_bp.get("")
@require_auth
@require_capability("VIEW_MAPPINGS")
def list_mappings_route():
    try:
        mappings = mapping_service.list_mappings(
            g.current_user.id,
            aso_id=request.args.get("aso_id", type=int),
        )
        return jsonify({"mappings": [m.to_dict() for m in mappings]}), 200
    except ServiceError as e:
        return error_response(e)


@mappings_bp.get("/unmapped-dealers")
@require_auth
@require_capability("MANAGE_MAPPINGS")
def unmapped_dealers_route():
    try:
        dealers = mapping_service.list_unmapped_dealers(g.current_user.id)
        return jsonify({"dealers": [d.to_dict() for d in dealers]}), 200
    except ServiceError as e:
        return error_response(e)


@mappings_bp.get("/my-dealers")
@require_auth
@require_capability("DISPATCH_STOCK")
def my_dealers_route():
    """Dealers mapped to the calling ASO."""
    dealers = mapping_service.list_dealers_for_aso(g.current_user.id)
    return jsonify({"dealers": [d.to_dict() for d in dealers]}), 200
