# Overview: Flask API routes for identity provisioning and status management.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..errors import ServiceError, error_response
from ..decorators import require_auth, require_capability
from ..services import identity_service
from ..services.concurrency import commit_or_rollback


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.post("")
@require_auth
def create_user_route():
    """
    Provision a PENDING identity.

    Super Admin creates ASOs and Dealers; a Dealer creates its own Barbenders.
    The role-specific capability is checked by the service.

    Request body: {"role": "DEALER", "country_code": "91", "phone_no": "...", "name": "..."}
    """
    data = request.get_json(silent=True) or {}

    try:
        user = identity_service.provision_user(
            actor_id=g.current_user.id,
            role=data.get("role"),
            country_code=data.get("country_code", "91"),
            phone_no=data.get("phone_no"),
            name=data.get("name"),
        )
        commit_or_rollback()
        return jsonify({"success": True, "user": user.to_dict()}), 201

    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Failed to create user"}), 500


@users_bp.get("")
@require_auth
@require_capability("VIEW_USERS")
def list_users_route():
    """
    List identities in the caller's scope.

    Query params: role, status, include_deleted=true
    """
    try:
        users = identity_service.list_users(
            g.current_user.id,
            role=request.args.get("role"),
            status=request.args.get("status"),
            include_deleted=request.args.get("include_deleted", "false").lower() == "true",
        )
        return jsonify({"users": [u.to_dict() for u in users]}), 200
    except ServiceError as e:
        return error_response(e)


@users_bp.get("/barbenders")
@require_auth
@require_capability("CREATE_BARBENDER")
def list_my_barbenders_route():
    barbenders = identity_service.list_barbenders(g.current_user.id)
    return jsonify({"barbenders": [b.to_dict() for b in barbenders]}), 200


@users_bp.get("/<int:user_id>")
@require_auth
@require_capability("VIEW_USERS")
def get_user_route(user_id: int):
    try:
        user = identity_service.get_visible_user(g.current_user.id, user_id)
        return jsonify({"user": user.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)


@users_bp.patch("/<int:user_id>/status")
@require_auth
@require_capability("MANAGE_USERS")
def change_status_route(user_id: int):
    """
    Block, unblock (ACTIVE) or delete a subordinate identity.

    Request body: {"status": "BLOCKED"}
    """
    data = request.get_json(silent=True) or {}

    try:
        user = identity_service.change_status(g.current_user.id, user_id, data.get("status"))
        commit_or_rollback()
        return jsonify({"success": True, "user": user.to_dict()}), 200

    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to change status for user %s", user_id)
        return jsonify({"error": "Failed to change user status"}), 500
