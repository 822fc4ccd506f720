# Overview: Flask API routes for reward summary, claims and claim history.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..errors import ServiceError, error_response
from ..decorators import require_auth, require_capability
from ..services import reward_service
from ..services.concurrency import commit_or_rollback


rewards_bp = Blueprint("rewards", __name__, url_prefix="/api/rewards")


@rewards_bp.get("/summary")
@require_auth
@require_capability("VIEW_REWARDS")
def reward_summary_route():
    """Query params: month (YYYY-MM, default current month)."""
    try:
        summary = reward_service.reward_summary(g.current_user.id, request.args.get("month"))
        return jsonify({"success": True, **summary}), 200
    except ServiceError as e:
        return error_response(e)


@rewards_bp.post("/claim")
@require_auth
@require_capability("CLAIM_REWARD")
def claim_reward_route():
    """
    Claim the unclaimed reward of a period.

    Request body: {"month": "YYYY-MM"} (optional)

    Returns:
        201: {reward, new_balance}
        400: nothing to claim
    """
    data = request.get_json(silent=True) or {}

    try:
        reward = reward_service.claim_reward(g.current_user.id, data.get("month"))
        commit_or_rollback()
        return jsonify({
            "success": True,
            "message": f"Claimed {float(reward.reward_kg)}kg reward!",
            "reward": reward.to_dict(),
            "new_balance": float(g.current_user.reward_eligible_qty),
        }), 201

    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to claim reward")
        return jsonify({"error": "Failed to claim reward"}), 500


@rewards_bp.get("")
@require_auth
@require_capability("VIEW_REWARDS")
def list_rewards_route():
    try:
        rewards = reward_service.list_rewards(g.current_user.id)
        return jsonify({"rewards": [r.to_dict() for r in rewards]}), 200
    except ServiceError as e:
        return error_response(e)
