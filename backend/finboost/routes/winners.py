# Overview: Flask API routes for the winner payout notification shown to members.

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_user
from ..services import notification_service


winners_bp = Blueprint("winners", __name__, url_prefix="/api/cycles")


@winners_bp.get("/<int:cycle_id>/winner-status")
@require_user
def winner_status_route(cycle_id: int):
    """
    Winner status for the current user.

    Returns:
        200: {isWinner, payoutStatus, notificationDisplayed, shouldNotify, amountCents, tier}
    """
    try:
        status = notification_service.get_winner_status(g.current_user.id, cycle_id)
        return jsonify(status), 200
    except Exception:
        current_app.logger.exception("Failed to load winner status")
        return jsonify({"error": "Internal server error"}), 500


@winners_bp.post("/<int:cycle_id>/winner-notification/dismiss")
@require_user
def dismiss_notification_route(cycle_id: int):
    """Dismiss the payout notification. Repeating the call is harmless."""
    try:
        changed = notification_service.dismiss(g.current_user.id, cycle_id)
        return jsonify({"success": True, "changed": changed}), 200
    except Exception:
        current_app.logger.exception("Failed to dismiss winner notification")
        return jsonify({"error": "Internal server error"}), 500
