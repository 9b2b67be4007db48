# Overview: Flask API routes for triggering cycle disbursements; parses input and returns JSON responses.

"""
Disbursement API Routes

Admin entry point for paying a cycle's winners through PayPal Payouts.

RESPONSES (POST /disburse):
- 200: Batch accepted by PayPal (or already settled)
- 202: Batch submitted but PayPal's answer was lost (timeout); reconcile later
- 409: Identical request already has a live batch
- 422: Nothing payable; no batch was created
- 502: PayPal rejected the batch; the batch is kept as failed for audit
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_admin
from ..services import disbursement_service
from ..services.errors import (
    CycleNotFound,
    DuplicateBatch,
    NoEligibleRecipients,
    PayoutError,
    TooManyRecipients,
)


disbursements_bp = Blueprint("disbursements", __name__, url_prefix="/api/admin/cycles")


@disbursements_bp.post("/<int:cycle_id>/disburse")
@require_admin
def disburse_route(cycle_id: int):
    """
    Pay a cycle's winners.

    Request body:
    {
        "processAll": true
    }
    or
    {
        "selectedWinnerIds": [12, 15, 18],
        "requestId": "optional-idempotency-key"
    }

    Returns:
        {success, processedCount, failed: [{id, email, reason}], batchId,
         totalEligible, senderBatchId, paypalBatchId, status, warnings}
    """
    try:
        data = request.get_json(silent=True) or {}

        process_all = data.get("processAll") is True
        selected = data.get("selectedWinnerIds")
        request_id = data.get("requestId")

        if not process_all:
            if not isinstance(selected, list) or not selected:
                return jsonify({"error": "processAll or a non-empty selectedWinnerIds is required"}), 400
            if not all(isinstance(w, int) and not isinstance(w, bool) for w in selected):
                return jsonify({"error": "selectedWinnerIds must be integers"}), 400

        result = disbursement_service.process_disbursement(
            cycle_id=cycle_id,
            admin_id=g.current_user.id,
            client=current_app.extensions["paypal_client"],
            process_all=process_all,
            selected_winner_ids=selected,
            request_id=request_id if isinstance(request_id, str) and request_id else None,
        )

        if result["success"]:
            return jsonify(result), 200
        if result["status"] == "submitted":
            return jsonify(result), 202
        return jsonify(result), 502

    except CycleNotFound as e:
        return jsonify({"error": str(e)}), 404
    except NoEligibleRecipients as e:
        return jsonify({
            "success": False,
            "error": str(e),
            "processedCount": 0,
            "failed": [s.to_dict() for s in e.skipped],
            "batchId": None,
            "totalEligible": 0,
        }), 422
    except DuplicateBatch as e:
        return jsonify({
            "success": False,
            "error": "Payout already in progress for this request",
            "processedCount": 0,
            "failed": e.skipped,
            "batchId": e.existing_batch_id,
            "totalEligible": e.total_eligible,
            "senderBatchId": e.sender_batch_id,
        }), 409
    except (TooManyRecipients, PayoutError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to process disbursement")
        return jsonify({"error": "Internal server error"}), 500


@disbursements_bp.get("/<int:cycle_id>/eligible-count")
@require_admin
def eligible_count_route(cycle_id: int):
    """
    Number of winners a processAll request would pay.

    Returns:
        200: {"eligibleCount": 12}
        404: Cycle not found
    """
    try:
        count = disbursement_service.get_eligible_count(cycle_id)
        return jsonify({"eligibleCount": count}), 200
    except CycleNotFound as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to count eligible winners")
        return jsonify({"error": "Internal server error"}), 500
