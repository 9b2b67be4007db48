# Overview: Flask API routes for payout batch inspection, cancellation, retry and reconciliation.

"""
Payout Batch API Routes

Admin views over the batch store plus the two ways outcomes get applied:
a pushed PayPal payload (webhook relay / manual paste) or a poll of PayPal.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_admin
from ..services import disbursement_service, payout_store
from ..services.errors import (
    BatchNotFound,
    InvalidBatchState,
    MalformedResponse,
    NoEligibleRecipients,
    ReconciliationError,
    SubmissionError,
)


payout_batches_bp = Blueprint("payout_batches", __name__, url_prefix="/api/admin/payout-batches")


def _cycle_id_arg():
    raw = request.args.get("cycleId", "")
    return int(raw) if raw.isdigit() else None


# =============================================================================
# QUERIES
# =============================================================================

@payout_batches_bp.get("")
@require_admin
def list_batches_route():
    """
    List batches for a cycle, newest first.

    Query params:
        cycleId (required)
        includeCancelled (optional, default true)
    """
    cycle_id = _cycle_id_arg()
    if cycle_id is None:
        return jsonify({"error": "cycleId is required"}), 400

    include_cancelled = request.args.get("includeCancelled", "true").lower() != "false"
    batches = payout_store.list_batches_for_cycle(cycle_id, include_cancelled=include_cancelled)
    return jsonify({"batches": [b.to_dict() for b in batches]}), 200


@payout_batches_bp.get("/active")
@require_admin
def active_batch_route():
    """
    Status of the cycle's in-flight batch (draft/submitted/processing).

    Returns:
        200: {"batch": {...}} or {"batch": null}
    """
    cycle_id = _cycle_id_arg()
    if cycle_id is None:
        return jsonify({"error": "cycleId is required"}), 400
    return jsonify({"batch": disbursement_service.get_active_batch_status(cycle_id)}), 200


@payout_batches_bp.get("/<int:batch_id>")
@require_admin
def get_batch_route(batch_id: int):
    """Batch + items + derived summary."""
    try:
        return jsonify(payout_store.get_batch_summary(batch_id)), 200
    except BatchNotFound as e:
        return jsonify({"error": str(e)}), 404


@payout_batches_bp.get("/<int:batch_id>/status")
@require_admin
def batch_status_route(batch_id: int):
    try:
        return jsonify(disbursement_service.get_transaction_status(batch_id)), 200
    except BatchNotFound as e:
        return jsonify({"error": str(e)}), 404


# =============================================================================
# ACTIONS
# =============================================================================

@payout_batches_bp.post("/<int:batch_id>/cancel")
@require_admin
def cancel_batch_route(batch_id: int):
    """
    Cancel a batch.

    Only the local batch status changes: the remote PayPal batch is left
    alone and paid items stay paid. Cancelling frees the request for a new
    attempt.

    Request body (optional):
    {
        "reason": "Wrong amounts"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        reason = data.get("reason")
        batch = disbursement_service.cancel_batch(
            batch_id,
            g.current_user.id,
            reason=reason if isinstance(reason, str) else None,
        )
        return jsonify({"batch": batch}), 200
    except BatchNotFound as e:
        return jsonify({"error": str(e)}), 404
    except InvalidBatchState as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to cancel payout batch")
        return jsonify({"error": "Internal server error"}), 500


@payout_batches_bp.post("/<int:batch_id>/retry")
@require_admin
def retry_batch_route(batch_id: int):
    """
    Re-send the failed items of a failed or partially completed batch.

    The old batch is cancelled and the next attempt of the same request is
    submitted. Response shape matches the disburse endpoint plus
    retriedFromBatchId.
    """
    try:
        result = disbursement_service.retry_batch(
            batch_id,
            g.current_user.id,
            current_app.extensions["paypal_client"],
        )
        if result["success"]:
            return jsonify(result), 200
        if result["status"] == "submitted":
            return jsonify(result), 202
        return jsonify(result), 502
    except BatchNotFound as e:
        return jsonify({"error": str(e)}), 404
    except InvalidBatchState as e:
        return jsonify({"error": str(e)}), 409
    except NoEligibleRecipients as e:
        return jsonify({
            "error": str(e),
            "failed": [s.to_dict() for s in e.skipped],
        }), 422
    except Exception:
        current_app.logger.exception("Failed to retry payout batch")
        return jsonify({"error": "Internal server error"}), 500


@payout_batches_bp.post("/<int:batch_id>/reconcile")
@require_admin
def reconcile_batch_route(batch_id: int):
    """
    Apply PayPal outcomes to a batch.

    With a JSON body: the body is a PayPal batch payload
    ({"batch_header": {...}, "items": [...]}) and is reconciled as-is.
    Without a body: PayPal is polled for the batch.

    Returns:
        200: Reconciliation result
        400: Malformed PayPal payload (nothing applied)
        404: Batch not found
        409: Batch not reconcilable (draft, no PayPal id, id mismatch)
        502: PayPal poll failed
    """
    try:
        payload = request.get_json(silent=True)
        if payload:
            result = disbursement_service.apply_paypal_payload(batch_id, payload)
        else:
            result = disbursement_service.refresh_batch(batch_id, current_app.extensions["paypal_client"])
        return jsonify(result.to_dict()), 200
    except MalformedResponse as e:
        return jsonify({"error": str(e)}), 400
    except BatchNotFound as e:
        return jsonify({"error": str(e)}), 404
    except (InvalidBatchState, ReconciliationError) as e:
        return jsonify({"error": str(e)}), 409
    except SubmissionError as e:
        return jsonify({"error": str(e), "kind": e.error_kind}), 502
    except Exception:
        current_app.logger.exception("Failed to reconcile payout batch")
        return jsonify({"error": "Internal server error"}), 500
