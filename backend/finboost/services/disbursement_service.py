# Overview: Orchestrates a disbursement request: eligibility, batch creation, submission and reconciliation.

"""
Disbursement Orchestration

FLOW (process_disbursement):
1. Derive payable recipients and the request checksum (no writes; fails fast)
2. Create the draft batch + items in one transaction (idempotency guard)
3. Submit to PayPal (draft -> submitted | failed)
4. If PayPal already returned per-item results, reconcile them

Later outcomes arrive through refresh_batch (poll PayPal) or
apply_paypal_payload (pushed webhook body or manual paste).
retry_batch re-sends the failed items of a finished batch as the next
attempt of the same request.
"""

from __future__ import annotations

import logging
from datetime import timedelta, timezone

from ..extensions import db
from ..models import CycleSetting
from ..time_utils import utcnow
from . import payout_store
from .eligibility_service import count_eligible, derive_recipients
from .errors import CycleNotFound, DuplicateBatch, InvalidBatchState, MalformedResponse
from .paypal_client import PayPalPayoutsClient
from .paypal_response_parser import parse_payout_response
from .reconciliation_service import ReconciliationResult, reconcile
from .submission_service import submit_batch

logger = logging.getLogger("finboost.payouts.disbursement")

RETRYABLE_BATCH_STATUSES = [payout_store.BATCH_FAILED, payout_store.BATCH_PARTIALLY_COMPLETED]
MAX_BATCH_ATTEMPTS = 3
RETRY_WINDOW = timedelta(hours=24)


def process_disbursement(
    cycle_id: int,
    admin_id: int,
    client: PayPalPayoutsClient,
    process_all: bool = False,
    selected_winner_ids: list[int] | None = None,
    request_id: str | None = None,
) -> dict:
    """
    Handle an admin disbursement request end to end.

    Args:
        cycle_id: Cycle being paid
        admin_id: Admin triggering the request
        client: PayPal client (app.extensions["paypal_client"])
        process_all: Pay every eligible winner of the cycle
        selected_winner_ids: Pay only these winners (ignored when process_all)
        request_id: Optional caller idempotency key

    Returns:
        {success, processedCount, failed, batchId, totalEligible,
         senderBatchId, paypalBatchId, status, warnings, error}

    Raises:
        ValueError: Neither process_all nor selected_winner_ids given
        CycleNotFound, NoEligibleRecipients, TooManyRecipients: Before any write
        DuplicateBatch: Identical request already has a live batch
    """
    if not process_all and not selected_winner_ids:
        raise ValueError("Either processAll or selectedWinnerIds is required")

    eligibility = derive_recipients(
        cycle_id,
        admin_id,
        selected_winner_ids=None if process_all else selected_winner_ids,
        request_id=request_id,
    )
    for warning in eligibility.warnings:
        logger.warning("Cycle %s: %s", cycle_id, warning)

    return _create_and_submit(cycle_id, admin_id, eligibility, client)


def _create_and_submit(cycle_id, admin_id, eligibility, client, request_checksum=None) -> dict:
    items = [
        payout_store.NewItem(
            cycle_winner_selection_id=r.winner_id,
            user_id=r.user_id,
            paypal_email=r.email,
            amount=r.amount_cents,
            currency=client.settings.currency,
            note=client.settings.item_note,
        )
        for r in eligibility.recipients
    ]
    try:
        batch = payout_store.create_batch_with_items(
            cycle_id, admin_id, request_checksum or eligibility.request_checksum, items,
        )
    except DuplicateBatch as e:
        raise DuplicateBatch(
            e.sender_batch_id,
            e.existing_batch_id,
            total_eligible=eligibility.total_eligible,
            skipped=[s.to_dict() for s in eligibility.skipped],
        ) from e
    batch_id = batch.id

    submission = submit_batch(batch_id, client)

    if submission.accepted and submission.response:
        try:
            parsed = parse_payout_response(submission.response)
        except MalformedResponse as e:
            logger.warning("Batch %s: submission response not reconcilable: %s", batch_id, e)
        else:
            if parsed.individual_results:
                reconcile(batch_id, parsed)

    batch = payout_store.get_batch(batch_id)
    failed = [s.to_dict() for s in eligibility.skipped]
    if batch.status == payout_store.BATCH_FAILED:
        failed.extend(
            {
                "id": item.cycle_winner_selection_id,
                "userId": item.user_id,
                "email": item.paypal_email,
                "reason": item.error_message,
            }
            for item in payout_store.get_items(batch_id)
        )

    return {
        "success": submission.accepted,
        "processedCount": len(items) if submission.accepted else 0,
        "failed": failed,
        "batchId": batch_id,
        "totalEligible": eligibility.total_eligible,
        "senderBatchId": batch.sender_batch_id,
        "paypalBatchId": batch.paypal_batch_id,
        "status": batch.status,
        "warnings": eligibility.warnings,
        "error": None if submission.accepted else {
            "kind": submission.error_kind,
            "message": submission.error_message,
            "statusCode": submission.status_code,
        },
    }


def get_eligible_count(cycle_id: int) -> int:
    if db.session.get(CycleSetting, cycle_id) is None:
        raise CycleNotFound(f"Cycle {cycle_id} not found")
    return count_eligible(cycle_id)


def refresh_batch(batch_id: int, client: PayPalPayoutsClient) -> ReconciliationResult:
    """Poll PayPal for the batch and reconcile what it reports."""
    batch = payout_store.get_batch(batch_id)
    if not batch.paypal_batch_id:
        raise InvalidBatchState(
            f"Batch {batch_id} has no PayPal batch id; reconcile it with a PayPal payload instead"
        )
    raw = client.get_batch_payout(batch.paypal_batch_id)
    return reconcile(batch_id, parse_payout_response(raw))


def apply_paypal_payload(batch_id: int, raw) -> ReconciliationResult:
    """
    Reconcile a PayPal batch body delivered out of band.

    A structurally malformed body raises MalformedResponse before any
    item is touched.
    """
    payout_store.get_batch(batch_id)
    return reconcile(batch_id, parse_payout_response(raw))


def cancel_batch(batch_id: int, admin_id: int, reason: str | None = None) -> dict:
    return payout_store.cancel_batch(batch_id, admin_id, reason).to_dict()


def check_retry_eligibility(batch) -> str | None:
    """Reason the batch cannot be retried, or None when it can."""
    if batch.status == payout_store.BATCH_COMPLETED:
        return "Batch already completed successfully"
    if batch.status == payout_store.BATCH_CANCELLED:
        return "Batch was cancelled"
    if batch.status not in RETRYABLE_BATCH_STATUSES:
        return f"Batch is still in flight (status: {batch.status})"
    if batch.attempt >= MAX_BATCH_ATTEMPTS:
        return "Maximum retry attempts exceeded"
    created_at = batch.created_at
    if created_at.tzinfo is not None:
        created_at = created_at.astimezone(timezone.utc).replace(tzinfo=None)
    if utcnow() - created_at > RETRY_WINDOW:
        return "Batch too old for retry"
    if not any(i.status == payout_store.ITEM_FAILED for i in payout_store.get_items(batch.id)):
        return "Batch has no failed items"
    return None


def retry_batch(batch_id: int, admin_id: int, client: PayPalPayoutsClient) -> dict:
    """
    Re-pay the failed items of a failed or partially completed batch.

    Recipients are re-derived first (so corrected emails are picked up and
    winners paid elsewhere are skipped). Only then is the old batch
    cancelled and a new attempt of the same request created and submitted.
    Successful and unclaimed items are never re-sent.

    Returns:
        The process_disbursement shape plus retriedFromBatchId

    Raises:
        InvalidBatchState: Batch is not eligible for retry
        NoEligibleRecipients: None of the failed winners is payable now
    """
    batch = payout_store.get_batch(batch_id)
    reason = check_retry_eligibility(batch)
    if reason:
        raise InvalidBatchState(f"Retry not eligible: {reason}")

    winner_ids = [
        i.cycle_winner_selection_id
        for i in payout_store.get_items(batch.id)
        if i.status == payout_store.ITEM_FAILED
    ]
    eligibility = derive_recipients(batch.cycle_id, admin_id, selected_winner_ids=winner_ids)

    cycle_id, request_checksum = batch.cycle_id, batch.request_checksum
    payout_store.cancel_batch(batch_id, admin_id, reason=f"Retried by admin {admin_id}")
    logger.info("Retrying payout batch %s for %d failed items", batch_id, len(eligibility.recipients))

    result = _create_and_submit(cycle_id, admin_id, eligibility, client, request_checksum=request_checksum)
    result["retriedFromBatchId"] = batch_id
    return result


def get_transaction_status(batch_id: int) -> dict:
    """Per-batch status counters, derived from item rows."""
    batch = payout_store.get_batch(batch_id)
    counts = payout_store.item_status_counts(batch_id)
    return {
        "batchId": batch.id,
        "cycleId": batch.cycle_id,
        "status": batch.status,
        "senderBatchId": batch.sender_batch_id,
        "paypalBatchId": batch.paypal_batch_id,
        "totalRecipients": counts["total"],
        "successful": counts[payout_store.ITEM_SUCCESS],
        "failed": counts[payout_store.ITEM_FAILED],
        "pending": counts[payout_store.ITEM_PENDING],
        "unclaimed": counts[payout_store.ITEM_UNCLAIMED],
        "totalAmount": batch.total_amount,
        "paidAmount": counts["paid_amount"],
        "errorDetails": batch.error_details,
    }


def get_active_batch_status(cycle_id: int) -> dict | None:
    batch = payout_store.get_active_batch_for_cycle(cycle_id)
    if not batch:
        return None
    return get_transaction_status(batch.id)
