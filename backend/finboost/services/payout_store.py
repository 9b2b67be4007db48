# Overview: Service-layer persistence for payout batches and items; encapsulates database work.

"""
Payout Batch & Item Store

WHY: The store is the single source of truth shared by the submission,
reconciliation and notification services. Nothing is kept in process
memory between requests, so recovering from a crash only requires reading
the last persisted batch status.

DESIGN PRINCIPLES:
- A batch and all of its items are written in one transaction; no reader
  ever observes a batch with zero items.
- (cycle_id, request_checksum) may have at most one non-cancelled batch,
  and sender_batch_id is unique. Both are checked here and backed by the
  database constraint, so concurrent identical requests serialize and the
  loser sees DuplicateBatch.
- Batch counters are always recomputed from item rows, never incremented.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CycleSetting, CycleWinnerSelection, PayoutBatch, PayoutBatchItem, UserRewardRecord
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .errors import BatchNotFound, DuplicateBatch, InvalidBatchState
from .identifiers import sender_batch_id as derive_sender_batch_id

logger = logging.getLogger("finboost.payouts.store")


# =============================================================================
# STATUS (CONSTANTS)
# =============================================================================

BATCH_DRAFT = "draft"
BATCH_SUBMITTED = "submitted"
BATCH_PROCESSING = "processing"
BATCH_COMPLETED = "completed"
BATCH_PARTIALLY_COMPLETED = "partially_completed"
BATCH_FAILED = "failed"
BATCH_CANCELLED = "cancelled"

VALID_BATCH_STATUSES = [
    BATCH_DRAFT,
    BATCH_SUBMITTED,
    BATCH_PROCESSING,
    BATCH_COMPLETED,
    BATCH_PARTIALLY_COMPLETED,
    BATCH_FAILED,
    BATCH_CANCELLED,
]

# Batches an admin would consider "in flight" for a cycle
ACTIVE_BATCH_STATUSES = [BATCH_DRAFT, BATCH_SUBMITTED, BATCH_PROCESSING]

ITEM_PENDING = "pending"
ITEM_SUCCESS = "success"
ITEM_FAILED = "failed"
ITEM_UNCLAIMED = "unclaimed"

VALID_ITEM_STATUSES = [ITEM_PENDING, ITEM_SUCCESS, ITEM_FAILED, ITEM_UNCLAIMED]
TERMINAL_ITEM_STATUSES = [ITEM_SUCCESS, ITEM_FAILED, ITEM_UNCLAIMED]

# Winner-facing payout_status per item status
WINNER_STATUS_BY_ITEM_STATUS = {
    ITEM_SUCCESS: "success",
    ITEM_FAILED: "failed",
    ITEM_UNCLAIMED: "unclaimed",
    ITEM_PENDING: "processing",
}

CYCLE_PHASE_COMPLETED = "completed"
CYCLE_PHASE_PROCESSING = "processing"


@dataclass(frozen=True)
class NewItem:
    cycle_winner_selection_id: int
    user_id: int
    paypal_email: str
    amount: int
    currency: str = "USD"
    note: str | None = None


# =============================================================================
# CREATION
# =============================================================================

def next_attempt(cycle_id: int, request_checksum: str) -> int:
    """1 + the highest attempt already used by a cancelled batch for this request."""
    highest = (
        db.session.query(func.max(PayoutBatch.attempt))
        .filter_by(cycle_id=cycle_id, request_checksum=request_checksum, status=BATCH_CANCELLED)
        .scalar()
    )
    return int(highest or 0) + 1


def find_live_batch(cycle_id: int, request_checksum: str) -> PayoutBatch | None:
    return (
        db.session.query(PayoutBatch)
        .filter_by(cycle_id=cycle_id, request_checksum=request_checksum)
        .filter(PayoutBatch.status != BATCH_CANCELLED)
        .order_by(PayoutBatch.id.desc())
        .first()
    )


def create_batch_with_items(
    cycle_id: int,
    admin_id: int,
    request_checksum: str,
    items: list[NewItem],
) -> PayoutBatch:
    """
    Create a draft batch plus one item per recipient in a single transaction.

    The attempt counter is derived from previously cancelled batches of the
    same request, which is the only way a new sender_batch_id can be minted
    for identical content.

    Raises:
        DuplicateBatch: A non-cancelled batch already exists for this request
        ValueError: No items supplied
    """
    if not items:
        raise ValueError("A payout batch requires at least one item")

    def _op():
        existing = find_live_batch(cycle_id, request_checksum)
        if existing:
            raise DuplicateBatch(existing.sender_batch_id, existing.id)

        attempt = next_attempt(cycle_id, request_checksum)
        sender_id = derive_sender_batch_id(cycle_id, request_checksum, attempt)

        clash = db.session.query(PayoutBatch).filter_by(sender_batch_id=sender_id).first()
        if clash and clash.status != BATCH_CANCELLED:
            raise DuplicateBatch(sender_id, clash.id)

        now = utcnow()
        batch = PayoutBatch(
            cycle_id=cycle_id,
            sender_batch_id=sender_id,
            request_checksum=request_checksum,
            attempt=attempt,
            status=BATCH_DRAFT,
            total_amount=sum(i.amount for i in items),
            total_recipients=len(items),
            pending_count=len(items),
            admin_id=admin_id,
            created_at=now,
            updated_at=now,
        )
        db.session.add(batch)
        db.session.flush()  # Get batch ID

        for new_item in items:
            db.session.add(PayoutBatchItem(
                batch_id=batch.id,
                cycle_winner_selection_id=new_item.cycle_winner_selection_id,
                user_id=new_item.user_id,
                paypal_email=new_item.paypal_email,
                amount=new_item.amount,
                currency=new_item.currency,
                note=new_item.note,
                status=ITEM_PENDING,
                created_at=now,
            ))

        try:
            db.session.commit()
        except IntegrityError:
            # Lost a race against an identical request
            db.session.rollback()
            raise DuplicateBatch(sender_id)

        logger.info(
            "Created payout batch %s (%s) for cycle %s with %d items",
            batch.id, sender_id, cycle_id, len(items),
        )
        return batch

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_batch(batch_id: int) -> PayoutBatch:
    batch = db.session.get(PayoutBatch, batch_id)
    if not batch:
        raise BatchNotFound(f"Payout batch {batch_id} not found")
    return batch


def get_batch_for_update(batch_id: int) -> PayoutBatch:
    batch = lock_for_update(db.session.query(PayoutBatch).filter_by(id=batch_id)).first()
    if not batch:
        raise BatchNotFound(f"Payout batch {batch_id} not found")
    return batch


def get_batch_by_sender_id(sender_batch_id: str) -> PayoutBatch | None:
    return db.session.query(PayoutBatch).filter_by(sender_batch_id=sender_batch_id).first()


def get_items(batch_id: int) -> list[PayoutBatchItem]:
    return (
        db.session.query(PayoutBatchItem)
        .filter_by(batch_id=batch_id)
        .order_by(PayoutBatchItem.id)
        .all()
    )


def list_batches_for_cycle(cycle_id: int, include_cancelled: bool = True) -> list[PayoutBatch]:
    q = db.session.query(PayoutBatch).filter_by(cycle_id=cycle_id)
    if not include_cancelled:
        q = q.filter(PayoutBatch.status != BATCH_CANCELLED)
    return q.order_by(PayoutBatch.created_at.desc(), PayoutBatch.id.desc()).all()


def get_active_batch_for_cycle(cycle_id: int) -> PayoutBatch | None:
    return (
        db.session.query(PayoutBatch)
        .filter_by(cycle_id=cycle_id)
        .filter(PayoutBatch.status.in_(ACTIVE_BATCH_STATUSES))
        .order_by(PayoutBatch.id.desc())
        .first()
    )


def item_status_counts(batch_id: int) -> dict[str, int]:
    counts = (
        db.session.query(
            func.count(PayoutBatchItem.id).label("total"),
            func.sum(case((PayoutBatchItem.status == ITEM_SUCCESS, 1), else_=0)).label("success"),
            func.sum(case((PayoutBatchItem.status == ITEM_FAILED, 1), else_=0)).label("failed"),
            func.sum(case((PayoutBatchItem.status == ITEM_PENDING, 1), else_=0)).label("pending"),
            func.sum(case((PayoutBatchItem.status == ITEM_UNCLAIMED, 1), else_=0)).label("unclaimed"),
            func.sum(case((PayoutBatchItem.status == ITEM_SUCCESS, PayoutBatchItem.amount), else_=0)).label("paid"),
        )
        .filter(PayoutBatchItem.batch_id == batch_id)
        .one()
    )
    return {
        "total": int(counts.total or 0),
        ITEM_SUCCESS: int(counts.success or 0),
        ITEM_FAILED: int(counts.failed or 0),
        ITEM_PENDING: int(counts.pending or 0),
        ITEM_UNCLAIMED: int(counts.unclaimed or 0),
        "paid_amount": int(counts.paid or 0),
    }


def refresh_batch_counts(batch: PayoutBatch) -> dict[str, int]:
    """Recompute aggregate counters from the item rows (caller commits)."""
    db.session.flush()
    counts = item_status_counts(batch.id)
    batch.successful_count = counts[ITEM_SUCCESS]
    batch.failed_count = counts[ITEM_FAILED]
    batch.pending_count = counts[ITEM_PENDING]
    batch.unclaimed_count = counts[ITEM_UNCLAIMED]
    return counts


def get_batch_summary(batch_id: int) -> dict:
    """
    Batch + items + derived summary for admin and audit views.

    The summary is derived from item rows, so it stays truthful even if a
    stored counter was written by an older code path.
    """
    batch = get_batch(batch_id)
    items = get_items(batch_id)
    counts = item_status_counts(batch_id)
    rewards = (
        db.session.query(func.count(UserRewardRecord.id))
        .join(PayoutBatchItem, PayoutBatchItem.id == UserRewardRecord.batch_item_id)
        .filter(PayoutBatchItem.batch_id == batch_id)
        .scalar()
    )
    total = counts["total"]
    terminal = counts[ITEM_SUCCESS] + counts[ITEM_FAILED] + counts[ITEM_UNCLAIMED]
    return {
        "batch": batch.to_dict(),
        "items": [item.to_dict() for item in items],
        "summary": {
            "total_items": total,
            "successful": counts[ITEM_SUCCESS],
            "failed": counts[ITEM_FAILED],
            "pending": counts[ITEM_PENDING],
            "unclaimed": counts[ITEM_UNCLAIMED],
            "terminal": terminal,
            "percent_terminal": round(terminal * 100.0 / total, 1) if total else 0.0,
            "total_amount": batch.total_amount,
            "paid_amount": counts["paid_amount"],
            "user_rewards_created": int(rewards or 0),
            "counters_consistent": (
                batch.successful_count == counts[ITEM_SUCCESS]
                and batch.failed_count == counts[ITEM_FAILED]
                and batch.pending_count == counts[ITEM_PENDING]
                and batch.unclaimed_count == counts[ITEM_UNCLAIMED]
            ),
        },
    }


# =============================================================================
# WINNER & CYCLE SYNC
# =============================================================================

def sync_winner_status(item: PayoutBatchItem, now) -> None:
    """Mirror an item's outcome onto its winner row. A success is never overwritten."""
    winner = db.session.get(CycleWinnerSelection, item.cycle_winner_selection_id)
    if winner is None:
        return
    new_status = WINNER_STATUS_BY_ITEM_STATUS[item.status]
    if winner.payout_status == "success" and new_status != "success":
        return
    if winner.payout_status != new_status:
        winner.payout_status = new_status
        winner.updated_at = now
    if item.status == ITEM_SUCCESS and winner.payout_final != item.amount:
        winner.payout_final = item.amount
        winner.updated_at = now


def sync_cycle_phase(cycle_id: int, now) -> bool:
    """Mark the cycle's payout phase complete once no live batch has a pending item."""
    cycle = db.session.get(CycleSetting, cycle_id)
    if cycle is None:
        return False

    db.session.flush()
    pending = (
        db.session.query(PayoutBatchItem.id)
        .join(PayoutBatch, PayoutBatch.id == PayoutBatchItem.batch_id)
        .filter(PayoutBatch.cycle_id == cycle_id)
        .filter(PayoutBatch.status != BATCH_CANCELLED)
        .filter(PayoutBatchItem.status == ITEM_PENDING)
        .first()
    )
    if pending is None:
        if cycle.payout_phase_status != CYCLE_PHASE_COMPLETED:
            cycle.payout_phase_status = CYCLE_PHASE_COMPLETED
            cycle.payout_completed_at = now
            logger.info("Cycle %s payout phase completed", cycle_id)
        return True

    if cycle.payout_phase_status == CYCLE_PHASE_COMPLETED:
        cycle.payout_completed_at = None
    cycle.payout_phase_status = CYCLE_PHASE_PROCESSING
    return False


# =============================================================================
# STATE TRANSITIONS
# =============================================================================

def mark_submitted(batch_id: int, paypal_batch_id: str | None) -> PayoutBatch:
    """
    draft -> submitted. paypal_batch_id may be None when the outcome is ambiguous.

    Winners of the batch move to processing.
    """
    def _op():
        batch = get_batch_for_update(batch_id)
        if batch.status != BATCH_DRAFT:
            raise InvalidBatchState(f"Cannot submit batch in status {batch.status}")
        now = utcnow()
        batch.status = BATCH_SUBMITTED
        if paypal_batch_id:
            batch.paypal_batch_id = paypal_batch_id
        batch.submitted_at = now
        batch.updated_at = now
        for item in get_items(batch.id):
            sync_winner_status(item, now)
        db.session.commit()
        return batch

    return run_with_retry(_op)


def mark_failed(batch_id: int, error_details: str, error_code: str | None = None) -> PayoutBatch:
    """
    draft -> failed after a rejected submission.

    The batch is kept for audit; every still-pending item is marked failed
    with the same error so the winners become eligible again. Winner rows
    and the cycle phase follow in the same transaction, which opens the
    failure notification for each winner.
    """
    def _op():
        batch = get_batch_for_update(batch_id)
        if batch.status != BATCH_DRAFT:
            raise InvalidBatchState(f"Cannot fail batch in status {batch.status}")
        now = utcnow()
        for item in get_items(batch.id):
            if item.status == ITEM_PENDING:
                item.status = ITEM_FAILED
                item.error_code = error_code
                item.error_message = error_details
                item.processed_at = now
                item.updated_at = now
            sync_winner_status(item, now)
        batch.status = BATCH_FAILED
        batch.error_details = error_details
        batch.updated_at = now
        refresh_batch_counts(batch)
        sync_cycle_phase(batch.cycle_id, now)
        db.session.commit()
        return batch

    return run_with_retry(_op)


def cancel_batch(batch_id: int, admin_id: int, reason: str | None = None) -> PayoutBatch:
    """
    Administrative cancellation.

    Only the batch's own status changes. Items keep their outcomes (a paid
    item stays paid) and the remote PayPal batch is not touched.
    """
    def _op():
        batch = get_batch_for_update(batch_id)
        if batch.status == BATCH_CANCELLED:
            raise InvalidBatchState("Batch is already cancelled")
        now = utcnow()
        batch.status = BATCH_CANCELLED
        batch.cancelled_at = now
        batch.cancelled_by_admin_id = admin_id
        batch.cancel_reason = reason
        batch.updated_at = now
        db.session.commit()
        logger.info("Payout batch %s cancelled by admin %s", batch.id, admin_id)
        return batch

    return run_with_retry(_op)
