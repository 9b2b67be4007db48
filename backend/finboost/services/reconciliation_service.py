# Overview: Applies parsed PayPal outcomes to stored batch items exactly once.

"""
Reconciliation Engine

BATCH STATE MACHINE:
- submitted/processing + any item pending -> processing
- every item terminal (success/failed/unclaimed):
    all success -> completed
    all failed  -> failed
    otherwise   -> partially_completed
- cancelled stays cancelled; item outcomes are still recorded

ITEM MATCHING (first hit wins):
1. (cycle_winner_selection_id, user_id) recovered from sender_item_id
2. paypal_item_id stored by an earlier pass
3. legacy items: user_id alone, only when unique within the batch

INVARIANTS:
- A success item is never downgraded.
- Each item that reaches success gets exactly one UserRewardRecord
  (unique batch_item_id), so re-applying a payload credits nothing twice.
- Batch counters, item rows, rewards, winner status and the cycle phase are
  written in one transaction. Any failure rolls the whole pass back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..extensions import db
from ..models import PayoutBatch, PayoutBatchItem, UserRewardRecord
from ..time_utils import utcnow
from . import payout_store
from .concurrency import run_with_retry
from .errors import ReconciliationError
from .paypal_response_parser import ParsedItem, ParsedPayoutResponse

logger = logging.getLogger("finboost.payouts.reconciliation")


@dataclass
class ReconciliationResult:
    batch_id: int
    batch_status: str
    batch_updated: bool = False
    items_updated: int = 0
    successful_payouts: int = 0
    failed_payouts: int = 0
    pending_payouts: int = 0
    unclaimed_payouts: int = 0
    user_rewards_created: int = 0
    cycle_completed: bool = False
    unmatched_items: list[str] = field(default_factory=list)
    consistency_errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "batchId": self.batch_id,
            "batchStatus": self.batch_status,
            "batchUpdated": self.batch_updated,
            "itemsUpdated": self.items_updated,
            "successfulPayouts": self.successful_payouts,
            "failedPayouts": self.failed_payouts,
            "pendingPayouts": self.pending_payouts,
            "unclaimedPayouts": self.unclaimed_payouts,
            "userRewardsCreated": self.user_rewards_created,
            "cycleCompleted": self.cycle_completed,
            "unmatchedItems": self.unmatched_items,
            "consistencyErrors": self.consistency_errors,
        }


def derive_batch_status(counts: dict[str, int]) -> str:
    total = counts["total"]
    if counts[payout_store.ITEM_PENDING] > 0 or total == 0:
        return payout_store.BATCH_PROCESSING
    if counts[payout_store.ITEM_SUCCESS] == total:
        return payout_store.BATCH_COMPLETED
    if counts[payout_store.ITEM_FAILED] == total:
        return payout_store.BATCH_FAILED
    return payout_store.BATCH_PARTIALLY_COMPLETED


class _ItemIndex:
    """Lookup of a batch's stored items by the keys a parsed result can carry."""

    def __init__(self, items: list[PayoutBatchItem]):
        self.by_pair = {(i.cycle_winner_selection_id, i.user_id): i for i in items}
        self.by_paypal_id = {i.paypal_item_id: i for i in items if i.paypal_item_id}
        self.by_user: dict[int, list[PayoutBatchItem]] = {}
        for i in items:
            self.by_user.setdefault(i.user_id, []).append(i)

    def match(self, result: ParsedItem) -> PayoutBatchItem | None:
        item = None
        if not result.is_legacy:
            item = self.by_pair.get((result.cycle_winner_selection_id, result.user_id))
        if item is None and result.payout_item_id:
            item = self.by_paypal_id.get(result.payout_item_id)
        if item is None and result.is_legacy:
            candidates = self.by_user.get(result.user_id, [])
            if len(candidates) == 1:
                item = candidates[0]
        return item


def _apply_item(item: PayoutBatchItem, result: ParsedItem, now) -> bool:
    """Write one parsed outcome onto a stored item. Returns True if anything changed."""
    if item.status == payout_store.ITEM_SUCCESS and result.status != payout_store.ITEM_SUCCESS:
        logger.warning(
            "Ignoring %s for item %s: already paid", result.status, item.id,
        )
        return False

    processed_at = item.processed_at
    if result.status in payout_store.TERMINAL_ITEM_STATUSES:
        processed_at = processed_at or result.processed_at or now

    updates = {
        "status": result.status,
        "paypal_item_id": result.payout_item_id or item.paypal_item_id,
        "transaction_status": result.transaction_status,
        "error_code": result.error_code,
        "error_message": result.error_message,
        "processed_at": processed_at,
    }
    changed = False
    for attr, value in updates.items():
        if getattr(item, attr) != value:
            setattr(item, attr, value)
            changed = True
    if changed:
        item.updated_at = now
    return changed


def _ensure_reward(batch: PayoutBatch, item: PayoutBatchItem) -> bool:
    exists = db.session.query(UserRewardRecord.id).filter_by(batch_item_id=item.id).first()
    if exists:
        return False
    db.session.add(UserRewardRecord(
        batch_item_id=item.id,
        user_id=item.user_id,
        cycle_id=batch.cycle_id,
        cycle_winner_selection_id=item.cycle_winner_selection_id,
        amount=item.amount,
        currency=item.currency,
        paypal_item_id=item.paypal_item_id,
        created_at=utcnow(),
    ))
    return True


def _consistency_errors(parsed: ParsedPayoutResponse, stored_items, matched_ids: set, result) -> list[str]:
    """
    Differences between what PayPal listed and what the batch holds.

    A header-only response (no items) lists nothing, so there is nothing
    to compare against the stored items.
    """
    if parsed.item_count == 0:
        return []

    errors = []
    if parsed.item_count != len(stored_items):
        errors.append(f"PayPal lists {parsed.item_count} items, batch has {len(stored_items)}")
    if parsed.skipped_items:
        errors.append(f"{len(parsed.skipped_items)} PayPal items could not be parsed")
    if result.unmatched_items:
        errors.append(f"{len(result.unmatched_items)} PayPal items match no stored item")
    missing = [i.id for i in stored_items if i.id not in matched_ids]
    if missing:
        errors.append(f"{len(missing)} stored items missing from PayPal response: {missing}")
    return errors


def reconcile(batch_id: int, parsed: ParsedPayoutResponse) -> ReconciliationResult:
    """
    Apply a parsed PayPal response to a stored batch.

    Raises:
        BatchNotFound: Unknown batch id
        ReconciliationError: Draft batch, or the response belongs to another batch
    """
    def _op():
        batch = payout_store.get_batch_for_update(batch_id)

        if batch.status == payout_store.BATCH_DRAFT:
            raise ReconciliationError(f"Batch {batch_id} has not been submitted")
        if parsed.sender_batch_id and parsed.sender_batch_id != batch.sender_batch_id:
            raise ReconciliationError(
                f"Response is for sender batch {parsed.sender_batch_id}, not {batch.sender_batch_id}"
            )
        if parsed.paypal_batch_id and batch.paypal_batch_id and parsed.paypal_batch_id != batch.paypal_batch_id:
            raise ReconciliationError(
                f"Response is for PayPal batch {parsed.paypal_batch_id}, not {batch.paypal_batch_id}"
            )

        now = utcnow()
        result = ReconciliationResult(batch_id=batch.id, batch_status=batch.status)

        if parsed.paypal_batch_id and not batch.paypal_batch_id:
            # Recovering a submission whose response was lost
            batch.paypal_batch_id = parsed.paypal_batch_id
            result.batch_updated = True

        stored_items = payout_store.get_items(batch.id)
        index = _ItemIndex(stored_items)
        matched_ids = set()
        for parsed_item in parsed.individual_results:
            item = index.match(parsed_item)
            if item is None:
                logger.warning(
                    "Batch %s: no stored item for %s (%s)",
                    batch.id, parsed_item.sender_item_id, parsed_item.payout_item_id,
                )
                result.unmatched_items.append(parsed_item.sender_item_id)
                continue

            matched_ids.add(item.id)
            if _apply_item(item, parsed_item, now):
                result.items_updated += 1
            if item.status == payout_store.ITEM_SUCCESS and _ensure_reward(batch, item):
                result.user_rewards_created += 1
            payout_store.sync_winner_status(item, now)

        previous = (batch.successful_count, batch.failed_count, batch.pending_count, batch.unclaimed_count)
        counts = payout_store.refresh_batch_counts(batch)
        if previous != (batch.successful_count, batch.failed_count, batch.pending_count, batch.unclaimed_count):
            result.batch_updated = True

        if batch.status != payout_store.BATCH_CANCELLED:
            new_status = derive_batch_status(counts)
            if new_status != batch.status:
                logger.info("Batch %s: %s -> %s", batch.id, batch.status, new_status)
                batch.status = new_status
                result.batch_updated = True

        if result.batch_updated or result.items_updated:
            batch.updated_at = now

        result.batch_status = batch.status
        result.successful_payouts = counts[payout_store.ITEM_SUCCESS]
        result.failed_payouts = counts[payout_store.ITEM_FAILED]
        result.pending_payouts = counts[payout_store.ITEM_PENDING]
        result.unclaimed_payouts = counts[payout_store.ITEM_UNCLAIMED]
        result.cycle_completed = payout_store.sync_cycle_phase(batch.cycle_id, now)
        result.consistency_errors = _consistency_errors(parsed, stored_items, matched_ids, result)
        for problem in result.consistency_errors:
            logger.warning("Batch %s: %s", batch.id, problem)

        db.session.commit()
        return result

    return run_with_retry(_op)
