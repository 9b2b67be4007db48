from datetime import timedelta

import httpx
import pytest

from finboost.extensions import db
from finboost.models import PayoutBatch, User, UserRewardRecord
from finboost.services import disbursement_service, notification_service, payout_store
from finboost.services.errors import (
    DuplicateBatch,
    InvalidBatchState,
    MalformedResponse,
    NoEligibleRecipients,
)

from paypal_fakes import paypal_batch_body, paypal_item


def _disburse(cycle, admin, paypal, **kwargs):
    kwargs.setdefault("process_all", True)
    return disbursement_service.process_disbursement(cycle.id, admin.id, paypal.client, **kwargs)


def test_process_all_submits_one_batch(db_session, admin, cycle, make_winner, paypal):
    make_winner(amount=1000)
    make_winner(amount=2000)
    skipped = make_winner(paypal_email=None)

    result = _disburse(cycle, admin, paypal)

    assert result["success"] is True
    assert result["processedCount"] == 2
    assert result["totalEligible"] == 2
    assert result["status"] == "submitted"
    assert result["paypalBatchId"] == "PPB-1"
    assert result["senderBatchId"].startswith(f"cycle-{cycle.id}-")
    assert result["failed"] == [{
        "id": skipped.id,
        "userId": skipped.user_id,
        "email": None,
        "reason": "missing_paypal_email",
    }]
    assert result["error"] is None
    assert len(paypal.payout_posts) == 1


def test_selected_winners_only(db_session, admin, cycle, make_winner, paypal):
    w1 = make_winner()
    make_winner()

    result = _disburse(cycle, admin, paypal, process_all=False, selected_winner_ids=[w1.id])

    assert result["processedCount"] == 1
    assert [i["sender_item_id"] for i in paypal.last_payload()["items"]] == [f"winner-{w1.id}-{w1.user_id}"]


def test_request_needs_a_selection(db_session, admin, cycle, paypal):
    with pytest.raises(ValueError):
        _disburse(cycle, admin, paypal, process_all=False, selected_winner_ids=[])


def test_empty_eligible_set_creates_nothing(db_session, admin, cycle, make_winner, paypal):
    make_winner(paypal_email=None)

    with pytest.raises(NoEligibleRecipients):
        _disburse(cycle, admin, paypal)

    assert db_session.query(PayoutBatch).count() == 0
    assert paypal.requests == []


def test_retrying_identical_request_never_pays_twice(db_session, admin, cycle, make_winner, paypal):
    w = make_winner()
    first = _disburse(cycle, admin, paypal, process_all=False, selected_winner_ids=[w.id])

    # Winner is now covered by the live batch
    with pytest.raises(NoEligibleRecipients):
        _disburse(cycle, admin, paypal, process_all=False, selected_winner_ids=[w.id])

    assert db_session.query(PayoutBatch).count() == 1
    assert len(paypal.payout_posts) == 1
    assert first["batchId"] == payout_store.list_batches_for_cycle(cycle.id)[0].id


def test_failed_batch_must_be_cancelled_before_retry(db_session, admin, cycle, make_winner, paypal):
    make_winner()
    paypal.payout_responses = [lambda r: httpx.Response(400, json={"name": "VALIDATION_ERROR"})]

    failed = _disburse(cycle, admin, paypal)
    assert failed["success"] is False
    assert failed["status"] == "failed"
    assert failed["error"]["kind"] == "terminal"
    assert failed["failed"][0]["reason"].startswith("PayPal rejected request")

    with pytest.raises(DuplicateBatch):
        _disburse(cycle, admin, paypal)

    disbursement_service.cancel_batch(failed["batchId"], admin.id, reason="fix and retry")
    retried = _disburse(cycle, admin, paypal)

    assert retried["success"] is True
    assert retried["senderBatchId"] == f"{failed['senderBatchId']}-attempt-2"


def test_rejected_batch_notifies_winners(db_session, admin, cycle, make_winner, paypal):
    w = make_winner()
    paypal.payout_responses = [lambda r: httpx.Response(422, json={"name": "UNPROCESSABLE_ENTITY"})]

    result = _disburse(cycle, admin, paypal)

    assert result["status"] == "failed"
    assert notification_service.should_notify(w.user_id, cycle.id) is True
    assert notification_service.get_winner_status(w.user_id, cycle.id)["payoutStatus"] == "failed"


def test_timeout_reports_ambiguous_submission(db_session, admin, cycle, make_winner, paypal):
    make_winner()
    paypal.payout_responses = [httpx.ReadTimeout("timed out")]

    result = _disburse(cycle, admin, paypal)

    assert result["success"] is False
    assert result["status"] == "submitted"
    assert result["paypalBatchId"] is None
    assert result["error"]["kind"] == "timeout"


def test_submission_response_with_items_is_reconciled(db_session, admin, cycle, make_winner, paypal):
    w = make_winner(amount=1500)

    def _instant(request):
        return httpx.Response(201, json=paypal_batch_body("PPB-FAST", "SUCCESS", items=[
            paypal_item(f"winner-{w.id}-{w.user_id}", "SUCCESS", value="15.00"),
        ]))

    paypal.payout_responses = [_instant]

    result = _disburse(cycle, admin, paypal)

    assert result["status"] == "completed"
    assert db.session.query(UserRewardRecord).count() == 1


# =============================================================================
# FOLLOW-UP RECONCILIATION
# =============================================================================

def test_refresh_polls_paypal_and_reconciles(db_session, admin, cycle, make_winner, paypal):
    w = make_winner(amount=1000)
    result = _disburse(cycle, admin, paypal)
    paypal.batches["PPB-1"] = paypal_batch_body("PPB-1", "SUCCESS", items=[
        paypal_item(f"winner-{w.id}-{w.user_id}", "SUCCESS"),
    ])

    outcome = disbursement_service.refresh_batch(result["batchId"], paypal.client)

    assert outcome.batch_status == "completed"
    assert outcome.user_rewards_created == 1
    status = disbursement_service.get_transaction_status(result["batchId"])
    assert status["successful"] == 1
    assert status["paidAmount"] == 1000


def test_refresh_needs_paypal_batch_id(db_session, admin, cycle, make_winner, paypal):
    make_winner()
    paypal.payout_responses = [httpx.ReadTimeout("timed out")]
    result = _disburse(cycle, admin, paypal)

    with pytest.raises(InvalidBatchState):
        disbursement_service.refresh_batch(result["batchId"], paypal.client)


def test_malformed_payload_applies_nothing(db_session, admin, cycle, make_winner, paypal):
    make_winner()
    result = _disburse(cycle, admin, paypal)

    with pytest.raises(MalformedResponse):
        disbursement_service.apply_paypal_payload(result["batchId"], {"batch_header": None, "items": []})

    assert [i.status for i in payout_store.get_items(result["batchId"])] == ["pending"]
    assert payout_store.get_batch(result["batchId"]).status == "submitted"


def test_active_batch_status(db_session, admin, cycle, make_winner, paypal):
    assert disbursement_service.get_active_batch_status(cycle.id) is None
    make_winner()
    result = _disburse(cycle, admin, paypal)
    assert disbursement_service.get_active_batch_status(cycle.id)["batchId"] == result["batchId"]


def test_eligible_count(db_session, cycle, make_winner):
    make_winner()
    make_winner(paypal_email=None)
    assert disbursement_service.get_eligible_count(cycle.id) == 1


# =============================================================================
# RETRY
# =============================================================================

def _reject_next(paypal):
    paypal.payout_responses = [lambda r: httpx.Response(400, json={"name": "VALIDATION_ERROR"})]


def test_retry_failed_batch_submits_next_attempt(db_session, admin, cycle, make_winner, paypal):
    w = make_winner()
    _reject_next(paypal)
    failed = _disburse(cycle, admin, paypal)

    retried = disbursement_service.retry_batch(failed["batchId"], admin.id, paypal.client)

    assert retried["success"] is True
    assert retried["retriedFromBatchId"] == failed["batchId"]
    assert retried["senderBatchId"] == f"{failed['senderBatchId']}-attempt-2"
    assert payout_store.get_batch(failed["batchId"]).status == "cancelled"
    assert payout_store.get_batch(failed["batchId"]).cancel_reason == f"Retried by admin {admin.id}"
    assert notification_service.get_winner_status(w.user_id, cycle.id)["payoutStatus"] == "processing"


def test_retry_partial_batch_resends_failed_items_only(db_session, admin, cycle, make_winner, paypal):
    paid, rejected = make_winner(), make_winner()
    first = _disburse(cycle, admin, paypal)
    disbursement_service.apply_paypal_payload(first["batchId"], paypal_batch_body("PPB-1", "SUCCESS", items=[
        paypal_item(f"winner-{paid.id}-{paid.user_id}", "SUCCESS"),
        paypal_item(f"winner-{rejected.id}-{rejected.user_id}", "FAILED", error="RECEIVER_UNREGISTERED"),
    ]))
    assert payout_store.get_batch(first["batchId"]).status == "partially_completed"

    retried = disbursement_service.retry_batch(first["batchId"], admin.id, paypal.client)

    assert retried["processedCount"] == 1
    assert [i["sender_item_id"] for i in paypal.last_payload()["items"]] == [
        f"winner-{rejected.id}-{rejected.user_id}",
    ]
    assert notification_service.get_winner_status(paid.user_id, cycle.id)["payoutStatus"] == "success"
    assert db.session.query(UserRewardRecord).count() == 1


def test_retry_rejects_in_flight_and_completed_batches(db_session, admin, cycle, make_winner, paypal):
    w = make_winner()
    result = _disburse(cycle, admin, paypal)

    with pytest.raises(InvalidBatchState, match="in flight"):
        disbursement_service.retry_batch(result["batchId"], admin.id, paypal.client)

    disbursement_service.apply_paypal_payload(result["batchId"], paypal_batch_body("PPB-1", "SUCCESS", items=[
        paypal_item(f"winner-{w.id}-{w.user_id}", "SUCCESS"),
    ]))
    with pytest.raises(InvalidBatchState, match="already completed"):
        disbursement_service.retry_batch(result["batchId"], admin.id, paypal.client)


def test_retry_respects_attempt_cap_and_age(db_session, admin, cycle, make_winner, paypal, monkeypatch):
    make_winner()
    _reject_next(paypal)
    failed = _disburse(cycle, admin, paypal)

    with monkeypatch.context() as m:
        m.setattr(disbursement_service, "MAX_BATCH_ATTEMPTS", 1)
        with pytest.raises(InvalidBatchState, match="Maximum retry attempts"):
            disbursement_service.retry_batch(failed["batchId"], admin.id, paypal.client)

    batch = payout_store.get_batch(failed["batchId"])
    batch.created_at = batch.created_at - timedelta(days=2)
    db_session.commit()
    with pytest.raises(InvalidBatchState, match="too old"):
        disbursement_service.retry_batch(failed["batchId"], admin.id, paypal.client)

    assert payout_store.get_batch(failed["batchId"]).status == "failed"


def test_retry_with_nobody_payable_keeps_batch(db_session, admin, cycle, make_winner, paypal):
    w = make_winner()
    _reject_next(paypal)
    failed = _disburse(cycle, admin, paypal)
    db.session.get(User, w.user_id).paypal_email = None
    db_session.commit()

    with pytest.raises(NoEligibleRecipients):
        disbursement_service.retry_batch(failed["batchId"], admin.id, paypal.client)

    assert payout_store.get_batch(failed["batchId"]).status == "failed"


def test_duplicate_carries_request_context(db_session, admin, cycle, make_winner, paypal):
    make_winner()
    make_winner(paypal_email=None)
    _reject_next(paypal)
    _disburse(cycle, admin, paypal)

    with pytest.raises(DuplicateBatch) as exc:
        _disburse(cycle, admin, paypal)

    assert exc.value.total_eligible == 1
    assert [s["reason"] for s in exc.value.skipped] == ["missing_paypal_email"]
