# Overview: Submits a draft payout batch to PayPal and records the outcome on the batch.

from __future__ import annotations

import logging
from dataclasses import dataclass

from . import payout_store
from .errors import (
    AmbiguousSubmissionError,
    InvalidBatchState,
    MalformedResponse,
    SubmissionError,
)
from .paypal_client import PayPalPayoutsClient, build_payout_payload

logger = logging.getLogger("finboost.payouts.submission")


@dataclass
class SubmissionResult:
    accepted: bool
    paypal_batch_id: str | None = None
    error_kind: str | None = None
    error_message: str | None = None
    status_code: int | None = None
    response: dict | None = None

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "paypalBatchId": self.paypal_batch_id,
            "errorKind": self.error_kind,
            "errorMessage": self.error_message,
            "statusCode": self.status_code,
        }


def _paypal_batch_id(body) -> str | None:
    if not isinstance(body, dict):
        return None
    header = body.get("batch_header")
    if isinstance(header, dict) and isinstance(header.get("payout_batch_id"), str):
        return header["payout_batch_id"]
    return None


def submit_batch(batch_id: int, client: PayPalPayoutsClient) -> SubmissionResult:
    """
    Send a draft batch to PayPal.

    Outcomes:
    - accepted: draft -> submitted, paypal_batch_id stored
    - terminal/transient failure: draft -> failed, items failed with the error
    - timeout or unreadable 2xx body: draft -> submitted without a PayPal id;
      the batch waits for manual reconciliation

    Raises:
        InvalidBatchState: Batch is not a draft
    """
    batch = payout_store.get_batch(batch_id)
    if batch.status != payout_store.BATCH_DRAFT:
        raise InvalidBatchState(f"Only draft batches can be submitted (status: {batch.status})")

    items = payout_store.get_items(batch_id)
    payload = build_payout_payload(batch, items, client.settings)

    logger.info(
        "Submitting payout batch %s (%s): %d items, %d cents",
        batch.id, batch.sender_batch_id, len(items), batch.total_amount,
    )

    try:
        body = client.create_batch_payout(payload)
    except AmbiguousSubmissionError as e:
        payout_store.mark_submitted(batch_id, None)
        logger.warning("Payout batch %s submission outcome unknown: %s", batch_id, e)
        return SubmissionResult(accepted=False, error_kind=e.error_kind, error_message=str(e))
    except MalformedResponse as e:
        payout_store.mark_submitted(batch_id, None)
        logger.warning("Payout batch %s accepted with unreadable body: %s", batch_id, e)
        return SubmissionResult(accepted=False, error_kind="malformed", error_message=str(e))
    except SubmissionError as e:
        error_code = f"HTTP_{e.status_code}" if e.status_code else e.error_kind.upper()
        payout_store.mark_failed(batch_id, str(e), error_code=error_code)
        logger.error("Payout batch %s failed (%s): %s", batch_id, e.error_kind, e)
        return SubmissionResult(
            accepted=False,
            error_kind=e.error_kind,
            error_message=str(e),
            status_code=e.status_code,
            response=e.details or None,
        )

    paypal_id = _paypal_batch_id(body)
    payout_store.mark_submitted(batch_id, paypal_id)
    return SubmissionResult(accepted=True, paypal_batch_id=paypal_id, response=body)
