# Overview: Exception taxonomy for the payout disbursement services.

from __future__ import annotations

from dataclasses import dataclass


class PayoutError(Exception):
    """Base class for payout operation errors."""
    pass


class NoEligibleRecipients(PayoutError):
    """Raised when a disbursement request resolves to zero payable winners."""

    def __init__(self, cycle_id: int, skipped: list | None = None):
        self.cycle_id = cycle_id
        self.skipped = list(skipped or [])
        super().__init__(f"No eligible recipients for cycle {cycle_id}")


class TooManyRecipients(PayoutError):
    """Raised when a request exceeds PayPal's per-batch recipient limit."""
    pass


class DuplicateBatch(PayoutError):
    """
    Raised when an identical request already has a non-cancelled batch.

    Callers treat this as "already in flight", never as a reason to mint a
    new sender_batch_id.
    """

    def __init__(
        self,
        sender_batch_id: str,
        existing_batch_id: int | None = None,
        total_eligible: int = 0,
        skipped: list | None = None,
    ):
        self.sender_batch_id = sender_batch_id
        self.existing_batch_id = existing_batch_id
        self.total_eligible = total_eligible
        self.skipped = list(skipped or [])
        super().__init__(f"Payout batch {sender_batch_id} already exists")


class CycleNotFound(PayoutError):
    """Raised when a cycle id does not exist."""
    pass


class BatchNotFound(PayoutError):
    """Raised when a payout batch id does not exist."""
    pass


class InvalidBatchState(PayoutError):
    """Raised when an operation is not allowed in the batch's current status."""
    pass


class MalformedResponse(PayoutError):
    """Raised when a PayPal payload is structurally unparseable."""
    pass


class SubmissionError(PayoutError):
    """Base class for PayPal submission failures."""

    error_kind = "submission_error"

    def __init__(self, message: str, status_code: int | None = None, details: dict | None = None):
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class TerminalSubmissionError(SubmissionError):
    """4xx from PayPal; retrying would not change the outcome."""

    error_kind = "terminal"


class TransientSubmissionError(SubmissionError):
    """Network error or 5xx that persisted through every retry."""

    error_kind = "transient"


class AmbiguousSubmissionError(SubmissionError):
    """Request timed out; PayPal may or may not have accepted the batch."""

    error_kind = "timeout"


class ReconciliationError(PayoutError):
    """Raised when a parsed response cannot be applied to a batch."""
    pass


@dataclass(frozen=True)
class PartialParseSkip:
    """An individual PayPal item the parser could not attribute to a winner."""

    index: int
    payout_item_id: str | None
    sender_item_id: str | None
    reason: str

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "payout_item_id": self.payout_item_id,
            "sender_item_id": self.sender_item_id,
            "reason": self.reason,
        }
