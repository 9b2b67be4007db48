# Overview: Resolves payable winners for a cycle and derives the request checksum.

"""
Eligibility & Checksum Derivation

A winner is payable iff:
- a PayPal address is known (live profile value, else the snapshot taken
  at selection time), and
- the winner is not already covered by a non-cancelled batch (an item in
  such a batch whose status is anything but "failed").

Winners that fail either rule are returned in `skipped` with a reason.
They are never paid $0 and never silently dropped.

The checksum is computed over a canonical, order-independent description
of the request so that the same recipient set always maps to the same
sender_batch_id.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field

from sqlalchemy import and_, or_

from ..extensions import db
from ..models import CycleSetting, CycleWinnerSelection, PayoutBatch, PayoutBatchItem, User
from .errors import CycleNotFound, NoEligibleRecipients, TooManyRecipients
from .identifiers import BATCH_ID_CHECKSUM_CHARS


MAX_RECIPIENTS_PER_BATCH = 15000  # PayPal limit
MIN_AMOUNT_CENTS = 1
MAX_AMOUNT_CENTS = 6_000_000  # $60,000 per item

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

SKIP_NOT_FOUND = "not_found"
SKIP_MISSING_EMAIL = "missing_paypal_email"
SKIP_INVALID_EMAIL = "invalid_paypal_email"
SKIP_ALREADY_PAID = "already_paid"
SKIP_INVALID_AMOUNT = "invalid_amount"


@dataclass(frozen=True)
class Recipient:
    winner_id: int
    user_id: int
    email: str
    amount_cents: int

    def to_dict(self) -> dict:
        return {
            "winnerId": self.winner_id,
            "userId": self.user_id,
            "email": self.email,
            "amountCents": self.amount_cents,
        }


@dataclass(frozen=True)
class SkippedWinner:
    winner_id: int
    user_id: int | None
    email: str | None
    reason: str

    def to_dict(self) -> dict:
        return {"id": self.winner_id, "userId": self.user_id, "email": self.email, "reason": self.reason}


@dataclass
class EligibilityResult:
    cycle_id: int
    admin_id: int
    recipients: list[Recipient]
    skipped: list[SkippedWinner]
    request_id: str
    request_checksum: str
    warnings: list[str] = field(default_factory=list)

    @property
    def batch_checksum(self) -> str:
        return self.request_checksum[:BATCH_ID_CHECKSUM_CHARS]

    @property
    def total_amount_cents(self) -> int:
        return sum(r.amount_cents for r in self.recipients)

    @property
    def total_eligible(self) -> int:
        return len(self.recipients)


def resolve_paypal_email(winner: CycleWinnerSelection, user: User | None) -> str | None:
    """Live profile value, then the selection-time snapshot, then None."""
    for candidate in (user.paypal_email if user else None, winner.paypal_email_snapshot):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


def _covered_winner_ids(winner_ids: list[int]) -> set[int]:
    """
    Winner ids already covered: a non-failed item in a non-cancelled batch,
    or a paid item in any batch (cancellation never reverts a payment).
    """
    if not winner_ids:
        return set()
    rows = (
        db.session.query(PayoutBatchItem.cycle_winner_selection_id)
        .join(PayoutBatch, PayoutBatch.id == PayoutBatchItem.batch_id)
        .filter(PayoutBatchItem.cycle_winner_selection_id.in_(winner_ids))
        .filter(or_(
            and_(PayoutBatch.status != "cancelled", PayoutBatchItem.status != "failed"),
            PayoutBatchItem.status == "success",
        ))
        .distinct()
        .all()
    )
    return {row[0] for row in rows}


def default_request_id(recipients: list[Recipient]) -> str:
    """
    Content-derived request id: SHA-256 over the sorted
    winnerId:userId:amountCents lines.
    """
    lines = sorted(f"{r.winner_id}:{r.user_id}:{r.amount_cents}" for r in recipients)
    return hashlib.sha256("\n".join(lines).encode("utf-8")).hexdigest()


def canonical_request(
    cycle_id: int,
    admin_id: int,
    recipients: list[Recipient],
    request_id: str,
) -> str:
    payload = {
        "cycleId": int(cycle_id),
        "adminId": int(admin_id),
        "totalAmountCents": sum(r.amount_cents for r in recipients),
        "recipientCount": len(recipients),
        "recipientEmails": sorted(r.email for r in recipients),
        "requestId": request_id,
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_request_checksum(
    cycle_id: int,
    admin_id: int,
    recipients: list[Recipient],
    request_id: str | None = None,
) -> str:
    """Full SHA-256 hex digest of the canonical request."""
    request_id = request_id or default_request_id(recipients)
    canonical = canonical_request(cycle_id, admin_id, recipients, request_id)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _evaluate(cycle_id: int, selected_winner_ids: list[int] | None):
    q = (
        db.session.query(CycleWinnerSelection, User)
        .outerjoin(User, User.id == CycleWinnerSelection.user_id)
        .filter(CycleWinnerSelection.cycle_setting_id == cycle_id)
    )
    if selected_winner_ids is not None:
        q = q.filter(CycleWinnerSelection.id.in_(selected_winner_ids))
    rows = q.order_by(CycleWinnerSelection.id).all()

    recipients: list[Recipient] = []
    skipped: list[SkippedWinner] = []

    if selected_winner_ids is not None:
        found = {winner.id for winner, _ in rows}
        for missing in sorted(set(selected_winner_ids) - found):
            skipped.append(SkippedWinner(missing, None, None, SKIP_NOT_FOUND))

    covered = _covered_winner_ids([winner.id for winner, _ in rows])

    for winner, user in rows:
        email = resolve_paypal_email(winner, user)
        if winner.id in covered:
            skipped.append(SkippedWinner(winner.id, winner.user_id, email, SKIP_ALREADY_PAID))
            continue
        if email is None:
            skipped.append(SkippedWinner(winner.id, winner.user_id, None, SKIP_MISSING_EMAIL))
            continue
        if not EMAIL_RE.match(email):
            skipped.append(SkippedWinner(winner.id, winner.user_id, email, SKIP_INVALID_EMAIL))
            continue
        amount = winner.payout_amount_cents
        if amount < MIN_AMOUNT_CENTS or amount > MAX_AMOUNT_CENTS:
            skipped.append(SkippedWinner(winner.id, winner.user_id, email, SKIP_INVALID_AMOUNT))
            continue
        recipients.append(Recipient(winner.id, winner.user_id, email, amount))

    return recipients, skipped


def derive_recipients(
    cycle_id: int,
    admin_id: int,
    selected_winner_ids: list[int] | None = None,
    request_id: str | None = None,
) -> EligibilityResult:
    """
    Resolve the payable recipients for a disbursement request.

    Args:
        cycle_id: Cycle being paid
        admin_id: Admin triggering the request
        selected_winner_ids: Explicit subset, or None for all eligible winners
        request_id: Caller idempotency key (defaults to a content digest)

    Raises:
        NoEligibleRecipients: Nothing payable; no state has been written
        TooManyRecipients: More than PayPal accepts in one batch
    """
    if db.session.get(CycleSetting, cycle_id) is None:
        raise CycleNotFound(f"Cycle {cycle_id} not found")

    if selected_winner_ids is not None:
        selected_winner_ids = sorted({int(w) for w in selected_winner_ids})

    recipients, skipped = _evaluate(cycle_id, selected_winner_ids)

    if not recipients:
        raise NoEligibleRecipients(cycle_id, skipped)

    if len(recipients) > MAX_RECIPIENTS_PER_BATCH:
        raise TooManyRecipients(
            f"Too many recipients: {len(recipients)}. Maximum: {MAX_RECIPIENTS_PER_BATCH}"
        )

    warnings = []
    seen: dict[str, int] = {}
    for r in recipients:
        key = r.email.lower()
        seen[key] = seen.get(key, 0) + 1
    duplicates = sorted(email for email, count in seen.items() if count > 1)
    if duplicates:
        warnings.append(f"Duplicate PayPal emails detected: {', '.join(duplicates)}")

    request_id = request_id or default_request_id(recipients)
    checksum = compute_request_checksum(cycle_id, admin_id, recipients, request_id)

    return EligibilityResult(
        cycle_id=cycle_id,
        admin_id=admin_id,
        recipients=recipients,
        skipped=skipped,
        request_id=request_id,
        request_checksum=checksum,
        warnings=warnings,
    )


def count_eligible(cycle_id: int) -> int:
    """Number of winners that would be paid by a processAll request."""
    recipients, _ = _evaluate(cycle_id, None)
    return len(recipients)
