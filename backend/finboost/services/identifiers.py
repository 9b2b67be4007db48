# Overview: Content-derived PayPal identifiers (sender batch and item ids).

"""
PayPal deduplicates submissions by sender_batch_id. Reusing the id for an
unchanged request makes a naive retry resolve to the original batch instead
of paying twice, so ids are derived from the request checksum and an
explicit attempt counter. Wall-clock time never participates.

Item ids encode the winner selection and user so a response can be matched
back to stored items without a lookup table.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

BATCH_ID_CHECKSUM_CHARS = 16

SENDER_ITEM_ID_RE = re.compile(r"^winner-(\d+)-(\d+)$")
# Read-only: emitted by batches created before content-derived ids
LEGACY_SENDER_ITEM_ID_RE = re.compile(r"^user_(\d+)_cycle_(\d+)_(\d+)$")

LEGACY_WINNER_ID = -1


@dataclass(frozen=True)
class SenderItemRef:
    cycle_winner_selection_id: int
    user_id: int
    legacy_cycle_id: int | None = None

    @property
    def is_legacy(self) -> bool:
        return self.legacy_cycle_id is not None


def sender_batch_id(cycle_id: int, request_checksum: str, attempt: int = 1) -> str:
    """
    cycle-{cycleId}-{checksum[0:16]} for the first attempt, with
    -attempt-{N} appended for attempts after a cancellation.
    """
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    if len(request_checksum) < BATCH_ID_CHECKSUM_CHARS:
        raise ValueError("request_checksum is too short")
    base = f"cycle-{int(cycle_id)}-{request_checksum[:BATCH_ID_CHECKSUM_CHARS]}"
    if attempt == 1:
        return base
    return f"{base}-attempt-{attempt}"


def encode_sender_item_id(cycle_winner_selection_id: int, user_id: int) -> str:
    return f"winner-{int(cycle_winner_selection_id)}-{int(user_id)}"


def parse_sender_item_id(value) -> SenderItemRef | None:
    """
    Recover (winner id, user id) from a sender_item_id.

    Legacy ids (user_{userId}_cycle_{cycleId}_{ts}) resolve to winner id -1
    with the cycle kept for audit. Anything else returns None.
    """
    if not isinstance(value, str):
        return None
    s = value.strip()

    match = SENDER_ITEM_ID_RE.match(s)
    if match:
        return SenderItemRef(int(match.group(1)), int(match.group(2)))

    match = LEGACY_SENDER_ITEM_ID_RE.match(s)
    if match:
        return SenderItemRef(LEGACY_WINNER_ID, int(match.group(1)), legacy_cycle_id=int(match.group(2)))

    return None
