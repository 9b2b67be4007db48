# Overview: Normalizes PayPal Payouts batch responses into internal result records.

"""
PayPal Response Parser

Converts a raw Payouts API body (create-batch response, GET batch
response or a pushed webhook resource) into ParsedPayoutResponse.

TOLERANCE RULES:
- batch_header missing/null/not an object: MalformedResponse. A structural
  absence must never be read as "zero items, zero dollars".
- items missing or empty: valid, zero individual results.
- Amount strings that are not decimals: 0 cents, parsing continues.
- sender_item_id in neither the current nor the legacy format: the item is
  skipped (recorded as PartialParseSkip) but still counted in item_count.
- Unknown transaction_status values map to "failed". Never assume success.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from ..time_utils import parse_iso_datetime
from .errors import MalformedResponse, PartialParseSkip
from .identifiers import parse_sender_item_id

logger = logging.getLogger("finboost.payouts.parser")


# =============================================================================
# STATUS MAPPING
# =============================================================================

STATUS_SUCCESS = "success"
STATUS_PENDING = "pending"
STATUS_UNCLAIMED = "unclaimed"
STATUS_FAILED = "failed"

PAYPAL_STATUS_MAP = {
    "SUCCESS": STATUS_SUCCESS,
    "COMPLETED": STATUS_SUCCESS,
    "PENDING": STATUS_PENDING,
    "ONHOLD": STATUS_PENDING,
    "RETURNED": STATUS_PENDING,
    "UNCLAIMED": STATUS_UNCLAIMED,
    "FAILED": STATUS_FAILED,
    "DENIED": STATUS_FAILED,
    "BLOCKED": STATUS_FAILED,
    "REFUNDED": STATUS_FAILED,
}


def map_transaction_status(paypal_status) -> str:
    """Map a PayPal transaction_status onto success/pending/unclaimed/failed."""
    if not isinstance(paypal_status, str):
        return STATUS_FAILED
    return PAYPAL_STATUS_MAP.get(paypal_status.strip().upper(), STATUS_FAILED)


# =============================================================================
# CURRENCY
# =============================================================================

def dollars_to_cents(value) -> int:
    """
    Exact decimal conversion of a PayPal amount string to integer cents.

    "123.45" -> 12345. Anything that is not a finite decimal, or too large
    to quantize, -> 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            return 0
        return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except (InvalidOperation, ValueError):
        return 0


def cents_to_dollars(cents: int) -> str:
    """Integer cents to a two-decimal PayPal amount string."""
    return str((Decimal(int(cents)) / 100).quantize(Decimal("0.01")))


def _money_cents(money) -> int:
    if isinstance(money, dict):
        return dollars_to_cents(money.get("value"))
    return 0


def _money_currency(money) -> str | None:
    if isinstance(money, dict) and isinstance(money.get("currency"), str):
        return money["currency"]
    return None


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class ParsedItem:
    payout_item_id: str | None
    transaction_status: str | None
    status: str
    cycle_winner_selection_id: int
    user_id: int
    sender_item_id: str
    amount: int = 0
    fee: int = 0
    currency: str | None = None
    receiver: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    processed_at: datetime | None = None
    is_legacy: bool = False

    def to_dict(self) -> dict:
        return {
            "payoutItemId": self.payout_item_id,
            "transactionStatus": self.transaction_status,
            "status": self.status,
            "cycleWinnerSelectionId": self.cycle_winner_selection_id,
            "userId": self.user_id,
            "senderItemId": self.sender_item_id,
            "amount": self.amount,
            "fee": self.fee,
            "currency": self.currency,
            "receiver": self.receiver,
            "errorCode": self.error_code,
            "errorMessage": self.error_message,
            "isLegacy": self.is_legacy,
        }


@dataclass
class ParsedPayoutResponse:
    paypal_batch_id: str | None
    batch_status: str
    item_count: int
    total_amount: int
    total_fees: int
    currency: str | None = None
    sender_batch_id: str | None = None
    individual_results: list[ParsedItem] = field(default_factory=list)
    skipped_items: list[PartialParseSkip] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "paypalBatchId": self.paypal_batch_id,
            "batchStatus": self.batch_status,
            "itemCount": self.item_count,
            "totalAmount": self.total_amount,
            "totalFees": self.total_fees,
            "currency": self.currency,
            "senderBatchId": self.sender_batch_id,
            "individualResults": [r.to_dict() for r in self.individual_results],
            "skippedItems": [s.to_dict() for s in self.skipped_items],
        }


# =============================================================================
# PARSING
# =============================================================================

def _item_error(raw_item: dict) -> tuple[str | None, str | None]:
    errors = raw_item.get("errors")
    if isinstance(errors, list):
        errors = errors[0] if errors else None
    if not isinstance(errors, dict):
        return None, None
    code = errors.get("name") or errors.get("code")
    message = errors.get("message")
    return (str(code) if code else None), (str(message) if message else None)


def _parse_item(index: int, raw_item) -> ParsedItem | PartialParseSkip:
    if not isinstance(raw_item, dict):
        return PartialParseSkip(index, None, None, "item is not an object")

    payout_item_id = raw_item.get("payout_item_id")
    payout_item = raw_item.get("payout_item")
    if not isinstance(payout_item, dict):
        payout_item = {}

    sender_item_id = payout_item.get("sender_item_id", raw_item.get("sender_item_id"))
    ref = parse_sender_item_id(sender_item_id)
    if ref is None:
        return PartialParseSkip(
            index,
            payout_item_id if isinstance(payout_item_id, str) else None,
            sender_item_id if isinstance(sender_item_id, str) else None,
            "unrecognized sender_item_id",
        )

    transaction_status = raw_item.get("transaction_status")
    error_code, error_message = _item_error(raw_item)
    if ref.is_legacy:
        marker = f"[LEGACY_FORMAT: cycle_{ref.legacy_cycle_id}]"
        error_message = f"{marker} {error_message}" if error_message else marker

    return ParsedItem(
        payout_item_id=payout_item_id if isinstance(payout_item_id, str) else None,
        transaction_status=transaction_status if isinstance(transaction_status, str) else None,
        status=map_transaction_status(transaction_status),
        cycle_winner_selection_id=ref.cycle_winner_selection_id,
        user_id=ref.user_id,
        sender_item_id=sender_item_id.strip(),
        amount=_money_cents(payout_item.get("amount")),
        fee=_money_cents(raw_item.get("payout_item_fee")),
        currency=_money_currency(payout_item.get("amount")),
        receiver=payout_item.get("receiver") if isinstance(payout_item.get("receiver"), str) else None,
        error_code=error_code,
        error_message=error_message,
        processed_at=parse_iso_datetime(raw_item.get("time_processed")),
        is_legacy=ref.is_legacy,
    )


def parse_payout_response(raw) -> ParsedPayoutResponse:
    """
    Parse a PayPal Payouts batch body.

    Raises:
        MalformedResponse: Payload or batch_header is structurally absent
    """
    if not isinstance(raw, dict):
        raise MalformedResponse("Failed to parse PayPal response: body is not an object")

    header = raw.get("batch_header")
    if not isinstance(header, dict):
        raise MalformedResponse("Failed to parse PayPal response: missing batch_header")

    raw_items = raw.get("items")
    if raw_items is None:
        raw_items = []
    if not isinstance(raw_items, list):
        raise MalformedResponse("Failed to parse PayPal response: items is not a list")

    sender_header = header.get("sender_batch_header")
    sender_batch_id = None
    if isinstance(sender_header, dict) and isinstance(sender_header.get("sender_batch_id"), str):
        sender_batch_id = sender_header["sender_batch_id"]

    batch_status = header.get("batch_status")
    parsed = ParsedPayoutResponse(
        paypal_batch_id=header.get("payout_batch_id") if isinstance(header.get("payout_batch_id"), str) else None,
        batch_status=batch_status.strip() if isinstance(batch_status, str) else "UNKNOWN",
        item_count=len(raw_items),
        total_amount=_money_cents(header.get("amount")),
        total_fees=_money_cents(header.get("fees")),
        currency=_money_currency(header.get("amount")),
        sender_batch_id=sender_batch_id,
    )

    for index, raw_item in enumerate(raw_items):
        result = _parse_item(index, raw_item)
        if isinstance(result, PartialParseSkip):
            logger.warning(
                "Skipping unattributable PayPal item %s (%s): %s",
                result.payout_item_id, result.sender_item_id, result.reason,
            )
            parsed.skipped_items.append(result)
            continue
        parsed.individual_results.append(result)

    return parsed
