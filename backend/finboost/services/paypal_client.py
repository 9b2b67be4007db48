# Overview: Outbound PayPal Payouts API client (OAuth token, payload building, retry policy).

"""
PayPal Payouts Client

RETRY POLICY:
- Network errors (other than timeouts) and 5xx responses are retried with
  exponential backoff: base * 2**n, capped at PAYPAL_BACKOFF_MAX_SECONDS,
  for at most PAYPAL_MAX_RETRIES extra attempts. Exhaustion raises
  TransientSubmissionError.
- 4xx responses raise TerminalSubmissionError immediately.
- A timeout on a batch creation raises AmbiguousSubmissionError: PayPal may
  have accepted the batch, so the caller must not treat it as a failure.

Resending the same sender_batch_id is safe; PayPal answers with the
original batch instead of paying twice.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import httpx

from .errors import (
    AmbiguousSubmissionError,
    MalformedResponse,
    TerminalSubmissionError,
    TransientSubmissionError,
)
from .identifiers import encode_sender_item_id
from .paypal_response_parser import cents_to_dollars

logger = logging.getLogger("finboost.payouts.paypal")


SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"
LIVE_BASE_URL = "https://api-m.paypal.com"

TOKEN_PATH = "/v1/oauth2/token"
PAYOUTS_PATH = "/v1/payments/payouts"

# Refresh the token this many seconds before PayPal says it expires
TOKEN_EXPIRY_MARGIN_SECONDS = 60


@dataclass(frozen=True)
class PayPalSettings:
    client_id: str
    client_secret: str
    environment: str = "sandbox"
    base_url: str = SANDBOX_BASE_URL
    timeout_seconds: float = 30.0
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    currency: str = "USD"
    email_subject: str = "FinBoost Reward Payout"
    email_message: str = "You have received a reward payout from FinBoost!"
    item_note: str = "FinBoost cycle reward"

    @classmethod
    def from_config(cls, config) -> "PayPalSettings":
        environment = (config.get("PAYPAL_ENVIRONMENT") or "sandbox").strip().lower()
        if environment not in ("sandbox", "live"):
            raise ValueError(f"Invalid PAYPAL_ENVIRONMENT: {environment}")
        base_url = (config.get("PAYPAL_BASE_URL") or "").strip()
        if not base_url:
            base_url = LIVE_BASE_URL if environment == "live" else SANDBOX_BASE_URL
        return cls(
            client_id=config.get("PAYPAL_CLIENT_ID") or "",
            client_secret=config.get("PAYPAL_CLIENT_SECRET") or "",
            environment=environment,
            base_url=base_url.rstrip("/"),
            timeout_seconds=float(config.get("PAYPAL_TIMEOUT_SECONDS", 30)),
            max_retries=max(0, int(config.get("PAYPAL_MAX_RETRIES", 3))),
            backoff_base_seconds=float(config.get("PAYPAL_BACKOFF_BASE_SECONDS", 1.0)),
            backoff_max_seconds=float(config.get("PAYPAL_BACKOFF_MAX_SECONDS", 30)),
            currency=config.get("PAYOUT_CURRENCY") or "USD",
            email_subject=config.get("PAYOUT_EMAIL_SUBJECT") or cls.email_subject,
            email_message=config.get("PAYOUT_EMAIL_MESSAGE") or cls.email_message,
            item_note=config.get("PAYOUT_ITEM_NOTE") or cls.item_note,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def backoff_delay(self, retry_number: int) -> float:
        """Delay before retry N (0-based)."""
        return min(self.backoff_base_seconds * (2 ** retry_number), self.backoff_max_seconds)


# =============================================================================
# PAYLOAD
# =============================================================================

def build_payout_payload(batch, items, settings: PayPalSettings) -> dict:
    """
    Wire payload for POST /v1/payments/payouts.

    Amounts are stored as integer cents and formatted with Decimal so that
    1999 always becomes "19.99".
    """
    return {
        "sender_batch_header": {
            "sender_batch_id": batch.sender_batch_id,
            "email_subject": settings.email_subject,
            "email_message": settings.email_message,
        },
        "items": [
            {
                "recipient_type": "EMAIL",
                "amount": {
                    "value": cents_to_dollars(item.amount),
                    "currency": item.currency or settings.currency,
                },
                "receiver": item.paypal_email,
                "note": item.note or settings.item_note,
                "sender_item_id": encode_sender_item_id(item.cycle_winner_selection_id, item.user_id),
            }
            for item in items
        ],
    }


# =============================================================================
# CLIENT
# =============================================================================

class PayPalPayoutsClient:
    """
    Synchronous Payouts API client.

    One instance is created per app (app.extensions["paypal_client"]); it
    holds the OAuth token for reuse across requests. `transport` and `sleep`
    are injectable so tests never touch the network or wait on backoff.
    """

    def __init__(self, settings: PayPalSettings, transport=None, sleep=time.sleep, clock=time.monotonic):
        self.settings = settings
        self._sleep = sleep
        self._clock = clock
        self._http = httpx.Client(
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
            transport=transport,
        )
        self._token: str | None = None
        self._token_expires_at = 0.0

    def close(self) -> None:
        self._http.close()

    # -------------------------------------------------------------------------
    # Transport with retry
    # -------------------------------------------------------------------------

    def _request(self, method: str, path: str, *, idempotent: bool, **kwargs) -> httpx.Response:
        retries = self.settings.max_retries
        last_error = "unknown error"
        last_status = None

        for attempt in range(retries + 1):
            try:
                response = self._http.request(method, path, **kwargs)
            except httpx.TimeoutException as e:
                if not idempotent:
                    logger.warning("PayPal %s %s timed out; outcome unknown", method, path)
                    raise AmbiguousSubmissionError(f"PayPal request timed out: {e}")
                last_error, last_status = f"timeout: {e}", None
            except httpx.TransportError as e:
                last_error, last_status = f"network error: {e}", None
            else:
                if response.status_code >= 500:
                    last_error, last_status = f"PayPal returned HTTP {response.status_code}", response.status_code
                elif response.status_code >= 400:
                    if response.status_code == 401:
                        self._token = None
                    details = _json_or_empty(response)
                    message = details.get("message") or details.get("error_description") or details.get("name")
                    raise TerminalSubmissionError(
                        f"PayPal rejected request: HTTP {response.status_code}" + (f" ({message})" if message else ""),
                        status_code=response.status_code,
                        details=details,
                    )
                else:
                    return response

            if attempt < retries:
                delay = self.settings.backoff_delay(attempt)
                logger.warning(
                    "PayPal %s %s failed (%s); retry %d/%d in %.2fs",
                    method, path, last_error, attempt + 1, retries, delay,
                )
                self._sleep(delay)

        raise TransientSubmissionError(
            f"PayPal request failed after {retries + 1} attempts: {last_error}",
            status_code=last_status,
        )

    def _access_token(self) -> str:
        if self._token and self._clock() < self._token_expires_at:
            return self._token

        if not self.settings.is_configured:
            raise TerminalSubmissionError("PayPal credentials are not configured")

        response = self._request(
            "POST",
            TOKEN_PATH,
            idempotent=True,
            auth=(self.settings.client_id, self.settings.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        body = _json_or_empty(response)
        token = body.get("access_token")
        if not token:
            raise TerminalSubmissionError("PayPal token response did not include access_token")

        expires_in = int(body.get("expires_in") or 0)
        self._token = token
        self._token_expires_at = self._clock() + max(0, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS)
        return token

    def _auth_headers(self, extra: dict | None = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    # -------------------------------------------------------------------------
    # Payouts API
    # -------------------------------------------------------------------------

    def create_batch_payout(self, payload: dict) -> dict:
        """
        Submit a payout batch.

        Raises:
            TerminalSubmissionError: 4xx
            TransientSubmissionError: Network/5xx after every retry
            AmbiguousSubmissionError: Timed out
            MalformedResponse: 2xx with a body that is not JSON
        """
        sender_batch_id = payload["sender_batch_header"]["sender_batch_id"]
        response = self._request(
            "POST",
            PAYOUTS_PATH,
            idempotent=False,
            json=payload,
            headers=self._auth_headers({"PayPal-Request-Id": sender_batch_id}),
        )
        logger.info("PayPal accepted payout batch %s (HTTP %s)", sender_batch_id, response.status_code)
        return _json_body(response)

    def get_batch_payout(self, paypal_batch_id: str) -> dict:
        """Fetch the current batch header and items."""
        response = self._request(
            "GET",
            f"{PAYOUTS_PATH}/{paypal_batch_id}",
            idempotent=True,
            headers=self._auth_headers(),
        )
        return _json_body(response)


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _json_body(response: httpx.Response) -> dict:
    try:
        return response.json()
    except ValueError:
        raise MalformedResponse(f"PayPal returned a non-JSON body (HTTP {response.status_code})")
