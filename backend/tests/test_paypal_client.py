from dataclasses import replace
from types import SimpleNamespace

import httpx
import pytest

from finboost.services.errors import (
    AmbiguousSubmissionError,
    MalformedResponse,
    TerminalSubmissionError,
    TransientSubmissionError,
)
from finboost.services.paypal_client import (
    LIVE_BASE_URL,
    SANDBOX_BASE_URL,
    PayPalSettings,
    build_payout_payload,
)

from paypal_fakes import FakePayPal


SETTINGS = PayPalSettings(client_id="id", client_secret="secret")


def _payload(sender_batch_id="cycle-1-0123456789abcdef"):
    batch = SimpleNamespace(sender_batch_id=sender_batch_id)
    items = [
        SimpleNamespace(cycle_winner_selection_id=12, user_id=34, paypal_email="a@example.com",
                        amount=1999, currency="USD", note=None),
        SimpleNamespace(cycle_winner_selection_id=13, user_id=35, paypal_email="b@example.com",
                        amount=5, currency=None, note="Custom note"),
    ]
    return build_payout_payload(batch, items, SETTINGS)


def _client(fake, settings=SETTINGS):
    return fake.make_client(settings)


def _error(request, status):
    return httpx.Response(status, json={"name": "ERR", "message": f"status {status}"})


# =============================================================================
# SETTINGS & PAYLOAD
# =============================================================================

def test_settings_from_config_environments():
    sandbox = PayPalSettings.from_config({"PAYPAL_ENVIRONMENT": "sandbox"})
    live = PayPalSettings.from_config({"PAYPAL_ENVIRONMENT": "LIVE"})
    override = PayPalSettings.from_config({"PAYPAL_BASE_URL": "http://localhost:9000/"})

    assert sandbox.base_url == SANDBOX_BASE_URL
    assert live.base_url == LIVE_BASE_URL
    assert live.environment == "live"
    assert override.base_url == "http://localhost:9000"
    assert not sandbox.is_configured


def test_settings_reject_unknown_environment():
    with pytest.raises(ValueError):
        PayPalSettings.from_config({"PAYPAL_ENVIRONMENT": "staging"})


def test_settings_are_immutable():
    with pytest.raises(Exception):
        SETTINGS.client_id = "other"


def test_backoff_is_exponential_and_capped():
    settings = replace(SETTINGS, backoff_base_seconds=1.0, backoff_max_seconds=5.0)
    assert [settings.backoff_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_payload_shape():
    payload = _payload()

    assert payload["sender_batch_header"] == {
        "sender_batch_id": "cycle-1-0123456789abcdef",
        "email_subject": "FinBoost Reward Payout",
        "email_message": "You have received a reward payout from FinBoost!",
    }
    first, second = payload["items"]
    assert first == {
        "recipient_type": "EMAIL",
        "amount": {"value": "19.99", "currency": "USD"},
        "receiver": "a@example.com",
        "note": "FinBoost cycle reward",
        "sender_item_id": "winner-12-34",
    }
    assert second["amount"] == {"value": "0.05", "currency": "USD"}
    assert second["note"] == "Custom note"
    assert second["sender_item_id"] == "winner-13-35"


# =============================================================================
# SUBMISSION & RETRY POLICY
# =============================================================================

def test_accepted_submission_uses_bearer_token_and_request_id():
    fake = FakePayPal()
    body = _client(fake).create_batch_payout(_payload())

    assert body["batch_header"]["payout_batch_id"] == "PPB-1"
    post = fake.payout_posts[0]
    assert post.headers["Authorization"] == "Bearer token-1"
    assert post.headers["PayPal-Request-Id"] == "cycle-1-0123456789abcdef"
    token_request = fake.requests[0]
    assert token_request.url.path == "/v1/oauth2/token"
    assert b"grant_type=client_credentials" in token_request.content


def test_token_is_cached_between_calls():
    fake = FakePayPal()
    client = _client(fake)
    client.create_batch_payout(_payload("cycle-1-aaaaaaaaaaaaaaaa"))
    client.create_batch_payout(_payload("cycle-1-bbbbbbbbbbbbbbbb"))
    assert fake.token_calls == 1


def test_server_errors_are_retried_with_backoff():
    fake = FakePayPal()
    fake.payout_responses = [
        lambda r: _error(r, 503),
        lambda r: _error(r, 500),
    ]

    body = _client(fake).create_batch_payout(_payload())

    assert body["batch_header"]["payout_batch_id"] == "PPB-1"
    assert len(fake.payout_posts) == 3
    assert fake.sleeps == [1.0, 2.0]


def test_network_errors_are_retried():
    fake = FakePayPal()
    fake.payout_responses = [httpx.ConnectError("connection refused")]

    _client(fake).create_batch_payout(_payload())

    assert len(fake.payout_posts) == 2
    assert fake.sleeps == [1.0]


def test_retries_are_bounded():
    fake = FakePayPal()
    fake.payout_responses = [lambda r: _error(r, 502) for _ in range(10)]

    with pytest.raises(TransientSubmissionError) as exc:
        _client(fake).create_batch_payout(_payload())

    assert exc.value.status_code == 502
    assert exc.value.error_kind == "transient"
    assert len(fake.payout_posts) == SETTINGS.max_retries + 1
    assert fake.sleeps == [1.0, 2.0, 4.0]


def test_client_errors_are_terminal_without_retry():
    fake = FakePayPal()
    fake.payout_responses = [
        lambda r: httpx.Response(400, json={"name": "VALIDATION_ERROR", "message": "Invalid request"}),
    ]

    with pytest.raises(TerminalSubmissionError) as exc:
        _client(fake).create_batch_payout(_payload())

    assert exc.value.status_code == 400
    assert exc.value.details["name"] == "VALIDATION_ERROR"
    assert "Invalid request" in str(exc.value)
    assert len(fake.payout_posts) == 1
    assert fake.sleeps == []


def test_timeout_on_create_is_ambiguous_and_not_retried():
    fake = FakePayPal()
    fake.payout_responses = [httpx.ReadTimeout("read timed out")]

    with pytest.raises(AmbiguousSubmissionError) as exc:
        _client(fake).create_batch_payout(_payload())

    assert exc.value.error_kind == "timeout"
    assert len(fake.payout_posts) == 1
    assert fake.sleeps == []


def test_non_json_success_body_is_malformed():
    fake = FakePayPal()
    fake.payout_responses = [lambda r: httpx.Response(201, content=b"<html>ok</html>")]

    with pytest.raises(MalformedResponse):
        _client(fake).create_batch_payout(_payload())


def test_unauthorized_drops_cached_token():
    fake = FakePayPal()
    fake.payout_responses = [lambda r: httpx.Response(401, json={"name": "AUTHENTICATION_FAILURE"})]
    client = _client(fake)

    with pytest.raises(TerminalSubmissionError):
        client.create_batch_payout(_payload())
    client.create_batch_payout(_payload())

    assert fake.token_calls == 2


def test_missing_credentials_are_terminal():
    fake = FakePayPal()
    with pytest.raises(TerminalSubmissionError):
        _client(fake, replace(SETTINGS, client_secret="")).create_batch_payout(_payload())
    assert fake.requests == []


# =============================================================================
# BATCH LOOKUP
# =============================================================================

def test_get_batch_payout():
    fake = FakePayPal()
    fake.batches["PPB-7"] = {"batch_header": {"payout_batch_id": "PPB-7", "batch_status": "SUCCESS"}, "items": []}

    body = _client(fake).get_batch_payout("PPB-7")

    assert body["batch_header"]["payout_batch_id"] == "PPB-7"
    assert fake.requests[-1].url.path == "/v1/payments/payouts/PPB-7"


def test_get_batch_payout_not_found_is_terminal():
    with pytest.raises(TerminalSubmissionError) as exc:
        _client(FakePayPal()).get_batch_payout("missing")
    assert exc.value.status_code == 404
