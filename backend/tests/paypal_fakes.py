"""
In-process PayPal Payouts stand-in for tests.

FakePayPal is an httpx.MockTransport handler: it answers the OAuth token
call, records every request, and replays queued responses for batch
creation. Nothing leaves the process.
"""

import json

import httpx

from finboost.services.paypal_client import PayPalPayoutsClient


def paypal_item(sender_item_id, transaction_status, value="10.00", payout_item_id=None, error=None):
    item = {
        "payout_item_id": payout_item_id or f"ITEM-{sender_item_id}",
        "transaction_status": transaction_status,
        "payout_item_fee": {"currency": "USD", "value": "0.25"},
        "payout_item": {
            "recipient_type": "EMAIL",
            "amount": {"currency": "USD", "value": value},
            "receiver": "winner@example.com",
            "sender_item_id": sender_item_id,
        },
        "time_processed": "2026-10-19T12:00:00Z",
    }
    if error:
        item["errors"] = {"name": error, "message": f"{error} message"}
    return item


def paypal_batch_body(payout_batch_id, batch_status, items=None, sender_batch_id=None, amount="0.00"):
    header = {
        "payout_batch_id": payout_batch_id,
        "batch_status": batch_status,
        "amount": {"currency": "USD", "value": amount},
        "fees": {"currency": "USD", "value": "0.00"},
    }
    if sender_batch_id:
        header["sender_batch_header"] = {"sender_batch_id": sender_batch_id}
    body = {"batch_header": header}
    if items is not None:
        body["items"] = items
    return body


class FakePayPal:
    def __init__(self):
        self.requests = []
        self.sleeps = []
        # Each entry: httpx.Response, an exception instance, or a callable(request)
        self.payout_responses = []
        # paypal batch id -> GET body
        self.batches = {}
        self.token_calls = 0
        self._next_batch = 1

    # -------------------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/v1/oauth2/token":
            self.token_calls += 1
            return httpx.Response(200, json={"access_token": f"token-{self.token_calls}", "expires_in": 32400})

        if request.method == "POST" and path == "/v1/payments/payouts":
            if self.payout_responses:
                queued = self.payout_responses.pop(0)
                if isinstance(queued, Exception):
                    raise queued
                if callable(queued):
                    return queued(request)
                return queued
            return self.accept(request)

        if request.method == "GET" and path.startswith("/v1/payments/payouts/"):
            batch_id = path.rsplit("/", 1)[-1]
            if batch_id not in self.batches:
                return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND", "message": "Batch not found"})
            return httpx.Response(200, json=self.batches[batch_id])

        return httpx.Response(404, json={"name": "NOT_FOUND"})

    def accept(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        paypal_id = f"PPB-{self._next_batch}"
        self._next_batch += 1
        return httpx.Response(201, json=paypal_batch_body(
            paypal_id,
            "PENDING",
            sender_batch_id=payload["sender_batch_header"]["sender_batch_id"],
        ))

    # -------------------------------------------------------------------------

    @property
    def payout_posts(self):
        return [r for r in self.requests if r.method == "POST" and r.url.path == "/v1/payments/payouts"]

    def last_payload(self) -> dict:
        return json.loads(self.payout_posts[-1].content)

    def make_client(self, settings) -> PayPalPayoutsClient:
        return PayPalPayoutsClient(
            settings,
            transport=httpx.MockTransport(self.handler),
            sleep=self.sleeps.append,
        )
