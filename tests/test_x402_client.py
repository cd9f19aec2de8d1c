"""Tests for the x402 fetch-and-pay client."""

import base64
import json

import httpx
import pytest

from paywarden.models import PaymentEnvelope
from paywarden.payment import Authorized, Failed, NeedsApproval
from paywarden.x402_client import X402Client, decode_payment_response

URL = "https://api.x.com/data"


def _settlement_header(payload):
    return base64.b64encode(json.dumps(payload).encode()).decode()


@pytest.fixture
def paywall(make_challenge):
    """A server that wants 5000 units and records what it was sent."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        header = request.headers.get("X-PAYMENT")
        if header is None:
            return httpx.Response(402, json=make_challenge())
        envelope = PaymentEnvelope.from_header(header)
        return httpx.Response(
            200,
            json={"data": 42},
            headers={"X-PAYMENT-RESPONSE": _settlement_header({"success": True, "payer": envelope.authorization.from_address})},
        )

    handler.seen = seen
    return handler


def _client(authorizer, handler, **kwargs):
    return X402Client(authorizer, transport=httpx.MockTransport(handler), retry_delay=0, **kwargs)


def test_pays_and_retries_with_header(authorizer, paywall, account):
    with _client(authorizer, paywall) as client:
        result = client.fetch(URL, why="need data")

    assert result.status_code == 200
    assert result.paid
    assert isinstance(result.outcome, Authorized)
    assert json.loads(result.body) == {"data": 42}
    assert result.settlement == {"success": True, "payer": account.address}
    assert len(paywall.seen) == 2
    assert "X-PAYMENT" not in paywall.seen[0].headers
    assert PaymentEnvelope.from_header(paywall.seen[1].headers["X-PAYMENT"]).authorization.value == 5000


def test_free_resource_not_paid(authorizer, sink):
    with _client(authorizer, lambda request: httpx.Response(200, text="free")) as client:
        result = client.fetch(URL, why="need data")
    assert result.status_code == 200
    assert result.outcome is None
    assert not result.paid
    assert sink.records == []


def test_needs_approval_returns_402(authorizer, policy_store, paywall):
    policy_store.update({"unknown_origin_needs_approval": True})
    with _client(authorizer, paywall) as client:
        result = client.fetch(URL, why="need data")
    assert result.status_code == 402
    assert isinstance(result.outcome, NeedsApproval)
    assert len(paywall.seen) == 1


def test_unparseable_challenge_is_audited_failure(authorizer, sink):
    with _client(authorizer, lambda request: httpx.Response(402, text="pay me")) as client:
        result = client.fetch(URL, why="need data")
    assert isinstance(result.outcome, Failed)
    assert result.outcome.code == "invalid_request"
    assert len(sink.records) == 1


def test_transport_errors_are_retried(authorizer):
    calls = []

    def flaky(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, text="ok")

    with _client(authorizer, flaky, max_retries=2) as client:
        assert client.fetch(URL, why="x").status_code == 200
    assert len(calls) == 2


def test_retries_are_bounded(authorizer):
    def down(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with _client(authorizer, down, max_retries=1) as client:
        with pytest.raises(httpx.ConnectTimeout):
            client.fetch(URL, why="x")


def test_decode_payment_response():
    assert decode_payment_response(_settlement_header({"tx": "0x1"})) == {"tx": "0x1"}
    assert decode_payment_response("%%%") is None
    assert decode_payment_response(None) is None
