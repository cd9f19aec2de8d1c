"""Tests for boundary validation of x402 wire types."""

import base64
import json

import pytest

from paywarden.errors import InvalidRequestError
from paywarden.models import (
    AuthorizeOptions,
    PaymentEnvelope,
    PaymentIntent,
    PaymentRequired,
    PaymentRequirement,
    SelectionHints,
    TransferAuthorization,
)


class TestPaymentRequirement:
    def test_parses_wire_json(self, make_requirement):
        req = PaymentRequirement.from_dict(make_requirement())
        assert req.max_amount_required == 5000
        assert req.extra.name == "USD Coin"
        assert req.extra.complete

    def test_round_trips_to_wire_names(self, make_requirement):
        wire = make_requirement()
        assert PaymentRequirement.from_dict(wire).to_dict() == wire

    def test_rejects_float_amount(self, make_requirement):
        with pytest.raises(InvalidRequestError, match="maxAmountRequired"):
            PaymentRequirement.from_dict(make_requirement(maxAmountRequired=0.005))

    def test_missing_extra_is_incomplete(self, make_requirement):
        wire = make_requirement()
        del wire["extra"]
        assert not PaymentRequirement.from_dict(wire).extra.complete

    def test_missing_field(self, make_requirement):
        wire = make_requirement()
        del wire["payTo"]
        with pytest.raises(InvalidRequestError, match="payTo"):
            PaymentRequirement.from_dict(wire)


class TestPaymentRequired:
    def test_requires_accepts(self):
        with pytest.raises(InvalidRequestError, match="accepts"):
            PaymentRequired.from_dict({"x402Version": 1, "accepts": []})

    def test_parses(self, make_challenge):
        required = PaymentRequired.from_dict(make_challenge())
        assert required.x402_version == 1
        assert len(required.accepts) == 1


class TestCallerContext:
    def test_intent_rejects_unknown_fields(self, intent):
        with pytest.raises(InvalidRequestError, match="Unknown intent"):
            PaymentIntent.from_dict({**intent, "amount": "1"})

    def test_intent_requires_why(self, intent):
        with pytest.raises(InvalidRequestError, match="why"):
            PaymentIntent.from_dict({**intent, "why": "  "})

    def test_selection_index_must_be_non_negative(self):
        with pytest.raises(InvalidRequestError):
            SelectionHints.from_dict({"accept_index": -1})

    def test_options_window_must_be_positive(self):
        with pytest.raises(InvalidRequestError):
            AuthorizeOptions.from_dict({"validity_window_seconds": 0})

    def test_options_forced_approval_must_be_bool(self):
        with pytest.raises(InvalidRequestError, match="require_user_approval"):
            AuthorizeOptions.from_dict({"require_user_approval": "yes"})


class TestPaymentEnvelope:
    def _envelope(self):
        return PaymentEnvelope(
            x402_version=1,
            network="base",
            signature="0x" + "ab" * 65,
            authorization=TransferAuthorization(
                from_address="0x2222222222222222222222222222222222222222",
                to="0x1111111111111111111111111111111111111111",
                value=5000,
                valid_after=99,
                valid_before=160,
                nonce="0x" + "00" * 32,
            ),
        )

    def test_header_is_base64_json(self):
        decoded = json.loads(base64.b64decode(self._envelope().to_header()))
        assert decoded["scheme"] == "exact"
        assert decoded["payload"]["authorization"]["value"] == "5000"
        assert decoded["payload"]["authorization"]["validBefore"] == "160"

    def test_from_header(self):
        envelope = self._envelope()
        assert PaymentEnvelope.from_header(envelope.to_header()) == envelope

    def test_from_header_rejects_garbage(self):
        with pytest.raises(InvalidRequestError, match="X-PAYMENT"):
            PaymentEnvelope.from_header("not base64!!")
