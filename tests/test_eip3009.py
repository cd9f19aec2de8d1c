"""Tests for EIP-3009 authorization building and signing."""

import base64
import json

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

from paywarden.eip3009 import (
    build_typed_data,
    create_payment_envelope,
    random_nonce,
    validity_window,
)
from paywarden.errors import InvalidRequestError, MissingTokenMetadataError, UnsupportedNetworkError
from paywarden.models import PaymentEnvelope, PaymentRequirement

NOW = 1_700_000_000


@pytest.fixture
def requirement(make_requirement):
    return PaymentRequirement.from_dict(make_requirement())


def _recover(envelope: PaymentEnvelope, requirement: PaymentRequirement) -> str:
    typed = build_typed_data(envelope.authorization, requirement, chain_id=8453)
    return Account.recover_message(encode_typed_data(full_message=typed), signature=envelope.signature)


class TestValidityWindow:
    def test_default_window(self):
        assert validity_window(NOW, 300) == (NOW - 1, NOW - 1 + 60)

    def test_clamped_to_max_timeout(self):
        after, before = validity_window(NOW, 30, requested=3600)
        assert before - after == 30

    def test_short_request_respected(self):
        after, before = validity_window(NOW, 300, requested=10)
        assert before - after == 10

    def test_zero_timeout_cannot_be_signed(self):
        with pytest.raises(InvalidRequestError):
            validity_window(NOW, 0)


def test_nonce_is_32_random_bytes():
    nonce = random_nonce()
    assert nonce.startswith("0x") and len(nonce) == 66
    assert random_nonce() != nonce


class TestCreatePaymentEnvelope:
    def test_signature_recovers_to_signer(self, unlocked_vault, requirement, account):
        envelope = create_payment_envelope(unlocked_vault.signer(), requirement, x402_version=1, now=NOW)
        assert envelope.authorization.from_address == account.address
        assert _recover(envelope, requirement) == account.address

    def test_fields_echo_requirement(self, unlocked_vault, requirement):
        envelope = create_payment_envelope(unlocked_vault.signer(), requirement, x402_version=1, now=NOW)
        auth = envelope.authorization
        assert auth.to == "0x1111111111111111111111111111111111111111"
        assert auth.value == 5000
        assert auth.valid_after == NOW - 1
        assert envelope.network == "base"
        assert envelope.scheme == "exact"

    def test_two_signatures_differ_only_in_nonce_and_signature(self, unlocked_vault, requirement):
        signer = unlocked_vault.signer()
        first = create_payment_envelope(signer, requirement, x402_version=1, now=NOW)
        second = create_payment_envelope(signer, requirement, x402_version=1, now=NOW)

        a = first.authorization.to_dict()
        b = second.authorization.to_dict()
        assert a.pop("nonce") != b.pop("nonce")
        assert a == b
        assert first.signature != second.signature

    def test_window_never_exceeds_max_timeout(self, unlocked_vault, make_requirement):
        req = PaymentRequirement.from_dict(make_requirement(maxTimeoutSeconds=15))
        envelope = create_payment_envelope(
            unlocked_vault.signer(), req, x402_version=1, window_seconds=3600, now=NOW
        )
        assert envelope.authorization.valid_before - envelope.authorization.valid_after <= 15

    def test_header_decodes_to_exact_envelope(self, unlocked_vault, requirement):
        envelope = create_payment_envelope(unlocked_vault.signer(), requirement, x402_version=1, now=NOW)
        decoded = json.loads(base64.b64decode(envelope.to_header()))
        assert decoded["x402Version"] == 1
        assert decoded["scheme"] == "exact"
        assert set(decoded["payload"]["authorization"]) == {
            "from", "to", "value", "validAfter", "validBefore", "nonce",
        }
        assert decoded["payload"]["signature"].startswith("0x")
        assert len(decoded["payload"]["signature"]) == 2 + 65 * 2

    def test_missing_token_metadata(self, unlocked_vault, make_requirement):
        req = PaymentRequirement.from_dict(make_requirement(extra={"name": "USD Coin"}))
        with pytest.raises(MissingTokenMetadataError):
            create_payment_envelope(unlocked_vault.signer(), req, x402_version=1)

    def test_unknown_network(self, unlocked_vault, make_requirement):
        req = PaymentRequirement.from_dict(make_requirement(network="polygon"))
        with pytest.raises(UnsupportedNetworkError):
            create_payment_envelope(unlocked_vault.signer(), req, x402_version=1)

    def test_bad_pay_to(self, unlocked_vault, make_requirement):
        req = PaymentRequirement.from_dict(make_requirement(payTo="not-an-address"))
        with pytest.raises(InvalidRequestError, match="payTo"):
            create_payment_envelope(unlocked_vault.signer(), req, x402_version=1)

    def test_lowercase_addresses_are_checksummed(self, unlocked_vault, make_requirement, account):
        req = PaymentRequirement.from_dict(
            make_requirement(payTo="0x" + "ab" * 20, asset="0x833589fcd6edb6e08f4c7c32d4f71b54bda02913")
        )
        envelope = create_payment_envelope(unlocked_vault.signer(), req, x402_version=1, now=NOW)
        assert envelope.authorization.to != envelope.authorization.to.lower()
        assert _recover(envelope, req) == account.address
