"""Shared fixtures: a throwaway wallet directory and x402 challenge builders."""

import pytest
from eth_account import Account

from paywarden.approvals import ApprovalLedger
from paywarden.audit import AuditTrail
from paywarden.config import Settings
from paywarden.context import WalletContext
from paywarden.kdf import ScryptKdf
from paywarden.networks import NETWORKS
from paywarden.payment import PaymentAuthorizer
from paywarden.policy_store import PolicyStore
from paywarden.vault import KeyVault

USDC_BASE = NETWORKS["base"].usdc_address
PAY_TO = "0x1111111111111111111111111111111111111111"
FIXED_NOW = 1_700_000_000


class ListSink:
    def __init__(self):
        self.records = []

    def record(self, record):
        self.records.append(record)


@pytest.fixture
def fast_kdf():
    return ScryptKdf(n=2**10)


@pytest.fixture
def account():
    return Account.create()


@pytest.fixture
def private_key(account):
    return "0x" + bytes(account.key).hex()


@pytest.fixture
def vault(tmp_path, fast_kdf):
    return KeyVault(tmp_path / "wallet.key.enc", kdf=fast_kdf)


@pytest.fixture
def unlocked_vault(vault, private_key):
    vault.load(private_key)
    return vault


@pytest.fixture
def ledger(tmp_path):
    return ApprovalLedger(tmp_path / "approvals.json")


@pytest.fixture
def policy_store(tmp_path):
    return PolicyStore(tmp_path / "policy.json")


@pytest.fixture
def sink():
    return ListSink()


@pytest.fixture
def authorizer(unlocked_vault, ledger, policy_store, sink):
    return PaymentAuthorizer(
        vault=unlocked_vault,
        approvals=ledger,
        policies=policy_store,
        audit=sink,
        consent_base_url="http://localhost:3078",
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def wallet_context(tmp_path, fast_kdf, monkeypatch):
    monkeypatch.setenv("PAYWARDEN_AUDIT_HMAC_KEY", "test-audit-key")
    settings = Settings(data_dir=tmp_path / "data", web_port=3078)
    context = WalletContext.from_settings(settings)
    context.vault.kdf = fast_kdf
    return context


@pytest.fixture
def make_requirement():
    def _make(**overrides):
        requirement = {
            "scheme": "exact",
            "network": "base",
            "maxAmountRequired": "5000",
            "resource": "https://api.x.com/data",
            "description": "Market data",
            "mimeType": "application/json",
            "payTo": PAY_TO,
            "maxTimeoutSeconds": 300,
            "asset": USDC_BASE,
            "extra": {"name": "USD Coin", "version": "2"},
        }
        requirement.update(overrides)
        return requirement

    return _make


@pytest.fixture
def make_challenge(make_requirement):
    def _make(*requirements):
        return {"x402Version": 1, "accepts": list(requirements) or [make_requirement()]}

    return _make


@pytest.fixture
def intent():
    return {
        "why": "Fetch market data for the report",
        "http_method": "GET",
        "http_url": "https://api.x.com/data",
        "caller": "research-agent",
    }
