"""The wallet context: one object owning every stateful component."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .approvals import ApprovalLedger
from .audit import AuditSink, AuditTrail
from .config import Settings
from .kdf import get_kdf
from .payment import PaymentAuthorizer
from .policy_store import PolicyStore
from .vault import KeyVault


@dataclass
class WalletContext:
    """
    Explicit replacement for process-wide globals.

    The CLI builds one per invocation and the web app holds one for its
    lifetime; both hand it to :class:`PaymentAuthorizer`.
    """

    settings: Settings
    vault: KeyVault
    approvals: ApprovalLedger
    policies: PolicyStore
    audit: Optional[AuditSink] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "WalletContext":
        return cls(
            settings=settings,
            vault=KeyVault(settings.key_path, kdf=get_kdf(settings.kdf)),
            approvals=ApprovalLedger(settings.approvals_path),
            policies=PolicyStore(settings.policy_path),
            audit=AuditTrail(settings.audit_path, settings.audit_key_path),
        )

    def authorizer(self) -> PaymentAuthorizer:
        return PaymentAuthorizer(
            vault=self.vault,
            approvals=self.approvals,
            policies=self.policies,
            audit=self.audit,
            consent_base_url=self.settings.consent_base_url,
        )
