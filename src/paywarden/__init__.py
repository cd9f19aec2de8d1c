"""
paywarden: bounded x402 payments for AI agents.

The agent never holds the key:
402 challenge → policy decides → human approves if needed → vault signs.
"""

__version__ = "0.1.0"

from .approvals import ApprovalLedger, ApprovalRecord, ApprovalStatus
from .audit import AuditRecord, AuditSink, AuditTrail
from .config import Settings
from .context import WalletContext
from .eip3009 import create_payment_envelope
from .models import (
    AuthorizeOptions,
    PaymentEnvelope,
    PaymentIntent,
    PaymentRequired,
    PaymentRequirement,
    SelectionHints,
)
from .payment import Authorized, Denied, Failed, NeedsApproval, PaymentAuthorizer, PaymentOutcome
from .policy import Policy, PolicyDecision, evaluate
from .policy_store import PolicyStore
from .selector import select_requirement
from .vault import KeyVault, VaultStatus

__all__ = [
    "ApprovalLedger", "ApprovalRecord", "ApprovalStatus",
    "AuditRecord", "AuditSink", "AuditTrail",
    "Settings", "WalletContext", "create_payment_envelope",
    "AuthorizeOptions", "PaymentEnvelope", "PaymentIntent", "PaymentRequired",
    "PaymentRequirement", "SelectionHints",
    "Authorized", "Denied", "Failed", "NeedsApproval", "PaymentAuthorizer", "PaymentOutcome",
    "Policy", "PolicyDecision", "evaluate", "PolicyStore", "select_requirement",
    "KeyVault", "VaultStatus",
]
