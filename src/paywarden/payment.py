"""
Payment authorization orchestrator.

Flow:
1. Require a usable key (locked / missing key ends the call)
2. Select one of the offered requirements
3. Honour a referenced approval (approved -> sign, denied -> stop)
4. Otherwise evaluate policy: allow -> sign, needs approval -> create a
   consent record, deny -> stop
5. Emit one audit record for whatever the outcome was

Waiting for a human is not modelled as blocking: the caller gets
``NeedsApproval`` and calls again later with ``options.approval_id``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Mapping, Optional, Union

from .approvals import ApprovalLedger, ApprovalRecord, ApprovalStatus
from .audit import AuditRecord, AuditSink, Decision
from .eip3009 import create_payment_envelope
from .errors import MissingTokenMetadataError, PaywardenError, UnsupportedNetworkError
from .models import (
    AuthorizeOptions,
    PaymentEnvelope,
    PaymentIntent,
    PaymentRequired,
    PaymentRequirement,
    SelectionHints,
)
from .networks import network_to_chain_id
from .policy import evaluate
from .policy_store import PolicyStore
from .selector import select_requirement
from .vault import KeyVault

logger = logging.getLogger(__name__)

MAX_APPROVAL_TTL_SECONDS = 600

USER_DENIED = "user_denied"
POLICY_DENIED = "policy_denied"


@dataclass(frozen=True)
class Authorized:
    status: ClassVar[str] = Decision.OK.value

    envelope: PaymentEnvelope
    requirement: PaymentRequirement
    address: str
    approval_id: Optional[str] = None

    @property
    def header_value(self) -> str:
        return self.envelope.to_header()

    @property
    def chain_id(self) -> Optional[int]:
        return network_to_chain_id(self.requirement.network)

    @property
    def expires_at(self) -> int:
        """The header must not be sent after this epoch second (validBefore)."""
        return self.envelope.authorization.valid_before

    def to_dict(self) -> dict[str, Any]:
        data = {
            "status": self.status,
            "x_payment": self.header_value,
            "envelope": self.envelope.to_dict(),
            "requirement": self.requirement.to_dict(),
            "address": self.address,
            "chainId": self.chain_id,
            "expires_at": self.expires_at,
        }
        if self.approval_id is not None:
            data["approval_id"] = self.approval_id
        return data


@dataclass(frozen=True)
class NeedsApproval:
    status: ClassVar[str] = Decision.NEED_APPROVAL.value

    approval_id: str
    approval_url: str
    reason: str
    expires_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "approval_id": self.approval_id,
            "approval_url": self.approval_url,
            "reason": self.reason,
            "expires_at": self.expires_at,
        }


@dataclass(frozen=True)
class Denied:
    status: ClassVar[str] = Decision.DENIED.value

    code: str
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status, "code": self.code}
        if self.reason is not None:
            data["reason"] = self.reason
        return data


@dataclass(frozen=True)
class Failed:
    status: ClassVar[str] = Decision.ERROR.value

    code: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "code": self.code, "message": self.message}


PaymentOutcome = Union[Authorized, NeedsApproval, Denied, Failed]

_MATCHED_FIELDS = ("network", "asset", "payTo", "maxAmountRequired", "resource")
_CASE_INSENSITIVE = {"asset", "payTo"}


def approval_matches(record: ApprovalRecord, requirement: PaymentRequirement) -> bool:
    """True when ``record`` was created for this exact payment."""
    stored = record.payload.get("requirement")
    if not isinstance(stored, Mapping):
        return False
    current = requirement.to_dict()
    for key in _MATCHED_FIELDS:
        a, b = stored.get(key), current.get(key)
        if key in _CASE_INSENSITIVE and isinstance(a, str) and isinstance(b, str):
            a, b = a.lower(), b.lower()
        if a != b:
            return False
    return True


class PaymentAuthorizer:
    """Sequences key check, selection, approval lookup, policy and signing."""

    def __init__(
        self,
        vault: KeyVault,
        approvals: ApprovalLedger,
        policies: PolicyStore,
        audit: Optional[AuditSink] = None,
        consent_base_url: str = "http://localhost:3078",
        clock: Callable[[], float] = time.time,
    ):
        self.vault = vault
        self.approvals = approvals
        self.policies = policies
        self.audit = audit
        self.consent_base_url = consent_base_url.rstrip("/")
        self.clock = clock

    def consent_url(self, approval_id: str) -> str:
        return f"{self.consent_base_url}/consents/{approval_id}"

    def authorize(
        self,
        payment_required: PaymentRequired | Mapping[str, Any],
        intent: PaymentIntent | Mapping[str, Any],
        selection: SelectionHints | Mapping[str, Any] | None = None,
        options: AuthorizeOptions | Mapping[str, Any] | None = None,
    ) -> PaymentOutcome:
        """Run one authorization attempt. Never raises for expected failures."""
        requirement: Optional[PaymentRequirement] = None
        parsed_intent: Optional[PaymentIntent] = None
        try:
            if isinstance(payment_required, Mapping):
                payment_required = PaymentRequired.from_dict(payment_required)
            parsed_intent = intent if isinstance(intent, PaymentIntent) else PaymentIntent.from_dict(intent)
            if isinstance(selection, Mapping):
                selection = SelectionHints.from_dict(selection)
            if isinstance(options, Mapping):
                options = AuthorizeOptions.from_dict(options)
            options = options or AuthorizeOptions()

            signer = self.vault.signer()
            requirement = select_requirement(
                payment_required.accepts,
                selection,
                preferred_network=options.preferred_network,
                preferred_asset=options.preferred_asset,
            )
            if network_to_chain_id(requirement.network) is None:
                raise UnsupportedNetworkError(requirement.network)
            if not requirement.extra.complete:
                raise MissingTokenMetadataError()

            outcome = self._decide(payment_required, requirement, parsed_intent, options, signer)
        except PaywardenError as e:
            logger.info("Payment authorization failed: %s (%s)", e.code, e)
            outcome = Failed(code=e.code, message=str(e))

        self._emit(outcome, requirement, parsed_intent)
        return outcome

    def _decide(
        self,
        payment_required: PaymentRequired,
        requirement: PaymentRequirement,
        intent: PaymentIntent,
        options: AuthorizeOptions,
        signer: Any,
    ) -> PaymentOutcome:
        if options.approval_id:
            record = self.approvals.get(options.approval_id)
            if record is not None and record.status == ApprovalStatus.DENIED.value:
                logger.info("Approval %s was denied by the user", record.id)
                return Denied(code=USER_DENIED, reason=f"approval {record.id} was denied")
            if record is not None and record.status == ApprovalStatus.APPROVED.value:
                if approval_matches(record, requirement):
                    return self._sign(payment_required, requirement, options, signer, approval_id=record.id)
                logger.warning(
                    "Approval %s does not match the offered requirement; evaluating policy",
                    record.id,
                )

        decision = evaluate(requirement, intent, self.policies.policy, options)
        if decision.allow:
            return self._sign(payment_required, requirement, options, signer)
        if decision.needs_approval:
            return self._request_approval(payment_required, requirement, intent, decision.reason or "")
        return Denied(code=POLICY_DENIED, reason=decision.reason)

    def _sign(
        self,
        payment_required: PaymentRequired,
        requirement: PaymentRequirement,
        options: AuthorizeOptions,
        signer: Any,
        approval_id: Optional[str] = None,
    ) -> Authorized:
        envelope = create_payment_envelope(
            signer,
            requirement,
            x402_version=payment_required.x402_version,
            window_seconds=options.validity_window_seconds,
            now=int(self.clock()),
        )
        return Authorized(
            envelope=envelope,
            requirement=requirement,
            address=signer.address,
            approval_id=approval_id,
        )

    def _request_approval(
        self,
        payment_required: PaymentRequired,
        requirement: PaymentRequirement,
        intent: PaymentIntent,
        reason: str,
    ) -> NeedsApproval:
        record = self.approvals.create(
            {
                "x402_version": payment_required.x402_version,
                "requirement": requirement.to_dict(),
                "intent": intent.to_dict(),
                "reason": reason,
            }
        )
        ttl = min(requirement.max_timeout_seconds, MAX_APPROVAL_TTL_SECONDS)
        return NeedsApproval(
            approval_id=record.id,
            approval_url=self.consent_url(record.id),
            reason=reason,
            expires_at=int(self.clock()) + ttl,
        )

    def _emit(
        self,
        outcome: PaymentOutcome,
        requirement: Optional[PaymentRequirement],
        intent: Optional[PaymentIntent],
    ) -> None:
        if self.audit is None:
            return
        record = AuditRecord(
            decision=outcome.status,
            timestamp=self.clock(),
            requirement=requirement.to_dict() if requirement is not None else None,
            intent=intent.to_dict() if intent is not None else None,
        )
        if isinstance(outcome, Authorized):
            record.address = outcome.address
            record.approval_id = outcome.approval_id
        elif isinstance(outcome, NeedsApproval):
            record.reason = outcome.reason
            record.approval_id = outcome.approval_id
        elif isinstance(outcome, Denied):
            record.code = outcome.code
            record.reason = outcome.reason
        else:
            record.code = outcome.code
            record.reason = outcome.message
        try:
            self.audit.record(record)
        except Exception:
            logger.exception("Audit sink failed; outcome %s unaffected", outcome.status)
