"""
Declarative payment policy and its evaluation.

``evaluate`` is a pure function of (requirement, intent, policy, options);
rules run in a fixed order and the first match decides. All amounts are
integers parsed from decimal strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional
from urllib.parse import urlsplit

from .amounts import parse_atomic_units
from .errors import PolicyValidationError
from .models import EXACT_SCHEME, AuthorizeOptions, PaymentIntent, PaymentRequirement
from .networks import NETWORKS

_DEFAULT_PORTS = {"http": 80, "https": 443}


class PolicyReason(str, Enum):
    UNSUPPORTED_SCHEME = "unsupported_scheme"
    UNSUPPORTED_NETWORK = "unsupported_network"
    UNSUPPORTED_ASSET = "unsupported_asset"
    ORIGIN_MISMATCH = "origin_mismatch"
    OVER_PER_TX_LIMIT = "over_per_tx_limit"
    UNKNOWN_ORIGIN = "unknown_origin"
    USER_FORCED_APPROVAL = "user_forced_approval"


@dataclass(frozen=True)
class PolicyDecision:
    allow: bool
    needs_approval: bool = False
    reason: Optional[str] = None

    @classmethod
    def allowed(cls) -> "PolicyDecision":
        return cls(allow=True)

    @classmethod
    def denied(cls, reason: PolicyReason) -> "PolicyDecision":
        return cls(allow=False, reason=reason.value)

    @classmethod
    def approval_required(cls, reason: PolicyReason) -> "PolicyDecision":
        return cls(allow=False, needs_approval=True, reason=reason.value)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"allow": self.allow}
        if self.needs_approval:
            data["needsApproval"] = True
        if self.reason is not None:
            data["reason"] = self.reason
        return data


def _default_networks() -> list[str]:
    return list(NETWORKS)


def _default_assets() -> dict[str, list[str]]:
    return {name: [config.usdc_address] for name, config in NETWORKS.items()}


@dataclass
class Policy:
    """Spending policy. Amount fields are atomic units."""

    networks_allow: list[str] = field(default_factory=_default_networks)
    assets_allow: dict[str, list[str]] = field(default_factory=_default_assets)
    per_tx_limit_by_origin: dict[str, int] = field(default_factory=dict)
    unknown_origin_needs_approval: bool = False
    auto_approve_under: int = 0

    def allowed_assets(self, network: str) -> set[str]:
        return {asset.lower() for asset in self.assets_allow.get(network, [])}

    def origin_limit(self, origin: str) -> Optional[int]:
        return self.per_tx_limit_by_origin.get(origin.lower())

    def to_dict(self) -> dict[str, Any]:
        return {
            "networks_allow": list(self.networks_allow),
            "assets_allow": {k: list(v) for k, v in self.assets_allow.items()},
            "per_tx_limit_by_origin": {k: str(v) for k, v in self.per_tx_limit_by_origin.items()},
            "unknown_origin_needs_approval": self.unknown_origin_needs_approval,
            "auto_approve_under": str(self.auto_approve_under),
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "Policy":
        return cls().merged(payload)

    def merged(self, patch: Any) -> "Policy":
        """Return a new policy with the fields present in ``patch`` replaced."""
        if not isinstance(patch, Mapping):
            raise PolicyValidationError("policy must be an object")
        known = {
            "networks_allow",
            "assets_allow",
            "per_tx_limit_by_origin",
            "unknown_origin_needs_approval",
            "auto_approve_under",
        }
        unknown = sorted(set(patch) - known)
        if unknown:
            raise PolicyValidationError(f"Unknown policy field(s): {', '.join(unknown)}")

        data = self.to_dict()
        data.update(patch)
        return type(self)(
            networks_allow=_parse_str_list(data["networks_allow"], "networks_allow"),
            assets_allow=_parse_assets(data["assets_allow"]),
            per_tx_limit_by_origin=_parse_origin_limits(data["per_tx_limit_by_origin"]),
            unknown_origin_needs_approval=_parse_bool(
                data["unknown_origin_needs_approval"], "unknown_origin_needs_approval"
            ),
            auto_approve_under=_parse_amount(data["auto_approve_under"], "auto_approve_under"),
        )


def _parse_str_list(value: Any, name: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) and v.strip() for v in value):
        raise PolicyValidationError(f"{name} must be a list of non-empty strings")
    return [v.strip() for v in value]


def _parse_assets(value: Any) -> dict[str, list[str]]:
    if not isinstance(value, Mapping):
        raise PolicyValidationError("assets_allow must map network -> list of asset addresses")
    return {str(network): _parse_str_list(assets, f"assets_allow[{network}]") for network, assets in value.items()}


def _parse_origin_limits(value: Any) -> dict[str, int]:
    if not isinstance(value, Mapping):
        raise PolicyValidationError("per_tx_limit_by_origin must map host -> amount")
    return {
        str(origin).strip().lower(): _parse_amount(limit, f"per_tx_limit_by_origin[{origin}]")
        for origin, limit in value.items()
    }


def _parse_amount(value: Any, name: str) -> int:
    try:
        return parse_atomic_units(value, name)
    except ValueError as e:
        raise PolicyValidationError(str(e)) from e


def _parse_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise PolicyValidationError(f"{name} must be a boolean")
    return value


def origin_host(url: str) -> Optional[str]:
    """Host plus explicit port, lower-cased; None when the URL has no host."""
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
        port = parts.port
    except ValueError:
        return None
    if not hostname:
        return None
    if port is None or _DEFAULT_PORTS.get(parts.scheme.lower()) == port:
        return hostname
    return f"{hostname}:{port}"


def same_origin(a: str, b: str) -> bool:
    host_a = origin_host(a)
    return host_a is not None and host_a == origin_host(b)


def evaluate(
    requirement: PaymentRequirement,
    intent: PaymentIntent,
    policy: Policy,
    options: Optional[AuthorizeOptions] = None,
) -> PolicyDecision:
    """Decide allow / needs approval / deny for one payment requirement."""
    if requirement.scheme != EXACT_SCHEME:
        return PolicyDecision.denied(PolicyReason.UNSUPPORTED_SCHEME)
    if requirement.network not in policy.networks_allow:
        return PolicyDecision.denied(PolicyReason.UNSUPPORTED_NETWORK)
    if requirement.asset.lower() not in policy.allowed_assets(requirement.network):
        return PolicyDecision.denied(PolicyReason.UNSUPPORTED_ASSET)

    # The resource being paid for must be the one being requested.
    if not same_origin(requirement.resource, intent.http_url):
        return PolicyDecision.denied(PolicyReason.ORIGIN_MISMATCH)

    requested = requirement.max_amount_required
    limit = policy.origin_limit(origin_host(requirement.resource) or "")
    if limit is not None:
        if requested > limit:
            return PolicyDecision.approval_required(PolicyReason.OVER_PER_TX_LIMIT)
    elif policy.unknown_origin_needs_approval:
        return PolicyDecision.approval_required(PolicyReason.UNKNOWN_ORIGIN)

    if options is not None and options.require_user_approval:
        return PolicyDecision.approval_required(PolicyReason.USER_FORCED_APPROVAL)

    if policy.auto_approve_under > 0 and requested <= policy.auto_approve_under:
        return PolicyDecision.allowed()

    return PolicyDecision.allowed()
