"""
x402 wire types and caller-supplied request context.

Everything that crosses the process boundary is parsed here into frozen
dataclasses; the rest of the package only ever sees validated values.
Payment requirements use the x402 camelCase wire names, while caller
context (intent, selection, options) uses snake_case keys.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .amounts import parse_atomic_units
from .errors import InvalidRequestError

EXACT_SCHEME = "exact"
X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"


def _require_mapping(value: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise InvalidRequestError(f"{name} must be an object")
    return value


def _require_str(data: Mapping[str, Any], key: str, *, allow_empty: bool = True) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise InvalidRequestError(f"{key} is required and must be a string")
    if not allow_empty and not value.strip():
        raise InvalidRequestError(f"{key} must not be empty")
    return value


def _optional_str(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidRequestError(f"{key} must be a string")
    return value


def _optional_int(data: Mapping[str, Any], key: str, *, minimum: int) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRequestError(f"{key} must be an integer")
    if value < minimum:
        raise InvalidRequestError(f"{key} must be >= {minimum}")
    return value


def _reject_unknown(data: Mapping[str, Any], allowed: set[str], name: str) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise InvalidRequestError(f"Unknown {name} field(s): {', '.join(unknown)}")


@dataclass(frozen=True)
class TokenMetadata:
    """EIP-712 domain name/version of the asset contract."""

    name: Optional[str] = None
    version: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.name) and bool(self.version)

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in (("name", self.name), ("version", self.version)) if v is not None}


@dataclass(frozen=True)
class PaymentRequirement:
    """One accepted payment method offered by a counterparty."""

    scheme: str
    network: str
    max_amount_required: int
    resource: str
    description: str
    mime_type: str
    pay_to: str
    max_timeout_seconds: int
    asset: str
    extra: TokenMetadata = field(default_factory=TokenMetadata)
    output_schema: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "scheme": self.scheme,
            "network": self.network,
            "maxAmountRequired": str(self.max_amount_required),
            "resource": self.resource,
            "description": self.description,
            "mimeType": self.mime_type,
            "payTo": self.pay_to,
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "asset": self.asset,
            "extra": self.extra.to_dict(),
        }
        if self.output_schema is not None:
            data["outputSchema"] = self.output_schema
        return data

    @classmethod
    def from_dict(cls, payload: Any) -> "PaymentRequirement":
        data = _require_mapping(payload, "payment requirement")
        try:
            amount = parse_atomic_units(data.get("maxAmountRequired"), "maxAmountRequired")
        except ValueError as e:
            raise InvalidRequestError(str(e)) from e

        timeout = data.get("maxTimeoutSeconds")
        if isinstance(timeout, bool) or not isinstance(timeout, int) or timeout < 0:
            raise InvalidRequestError("maxTimeoutSeconds must be a non-negative integer")

        raw_extra = data.get("extra")
        if raw_extra is None:
            extra = TokenMetadata()
        else:
            extra_map = _require_mapping(raw_extra, "extra")
            extra = TokenMetadata(
                name=_optional_str(extra_map, "name"),
                version=_optional_str(extra_map, "version"),
            )

        output_schema = data.get("outputSchema")
        if output_schema is not None and not isinstance(output_schema, Mapping):
            raise InvalidRequestError("outputSchema must be an object or null")

        return cls(
            scheme=_require_str(data, "scheme"),
            network=_require_str(data, "network"),
            max_amount_required=amount,
            resource=_require_str(data, "resource"),
            description=_require_str(data, "description"),
            mime_type=_require_str(data, "mimeType"),
            pay_to=_require_str(data, "payTo"),
            max_timeout_seconds=timeout,
            asset=_require_str(data, "asset"),
            extra=extra,
            output_schema=dict(output_schema) if output_schema is not None else None,
        )


@dataclass(frozen=True)
class PaymentRequired:
    """Body of an HTTP 402 response."""

    x402_version: int
    accepts: tuple[PaymentRequirement, ...]
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "x402Version": self.x402_version,
            "accepts": [req.to_dict() for req in self.accepts],
        }
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, payload: Any) -> "PaymentRequired":
        data = _require_mapping(payload, "payment required")
        version = data.get("x402Version")
        if isinstance(version, bool) or not isinstance(version, int):
            raise InvalidRequestError("x402Version must be an integer")
        accepts = data.get("accepts")
        if not isinstance(accepts, list) or not accepts:
            raise InvalidRequestError("accepts must be a non-empty list")
        return cls(
            x402_version=version,
            accepts=tuple(PaymentRequirement.from_dict(item) for item in accepts),
            error=_optional_str(data, "error"),
        )


@dataclass(frozen=True)
class PaymentIntent:
    """Why the caller wants to pay. Used for policy and audit, never signed."""

    why: str
    http_method: str
    http_url: str
    caller: str
    trace_id: Optional[str] = None
    prompt_summary: Optional[str] = None

    _FIELDS = frozenset({"why", "http_method", "http_url", "caller", "trace_id", "prompt_summary"})

    def to_dict(self) -> dict[str, Any]:
        data = {
            "why": self.why,
            "http_method": self.http_method,
            "http_url": self.http_url,
            "caller": self.caller,
            "trace_id": self.trace_id,
            "prompt_summary": self.prompt_summary,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, payload: Any) -> "PaymentIntent":
        data = _require_mapping(payload, "intent")
        _reject_unknown(data, set(cls._FIELDS), "intent")
        return cls(
            why=_require_str(data, "why", allow_empty=False),
            http_method=_require_str(data, "http_method", allow_empty=False),
            http_url=_require_str(data, "http_url", allow_empty=False),
            caller=_require_str(data, "caller", allow_empty=False),
            trace_id=_optional_str(data, "trace_id"),
            prompt_summary=_optional_str(data, "prompt_summary"),
        )


@dataclass(frozen=True)
class SelectionHints:
    """Caller preferences for picking one of the offered requirements."""

    accept_index: Optional[int] = None
    scheme: Optional[str] = None
    network: Optional[str] = None
    asset: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Any) -> "SelectionHints":
        data = _require_mapping(payload, "selection")
        _reject_unknown(data, {"accept_index", "scheme", "network", "asset"}, "selection")
        return cls(
            accept_index=_optional_int(data, "accept_index", minimum=0),
            scheme=_optional_str(data, "scheme"),
            network=_optional_str(data, "network"),
            asset=_optional_str(data, "asset"),
        )


@dataclass(frozen=True)
class AuthorizeOptions:
    require_user_approval: bool = False
    approval_id: Optional[str] = None
    validity_window_seconds: Optional[int] = None
    preferred_network: Optional[str] = None
    preferred_asset: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Any) -> "AuthorizeOptions":
        data = _require_mapping(payload, "options")
        _reject_unknown(
            data,
            {
                "require_user_approval",
                "approval_id",
                "validity_window_seconds",
                "preferred_network",
                "preferred_asset",
            },
            "options",
        )
        forced = data.get("require_user_approval", False)
        if not isinstance(forced, bool):
            raise InvalidRequestError("require_user_approval must be a boolean")
        return cls(
            require_user_approval=forced,
            approval_id=_optional_str(data, "approval_id"),
            validity_window_seconds=_optional_int(data, "validity_window_seconds", minimum=1),
            preferred_network=_optional_str(data, "preferred_network"),
            preferred_asset=_optional_str(data, "preferred_asset"),
        )


@dataclass(frozen=True)
class TransferAuthorization:
    """EIP-3009 TransferWithAuthorization message."""

    from_address: str
    to: str
    value: int
    valid_after: int
    valid_before: int
    nonce: str

    def to_message(self) -> dict[str, Any]:
        """Typed-data message (integers for uint256 fields)."""
        return {
            "from": self.from_address,
            "to": self.to,
            "value": self.value,
            "validAfter": self.valid_after,
            "validBefore": self.valid_before,
            "nonce": self.nonce,
        }

    def to_dict(self) -> dict[str, str]:
        """Wire form: every numeric field as a decimal string."""
        return {
            "from": self.from_address,
            "to": self.to,
            "value": str(self.value),
            "validAfter": str(self.valid_after),
            "validBefore": str(self.valid_before),
            "nonce": self.nonce,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "TransferAuthorization":
        data = _require_mapping(payload, "authorization")
        try:
            return cls(
                from_address=_require_str(data, "from"),
                to=_require_str(data, "to"),
                value=parse_atomic_units(data.get("value"), "value"),
                valid_after=parse_atomic_units(data.get("validAfter"), "validAfter"),
                valid_before=parse_atomic_units(data.get("validBefore"), "validBefore"),
                nonce=_require_str(data, "nonce"),
            )
        except ValueError as e:
            raise InvalidRequestError(str(e)) from e


@dataclass(frozen=True)
class PaymentEnvelope:
    """Versioned wrapper carried in the X-PAYMENT header."""

    x402_version: int
    network: str
    signature: str
    authorization: TransferAuthorization
    scheme: str = EXACT_SCHEME

    def to_dict(self) -> dict[str, Any]:
        return {
            "x402Version": self.x402_version,
            "scheme": self.scheme,
            "network": self.network,
            "payload": {
                "signature": self.signature,
                "authorization": self.authorization.to_dict(),
            },
        }

    def to_header(self) -> str:
        raw = json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")
        return base64.b64encode(raw).decode("ascii")

    @classmethod
    def from_dict(cls, payload: Any) -> "PaymentEnvelope":
        data = _require_mapping(payload, "payment envelope")
        version = data.get("x402Version")
        if isinstance(version, bool) or not isinstance(version, int):
            raise InvalidRequestError("x402Version must be an integer")
        scheme = _require_str(data, "scheme")
        if scheme != EXACT_SCHEME:
            raise InvalidRequestError(f"Unsupported scheme: {scheme}")
        inner = _require_mapping(data.get("payload"), "payload")
        return cls(
            x402_version=version,
            network=_require_str(data, "network"),
            signature=_require_str(inner, "signature"),
            authorization=TransferAuthorization.from_dict(inner.get("authorization")),
            scheme=scheme,
        )

    @classmethod
    def from_header(cls, value: str) -> "PaymentEnvelope":
        try:
            raw = base64.b64decode(value.encode("ascii"), validate=True)
            return cls.from_dict(json.loads(raw))
        except (binascii.Error, UnicodeError, json.JSONDecodeError) as e:
            raise InvalidRequestError(f"Malformed {X_PAYMENT_HEADER} header: {e}") from e
