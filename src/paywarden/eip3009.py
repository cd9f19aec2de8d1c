"""
EIP-3009 TransferWithAuthorization building and signing for the x402
exact scheme.

The builder is deterministic apart from the nonce: for a fixed requirement,
clock and window every authorization field except ``nonce`` comes out the
same, and the signature follows from those fields.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any, Optional, Protocol

from eth_utils import is_address, to_checksum_address

from .errors import InvalidRequestError, MissingTokenMetadataError, UnsupportedNetworkError
from .models import EXACT_SCHEME, PaymentEnvelope, PaymentRequirement, TransferAuthorization
from .networks import network_to_chain_id

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60
NONCE_BYTES = 32

TRANSFER_WITH_AUTHORIZATION_TYPE = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
    {"name": "nonce", "type": "bytes32"},
]

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]


class TypedDataSigner(Protocol):
    """Anything that can sign EIP-712 typed data for one address."""

    @property
    def address(self) -> str: ...

    def sign_typed_data(self, full_message: dict[str, Any]) -> bytes: ...


def random_nonce() -> str:
    return "0x" + secrets.token_bytes(NONCE_BYTES).hex()


def validity_window(now: int, max_timeout_seconds: int, requested: Optional[int] = None) -> tuple[int, int]:
    """
    Return ``(valid_after, valid_before)``.

    ``valid_after`` is backdated one second to absorb clock skew, and the
    span never exceeds the counterparty's ``max_timeout_seconds``.
    """
    if max_timeout_seconds < 1:
        raise InvalidRequestError("maxTimeoutSeconds must be at least 1 to sign an authorization")
    span = max(1, min(requested or DEFAULT_WINDOW_SECONDS, max_timeout_seconds))
    valid_after = now - 1
    return valid_after, valid_after + span


def _checksum(address: str, name: str) -> str:
    if not is_address(address):
        raise InvalidRequestError(f"{name} is not a valid address: {address!r}")
    return to_checksum_address(address)


def build_authorization(
    from_address: str,
    requirement: PaymentRequirement,
    now: Optional[int] = None,
    window_seconds: Optional[int] = None,
) -> TransferAuthorization:
    now = int(time.time()) if now is None else now
    valid_after, valid_before = validity_window(now, requirement.max_timeout_seconds, window_seconds)
    return TransferAuthorization(
        from_address=_checksum(from_address, "from"),
        to=_checksum(requirement.pay_to, "payTo"),
        value=requirement.max_amount_required,
        valid_after=valid_after,
        valid_before=valid_before,
        nonce=random_nonce(),
    )


def build_typed_data(
    authorization: TransferAuthorization,
    requirement: PaymentRequirement,
    chain_id: int,
) -> dict[str, Any]:
    """Full EIP-712 message for ``Account.sign_typed_data(full_message=...)``."""
    if not requirement.extra.complete:
        raise MissingTokenMetadataError()
    domain = {
        "name": requirement.extra.name,
        "version": requirement.extra.version,
        "chainId": chain_id,
        "verifyingContract": _checksum(requirement.asset, "asset"),
    }
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_TYPE,
            "TransferWithAuthorization": TRANSFER_WITH_AUTHORIZATION_TYPE,
        },
        "primaryType": "TransferWithAuthorization",
        "domain": domain,
        "message": authorization.to_message(),
    }


def sign_authorization(
    signer: TypedDataSigner,
    authorization: TransferAuthorization,
    requirement: PaymentRequirement,
    chain_id: int,
) -> str:
    signature = signer.sign_typed_data(build_typed_data(authorization, requirement, chain_id))
    return "0x" + bytes(signature).hex()


def create_payment_envelope(
    signer: TypedDataSigner,
    requirement: PaymentRequirement,
    x402_version: int,
    window_seconds: Optional[int] = None,
    now: Optional[int] = None,
) -> PaymentEnvelope:
    """Build, sign and wrap an authorization for ``requirement``."""
    if requirement.scheme != EXACT_SCHEME:
        raise InvalidRequestError(f"Unsupported scheme: {requirement.scheme}")
    if not requirement.extra.complete:
        raise MissingTokenMetadataError()
    chain_id = network_to_chain_id(requirement.network)
    if chain_id is None:
        raise UnsupportedNetworkError(requirement.network)

    authorization = build_authorization(signer.address, requirement, now=now, window_seconds=window_seconds)
    signature = sign_authorization(signer, authorization, requirement, chain_id)
    logger.info(
        "Signed transfer authorization: %s -> %s value=%d network=%s",
        authorization.from_address,
        authorization.to,
        authorization.value,
        requirement.network,
    )
    return PaymentEnvelope(
        x402_version=x402_version,
        network=requirement.network,
        signature=signature,
        authorization=authorization,
    )
