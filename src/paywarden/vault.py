"""
Key vault: the one place the agent's signing key lives.

The problem: an agent has to sign payment authorizations, but handing it
the private key means any compromised code path leaks the wallet.

The vault solves this by:
1. Holding the key in process memory only; disk holds an AES-GCM blob
2. Never returning the raw key, only a signer capability
3. Unlocking the persisted blob solely with a runtime passphrase
4. Wiping memory and disk together on clear()

Encrypted file layout: [16-byte salt][12-byte IV][AES-GCM ciphertext].
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from eth_account import Account
from eth_account.signers.local import LocalAccount

from .errors import (
    InvalidKeyFormatError,
    SignatureError,
    UnlockFailedError,
    WalletLockedError,
    WalletNotConfiguredError,
)
from .kdf import KeyDerivation, ScryptKdf
from .storage import atomic_write_bytes

logger = logging.getLogger(__name__)

SALT_LENGTH = 16
IV_LENGTH = 12

_PRIVATE_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class VaultStatus:
    has_key: bool
    unlocked: bool
    address: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"has_key": self.has_key, "unlocked": self.unlocked, "address": self.address}


def _account_from_key(key: str) -> LocalAccount:
    if not isinstance(key, str) or not _PRIVATE_KEY_RE.match(key):
        raise InvalidKeyFormatError("Private key must be 0x followed by 64 hex characters")
    try:
        return Account.from_key(key)
    except Exception as e:
        # Zero or out-of-range scalars pass the regex but are not valid keys.
        raise InvalidKeyFormatError("Private key is not a valid secp256k1 key") from e


class KeyVault:
    """
    Single-key vault with optional encrypted persistence.

    Usage:
        vault = KeyVault(Path("~/.paywarden/wallet.key.enc").expanduser())
        vault.load("0x...", passphrase="correct horse")   # memory + disk
        vault.clear()                                      # wipe both
        vault.unlock("correct horse")                      # disk -> memory
        signer = vault.signer()
    """

    def __init__(self, key_path: Path, kdf: Optional[KeyDerivation] = None):
        self.key_path = key_path
        self.kdf = kdf or ScryptKdf()
        self._account: Optional[LocalAccount] = None

    @property
    def is_unlocked(self) -> bool:
        return self._account is not None

    @property
    def has_persisted_key(self) -> bool:
        return self.key_path.exists()

    @property
    def address(self) -> Optional[str]:
        return self._account.address if self._account is not None else None

    def load(self, key: str, passphrase: Optional[str] = None) -> VaultStatus:
        """Load a key into memory, persisting an encrypted copy when a passphrase is given."""
        account = _account_from_key(key)
        if passphrase:
            atomic_write_bytes(self.key_path, self._encrypt(key, passphrase))
        self._account = account
        logger.info(
            "Wallet key loaded (address: %s, persisted: %s)",
            account.address,
            bool(passphrase),
        )
        return self.status()

    def unlock(self, passphrase: str) -> VaultStatus:
        """Decrypt the persisted key into memory."""
        if not self.key_path.exists():
            raise WalletNotConfiguredError("No encrypted wallet key to unlock")
        blob = self.key_path.read_bytes()
        try:
            key = self._decrypt(blob, passphrase)
            account = _account_from_key(key)
        except (InvalidTag, ValueError, UnicodeDecodeError, InvalidKeyFormatError) as e:
            logger.warning("Wallet unlock rejected")
            raise UnlockFailedError() from e
        self._account = account
        logger.info("Wallet key unlocked (address: %s)", account.address)
        return self.status()

    def clear(self) -> VaultStatus:
        """Wipe the key from memory and delete the persisted blob. Idempotent."""
        self._account = None
        self.key_path.unlink(missing_ok=True)
        logger.info("Wallet key cleared")
        return self.status()

    def status(self) -> VaultStatus:
        return VaultStatus(
            has_key=self.is_unlocked or self.has_persisted_key,
            unlocked=self.is_unlocked,
            address=self.address,
        )

    def signer(self) -> "VaultSigner":
        """Signing capability for the current key; raises if none is usable."""
        if self._account is None:
            if self.has_persisted_key:
                raise WalletLockedError()
            raise WalletNotConfiguredError()
        return VaultSigner(self)

    def _sign(self, full_message: dict[str, Any]) -> bytes:
        account = self._account
        if account is None:
            raise WalletLockedError("Wallet key was cleared before signing")
        try:
            signed = account.sign_typed_data(full_message=full_message)
        except Exception as e:
            raise SignatureError(f"EIP-712 signing failed: {type(e).__name__}: {e}") from e
        return bytes(signed.signature)

    def _encrypt(self, key: str, passphrase: str) -> bytes:
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        ciphertext = AESGCM(self.kdf.derive(passphrase, salt)).encrypt(iv, key.encode("utf-8"), None)
        return salt + iv + ciphertext

    def _decrypt(self, blob: bytes, passphrase: str) -> str:
        if len(blob) <= SALT_LENGTH + IV_LENGTH:
            raise ValueError("Encrypted key file is truncated")
        salt = blob[:SALT_LENGTH]
        iv = blob[SALT_LENGTH:SALT_LENGTH + IV_LENGTH]
        ciphertext = blob[SALT_LENGTH + IV_LENGTH:]
        plaintext = AESGCM(self.kdf.derive(passphrase, salt)).decrypt(iv, ciphertext, None)
        return plaintext.decode("utf-8")


class VaultSigner:
    """
    Capability object handed to the authorization builder.

    It exposes the public address and typed-data signing, nothing else.
    Signing goes back through the vault, so clearing the vault revokes
    every outstanding signer.
    """

    __slots__ = ("_vault", "_address")

    def __init__(self, vault: KeyVault):
        self._vault = vault
        self._address = vault.address

    @property
    def address(self) -> str:
        return self._address

    def sign_typed_data(self, full_message: dict[str, Any]) -> bytes:
        if self._vault.address != self._address:
            raise WalletLockedError("Wallet key changed since this signer was issued")
        return self._vault._sign(full_message)

    def __repr__(self) -> str:
        return f"VaultSigner(address={self._address})"
