"""Passphrase-to-key derivation for the encrypted wallet file."""

from __future__ import annotations

import hashlib
from typing import Protocol

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

KEY_LENGTH = 32

_SCRYPT_N = 2**15
_SCRYPT_R = 8
_SCRYPT_P = 1


class KeyDerivation(Protocol):
    name: str

    def derive(self, passphrase: str, salt: bytes) -> bytes: ...


class ScryptKdf:
    """Memory-hard derivation; the default for newly written key files."""

    name = "scrypt"

    def __init__(self, n: int = _SCRYPT_N, r: int = _SCRYPT_R, p: int = _SCRYPT_P):
        self.n = n
        self.r = r
        self.p = p

    def derive(self, passphrase: str, salt: bytes) -> bytes:
        return Scrypt(salt=salt, length=KEY_LENGTH, n=self.n, r=self.r, p=self.p).derive(
            passphrase.encode("utf-8")
        )


class Sha256Kdf:
    """Single SHA-256 over passphrase||salt.

    Only for unlocking key files written by older deployments; it offers no
    resistance to offline guessing.
    """

    name = "sha256"

    def derive(self, passphrase: str, salt: bytes) -> bytes:
        return hashlib.sha256(passphrase.encode("utf-8") + salt).digest()


def get_kdf(name: str) -> KeyDerivation:
    normalized = name.strip().lower()
    if normalized == ScryptKdf.name:
        return ScryptKdf()
    if normalized == Sha256Kdf.name:
        return Sha256Kdf()
    raise ValueError(f"Unknown key derivation: {name} (expected scrypt or sha256)")
