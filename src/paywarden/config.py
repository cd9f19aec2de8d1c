"""Environment-driven settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import InvalidRequestError

DEFAULT_DATA_DIR = Path.home() / ".paywarden"
DEFAULT_WEB_HOST = "127.0.0.1"
DEFAULT_WEB_PORT = 3078


@dataclass(frozen=True)
class Settings:
    data_dir: Path = DEFAULT_DATA_DIR
    web_host: str = DEFAULT_WEB_HOST
    web_port: int = DEFAULT_WEB_PORT
    public_url: Optional[str] = None
    kdf: str = "scrypt"
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        port_raw = env.get("PAYWARDEN_WEB_PORT", str(DEFAULT_WEB_PORT))
        try:
            port = int(port_raw)
        except ValueError as e:
            raise InvalidRequestError(f"PAYWARDEN_WEB_PORT must be an integer, got {port_raw!r}") from e
        data_dir = env.get("PAYWARDEN_DATA_DIR")
        return cls(
            data_dir=Path(data_dir).expanduser() if data_dir else DEFAULT_DATA_DIR,
            web_host=env.get("PAYWARDEN_WEB_HOST", DEFAULT_WEB_HOST),
            web_port=port,
            public_url=env.get("PAYWARDEN_PUBLIC_URL") or None,
            kdf=env.get("PAYWARDEN_KDF", "scrypt"),
            log_level=env.get("PAYWARDEN_LOG_LEVEL", "WARNING").upper(),
        )

    @property
    def key_path(self) -> Path:
        return self.data_dir / "wallet.key.enc"

    @property
    def approvals_path(self) -> Path:
        return self.data_dir / "approvals.json"

    @property
    def policy_path(self) -> Path:
        return self.data_dir / "policy.json"

    @property
    def audit_path(self) -> Path:
        return self.data_dir / "audit.jsonl"

    @property
    def audit_key_path(self) -> Path:
        return self.data_dir / "secrets" / "audit_hmac.key"

    @property
    def consent_base_url(self) -> str:
        return (self.public_url or f"http://localhost:{self.web_port}").rstrip("/")
