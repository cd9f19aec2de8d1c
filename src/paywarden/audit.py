"""
Audit records for payment authorization decisions.

The orchestrator emits exactly one ``AuditRecord`` per call to whatever
``AuditSink`` it was given. ``AuditTrail`` is the file sink: append-only
JSONL with an HMAC hash chain so tampering is detected during reads.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import secrets
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Protocol

from .errors import AuditIntegrityError
from .storage import ensure_private_dir, ensure_private_file

AUDIT_HMAC_KEY_ENV = "PAYWARDEN_AUDIT_HMAC_KEY"

_CHAIN_FIELDS = {"prev_hash", "record_hash"}


class Decision(str, Enum):
    OK = "ok"
    NEED_APPROVAL = "need_approval"
    DENIED = "denied"
    ERROR = "error"


@dataclass
class AuditRecord:
    """A single authorization decision."""

    decision: str
    timestamp: float = field(default_factory=time.time)
    kind: str = "x402"
    code: Optional[str] = None
    reason: Optional[str] = None
    requirement: Optional[dict[str, Any]] = None
    intent: Optional[dict[str, Any]] = None
    address: Optional[str] = None
    approval_id: Optional[str] = None
    prev_hash: Optional[str] = None
    record_hash: Optional[str] = None

    def payload(self) -> dict[str, Any]:
        """Hashed content: every set field except the chain fields."""
        return {k: v for k, v in asdict(self).items() if v is not None and k not in _CHAIN_FIELDS}

    def to_json(self) -> str:
        d = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(d, separators=(",", ":"))


class AuditSink(Protocol):
    def record(self, record: AuditRecord) -> None: ...


class AuditTrail:
    """Tamper-evident append-only audit log."""

    def __init__(self, path: Path, key_path: Path):
        self.path = path
        self.key_path = key_path

        ensure_private_dir(self.path.parent)
        ensure_private_dir(self.key_path.parent)
        ensure_private_file(self.path)

        self._hmac_key = self._load_or_create_key()
        self._last_hash = self._scan_last_hash()

    def _load_or_create_key(self) -> bytes:
        env_key = os.getenv(AUDIT_HMAC_KEY_ENV)
        if env_key:
            return env_key.encode()
        if self.key_path.exists() and self.key_path.stat().st_size > 0:
            return self.key_path.read_bytes().strip()
        key = secrets.token_hex(32).encode()
        ensure_private_file(self.key_path)
        self.key_path.write_bytes(key)
        return key

    def _scan_last_hash(self) -> str:
        last = ""
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    last = json.loads(line).get("record_hash", "")
        return last

    def _record_hash(self, payload: dict[str, Any], prev_hash: str) -> str:
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        digest = hmac.new(self._hmac_key, f"{prev_hash}|{canonical}".encode(), hashlib.sha256)
        return digest.hexdigest()

    def record(self, record: AuditRecord) -> AuditRecord:
        prev_hash = self._last_hash
        record.prev_hash = prev_hash or None
        record.record_hash = self._record_hash(record.payload(), prev_hash)

        with open(self.path, "a", encoding="utf-8") as f:
            f.write(record.to_json() + "\n")
            f.flush()
            os.fsync(f.fileno())

        self._last_hash = record.record_hash
        return record

    def read_events(self, decision: Optional[Decision] = None, limit: int = 100) -> list[AuditRecord]:
        """Verify the whole chain and return the most recent matching records."""
        records: list[AuditRecord] = []
        expected_prev = ""
        with open(self.path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                raw = json.loads(line)
                prev_hash = raw.get("prev_hash", "") or ""
                record_hash = raw.get("record_hash", "") or ""
                if prev_hash != expected_prev:
                    raise AuditIntegrityError(f"Audit chain broken at line {lineno}: previous hash mismatch")
                payload = {k: v for k, v in raw.items() if k not in _CHAIN_FIELDS}
                if not hmac.compare_digest(self._record_hash(payload, prev_hash), record_hash):
                    raise AuditIntegrityError(f"Audit chain broken at line {lineno}: record hash mismatch")
                expected_prev = record_hash

                if decision is not None and raw.get("decision") != decision.value:
                    continue
                records.append(
                    AuditRecord(**{k: v for k, v in raw.items() if k in AuditRecord.__dataclass_fields__})
                )

        self._last_hash = expected_prev
        return records[-limit:] if limit > 0 else records

    def summary(self) -> dict[str, Any]:
        records = self.read_events(limit=0)
        by_decision: dict[str, int] = {}
        for r in records:
            by_decision[r.decision] = by_decision.get(r.decision, 0) + 1
        return {
            "total_records": len(records),
            "by_decision": by_decision,
            "signed_addresses": sorted({r.address for r in records if r.address}),
            "last_record": records[-1].payload() if records else None,
        }
