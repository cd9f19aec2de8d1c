"""Approval ledger persistence with lock-based compare-and-swap transitions."""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

from .errors import StorageError
from .storage import atomic_write_json, file_lock, read_json

logger = logging.getLogger(__name__)


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


@dataclass
class ApprovalRecord:
    """A human decision request. Timestamps are epoch milliseconds."""

    id: str
    status: str
    payload: dict[str, Any]
    created_at: int
    approved_at: Optional[int] = None
    denied_at: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING.value

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "status": self.status,
            "payload": self.payload,
            "created_at": self.created_at,
        }
        if self.approved_at is not None:
            data["approved_at"] = self.approved_at
        if self.denied_at is not None:
            data["denied_at"] = self.denied_at
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ApprovalRecord":
        status = str(data["status"])
        if status not in {member.value for member in ApprovalStatus}:
            raise ValueError(f"Invalid approval status: {status}")
        return cls(
            id=str(data["id"]),
            status=status,
            payload=dict(data.get("payload") or {}),
            created_at=int(data["created_at"]),
            approved_at=int(data["approved_at"]) if data.get("approved_at") is not None else None,
            denied_at=int(data["denied_at"]) if data.get("denied_at") is not None else None,
        )


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_approval_id() -> str:
    return f"appr_{secrets.token_hex(6)}"


class ApprovalLedger:
    """
    File-backed approval table.

    Every operation re-reads the table under an exclusive lock, so a consent
    click handled by the web server and a re-submission from the CLI observe
    the same state. A transition happens only if the record is still pending
    at the moment the lock is held; whoever gets there first wins and later
    calls return the already-resolved record untouched.
    """

    def __init__(self, path: Path):
        self.path = path
        self._lock_path = path.with_name(path.name + ".lock")

    def _load(self) -> dict[str, ApprovalRecord]:
        raw = read_json(self.path, default={})
        if not isinstance(raw, dict):
            raise StorageError(f"Approval table is malformed: {self.path}")
        try:
            return {approval_id: ApprovalRecord.from_dict(item) for approval_id, item in raw.items()}
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Approval table is malformed: {self.path}: {e}") from e

    def _save(self, table: dict[str, ApprovalRecord]) -> None:
        atomic_write_json(self.path, {approval_id: rec.to_dict() for approval_id, rec in table.items()})

    def create(self, payload: Mapping[str, Any]) -> ApprovalRecord:
        with file_lock(self._lock_path):
            table = self._load()
            approval_id = _new_approval_id()
            while approval_id in table:
                approval_id = _new_approval_id()
            record = ApprovalRecord(
                id=approval_id,
                status=ApprovalStatus.PENDING.value,
                payload=dict(payload),
                created_at=_now_ms(),
            )
            table[approval_id] = record
            self._save(table)
        logger.info("Approval created: %s (reason: %s)", approval_id, payload.get("reason"))
        return record

    def get(self, approval_id: str) -> Optional[ApprovalRecord]:
        with file_lock(self._lock_path):
            return self._load().get(approval_id)

    def list_approvals(self, status: Optional[ApprovalStatus] = None) -> list[ApprovalRecord]:
        with file_lock(self._lock_path):
            records = list(self._load().values())
        if status is not None:
            records = [r for r in records if r.status == status.value]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    def approve(self, approval_id: str) -> Optional[ApprovalRecord]:
        return self._resolve(approval_id, ApprovalStatus.APPROVED)

    def deny(self, approval_id: str) -> Optional[ApprovalRecord]:
        return self._resolve(approval_id, ApprovalStatus.DENIED)

    def _resolve(self, approval_id: str, outcome: ApprovalStatus) -> Optional[ApprovalRecord]:
        with file_lock(self._lock_path):
            table = self._load()
            record = table.get(approval_id)
            if record is None:
                return None
            if not record.is_pending:
                logger.info(
                    "Approval %s already %s; ignoring %s",
                    approval_id,
                    record.status,
                    outcome.value,
                )
                return record
            record.status = outcome.value
            if outcome is ApprovalStatus.APPROVED:
                record.approved_at = _now_ms()
            else:
                record.denied_at = _now_ms()
            self._save(table)
        logger.info("Approval %s: %s", outcome.value, approval_id)
        return record
