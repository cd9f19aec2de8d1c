"""Policy persistence: load once, update explicitly."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, Optional

from .errors import PolicyValidationError
from .policy import Policy
from .storage import atomic_write_json, file_lock, read_json

logger = logging.getLogger(__name__)


class PolicyStore:
    """Holds the active policy in memory, backed by a JSON file."""

    def __init__(self, path: Path, initial: Optional[Policy] = None):
        self.path = path
        self._lock_path = path.with_name(path.name + ".lock")
        self._policy = initial if initial is not None else self._load()

    @property
    def policy(self) -> Policy:
        return self._policy

    def _load(self) -> Policy:
        raw = read_json(self.path)
        if raw is None:
            return Policy()
        try:
            return Policy.from_dict(raw)
        except PolicyValidationError as e:
            raise PolicyValidationError(f"Invalid policy file {self.path}: {e}") from e

    def update(self, patch: Mapping[str, Any]) -> Policy:
        """Validate and persist a partial update, then make it active."""
        updated = self._policy.merged(patch)
        with file_lock(self._lock_path):
            atomic_write_json(self.path, updated.to_dict())
        self._policy = updated
        logger.info("Policy updated (fields: %s)", ", ".join(sorted(patch)))
        return updated

    def replace(self, payload: Mapping[str, Any]) -> Policy:
        """Validate and persist a complete policy document."""
        replacement = Policy.from_dict(payload)
        with file_lock(self._lock_path):
            atomic_write_json(self.path, replacement.to_dict())
        self._policy = replacement
        logger.info("Policy replaced")
        return replacement
