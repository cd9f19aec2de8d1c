"""Local storage hardening helpers."""

from __future__ import annotations

import fcntl
import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from .errors import StorageError


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, 0o700)


def ensure_private_file(path: Path) -> None:
    if not path.exists():
        path.touch()
    os.chmod(path, 0o600)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write via temp file + rename so readers never see a partial file."""
    tmp_path = path.with_suffix(path.suffix + f".tmp.{os.getpid()}")
    try:
        ensure_private_dir(path.parent)
        with open(tmp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, path)
    except OSError as e:
        raise StorageError(f"Cannot write {path}: {e}") from e


def atomic_write_json(path: Path, payload: Any) -> None:
    data = json.dumps(payload, indent=2, sort_keys=True).encode("utf-8")
    atomic_write_bytes(path, data)


def read_json(path: Path, default: Any = None) -> Any:
    try:
        if not path.exists() or path.stat().st_size == 0:
            return default
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise StorageError(f"Cannot read {path}: {e}") from e


@contextmanager
def file_lock(lock_path: Path) -> Iterator[None]:
    """Exclusive advisory lock shared by every process using the same path."""
    try:
        ensure_private_dir(lock_path.parent)
        ensure_private_file(lock_path)
        lockf = open(lock_path, "r+")
    except OSError as e:
        raise StorageError(f"Cannot open lock file {lock_path}: {e}") from e
    with lockf:
        fcntl.flock(lockf.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lockf.fileno(), fcntl.LOCK_UN)
