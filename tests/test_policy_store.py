"""Tests for policy persistence."""

import json

import pytest

from paywarden.errors import PolicyValidationError, StorageError
from paywarden.policy import Policy
from paywarden.policy_store import PolicyStore


def test_missing_file_gives_default_policy(tmp_path):
    store = PolicyStore(tmp_path / "policy.json")
    assert store.policy == Policy()
    assert not store.path.exists()


def test_update_persists_and_swaps(tmp_path):
    path = tmp_path / "policy.json"
    store = PolicyStore(path)
    store.update({"auto_approve_under": "10000", "per_tx_limit_by_origin": {"API.x.com": "2500"}})

    assert store.policy.auto_approve_under == 10_000
    assert store.policy.per_tx_limit_by_origin == {"api.x.com": 2500}
    on_disk = json.loads(path.read_text())
    assert on_disk["auto_approve_under"] == "10000"
    assert PolicyStore(path).policy == store.policy


def test_invalid_update_leaves_policy_untouched(tmp_path):
    store = PolicyStore(tmp_path / "policy.json")
    before = store.policy
    with pytest.raises(PolicyValidationError):
        store.update({"networks_allow": "base"})
    assert store.policy == before
    assert not store.path.exists()


def test_replace_resets_missing_fields_to_defaults(tmp_path):
    store = PolicyStore(tmp_path / "policy.json")
    store.update({"auto_approve_under": "77"})
    store.replace({"unknown_origin_needs_approval": True})
    assert store.policy.auto_approve_under == 0
    assert store.policy.unknown_origin_needs_approval is True


def test_corrupt_file_is_reported(tmp_path):
    path = tmp_path / "policy.json"
    path.write_text(json.dumps({"auto_approve_under": -1}))
    with pytest.raises(PolicyValidationError, match="Invalid policy file"):
        PolicyStore(path)


def test_unreadable_file_is_storage_error(tmp_path):
    path = tmp_path / "policy.json"
    path.write_text("{not json")
    with pytest.raises(StorageError, match="Cannot read"):
        PolicyStore(path)
