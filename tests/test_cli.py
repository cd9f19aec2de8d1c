"""CLI tests: key hygiene, policy, approvals and authorize."""

import json

import pytest
from click.testing import CliRunner

from paywarden.approvals import ApprovalLedger
from paywarden.cli import main


@pytest.fixture
def env(tmp_path):
    return {
        "PAYWARDEN_DATA_DIR": str(tmp_path / "data"),
        "PAYWARDEN_AUDIT_HMAC_KEY": "test-audit-key",
        "PAYWARDEN_KDF": "sha256",
        "PAYWARDEN_PASSPHRASE": "",
        "PAYWARDEN_PRIVATE_KEY": "",
    }


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def challenge_file(tmp_path, make_challenge):
    path = tmp_path / "challenge.json"
    path.write_text(json.dumps(make_challenge()))
    return path


def _authorize(runner, env, challenge_file, *extra):
    return runner.invoke(
        main,
        ["authorize", str(challenge_file), "--url", "https://api.x.com/data", "--why", "report data", *extra],
        env=env,
    )


class TestWalletCommands:
    def test_rejects_raw_key_on_argv(self, runner, env, private_key):
        result = runner.invoke(main, ["wallet", "load", "--private-key", private_key], env=env)
        assert result.exit_code != 0
        assert "Refusing --private-key from argv" in result.output

    def test_load_via_prompt_then_unlock(self, runner, env, private_key, account):
        result = runner.invoke(main, ["wallet", "load"], input=f"{private_key}\npw\npw\n", env=env)
        assert result.exit_code == 0, result.output
        assert account.address in result.output
        assert private_key not in result.output

        status = runner.invoke(main, ["wallet", "status"], env=env)
        assert json.loads(status.stdout) == {"has_key": True, "unlocked": False, "address": None}

        assert runner.invoke(main, ["wallet", "unlock"], input="wrong\n", env=env).exit_code == 1
        unlocked = runner.invoke(main, ["wallet", "unlock"], input="pw\n", env=env)
        assert unlocked.exit_code == 0
        assert account.address in unlocked.output

    def test_key_from_env_is_accepted(self, runner, env, private_key):
        env = {**env, "PAYWARDEN_PRIVATE_KEY": private_key, "PAYWARDEN_PASSPHRASE": "pw"}
        result = runner.invoke(main, ["wallet", "load"], env=env)
        assert result.exit_code == 0, result.output

    def test_invalid_key(self, runner, env):
        result = runner.invoke(main, ["wallet", "load"], input="0x1234\npw\npw\n", env=env)
        assert result.exit_code == 1
        assert "invalid_private_key" in result.output

    def test_clear(self, runner, env, private_key, tmp_path):
        runner.invoke(main, ["wallet", "load"], input=f"{private_key}\npw\npw\n", env=env)
        result = runner.invoke(main, ["wallet", "clear", "--yes"], env=env)
        assert result.exit_code == 0
        assert not (tmp_path / "data" / "wallet.key.enc").exists()


class TestPolicyCommands:
    def test_show_default(self, runner, env):
        result = runner.invoke(main, ["policy", "show"], env=env)
        assert json.loads(result.stdout)["auto_approve_under"] == "0"

    def test_update(self, runner, env):
        result = runner.invoke(main, ["policy", "update", '{"auto_approve_under": "10000"}'], env=env)
        assert result.exit_code == 0, result.output
        shown = json.loads(runner.invoke(main, ["policy", "show"], env=env).stdout)
        assert shown["auto_approve_under"] == "10000"

    def test_update_rejects_invalid(self, runner, env):
        result = runner.invoke(main, ["policy", "update", '{"auto_approve_under": 0.5}'], env=env)
        assert result.exit_code == 1

    def test_set_from_file(self, runner, env, tmp_path):
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({"networks_allow": ["base-sepolia"]}))
        result = runner.invoke(main, ["policy", "set", str(path)], env=env)
        assert result.exit_code == 0, result.output
        assert '"base-sepolia"' in result.output


class TestAuthorize:
    def test_authorized_with_env_key(self, runner, env, private_key, challenge_file, account):
        result = _authorize(runner, {**env, "PAYWARDEN_PRIVATE_KEY": private_key}, challenge_file)
        assert result.exit_code == 0, result.output
        body = json.loads(result.stdout)
        assert body["status"] == "ok"
        assert body["envelope"]["payload"]["authorization"]["from"] == account.address

    def test_unlocks_stored_key(self, runner, env, private_key, challenge_file):
        runner.invoke(main, ["wallet", "load"], input=f"{private_key}\npw\npw\n", env=env)
        result = _authorize(runner, {**env, "PAYWARDEN_PASSPHRASE": "pw"}, challenge_file)
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["status"] == "ok"

    def test_no_wallet_exits_nonzero(self, runner, env, challenge_file):
        result = _authorize(runner, env, challenge_file)
        assert result.exit_code == 1
        assert json.loads(result.stdout)["code"] == "wallet_not_configured"

    def test_approval_round_trip(self, runner, env, private_key, challenge_file, tmp_path):
        env = {**env, "PAYWARDEN_PRIVATE_KEY": private_key}
        runner.invoke(main, ["policy", "update", '{"unknown_origin_needs_approval": true}'], env=env)

        first = _authorize(runner, env, challenge_file)
        assert first.exit_code == 0
        pending = json.loads(first.stdout)
        assert pending["status"] == "need_approval"

        listed = runner.invoke(main, ["approvals", "list", "--status", "pending"], env=env)
        assert pending["approval_id"] in listed.output

        approved = runner.invoke(main, ["approvals", "approve", pending["approval_id"]], env=env)
        assert approved.exit_code == 0
        assert runner.invoke(main, ["approvals", "deny", pending["approval_id"]], env=env).exit_code == 1

        second = _authorize(runner, env, challenge_file, "--approval-id", pending["approval_id"])
        assert json.loads(second.stdout)["status"] == "ok"

        record = ApprovalLedger(tmp_path / "data" / "approvals.json").get(pending["approval_id"])
        assert record.status == "approved"

    def test_audit_lists_decisions(self, runner, env, private_key, challenge_file):
        _authorize(runner, {**env, "PAYWARDEN_PRIVATE_KEY": private_key}, challenge_file)
        _authorize(runner, env, challenge_file)
        summary = json.loads(runner.invoke(main, ["audit", "--summary"], env=env).stdout)
        assert summary["by_decision"] == {"ok": 1, "error": 1}


def test_serve_reports_bad_settings(runner, env):
    result = runner.invoke(main, ["serve"], env={**env, "PAYWARDEN_KDF": "md5"})
    assert result.exit_code == 1
    assert "Unknown key derivation: md5" in result.output
