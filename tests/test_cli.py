"""CLI tests: key handling, grants, attestations, helpers."""

import json

import pytest
from click.testing import CliRunner
from eth_account import Account

from zkstash import __version__
from zkstash.attestation import compute_memory_hash
from zkstash.cli import main
from zkstash.grants import create_grant, grant_from_share_code
from zkstash.signer import EvmSigner


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def grantor_key():
    return "0x" + bytes(Account.create().key).hex()


@pytest.fixture
def grantee():
    return Account.create().address


def test_version(runner):
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


class TestGrantCreate:
    def test_rejects_raw_key_on_argv(self, runner, grantor_key, grantee):
        result = runner.invoke(main, ["grant", "create", "--private-key", grantor_key, "--grantee", grantee])
        assert result.exit_code != 0
        assert "Refusing --private-key from argv" in result.output

    def test_prompted_key(self, runner, grantor_key, grantee):
        result = runner.invoke(
            main,
            ["grant", "create", "--grantee", grantee, "--agent-id", "agent-1", "--expires-in", "1d"],
            input=grantor_key + "\n",
        )
        assert result.exit_code == 0, result.output
        assert "Grant created (evm)" in result.output

        code = result.output.strip().splitlines()[-1]
        grant = grant_from_share_code(code)
        assert grant.p.f == Account.from_key(grantor_key).address
        assert grant.p.g == grantee
        assert grant.p.a == "agent-1"

    def test_unsafe_flag_allows_argv_key(self, runner, grantor_key, grantee):
        result = runner.invoke(
            main,
            ["grant", "create", "--private-key", grantor_key, "--unsafe-allow-key-arg", "--grantee", grantee],
        )
        assert result.exit_code == 0, result.output
        assert result.output.strip().splitlines()[-1].startswith("zkg1_")

    def test_bad_duration(self, runner, grantor_key, grantee):
        result = runner.invoke(
            main,
            ["grant", "create", "--grantee", grantee, "--expires-in", "soon"],
            input=grantor_key + "\n",
        )
        assert result.exit_code == 1
        assert "Invalid duration" in result.output


class TestGrantInspectVerify:
    def test_inspect(self, runner, grantee):
        grant, code = create_grant(EvmSigner(Account.create()), grantee, subject_id="user-1")
        result = runner.invoke(main, ["grant", "inspect", code])
        assert result.exit_code == 0
        assert json.loads(result.output) == grant.to_dict()

    def test_inspect_bad_code(self, runner):
        result = runner.invoke(main, ["grant", "inspect", "zkg2_abc"])
        assert result.exit_code == 1
        assert "must start with zkg1_" in result.output

    def test_verify_valid(self, runner, grantee):
        _, code = create_grant(EvmSigner(Account.create()), grantee)
        result = runner.invoke(main, ["grant", "verify", code])
        assert result.exit_code == 0
        assert "Grant is valid" in result.output

    def test_verify_expired(self, runner, grantee):
        _, code = create_grant(EvmSigner(Account.create()), grantee, expires_at=1)
        result = runner.invoke(main, ["grant", "verify", code])
        assert result.exit_code == 1
        assert "expired" in result.output


class TestAttestationVerify:
    def test_expired_file(self, runner, tmp_path):
        path = tmp_path / "attestation.json"
        path.write_text(json.dumps({"attestation": {"claim": "c", "expiresAt": 1}, "signature": "AAAA"}))
        result = runner.invoke(main, ["attestation", "verify", str(path), "--api-url", "https://unreachable.invalid"])
        assert result.exit_code == 1
        assert "attestation_expired" in result.output

    def test_malformed_file(self, runner, tmp_path):
        path = tmp_path / "attestation.json"
        path.write_text(json.dumps({"claim": "c"}))
        result = runner.invoke(main, ["attestation", "verify", str(path)])
        assert result.exit_code == 1
        assert "must contain" in result.output


class TestHelpers:
    def test_memory_hash(self, runner):
        result = runner.invoke(main, ["memory-hash", "--kind", "note", "--agent-id", "a1", "--data", '{"x": 1}'])
        assert result.exit_code == 0
        assert result.output.strip() == compute_memory_hash("note", {"x": 1}, "a1")

    def test_memory_hash_bad_json(self, runner):
        result = runner.invoke(main, ["memory-hash", "--kind", "note", "--agent-id", "a1", "--data", "{"])
        assert result.exit_code == 1

    def test_duration(self, runner):
        result = runner.invoke(main, ["duration", "2h"])
        assert result.exit_code == 0
        assert result.output.strip() == "7200"

    def test_duration_invalid(self, runner):
        result = runner.invoke(main, ["duration", "2y"])
        assert result.exit_code == 1
        assert "Invalid duration" in result.output
