"""Tests for grant signing, share codes, and verification."""

import base64
import json

import pytest
from eth_account import Account

from zkstash.errors import GrantError, InvalidDurationError, InvalidShareCodeError
from zkstash.grants import (
    DEFAULT_GRANT_TTL_SECONDS,
    SHARE_CODE_PREFIX,
    GrantPayload,
    GrantSet,
    SignedGrant,
    create_grant,
    grant_from_share_code,
    grant_to_share_code,
    parse_duration,
    resolve_expiry,
    sign_grant,
    verify_grant,
)
from zkstash.signer import EvmSigner, SolanaSigner


NOW = 1_700_000_000


@pytest.fixture
def evm_signer():
    return EvmSigner(Account.create())


@pytest.fixture
def sol_signer():
    return SolanaSigner.generate()


@pytest.fixture
def grantee():
    return Account.create().address


class TestParseDuration:
    @pytest.mark.parametrize(
        "text,seconds",
        [
            ("30s", 30),
            ("5m", 300),
            ("24h", 86400),
            ("7d", 604800),
            ("2w", 1209600),
            ("0s", 0),
        ],
    )
    def test_valid(self, text, seconds):
        assert parse_duration(text) == seconds

    @pytest.mark.parametrize("text", ["", "7", "d7", "7x", "7D", " 7d", "7d ", "1.5h", "-1d"])
    def test_invalid(self, text):
        with pytest.raises(InvalidDurationError, match="Invalid duration"):
            parse_duration(text)

    def test_invalid_is_value_error(self):
        with pytest.raises(ValueError):
            parse_duration("soon")


class TestResolveExpiry:
    def test_default_is_seven_days(self):
        assert resolve_expiry(now=NOW) == NOW + DEFAULT_GRANT_TTL_SECONDS

    def test_duration_string(self):
        assert resolve_expiry(expires_in="2h", now=NOW) == NOW + 7200

    def test_raw_seconds(self):
        assert resolve_expiry(expires_in=90, now=NOW) == NOW + 90

    def test_absolute_wins(self):
        assert resolve_expiry(expires_in="2h", expires_at=NOW + 5, now=NOW) == NOW + 5


class TestShareCodes:
    def test_round_trip(self, evm_signer, grantee):
        grant, code = create_grant(evm_signer, grantee, agent_id="agent-1", expires_in="1d", now=NOW)
        assert code.startswith(SHARE_CODE_PREFIX)
        assert grant_from_share_code(code) == grant

    def test_url_safe_without_padding(self, sol_signer, grantee):
        _, code = create_grant(sol_signer, grantee, subject_id="user-42", now=NOW)
        body = code[len(SHARE_CODE_PREFIX):]
        assert "=" not in body and "+" not in body and "/" not in body

    def test_wrong_prefix_rejected(self, evm_signer, grantee):
        _, code = create_grant(evm_signer, grantee, now=NOW)
        with pytest.raises(InvalidShareCodeError, match="must start with zkg1_"):
            grant_from_share_code("zkg2_" + code[len(SHARE_CODE_PREFIX):])

    def test_garbage_body_rejected(self):
        with pytest.raises(InvalidShareCodeError):
            grant_from_share_code(SHARE_CODE_PREFIX + "!!!not-base64!!!")

    def test_non_grant_json_rejected(self):
        body = base64.urlsafe_b64encode(json.dumps({"hello": "world"}).encode()).decode().rstrip("=")
        with pytest.raises(GrantError):
            grant_from_share_code(SHARE_CODE_PREFIX + body)

    def test_chain_tag_must_match_grantor(self, evm_signer, grantee):
        grant = sign_grant(evm_signer, g=grantee, e=NOW + 60)
        forged = {**grant.to_dict(), "c": "sol"}
        body = base64.urlsafe_b64encode(json.dumps(forged).encode()).decode().rstrip("=")
        with pytest.raises(GrantError, match="does not match"):
            grant_from_share_code(SHARE_CODE_PREFIX + body)


class TestSignAndVerify:
    def test_evm_grant_verifies(self, evm_signer, grantee):
        grant, _ = create_grant(evm_signer, grantee, agent_id="agent-1", now=NOW)
        assert grant.c == "evm"
        assert grant.p.f == evm_signer.address
        assert grant.s.startswith("0x")
        valid, reason = verify_grant(grant, now=NOW)
        assert valid, reason

    def test_solana_grant_verifies(self, sol_signer, grantee):
        grant, _ = create_grant(sol_signer, grantee, subject_id="user-1", now=NOW)
        assert grant.c == "sol"
        base64.b64decode(grant.s, validate=True)
        valid, reason = verify_grant(grant, now=NOW)
        assert valid, reason

    def test_grant_survives_share_code(self, sol_signer, grantee):
        _, code = create_grant(sol_signer, grantee, now=NOW)
        valid, _ = verify_grant(grant_from_share_code(code), now=NOW)
        assert valid

    def test_expired_grant_rejected(self, evm_signer, grantee):
        grant = sign_grant(evm_signer, g=grantee, e=NOW)
        valid, reason = verify_grant(grant, now=NOW)
        assert not valid
        assert "expired" in reason

    def test_tampered_payload_rejected(self, evm_signer, grantee):
        grant = sign_grant(evm_signer, g=grantee, e=NOW + 3600)
        tampered = SignedGrant(p=GrantPayload(f=grant.p.f, g=grant.p.g, e=NOW + 999999), s=grant.s, c=grant.c)
        valid, reason = verify_grant(tampered, now=NOW)
        assert not valid
        assert "mismatch" in reason

    def test_tampered_solana_payload_rejected(self, sol_signer, grantee):
        grant = sign_grant(sol_signer, g=grantee, e=NOW + 3600, a="agent-1")
        tampered = SignedGrant(p=GrantPayload(f=grant.p.f, g=grant.p.g, e=grant.p.e, a="agent-2"), s=grant.s, c=grant.c)
        valid, reason = verify_grant(tampered, now=NOW)
        assert not valid
        assert "invalid signature" in reason

    def test_signature_from_other_wallet_rejected(self, evm_signer, grantee):
        other = EvmSigner(Account.create())
        grant = sign_grant(evm_signer, g=grantee, e=NOW + 3600)
        forged = sign_grant(other, g=grantee, e=NOW + 3600)
        valid, _ = verify_grant(SignedGrant(p=grant.p, s=forged.s, c="evm"), now=NOW)
        assert not valid

    def test_malformed_signature_is_a_result(self, evm_signer, grantee):
        grant = sign_grant(evm_signer, g=grantee, e=NOW + 3600)
        valid, reason = verify_grant(SignedGrant(p=grant.p, s="0xdeadbeef", c="evm"), now=NOW)
        assert not valid
        assert reason.startswith("Signature verification failed")

    def test_grantee_required(self, evm_signer):
        with pytest.raises(GrantError):
            create_grant(evm_signer, "", now=NOW)

    def test_bad_duration_raises(self, evm_signer, grantee):
        with pytest.raises(InvalidDurationError):
            create_grant(evm_signer, grantee, expires_in="forever", now=NOW)


class TestGrantPayload:
    def test_to_dict_omits_unset_scope(self):
        assert GrantPayload(f="0xA", g="0xB", e=1).to_dict() == {"f": "0xA", "g": "0xB", "e": 1}

    def test_from_dict_rejects_unknown_fields(self):
        with pytest.raises(GrantError, match="Unknown"):
            GrantPayload.from_dict({"f": "0xA", "g": "0xB", "e": 1, "x": "?"})

    def test_from_dict_rejects_string_expiry(self):
        with pytest.raises(GrantError):
            GrantPayload.from_dict({"f": "0xA", "g": "0xB", "e": "1"})


class TestGrantSet:
    def test_add_dedupes_by_payload(self, evm_signer, grantee):
        grant, code = create_grant(evm_signer, grantee, now=NOW)
        grants = GrantSet()
        grants.add(grant)
        grants.add(code)
        assert len(grants) == 1
        assert grant in grants

    def test_remove_by_share_code(self, evm_signer, grantee):
        grant, code = create_grant(evm_signer, grantee, now=NOW)
        other, _ = create_grant(evm_signer, grantee, agent_id="agent-2", now=NOW)
        grants = GrantSet([grant, other])
        assert grants.remove(code) is True
        assert grants.grants() == [other]
        assert grants.remove(code) is False

    def test_merged_with_keeps_order_and_dedupes(self, evm_signer, grantee):
        first, _ = create_grant(evm_signer, grantee, agent_id="a", now=NOW)
        second, _ = create_grant(evm_signer, grantee, agent_id="b", now=NOW)
        grants = GrantSet([first])
        assert grants.merged_with([second, first]) == [first, second]
        assert len(grants) == 1

    def test_invalid_share_code_rejected(self):
        with pytest.raises(InvalidShareCodeError):
            GrantSet(["nope"])
