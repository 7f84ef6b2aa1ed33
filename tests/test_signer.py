"""Tests for wallet signers and dual-scheme message signing."""

import base64

import base58
import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from eth_account import Account
from eth_account.messages import encode_defunct

from zkstash.errors import InvalidPrivateKeyError, SignerError
from zkstash.signer import (
    EvmSigner,
    SolanaSigner,
    chain_family,
    sign_message,
    sign_with_evm,
    sign_with_solana,
    signer_from_private_key,
)


HARDHAT_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
HARDHAT_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


@pytest.fixture
def sol_signer():
    return SolanaSigner.generate()


class TestChainFamily:
    def test_hex_prefix_is_evm(self):
        assert chain_family(HARDHAT_ADDRESS) == "evm"

    def test_base58_is_solana(self, sol_signer):
        assert chain_family(sol_signer.address) == "sol"


class TestSignerFromPrivateKey:
    def test_evm_from_hex(self):
        signer = signer_from_private_key(HARDHAT_KEY)
        assert isinstance(signer, EvmSigner)
        assert signer.address == HARDHAT_ADDRESS
        assert signer.family == "evm"

    def test_solana_from_64_byte_keypair(self, sol_signer):
        encoded = base58.b58encode(sol_signer.keypair_bytes()).decode()
        signer = signer_from_private_key(encoded)
        assert isinstance(signer, SolanaSigner)
        assert signer.address == sol_signer.address

    def test_solana_from_32_byte_seed(self, sol_signer):
        seed = sol_signer.keypair_bytes()[:32]
        signer = signer_from_private_key(base58.b58encode(seed).decode())
        assert signer.address == sol_signer.address
        assert signer.family == "sol"

    def test_keypair_with_wrong_public_half_rejected(self, sol_signer):
        other = SolanaSigner.generate()
        mixed = sol_signer.keypair_bytes()[:32] + other.public_key_bytes
        with pytest.raises(InvalidPrivateKeyError, match="does not match"):
            signer_from_private_key(base58.b58encode(mixed).decode())

    def test_malformed_hex_rejected(self):
        with pytest.raises(InvalidPrivateKeyError):
            signer_from_private_key("0xnothex")

    def test_malformed_base58_rejected(self):
        # 0, O, I and l are outside the base58 alphabet
        with pytest.raises(InvalidPrivateKeyError):
            signer_from_private_key("invalid0OIl")

    def test_unsupported_length_rejected(self):
        with pytest.raises(InvalidPrivateKeyError, match="32 or 64 bytes"):
            signer_from_private_key(base58.b58encode(b"\x01" * 16).decode())

    def test_empty_rejected(self):
        with pytest.raises(InvalidPrivateKeyError):
            signer_from_private_key("")

    def test_input_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            signer_from_private_key("invalid")


class TestSignMessage:
    def test_evm_signature_is_hex_and_recoverable(self):
        signer = signer_from_private_key(HARDHAT_KEY)
        signature = sign_message(signer, "hello world")
        assert signature.startswith("0x")
        assert len(signature) == 2 + 65 * 2
        recovered = Account.recover_message(
            encode_defunct(text="hello world"),
            signature=bytes.fromhex(signature[2:]),
        )
        assert recovered == HARDHAT_ADDRESS

    def test_solana_signature_is_base64_over_raw_message(self, sol_signer):
        signature = sign_message(sol_signer, "hello world")
        raw = base64.b64decode(signature)
        assert len(raw) == 64
        Ed25519PublicKey.from_public_bytes(sol_signer.public_key_bytes).verify(raw, b"hello world")

    def test_both_families_sign_identical_bytes(self, sol_signer):
        calls = []

        class Recording:
            def __init__(self, address):
                self.address = address
                self.family = chain_family(address)

            def sign(self, data):
                calls.append(data)
                return b"\x00" * 64

        sign_message(Recording(HARDHAT_ADDRESS), "zkstash:grant:v1:abc")
        sign_message(Recording(sol_signer.address), "zkstash:grant:v1:abc")
        assert calls[0] == calls[1] == b"zkstash:grant:v1:abc"

    def test_missing_signer_rejected(self):
        with pytest.raises(SignerError):
            sign_message(None, "x")

    def test_family_specific_helpers_refuse_wrong_family(self, sol_signer):
        evm = signer_from_private_key(HARDHAT_KEY)
        assert sign_with_evm(evm, "m").startswith("0x")
        with pytest.raises(SignerError):
            sign_with_evm(sol_signer, "m")
        with pytest.raises(SignerError):
            sign_with_solana(evm, "m")

    def test_sign_message_routes_through_family_helpers(self, monkeypatch, sol_signer):
        import zkstash.signer as signer_module

        routed = []
        monkeypatch.setattr(signer_module, "sign_with_evm", lambda s, m: routed.append(("evm", m)) or "evm")
        monkeypatch.setattr(signer_module, "sign_with_solana", lambda s, m: routed.append(("sol", m)) or "sol")

        assert sign_message(signer_from_private_key(HARDHAT_KEY), "a") == "evm"
        assert sign_message(sol_signer, "b") == "sol"
        assert routed == [("evm", "a"), ("sol", "b")]
