"""
Wallet signers for request auth and grant signing.

Two signature families are supported:

* EVM (``0x`` addresses): EIP-191 personal-message signatures via eth-account,
  encoded as ``0x``-prefixed hex.
* Solana (base58 addresses): raw Ed25519 signatures over the message bytes,
  encoded as standard base64.

Both families sign the exact same canonical message text, so anything built
by :mod:`zkstash.canonical` can be signed by either.
"""

from __future__ import annotations

import base64
from typing import Protocol, runtime_checkable

import base58
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from .errors import InvalidPrivateKeyError, SignerError


EVM = "evm"
SOLANA = "sol"

EVM_ADDRESS_PREFIX = "0x"


def chain_family(address: str) -> str:
    """Classify an address by its textual shape: ``0x`` ⇒ evm, else sol."""
    return EVM if address.startswith(EVM_ADDRESS_PREFIX) else SOLANA


@runtime_checkable
class Signer(Protocol):
    """Anything that owns an address and can sign arbitrary bytes."""

    @property
    def address(self) -> str: ...

    @property
    def family(self) -> str: ...

    def sign(self, data: bytes) -> bytes: ...


class EvmSigner:
    """eth-account backed signer using the personal-message convention."""

    family = EVM

    def __init__(self, account: LocalAccount):
        self._account = account

    @classmethod
    def from_key(cls, private_key: str) -> "EvmSigner":
        try:
            account = Account.from_key(private_key)
        except Exception as e:
            raise InvalidPrivateKeyError(f"Invalid EVM private key: {e}") from e
        return cls(account)

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def account(self) -> LocalAccount:
        return self._account

    def sign(self, data: bytes) -> bytes:
        signed = self._account.sign_message(encode_defunct(primitive=data))
        return bytes(signed.signature)

    def __repr__(self) -> str:
        return f"EvmSigner(address={self.address!r})"


class SolanaSigner:
    """Ed25519 keypair signer addressed by its base58 public key."""

    family = SOLANA

    def __init__(self, private_key: Ed25519PrivateKey):
        self._private_key = private_key
        self._public_bytes = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self._address = base58.b58encode(self._public_bytes).decode("ascii")

    @classmethod
    def generate(cls) -> "SolanaSigner":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "SolanaSigner":
        if len(seed) != 32:
            raise InvalidPrivateKeyError(f"Ed25519 seed must be 32 bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def from_keypair_bytes(cls, keypair: bytes) -> "SolanaSigner":
        """Load a 64-byte Solana keypair (seed followed by public key)."""
        if len(keypair) != 64:
            raise InvalidPrivateKeyError(f"Solana keypair must be 64 bytes, got {len(keypair)}")
        signer = cls.from_seed(keypair[:32])
        if signer.public_key_bytes != keypair[32:]:
            raise InvalidPrivateKeyError("Solana keypair public key does not match its private key")
        return signer

    @property
    def address(self) -> str:
        return self._address

    @property
    def public_key_bytes(self) -> bytes:
        return self._public_bytes

    def keypair_bytes(self) -> bytes:
        seed = self._private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return seed + self._public_bytes

    def sign(self, data: bytes) -> bytes:
        return self._private_key.sign(data)

    def __repr__(self) -> str:
        return f"SolanaSigner(address={self.address!r})"


def signer_from_private_key(private_key: str) -> EvmSigner | SolanaSigner:
    """Build a signer from a raw private key string.

    ``0x``-prefixed hex yields an EVM signer. Anything else is base58-decoded:
    64 bytes is a full Solana keypair, 32 bytes a seed. Every other shape is
    rejected with :class:`InvalidPrivateKeyError`.
    """
    if not isinstance(private_key, str) or not private_key.strip():
        raise InvalidPrivateKeyError("Private key is required")
    candidate = private_key.strip()

    if candidate.startswith(EVM_ADDRESS_PREFIX):
        return EvmSigner.from_key(candidate)

    try:
        decoded = base58.b58decode(candidate)
    except ValueError as e:
        raise InvalidPrivateKeyError(f"Invalid base58 private key: {e}") from e

    if len(decoded) == 64:
        return SolanaSigner.from_keypair_bytes(decoded)
    if len(decoded) == 32:
        return SolanaSigner.from_seed(decoded)
    raise InvalidPrivateKeyError(
        f"Invalid private key: base58 key must decode to 32 or 64 bytes, got {len(decoded)}"
    )


def sign_message(signer: Signer, message: str) -> str:
    """Sign ``message`` and encode the signature for its chain family."""
    if signer is None:
        raise SignerError("Signer is required")
    if chain_family(signer.address) == EVM:
        return sign_with_evm(signer, message)
    return sign_with_solana(signer, message)


def sign_with_evm(signer: Signer, message: str) -> str:
    """EIP-191 signature as ``0x`` hex."""
    if chain_family(signer.address) != EVM:
        raise SignerError(f"Signer {signer.address} is not an EVM signer")
    return "0x" + signer.sign(message.encode("utf-8")).hex()


def sign_with_solana(signer: Signer, message: str) -> str:
    """Raw Ed25519 signature as standard base64."""
    if chain_family(signer.address) != SOLANA:
        raise SignerError(f"Signer {signer.address} is not a Solana signer")
    return base64.b64encode(signer.sign(message.encode("utf-8"))).decode("ascii")
