"""
x402 payment proofs via the official x402 Python SDK.

Turns a selected :class:`~zkstash.payment.PaymentRequirement` into the
opaque header value the service expects under ``X-PAYMENT`` (HTTP) or
``_meta["x402/payment"]`` (MCP). EVM payers sign an EIP-3009 authorization,
Solana payers a partially signed SPL transfer. Both protocol versions are
registered, so v1 names ("base") and CAIP-2 ids ("eip155:8453") both work.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from eth_account.signers.local import LocalAccount
from x402 import parse_payment_required, x402ClientSync
from x402.http import encode_payment_signature_header
from x402.mechanisms.evm.exact import register_exact_evm_client
from x402.mechanisms.svm import KeypairSigner
from x402.mechanisms.svm.exact import register_exact_svm_client

from .errors import PaymentError
from .payment import PaymentRequirement
from .signer import EVM, SOLANA, Signer

logger = logging.getLogger(__name__)


class EthAccountSigner:
    """Adapter that exposes an eth-account LocalAccount as an x402 EVM signer."""

    def __init__(self, account: LocalAccount):
        self._account = account

    @property
    def address(self) -> str:
        return self._account.address

    def sign_typed_data(
        self,
        domain: Any,
        types: dict[str, list],
        primary_type: str,
        message: dict[str, Any],
    ) -> bytes:
        plain_types = {
            type_name: [
                {"name": _attr(f, "name"), "type": _attr(f, "type")}
                for f in fields
            ]
            for type_name, fields in types.items()
        }
        domain_dict = domain if isinstance(domain, dict) else _domain_to_dict(domain)

        msg = dict(message)
        if isinstance(msg.get("nonce"), bytes):
            msg["nonce"] = "0x" + msg["nonce"].hex()

        full_message = {
            "types": {**plain_types, "EIP712Domain": _domain_type(domain_dict)},
            "primaryType": primary_type,
            "domain": domain_dict,
            "message": msg,
        }
        signed = self._account.sign_typed_data(full_message=full_message)
        return bytes(signed.signature)


def _attr(obj: Any, name: str) -> Any:
    return obj[name] if isinstance(obj, dict) else getattr(obj, name)


def _domain_to_dict(domain: Any) -> dict[str, Any]:
    aliases = {
        "name": ("name",),
        "version": ("version",),
        "chainId": ("chain_id", "chainId"),
        "verifyingContract": ("verifying_contract", "verifyingContract"),
    }
    out: dict[str, Any] = {}
    for key, names in aliases.items():
        for name in names:
            value = getattr(domain, name, None)
            if value is not None:
                out[key] = value
                break
    return out


def _domain_type(domain: dict) -> list[dict]:
    field_types = (
        ("name", "string"),
        ("version", "string"),
        ("chainId", "uint256"),
        ("verifyingContract", "address"),
    )
    return [{"name": name, "type": kind} for name, kind in field_types if name in domain]


class X402ProofFactory:
    """Creates x402 "exact" payment headers for an EVM or Solana payer.

    ``networks`` narrows the v2 networks the payer will sign for; by default
    every network of the payer's family is accepted. ``rpc_url`` overrides the
    Solana RPC endpoint used for mint lookups.
    """

    def __init__(
        self,
        signer: Signer,
        networks: Optional[Iterable[str]] = None,
        rpc_url: Optional[str] = None,
    ):
        family = getattr(signer, "family", None)
        selected = sorted(networks) if networks else None
        self._x402_client = x402ClientSync()
        if family == EVM and getattr(signer, "account", None) is not None:
            register_exact_evm_client(self._x402_client, EthAccountSigner(signer.account), networks=selected)
        elif family == SOLANA and hasattr(signer, "keypair_bytes"):
            svm_signer = KeypairSigner.from_bytes(signer.keypair_bytes())
            register_exact_svm_client(self._x402_client, svm_signer, networks=selected, rpc_url=rpc_url)
        else:
            raise PaymentError(f"x402 proof generation needs a local EVM or Solana key, got {signer!r}")

    def create_proof(self, requirement: PaymentRequirement, x402_version: int) -> str:
        offer = {"x402Version": x402_version, "accepts": [requirement.raw]}
        try:
            payment_required = parse_payment_required(offer)
            payload = self._x402_client.create_payment_payload(payment_required)
            header = encode_payment_signature_header(payload)
        except Exception as e:
            raise PaymentError(f"Failed to create payment: {type(e).__name__}: {e}") from e
        logger.debug("Created x402 v%d payment header for %s", x402_version, requirement.network)
        return header
