"""
Local verification of zkStash attestations and memory hashes.

Attestations are Ed25519-signed over :func:`~zkstash.canonical.stable_stringify`
of the attestation body. The service's public key is fetched once from a
well-known endpoint and cached for the life of the verifier; a rotated key is
only picked up by a new verifier.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import hashlib
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .canonical import stable_stringify
from .errors import ApiError, ZkStashError

logger = logging.getLogger(__name__)


DEFAULT_WELL_KNOWN_PATH = "/.well-known/zkstash-keys.json"

REASON_EXPIRED = "attestation_expired"
REASON_INVALID_SIGNATURE = "invalid_signature"

_HEX_RE = re.compile(r"^(0x)?[0-9a-fA-F]+$")


@dataclass
class VerifyAttestationResult:
    valid: bool
    reason: Optional[str] = None
    attestation: Optional[Mapping[str, Any]] = None
    public_key: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "reason": self.reason,
            "attestation": self.attestation,
            "publicKey": self.public_key,
        }


@dataclass
class MemoryIntegrityResult:
    intact: bool
    stored_hash: Optional[str]
    computed_hash: str
    verified_at: int

    def to_dict(self) -> dict:
        return {
            "intact": self.intact,
            "storedHash": self.stored_hash,
            "computedHash": self.computed_hash,
            "verifiedAt": self.verified_at,
        }


class AttestationVerifier:
    """Verifies signed attestations against the service's published key."""

    def __init__(
        self,
        base_url: str,
        http: Optional[httpx.AsyncClient] = None,
        well_known_path: str = DEFAULT_WELL_KNOWN_PATH,
        timeout_seconds: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.well_known_path = well_known_path
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout_seconds)
        self._public_key: Optional[str] = None
        self._algorithm: Optional[str] = None
        self._fetch_lock = asyncio.Lock()

    @property
    def cached_public_key(self) -> Optional[str]:
        return self._public_key

    async def get_public_key(self) -> str:
        """Return the attestation public key, fetching it on first use only."""
        if self._public_key is not None:
            return self._public_key
        async with self._fetch_lock:
            if self._public_key is None:
                self._public_key, self._algorithm = await self._fetch_public_key()
        return self._public_key

    async def _fetch_public_key(self) -> tuple[str, Optional[str]]:
        url = f"{self.base_url}{self.well_known_path}"
        logger.info("Fetching attestation public key from %s", url)
        response = await self._http.get(url)
        if response.status_code != 200:
            raise ApiError(response.status_code, response.reason_phrase, response.text)
        try:
            body = response.json()
        except ValueError as e:
            raise ZkStashError(f"Malformed verification key response: {e}") from e
        key = body.get("attestationPublicKey") if isinstance(body, dict) else None
        if not isinstance(key, str) or not key:
            raise ZkStashError("Verification key response is missing attestationPublicKey")
        algorithm = body.get("algorithm")
        if algorithm and str(algorithm).lower() not in ("ed25519", "eddsa"):
            logger.warning("Unexpected attestation key algorithm %s", algorithm)
        return key, algorithm

    async def verify(
        self,
        attestation: Mapping[str, Any],
        signature: str,
        now: Optional[float] = None,
    ) -> VerifyAttestationResult:
        """Check expiry, then the signature. Outcomes are returned, not raised."""
        current = time.time() if now is None else now
        expires_at = attestation.get("expiresAt")
        if not isinstance(expires_at, (int, float)) or isinstance(expires_at, bool) or expires_at < current:
            return VerifyAttestationResult(
                valid=False,
                reason=REASON_EXPIRED,
                attestation=attestation,
                public_key=self._public_key,
            )

        public_key = await self.get_public_key()
        valid = verify_ed25519(public_key, signature, stable_stringify(attestation).encode("utf-8"))
        return VerifyAttestationResult(
            valid=valid,
            reason=None if valid else REASON_INVALID_SIGNATURE,
            attestation=attestation,
            public_key=public_key,
        )

    async def verify_signed(self, signed: Mapping[str, Any], now: Optional[float] = None) -> VerifyAttestationResult:
        """Verify a ``{attestation, signature}`` wire pair."""
        return await self.verify(signed["attestation"], signed["signature"], now=now)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()


def verify_ed25519(public_key: str, signature: str, message: bytes) -> bool:
    """Verify an Ed25519 signature; malformed key or signature text is ``False``."""
    try:
        key = load_ed25519_public_key(public_key)
        key.verify(decode_signature(signature), message)
    except InvalidSignature:
        return False
    except (ValueError, TypeError, binascii.Error):
        return False
    return True


def load_ed25519_public_key(text: str) -> Ed25519PublicKey:
    """Accept PEM, raw 32-byte hex, or base64 (raw or DER SubjectPublicKeyInfo)."""
    candidate = text.strip()
    if candidate.startswith("-----BEGIN"):
        key = serialization.load_pem_public_key(candidate.encode("ascii"))
    else:
        raw = _decode_bytes(candidate)
        if len(raw) == 32:
            key = Ed25519PublicKey.from_public_bytes(raw)
        else:
            key = serialization.load_der_public_key(raw)
    if not isinstance(key, Ed25519PublicKey):
        raise ValueError("Attestation public key is not an Ed25519 key")
    return key


def decode_signature(text: str) -> bytes:
    raw = _decode_bytes(text.strip())
    if len(raw) != 64:
        raise ValueError(f"Ed25519 signature must be 64 bytes, got {len(raw)}")
    return raw


def _decode_bytes(text: str) -> bytes:
    if _HEX_RE.match(text) and len(text.removeprefix("0x")) in (64, 128):
        return bytes.fromhex(text.removeprefix("0x"))
    padded = text + "=" * (-len(text) % 4)
    if "-" in text or "_" in text:
        return base64.urlsafe_b64decode(padded)
    return base64.b64decode(padded, validate=True)


def compute_memory_hash(kind: str, data: Any, agent_id: str) -> str:
    """``0x`` + sha256 of the canonical ``{kind, data, agentId}`` object."""
    canonical = stable_stringify({"kind": kind, "data": data, "agentId": agent_id})
    return "0x" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def verify_memory_integrity(
    kind: str,
    data: Any,
    agent_id: str,
    stored_hash: Optional[str],
    now: Optional[int] = None,
) -> MemoryIntegrityResult:
    """Recompute a memory's content hash locally and compare it to the stored one."""
    computed = compute_memory_hash(kind, data, agent_id)
    intact = stored_hash is not None and stored_hash.lower() == computed
    return MemoryIntegrityResult(
        intact=intact,
        stored_hash=stored_hash,
        computed_hash=computed,
        verified_at=int(time.time()) if now is None else int(now),
    )
