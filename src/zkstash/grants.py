"""
Grant creation, share codes, and verification.

A grant is a signed, time-bounded bearer capability: the grantor (``f``)
lets the grantee (``g``) read its memories, optionally narrowed to one
agent (``a``) and/or subject (``u``), until ``e`` (unix seconds).
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional, Union

import base58
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from eth_account import Account
from eth_account.messages import encode_defunct

from .canonical import build_grant_message
from .errors import GrantError, InvalidDurationError, InvalidShareCodeError
from .signer import EVM, SOLANA, Signer, chain_family, sign_message

logger = logging.getLogger(__name__)


SHARE_CODE_PREFIX = "zkg1_"
DEFAULT_GRANT_TTL_SECONDS = 7 * 86400
CHAIN_TAGS = (EVM, SOLANA)

_DURATION_RE = re.compile(r"^(\d+)([smhdw])$")
_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}


def parse_duration(text: str) -> int:
    """Parse ``"30s"``, ``"5m"``, ``"2h"``, ``"7d"``, ``"2w"`` into seconds."""
    match = _DURATION_RE.match(text) if isinstance(text, str) else None
    if match is None:
        raise InvalidDurationError(str(text))
    return int(match.group(1)) * _DURATION_UNITS[match.group(2)]


@dataclass(frozen=True)
class GrantPayload:
    """The signed part of a grant."""

    f: str
    g: str
    e: int
    a: Optional[str] = None
    u: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"f": self.f, "g": self.g}
        if self.a is not None:
            d["a"] = self.a
        if self.u is not None:
            d["u"] = self.u
        d["e"] = self.e
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> GrantPayload:
        for key in ("f", "g"):
            if not isinstance(d.get(key), str) or not d[key]:
                raise GrantError(f"Grant payload field '{key}' must be a non-empty string")
        expiry = d.get("e")
        if isinstance(expiry, bool) or not isinstance(expiry, int):
            raise GrantError("Grant payload field 'e' must be an integer unix timestamp")
        for key in ("a", "u"):
            if d.get(key) is not None and not isinstance(d[key], str):
                raise GrantError(f"Grant payload field '{key}' must be a string")
        unknown = set(d) - {"f", "g", "a", "u", "e"}
        if unknown:
            raise GrantError(f"Unknown grant payload fields: {sorted(unknown)}")
        return cls(f=d["f"], g=d["g"], e=expiry, a=d.get("a"), u=d.get("u"))


@dataclass(frozen=True)
class SignedGrant:
    """A payload plus its signature and chain tag; the bearer token."""

    p: GrantPayload
    s: str
    c: str

    @property
    def is_expired(self) -> bool:
        return time.time() >= self.p.e

    def same_grant(self, other: SignedGrant) -> bool:
        """Payload equality; signature and chain tag are derived data."""
        return self.p == other.p

    def to_dict(self) -> dict[str, Any]:
        return {"p": self.p.to_dict(), "s": self.s, "c": self.c}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> SignedGrant:
        if not isinstance(d, Mapping):
            raise GrantError("Signed grant must be a JSON object")
        if not isinstance(d.get("p"), Mapping):
            raise GrantError("Signed grant is missing payload 'p'")
        payload = GrantPayload.from_dict(d["p"])
        signature = d.get("s")
        if not isinstance(signature, str) or not signature:
            raise GrantError("Signed grant is missing signature 's'")
        chain = d.get("c")
        if chain not in CHAIN_TAGS:
            raise GrantError(f"Unknown grant chain tag: {chain!r}")
        if chain != chain_family(payload.f):
            raise GrantError(f"Chain tag '{chain}' does not match grantor address {payload.f}")
        return cls(p=payload, s=signature, c=chain)


def sign_grant(
    signer: Signer,
    g: str,
    e: int,
    a: Optional[str] = None,
    u: Optional[str] = None,
) -> SignedGrant:
    """Sign a grant; the grantor is always the signer's own address."""
    if signer is None:
        raise GrantError("Signer is required to sign a grant")
    if not g:
        raise GrantError("Grantee address is required")
    payload = GrantPayload(f=signer.address, g=g, e=int(e), a=a, u=u)
    signature = sign_message(signer, build_grant_message(payload))
    return SignedGrant(p=payload, s=signature, c=chain_family(signer.address))


def resolve_expiry(
    expires_in: Union[str, int, None] = None,
    expires_at: Optional[int] = None,
    now: Optional[int] = None,
) -> int:
    """Absolute ``expires_at`` wins, then ``expires_in`` from now, then 7 days."""
    if expires_at is not None:
        return int(expires_at)
    current = int(time.time()) if now is None else int(now)
    if expires_in is None:
        return current + DEFAULT_GRANT_TTL_SECONDS
    if isinstance(expires_in, str):
        return current + parse_duration(expires_in)
    return current + int(expires_in)


def create_grant(
    signer: Signer,
    grantee: str,
    agent_id: Optional[str] = None,
    subject_id: Optional[str] = None,
    expires_in: Union[str, int, None] = None,
    expires_at: Optional[int] = None,
    now: Optional[int] = None,
) -> tuple[SignedGrant, str]:
    """Create, sign, and encode a grant. Returns ``(grant, share_code)``."""
    if not grantee:
        raise GrantError("grantee is required")
    expiry = resolve_expiry(expires_in=expires_in, expires_at=expires_at, now=now)
    grant = sign_grant(signer, g=grantee, e=expiry, a=agent_id, u=subject_id)
    logger.info("Created %s grant %s -> %s (expires %d)", grant.c, grant.p.f, grant.p.g, expiry)
    return grant, grant_to_share_code(grant)


def grant_to_share_code(grant: SignedGrant) -> str:
    body = json.dumps(grant.to_dict(), separators=(",", ":"), ensure_ascii=False)
    encoded = base64.urlsafe_b64encode(body.encode("utf-8")).decode("ascii").rstrip("=")
    return SHARE_CODE_PREFIX + encoded


def grant_from_share_code(code: str) -> SignedGrant:
    if not isinstance(code, str) or not code.startswith(SHARE_CODE_PREFIX):
        raise InvalidShareCodeError(f"Invalid share code: must start with {SHARE_CODE_PREFIX}")
    encoded = code[len(SHARE_CODE_PREFIX):]
    try:
        raw = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise InvalidShareCodeError(f"Invalid share code: {e}") from e
    return SignedGrant.from_dict(data)


def verify_grant(grant: SignedGrant, now: Optional[int] = None) -> tuple[bool, str]:
    """Verify a grant's expiry and its signature against the grantor address."""
    current = int(time.time()) if now is None else int(now)
    if current >= grant.p.e:
        return False, f"Grant expired at {grant.p.e}"
    if grant.c != chain_family(grant.p.f):
        return False, f"Chain tag '{grant.c}' does not match grantor address"

    message = build_grant_message(grant.p)
    try:
        if grant.c == EVM:
            recovered = Account.recover_message(
                encode_defunct(text=message),
                signature=bytes.fromhex(_strip_0x(grant.s)),
            )
            if recovered.lower() != grant.p.f.lower():
                return False, f"Signer mismatch: expected {grant.p.f}, got {recovered}"
        else:
            public_key = Ed25519PublicKey.from_public_bytes(base58.b58decode(grant.p.f))
            public_key.verify(base64.b64decode(grant.s, validate=True), message.encode("utf-8"))
    except InvalidSignature:
        return False, "Signature verification failed: invalid signature"
    except Exception as e:
        return False, f"Signature verification failed: {e}"
    return True, "Valid grant"


GrantLike = Union[SignedGrant, str]


def _coerce_grant(grant: GrantLike) -> SignedGrant:
    return grant_from_share_code(grant) if isinstance(grant, str) else grant


class GrantSet:
    """Ordered grants attached to every request from one client instance."""

    def __init__(self, grants: Optional[list[GrantLike]] = None):
        self._grants: list[SignedGrant] = []
        for grant in grants or []:
            self.add(grant)

    def add(self, grant: GrantLike) -> SignedGrant:
        """Add a grant or share code; a payload-equal grant is not added twice."""
        signed = _coerce_grant(grant)
        for existing in self._grants:
            if existing.same_grant(signed):
                return existing
        self._grants.append(signed)
        return signed

    def remove(self, grant: GrantLike) -> bool:
        signed = _coerce_grant(grant)
        for i, existing in enumerate(self._grants):
            if existing.same_grant(signed):
                del self._grants[i]
                return True
        return False

    def grants(self) -> list[SignedGrant]:
        return list(self._grants)

    def merged_with(self, extra: Optional[list[GrantLike]]) -> list[SignedGrant]:
        merged = GrantSet(self._grants)
        for grant in extra or []:
            merged.add(grant)
        return merged.grants()

    def __len__(self) -> int:
        return len(self._grants)

    def __iter__(self) -> Iterator[SignedGrant]:
        return iter(list(self._grants))

    def __contains__(self, grant: object) -> bool:
        if not isinstance(grant, SignedGrant):
            return False
        return any(existing.same_grant(grant) for existing in self._grants)


def _strip_0x(value: str) -> str:
    return value[2:] if value.lower().startswith("0x") else value
