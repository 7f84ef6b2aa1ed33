"""Request authentication for wallet and API-key clients."""

from __future__ import annotations

import base64
import hashlib
import json
import time
from typing import Generator, Optional

import httpx

from .errors import SignerError
from .grants import SignedGrant
from .signer import Signer, sign_message


WALLET_ADDRESS_HEADER = "x-wallet-address"
WALLET_TIMESTAMP_HEADER = "x-wallet-timestamp"
WALLET_SIGNATURE_HEADER = "x-wallet-signature"
GRANTS_HEADER = "x-zkstash-grants"


def canonical_request(method: str, path: str, body: str, timestamp_ms: str) -> str:
    """``METHOD|path|sha256hex(body)|timestamp``, the text a wallet signs."""
    body_hash = hashlib.sha256(body.encode("utf-8")).hexdigest()
    return "|".join([method.upper(), path, body_hash, timestamp_ms])


def wallet_auth_headers(
    signer: Optional[Signer],
    method: str,
    path: str,
    body: str = "",
    timestamp_ms: Optional[int] = None,
) -> dict[str, str]:
    if signer is None:
        raise SignerError("Signer not available for wallet auth")
    timestamp = str(timestamp_ms if timestamp_ms is not None else int(time.time() * 1000))
    signature = sign_message(signer, canonical_request(method, path, body, timestamp))
    return {
        WALLET_ADDRESS_HEADER: signer.address,
        WALLET_TIMESTAMP_HEADER: timestamp,
        WALLET_SIGNATURE_HEADER: signature,
    }


class WalletAuth(httpx.Auth):
    """Signs every outgoing request with the wallet.

    The signed path is the percent-encoded request path with ``base_path`` stripped, plus the
    query string when ``include_query`` is set.
    """

    requires_request_body = True

    def __init__(
        self,
        signer: Signer,
        base_path: str = "",
        include_query: bool = True,
        extra_headers: Optional[dict[str, str]] = None,
    ):
        if signer is None:
            raise SignerError("Signer not available for wallet auth")
        self.signer = signer
        self.base_path = base_path.rstrip("/")
        self.include_query = include_query
        self.extra_headers = dict(extra_headers or {})

    def signed_path(self, url: httpx.URL) -> str:
        path = url.raw_path.decode("ascii").split("?", 1)[0]
        if self.base_path and path.startswith(self.base_path):
            path = path[len(self.base_path):] or "/"
        if self.include_query and url.query:
            path = f"{path}?{url.query.decode('ascii')}"
        return path

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        body = request.content.decode("utf-8") if request.content else ""
        request.headers.update(
            wallet_auth_headers(self.signer, request.method, self.signed_path(request.url), body)
        )
        request.headers.update(self.extra_headers)
        yield request


class ApiKeyAuth(httpx.Auth):
    """Bearer-token auth; API-key clients are billed out of band and never pay per call."""

    def __init__(self, api_key: str, extra_headers: Optional[dict[str, str]] = None):
        if not api_key:
            raise ValueError("API key is required")
        self.api_key = api_key
        self.extra_headers = dict(extra_headers or {})

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self.api_key}"
        request.headers.update(self.extra_headers)
        yield request


def encode_grants_header(grants: list[SignedGrant]) -> str:
    body = json.dumps([g.to_dict() for g in grants], separators=(",", ":"), ensure_ascii=False)
    return base64.urlsafe_b64encode(body.encode("utf-8")).decode("ascii").rstrip("=")
