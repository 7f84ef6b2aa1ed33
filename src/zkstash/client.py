"""
zkStash REST client.

Wallet-authenticated clients sign every request and pay HTTP 402 offers
through :class:`~zkstash.payment.PaymentInterceptor`. API-key clients send a
bearer token and never pay per call. Grants added to an instance ride along
on every request.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Union
from urllib.parse import quote, urlencode, urlparse

import httpx

from .attestation import (
    AttestationVerifier,
    MemoryIntegrityResult,
    VerifyAttestationResult,
    verify_memory_integrity,
)
from .auth import GRANTS_HEADER, ApiKeyAuth, WalletAuth, encode_grants_header
from .config import ClientConfig
from .errors import ApiError, PaymentError, PaymentRequiredError
from .grants import GrantLike, GrantSet, SignedGrant, create_grant
from .payment import HttpChannel, PaymentConfig, PaymentInterceptor, ProofFactory
from .signer import Signer, signer_from_private_key

logger = logging.getLogger(__name__)


SEARCH_SCOPES = ("own", "shared", "all")


class ZkStash:
    """Async client for the zkStash memory API."""

    def __init__(
        self,
        signer: Optional[Signer] = None,
        api_key: Optional[str] = None,
        config: Optional[ClientConfig] = None,
        payment: Optional[PaymentConfig] = None,
        payment_signer: Optional[Signer] = None,
        proof_factory: Optional[ProofFactory] = None,
        grants: Optional[list[GrantLike]] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        if signer is None and api_key is None:
            raise ValueError("Either signer or api_key must be provided")

        self.config = config or ClientConfig()
        self.base_url = self.config.api_url.rstrip("/")
        self.signer = signer
        self.api_key = api_key

        if api_key is not None:
            self._auth: httpx.Auth = ApiKeyAuth(api_key)
        else:
            self._auth = WalletAuth(signer, base_path=urlparse(self.base_url).path)

        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=self.config.timeout_seconds)
        self._grants = GrantSet(grants)
        self._verifier = AttestationVerifier(
            self.base_url,
            http=self._http,
            well_known_path=self.config.well_known_path,
        )
        self._interceptor = self._build_interceptor(payment, payment_signer, proof_factory)

    def _build_interceptor(
        self,
        payment: Optional[PaymentConfig],
        payment_signer: Optional[Signer],
        proof_factory: Optional[ProofFactory],
    ) -> Optional[PaymentInterceptor]:
        if self.api_key is not None:
            return None
        payer = payment_signer or self.signer
        config = payment or PaymentConfig(max_value=self.config.max_payment, chain_id=self.config.chain_id)
        if proof_factory is None:
            from .x402_proof import X402ProofFactory

            try:
                proof_factory = X402ProofFactory(payer)
            except PaymentError as e:
                logger.warning("Payments disabled, 402 responses will be raised: %s", e)
                return None
        return PaymentInterceptor(payer.address, proof_factory, config)

    # ----- grants -----

    def create_grant(
        self,
        grantee: str,
        agent_id: Optional[str] = None,
        subject_id: Optional[str] = None,
        expires_in: Union[str, int, None] = None,
        expires_at: Optional[int] = None,
    ) -> tuple[SignedGrant, str]:
        """Sign a grant with this client's wallet. Returns ``(grant, share_code)``."""
        if self.signer is None:
            raise ValueError("Creating grants requires a wallet signer")
        return create_grant(
            self.signer,
            grantee=grantee,
            agent_id=agent_id,
            subject_id=subject_id,
            expires_in=expires_in,
            expires_at=expires_at,
        )

    def add_grant(self, grant: GrantLike) -> SignedGrant:
        return self._grants.add(grant)

    def remove_grant(self, grant: GrantLike) -> bool:
        return self._grants.remove(grant)

    def get_instance_grants(self) -> list[SignedGrant]:
        return self._grants.grants()

    # ----- memories -----

    async def store_memories(self, payload: dict[str, Any]) -> Any:
        return await self.request("POST", "/memories", body=payload)

    create_memory = store_memories

    async def update_memory(self, memory_id: str, params: dict[str, Any]) -> Any:
        return await self.request("PATCH", f"/memories/{quote(memory_id, safe='')}", body=params)

    async def delete_memory(self, memory_id: str) -> Any:
        return await self.request("DELETE", f"/memories/{quote(memory_id, safe='')}")

    async def search_memories(
        self,
        query: str,
        filters: Optional[dict[str, Any]] = None,
        mode: Optional[str] = None,
        scope: Optional[str] = None,
        grants: Optional[list[GrantLike]] = None,
    ) -> Any:
        if scope is not None and scope not in SEARCH_SCOPES:
            raise ValueError(f"scope must be one of {SEARCH_SCOPES}, got {scope!r}")
        params: dict[str, str] = {"query": query}
        filters = filters or {}
        for key in ("agentId", "subjectId", "threadId", "kind"):
            if filters.get(key):
                params[key] = str(filters[key])
        if filters.get("tags"):
            params["tags"] = ",".join(filters["tags"])
        if mode:
            params["mode"] = mode
        if scope:
            params["scope"] = scope
        return await self.request("GET", "/memories/search", params=params, grants=grants)

    def verify_memory_integrity(
        self,
        kind: str,
        data: Any,
        agent_id: str,
        stored_hash: Optional[str],
    ) -> MemoryIntegrityResult:
        return verify_memory_integrity(kind, data, agent_id, stored_hash)

    # ----- schemas -----

    async def register_schema(
        self,
        name: str,
        schema: Union[str, dict[str, Any]],
        description: Optional[str] = None,
        unique_on: Optional[list[str]] = None,
    ) -> Any:
        payload: dict[str, Any] = {
            "name": name,
            "description": description or f"Schema for {name}",
            "schema": schema if isinstance(schema, str) else json.dumps(schema, separators=(",", ":")),
        }
        if unique_on:
            payload["uniqueOn"] = list(unique_on)
        return await self.request("POST", "/schemas", body=payload)

    async def list_schemas(self) -> Any:
        return await self.request("GET", "/schemas")

    async def update_schema(self, name: str, params: dict[str, Any]) -> Any:
        return await self.request("PATCH", f"/schemas/{quote(name, safe='')}", body=params)

    async def delete_schema(self, name: str) -> Any:
        return await self.request("DELETE", f"/schemas/{quote(name, safe='')}")

    # ----- attestations -----

    async def create_attestation(
        self,
        claim: str,
        query: Optional[str] = None,
        filters: Optional[dict[str, Any]] = None,
        threshold: Optional[int] = None,
        schema_name: Optional[str] = None,
        expires_in: Optional[str] = None,
    ) -> Any:
        body = {
            "claim": claim,
            "query": query,
            "filters": filters,
            "threshold": threshold,
            "schemaName": schema_name,
            "expiresIn": expires_in,
        }
        return await self.request("POST", "/attestations", body={k: v for k, v in body.items() if v is not None})

    async def verify_attestation(self, attestation: dict[str, Any], signature: str) -> VerifyAttestationResult:
        """Verify locally; only the first non-expired check fetches the service key."""
        return await self._verifier.verify(attestation, signature)

    # ----- transport -----

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Optional[dict[str, str]] = None,
        grants: Optional[list[GrantLike]] = None,
    ) -> Any:
        method = method.upper()
        content = None
        if body is not None and method != "GET":
            content = json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

        url = f"{self.base_url}{path}"
        if params:
            url = f"{url}?{urlencode(params)}"

        headers = {"content-type": "application/json"}
        all_grants = self._grants.merged_with(grants)
        if all_grants:
            headers[GRANTS_HEADER] = encode_grants_header(all_grants)

        request = self._http.build_request(method, url, headers=headers, content=content)
        if self._interceptor is not None:
            response = await self._interceptor.run(HttpChannel(), request, self._send)
        else:
            response = await self._send(request)

        if not response.is_success:
            error_cls = PaymentRequiredError if response.status_code == 402 else ApiError
            raise error_cls(response.status_code, response.reason_phrase, response.text)
        return response.json()

    async def _send(self, request: httpx.Request) -> httpx.Response:
        return await self._http.send(request, auth=self._auth)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()


def from_private_key(
    private_key: str,
    config: Optional[ClientConfig] = None,
    payment: Optional[PaymentConfig] = None,
    **kwargs: Any,
) -> ZkStash:
    """Client whose wallet signs both requests and x402 payments."""
    signer = signer_from_private_key(private_key)
    return ZkStash(signer=signer, config=config, payment=payment, **kwargs)


def from_signer(
    signer: Signer,
    config: Optional[ClientConfig] = None,
    payment: Optional[PaymentConfig] = None,
    payment_signer: Optional[Signer] = None,
    **kwargs: Any,
) -> ZkStash:
    """Client from an existing signer, optionally paying from a second wallet."""
    return ZkStash(signer=signer, config=config, payment=payment, payment_signer=payment_signer, **kwargs)


def from_api_key(api_key: str, config: Optional[ClientConfig] = None, **kwargs: Any) -> ZkStash:
    return ZkStash(api_key=api_key, config=config, **kwargs)
