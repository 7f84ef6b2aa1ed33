"""
x402 payment interception.

Flow for one call:
1. Send the request unmodified
2. If the result is a payment-required signal with offers, pick one
3. Refuse non-"exact" schemes and amounts above the configured cap
4. Generate one payment proof and resend with the proof attached
5. Return whatever the resend produced (never a third attempt)

The same state machine drives MCP tool calls (:class:`McpToolChannel`) and
plain HTTP requests (:class:`HttpChannel`); a channel only knows how to spot
the payment signal and where the proof goes.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Union

import httpx

from .signer import EVM, chain_family

logger = logging.getLogger(__name__)


DEFAULT_MAX_PAYMENT = 100_000  # 0.1 USDC in base units
DEFAULT_CHAIN_ID = 8453
SUPPORTED_SCHEME = "exact"

MCP_PAYMENT_ERROR_KEY = "x402/error"
MCP_PAYMENT_PROOF_KEY = "x402/payment"
HTTP_PAYMENT_HEADER = "X-PAYMENT"

EVM_CHAIN_NETWORKS = {
    8453: "base",
    84532: "base-sepolia",
    43114: "avalanche",
    43113: "avalanche-fuji",
    137: "polygon",
    80002: "polygon-amoy",
    1329: "sei",
    1328: "sei-testnet",
    4689: "iotex",
    3338: "peaq",
}

SOLANA_NETWORKS = frozenset({
    "solana",
    "solana-devnet",
    "solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp",
    "solana:EtWTRABZaYq6iMfeYKouRu166VU2xqa1",
})


class PaymentState(str, Enum):
    SUCCESS = "success"
    RETRIED = "retried"
    CAP_EXCEEDED = "cap_exceeded"
    UNSUPPORTED_SCHEME = "unsupported_scheme"


@dataclass
class PaymentRequirement:
    """One entry of a service's ``accepts`` menu."""

    scheme: str
    network: str
    max_amount_required: int
    pay_to: str = ""
    asset: str = ""
    resource: str = ""
    description: str = ""
    max_timeout_seconds: Optional[int] = None
    extra: Optional[dict] = None
    raw: dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> PaymentRequirement:
        amount = d.get("maxAmountRequired", d.get("amount", "0"))
        timeout = d.get("maxTimeoutSeconds")
        return cls(
            scheme=str(d.get("scheme", "")),
            network=str(d.get("network", "")),
            max_amount_required=int(amount),
            pay_to=str(d.get("payTo", "")),
            asset=str(d.get("asset", "")),
            resource=str(d.get("resource", "")),
            description=str(d.get("description", "")),
            max_timeout_seconds=int(timeout) if timeout is not None else None,
            extra=dict(d["extra"]) if isinstance(d.get("extra"), Mapping) else None,
            raw=dict(d),
        )


@dataclass
class PaymentOffer:
    """A parsed payment-required signal."""

    accepts: list[PaymentRequirement]
    x402_version: int = 1
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Any) -> Optional[PaymentOffer]:
        if not isinstance(d, Mapping):
            return None
        accepts = d.get("accepts")
        if not isinstance(accepts, list) or not accepts:
            return None
        return cls(
            accepts=[PaymentRequirement.from_dict(a) for a in accepts if isinstance(a, Mapping)],
            x402_version=int(d.get("x402Version", 1)),
            error=d.get("error"),
        )


RequirementsSelector = Callable[[list[PaymentRequirement]], Optional[PaymentRequirement]]


@dataclass
class PaymentConfig:
    max_value: int = DEFAULT_MAX_PAYMENT
    chain_id: int = DEFAULT_CHAIN_ID
    requirements_selector: Optional[RequirementsSelector] = None


class ProofFactory(Protocol):
    """Produces the opaque payment header value for a requirement."""

    def create_proof(
        self, requirement: PaymentRequirement, x402_version: int
    ) -> Union[str, Awaitable[str]]: ...


def payer_networks(address: str, chain_id: int = DEFAULT_CHAIN_ID) -> set[str]:
    """Networks a payer can settle on, by its address family."""
    if chain_family(address) == EVM:
        networks = {f"eip155:{chain_id}"}
        if chain_id in EVM_CHAIN_NETWORKS:
            networks.add(EVM_CHAIN_NETWORKS[chain_id])
        return networks
    return set(SOLANA_NETWORKS)


def select_requirement(
    accepts: list[PaymentRequirement],
    payer_address: str,
    chain_id: int = DEFAULT_CHAIN_ID,
) -> Optional[PaymentRequirement]:
    """Pick the offer on the payer's network, else the first offer."""
    if not accepts:
        return None
    networks = payer_networks(payer_address, chain_id)
    for requirement in accepts:
        if requirement.network in networks:
            return requirement
    logger.debug("No offer on networks %s; falling back to %s", sorted(networks), accepts[0].network)
    return accepts[0]


def cap_exceeded_message(required: int, allowed: int) -> str:
    return f"Payment required ({required}) exceeds maximum allowed ({allowed})"


class PaymentChannel(Protocol):
    """Where the payment signal is read from and the proof is written to."""

    def payment_offer(self, result: Any) -> Optional[PaymentOffer]: ...

    def with_proof(self, request: Any, proof: str) -> Any: ...

    def cap_exceeded(self, request: Any, required: int, allowed: int) -> Any: ...


class PaymentInterceptor:
    """Single-retry x402 payment state machine."""

    def __init__(
        self,
        payer_address: str,
        proof_factory: ProofFactory,
        config: Optional[PaymentConfig] = None,
    ):
        self.payer_address = payer_address
        self.proof_factory = proof_factory
        self.config = config or PaymentConfig()

    def select(self, accepts: list[PaymentRequirement]) -> Optional[PaymentRequirement]:
        if self.config.requirements_selector is not None:
            return self.config.requirements_selector(accepts)
        return select_requirement(accepts, self.payer_address, self.config.chain_id)

    async def run(
        self,
        channel: PaymentChannel,
        request: Any,
        send: Callable[[Any], Awaitable[Any]],
    ) -> Any:
        result, _ = await self.run_with_state(channel, request, send)
        return result

    async def run_with_state(
        self,
        channel: PaymentChannel,
        request: Any,
        send: Callable[[Any], Awaitable[Any]],
    ) -> tuple[Any, PaymentState]:
        result = await send(request)

        offer = channel.payment_offer(result)
        if offer is None:
            return result, PaymentState.SUCCESS

        requirement = self.select(offer.accepts)
        if requirement is None or requirement.scheme != SUPPORTED_SCHEME:
            logger.warning(
                "Payment required but scheme %s is not supported",
                requirement.scheme if requirement else None,
            )
            return result, PaymentState.UNSUPPORTED_SCHEME

        if requirement.max_amount_required > self.config.max_value:
            logger.warning(
                "Payment of %d on %s exceeds cap %d; not paying",
                requirement.max_amount_required,
                requirement.network,
                self.config.max_value,
            )
            return (
                channel.cap_exceeded(request, requirement.max_amount_required, self.config.max_value),
                PaymentState.CAP_EXCEEDED,
            )

        proof = self.proof_factory.create_proof(requirement, offer.x402_version)
        if inspect.isawaitable(proof):
            proof = await proof

        logger.info(
            "Paying %d on %s to %s and retrying once",
            requirement.max_amount_required,
            requirement.network,
            requirement.pay_to,
        )
        retried = await send(channel.with_proof(request, proof))
        return retried, PaymentState.RETRIED


def _field(obj: Any, *names: str) -> Any:
    for name in names:
        if isinstance(obj, Mapping):
            if name in obj:
                return obj[name]
        elif getattr(obj, name, None) is not None:
            return getattr(obj, name)
    return None


class McpToolChannel:
    """MCP ``tools/call``: signal in ``result._meta``, proof in ``params._meta``."""

    def payment_offer(self, result: Any) -> Optional[PaymentOffer]:
        if not _field(result, "isError", "is_error"):
            return None
        meta = _field(result, "_meta", "meta")
        if not isinstance(meta, Mapping):
            return None
        return PaymentOffer.from_dict(meta.get(MCP_PAYMENT_ERROR_KEY))

    def with_proof(self, request: Mapping[str, Any], proof: str) -> dict[str, Any]:
        meta = dict(request.get("_meta") or {})
        meta[MCP_PAYMENT_PROOF_KEY] = proof
        return {**request, "_meta": meta}

    def cap_exceeded(self, request: Any, required: int, allowed: int) -> dict[str, Any]:
        return {
            "isError": True,
            "content": [{"type": "text", "text": cap_exceeded_message(required, allowed)}],
        }


class HttpChannel:
    """HTTP 402: signal in the JSON body, proof in the ``X-PAYMENT`` header."""

    CAP_EXCEEDED_HEADER = "x-zkstash-payment-policy"

    def payment_offer(self, response: httpx.Response) -> Optional[PaymentOffer]:
        if response.status_code != 402:
            return None
        try:
            body = json.loads(response.content or b"null")
        except ValueError:
            return None
        return PaymentOffer.from_dict(body)

    def with_proof(self, request: httpx.Request, proof: str) -> httpx.Request:
        headers = httpx.Headers(request.headers)
        headers[HTTP_PAYMENT_HEADER] = proof
        return httpx.Request(
            request.method,
            request.url,
            headers=headers,
            content=request.content,
            extensions=request.extensions,
        )

    def cap_exceeded(self, request: httpx.Request, required: int, allowed: int) -> httpx.Response:
        return httpx.Response(
            402,
            headers={self.CAP_EXCEEDED_HEADER: "cap_exceeded"},
            json={
                "error": cap_exceeded_message(required, allowed),
                "required": str(required),
                "allowed": str(allowed),
            },
            request=request,
        )
