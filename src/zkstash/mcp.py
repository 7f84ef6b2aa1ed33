"""
MCP helpers: wallet-signed transport auth and paid tool calls.

The MCP transport itself is not part of this package. Plug :func:`wallet_auth`
into any httpx-based transport (``auth=``) and wrap the session's raw
``tools/call`` sender with :class:`PaidToolCaller`.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, NamedTuple, Optional

from .auth import ApiKeyAuth, WalletAuth
from .config import ClientConfig
from .payment import McpToolChannel, PaymentConfig, PaymentInterceptor, ProofFactory
from .signer import Signer, signer_from_private_key

logger = logging.getLogger(__name__)


AGENT_ID_HEADER = "x-agent-id"
THREAD_ID_HEADER = "x-thread-id"

ToolSender = Callable[[dict[str, Any]], Awaitable[Any]]


def _session_headers(agent_id: str, thread_id: Optional[str]) -> dict[str, str]:
    if not agent_id:
        raise ValueError("agent_id is required for MCP clients")
    headers = {AGENT_ID_HEADER: agent_id}
    if thread_id:
        headers[THREAD_ID_HEADER] = thread_id
    return headers


def wallet_auth(signer: Signer, agent_id: str, thread_id: Optional[str] = None) -> WalletAuth:
    """Per-request wallet signature over the URL path (no query string)."""
    return WalletAuth(
        signer,
        include_query=False,
        extra_headers=_session_headers(agent_id, thread_id),
    )


def api_key_auth(api_key: str, agent_id: str, thread_id: Optional[str] = None) -> ApiKeyAuth:
    return ApiKeyAuth(api_key, extra_headers=_session_headers(agent_id, thread_id))


class PaidToolCaller:
    """Calls MCP tools, paying a ``x402/error`` offer at most once per call."""

    def __init__(self, send: ToolSender, interceptor: Optional[PaymentInterceptor] = None):
        self._send = send
        self._interceptor = interceptor
        self._channel = McpToolChannel()

    async def call_tool(
        self,
        name: str,
        arguments: Optional[dict[str, Any]] = None,
        meta: Optional[dict[str, Any]] = None,
    ) -> Any:
        params: dict[str, Any] = {"name": name, "arguments": dict(arguments or {})}
        if meta:
            params["_meta"] = dict(meta)
        if self._interceptor is None:
            return await self._send(params)
        return await self._interceptor.run(self._channel, params, self._send)


def paid_tool_caller(
    signer: Signer,
    send: ToolSender,
    config: Optional[ClientConfig] = None,
    payment: Optional[PaymentConfig] = None,
    proof_factory: Optional[ProofFactory] = None,
) -> PaidToolCaller:
    config = config or ClientConfig()
    payment = payment or PaymentConfig(max_value=config.max_payment, chain_id=config.chain_id)
    if proof_factory is None:
        from .x402_proof import X402ProofFactory

        proof_factory = X402ProofFactory(signer)
    return PaidToolCaller(send, PaymentInterceptor(signer.address, proof_factory, payment))


class McpConnection(NamedTuple):
    """Everything a transport needs: the endpoint, its auth and a paying caller."""

    url: str
    auth: WalletAuth
    caller: PaidToolCaller


def from_private_key(
    private_key: str,
    agent_id: str,
    send: ToolSender,
    thread_id: Optional[str] = None,
    config: Optional[ClientConfig] = None,
    payment: Optional[PaymentConfig] = None,
    proof_factory: Optional[ProofFactory] = None,
) -> McpConnection:
    """Endpoint, transport auth and a paying tool caller from one wallet key.

    The endpoint comes from ``config.mcp_url`` (``ZKSTASH_MCP_URL``).
    """
    config = config or ClientConfig()
    signer = signer_from_private_key(private_key)
    auth = wallet_auth(signer, agent_id, thread_id)
    caller = paid_tool_caller(signer, send, config=config, payment=payment, proof_factory=proof_factory)
    logger.info("MCP client for agent %s at %s paying from %s", agent_id, config.mcp_url, signer.address)
    return McpConnection(config.mcp_url, auth, caller)
