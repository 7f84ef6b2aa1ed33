"""Client configuration with environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .attestation import DEFAULT_WELL_KNOWN_PATH
from .payment import DEFAULT_CHAIN_ID, DEFAULT_MAX_PAYMENT


DEFAULT_API_URL = "https://api.zkstash.ai"
DEFAULT_MCP_URL = "https://zkstash.ai/mcp"

API_URL_ENV = "ZKSTASH_API_URL"
MCP_URL_ENV = "ZKSTASH_MCP_URL"
TIMEOUT_ENV = "ZKSTASH_TIMEOUT"
MAX_PAYMENT_ENV = "ZKSTASH_MAX_PAYMENT"
CHAIN_ID_ENV = "ZKSTASH_CHAIN_ID"


@dataclass
class ClientConfig:
    api_url: str = DEFAULT_API_URL
    mcp_url: str = DEFAULT_MCP_URL
    timeout_seconds: float = 30.0
    max_payment: int = DEFAULT_MAX_PAYMENT
    chain_id: int = DEFAULT_CHAIN_ID
    well_known_path: str = DEFAULT_WELL_KNOWN_PATH

    @classmethod
    def from_env(cls) -> "ClientConfig":
        defaults = cls()
        try:
            return cls(
                api_url=os.getenv(API_URL_ENV, defaults.api_url).rstrip("/"),
                mcp_url=os.getenv(MCP_URL_ENV, defaults.mcp_url),
                timeout_seconds=float(os.getenv(TIMEOUT_ENV, defaults.timeout_seconds)),
                max_payment=int(os.getenv(MAX_PAYMENT_ENV, defaults.max_payment)),
                chain_id=int(os.getenv(CHAIN_ID_ENV, defaults.chain_id)),
            )
        except ValueError as e:
            raise ValueError(f"Invalid zkstash environment configuration: {e}") from e
