"""
zkstash: wallet-native client for the zkStash agent memory service.

Wallet auth instead of API keys, signed grants for sharing memories,
local attestation checks, and x402 pay-per-call with a hard spend cap.
"""

__version__ = "0.1.0"

from .signer import (
    EvmSigner,
    Signer,
    SolanaSigner,
    chain_family,
    sign_message,
    signer_from_private_key,
)
from .canonical import GRANT_MESSAGE_PREFIX, build_grant_message, stable_stringify
from .grants import (
    SHARE_CODE_PREFIX,
    GrantPayload,
    GrantSet,
    SignedGrant,
    create_grant,
    grant_from_share_code,
    grant_to_share_code,
    parse_duration,
    sign_grant,
    verify_grant,
)
from .attestation import (
    AttestationVerifier,
    MemoryIntegrityResult,
    VerifyAttestationResult,
    compute_memory_hash,
    verify_memory_integrity,
)
from .payment import PaymentConfig, PaymentInterceptor, PaymentRequirement, PaymentState
from .config import ClientConfig
from .client import ZkStash, from_api_key, from_private_key, from_signer

__all__ = [
    "Signer", "EvmSigner", "SolanaSigner", "chain_family", "sign_message", "signer_from_private_key",
    "GRANT_MESSAGE_PREFIX", "build_grant_message", "stable_stringify",
    "SHARE_CODE_PREFIX", "GrantPayload", "SignedGrant", "GrantSet", "sign_grant", "create_grant",
    "verify_grant", "grant_to_share_code", "grant_from_share_code", "parse_duration",
    "AttestationVerifier", "VerifyAttestationResult", "MemoryIntegrityResult",
    "compute_memory_hash", "verify_memory_integrity",
    "PaymentConfig", "PaymentInterceptor", "PaymentRequirement", "PaymentState",
    "ClientConfig", "ZkStash", "from_private_key", "from_signer", "from_api_key",
]
