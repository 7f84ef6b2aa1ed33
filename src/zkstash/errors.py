"""
zkstash error types.

Input errors fail fast, transport errors carry the HTTP status and body.
Verification and payment-policy outcomes are returned as values and have
no exception type here.
"""


class ZkStashError(Exception):
    """Base error for all zkstash operations."""
    pass


# Input errors
class InputError(ZkStashError, ValueError):
    """Caller supplied malformed input."""
    pass


class InvalidPrivateKeyError(InputError):
    """Private key is neither 0x-hex nor a 32/64-byte base58 string."""
    pass


class InvalidDurationError(InputError):
    """Duration string does not match <int><s|m|h|d|w>."""
    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid duration: {value!r} (expected formats like 30s, 5m, 24h, 7d, 2w)")


class InvalidShareCodeError(InputError):
    """Share code has the wrong prefix or an undecodable body."""
    pass


class GrantError(InputError):
    """Grant options or payload are incomplete or inconsistent."""
    pass


class CanonicalizationError(InputError):
    """Value cannot be serialized deterministically."""
    pass


# Signing errors
class SignerError(ZkStashError):
    """Signer is missing or cannot produce a signature."""
    pass


# Transport errors
class ApiError(ZkStashError):
    """Remote service answered with a non-success status."""
    def __init__(self, status_code: int, status_text: str, body: str):
        self.status_code = status_code
        self.status_text = status_text
        self.body = body
        super().__init__(f"API error ({status_code} {status_text}): {body}")


# Payment errors
class PaymentError(ZkStashError):
    """Payment proof could not be generated."""
    pass


class PaymentRequiredError(ApiError):
    """Service demanded payment that was not (or could not be) made."""
    pass
