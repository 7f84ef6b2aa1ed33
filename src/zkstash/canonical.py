"""
Deterministic serializers shared with the zkStash service.

Two canonical forms exist and must not be mixed up:

* :func:`build_grant_message`: the exact text a grantor signs.
* :func:`stable_stringify`: the key-priority JSON used for attestation
  signatures and memory hashes.

Both outputs are compared byte-for-byte against the service, so formatting
follows JavaScript's ``JSON.stringify`` (compact, UTF-8, JS number format).
"""

from __future__ import annotations

import base64
import json
import math
from decimal import Decimal
from typing import Any, Mapping

from .errors import CanonicalizationError


GRANT_MESSAGE_PREFIX = "zkstash:grant:v1:"

KEY_PRIORITY = ("id", "kind", "tags")


def build_grant_message(payload: Any) -> str:
    """Build the signable grant message for a payload.

    ``payload`` is a :class:`~zkstash.grants.GrantPayload` or a mapping with
    the same short keys. ``None`` fields are omitted, keys are sorted.
    """
    fields = payload.to_dict() if hasattr(payload, "to_dict") else dict(payload)
    present = {k: v for k, v in fields.items() if v is not None}
    body = json.dumps(present, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    encoded = base64.b64encode(body.encode("utf-8")).decode("ascii")
    return GRANT_MESSAGE_PREFIX + encoded


def stable_stringify(value: Any) -> str:
    """Serialize ``value`` with id/kind/tags first, then sorted keys."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _js_number(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(stable_stringify(item) for item in value) + "]"
    if isinstance(value, Mapping):
        parts = []
        for key in _ordered_keys(value):
            parts.append(json.dumps(key, ensure_ascii=False) + ":" + stable_stringify(value[key]))
        return "{" + ",".join(parts) + "}"
    raise CanonicalizationError(f"Unsupported value type for canonical JSON: {type(value).__name__}")


def _ordered_keys(obj: Mapping[str, Any]) -> list[str]:
    for key in obj:
        if not isinstance(key, str):
            raise CanonicalizationError(f"Object keys must be strings, got {type(key).__name__}")
    priority = [k for k in KEY_PRIORITY if k in obj]
    rest = sorted(k for k in obj if k not in KEY_PRIORITY)
    return priority + rest


def _js_number(value: float) -> str:
    """Format a float the way JavaScript's Number#toString does."""
    if not math.isfinite(value):
        return "null"
    if value == 0:
        return "0"

    sign, digit_tuple, exponent = Decimal(repr(value)).as_tuple()
    digits = "".join(str(d) for d in digit_tuple).rstrip("0") or "0"
    # value = 0.<digits> * 10**n
    n = exponent + len(digit_tuple)
    k = len(digits)
    prefix = "-" if sign else ""

    if k <= n <= 21:
        return prefix + digits + "0" * (n - k)
    if 0 < n <= 21:
        return prefix + digits[:n] + "." + digits[n:]
    if -6 < n <= 0:
        return prefix + "0." + "0" * (-n) + digits
    exp = n - 1
    mantissa = digits[0] if k == 1 else digits[0] + "." + digits[1:]
    return f"{prefix}{mantissa}e{'+' if exp >= 0 else '-'}{abs(exp)}"
