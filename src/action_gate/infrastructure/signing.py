"""Webhook request signatures and the verification challenge. Pure functions, no I/O."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

SIGNATURE_HEADER = "X-OUTBOUND-TOKEN"
VERIFICATION_TYPE = "verification"


def sign(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the body keyed with the webhook secret."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify(secret: str, body: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(sign(secret, body), signature)


def is_challenge(body: Any) -> bool:
    return isinstance(body, dict) and body.get("type") == VERIFICATION_TYPE


def challenge_response(secret: str, body: dict[str, Any]) -> tuple[bytes, str]:
    """Response body echoing the challenge, and its signature for the response header."""
    payload = json.dumps({"response": body.get("challenge", "")}).encode("utf-8")
    return payload, sign(secret, payload)
