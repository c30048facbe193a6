"""Meta deauthorization callback: verify the ``signed_request`` and read its payload."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from typing import Any

from publisher.platforms.exceptions import CredentialsMissing, PlatformError


class InvalidSignedRequest(PlatformError):
    """The signed_request is malformed or its signature does not match."""


def _b64url_decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def parse_signed_request(signed_request: str, app_secret: str) -> dict[str, Any]:
    """Return the payload of a Meta ``signed_request`` after checking its HMAC-SHA256."""
    if not app_secret:
        raise CredentialsMissing("Meta app secret is not configured")
    try:
        encoded_sig, encoded_payload = signed_request.split(".", 1)
        signature = _b64url_decode(encoded_sig)
        payload = json.loads(_b64url_decode(encoded_payload))
    except (ValueError, UnicodeError) as exc:
        raise InvalidSignedRequest("Malformed signed_request") from exc

    if not isinstance(payload, dict) or str(payload.get("algorithm", "")).upper() != "HMAC-SHA256":
        raise InvalidSignedRequest("Unsupported signed_request algorithm")

    expected = hmac.new(
        app_secret.encode("utf-8"), encoded_payload.encode("ascii"), hashlib.sha256
    ).digest()
    if not hmac.compare_digest(signature, expected):
        raise InvalidSignedRequest("signed_request signature mismatch")

    if not payload.get("user_id"):
        raise InvalidSignedRequest("signed_request carries no user_id")
    return payload
