from __future__ import annotations

import hashlib
import hmac

API_EXPIRES_HEADER = "api-expires"
API_KEY_HEADER = "api-key"
API_SIGNATURE_HEADER = "api-signature"


def expires_at(now_ms: int, ttl_seconds: int = 60) -> int:
    """UNIX seconds ``ttl_seconds`` after ``now_ms``."""
    return now_ms // 1000 + ttl_seconds


def compute_signature(
    api_secret: str,
    *,
    verb: str,
    path: str,
    expires: int | str,
    body: str = "",
) -> str:
    """Hex HMAC-SHA256 of ``verb + path + expires + body``.

    ``path`` is the full request path including the API root and query string.
    ``body`` must be the exact string sent on the wire.
    """
    message = f"{verb.upper()}{path}{expires}{body}".encode()
    return hmac.new(api_secret.encode(), message, hashlib.sha256).hexdigest()


def build_auth_headers(
    api_key: str,
    api_secret: str,
    *,
    verb: str,
    path: str,
    expires: int,
    body: str = "",
) -> dict[str, str]:
    return {
        API_EXPIRES_HEADER: str(expires),
        API_KEY_HEADER: api_key,
        API_SIGNATURE_HEADER: compute_signature(
            api_secret, verb=verb, path=path, expires=expires, body=body
        ),
    }
