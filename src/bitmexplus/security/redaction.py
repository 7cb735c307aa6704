from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

REDACTED = "***REDACTED***"

_SENSITIVE_PARTS = (
    "api_key",
    "apikey",
    "api_secret",
    "secret",
    "signature",
    "authorization",
    "password",
    "token",
)

_PLAIN_SECRET_PATTERNS = (
    re.compile(r"(?im)(api-key\s*[:=]\s*)([^\s,;]+)"),
    re.compile(r"(?im)(api-signature\s*[:=]\s*)([^\s,;]+)"),
    re.compile(r"(?im)(bitmex_api_key\s*[:=]\s*)([^\s,;]+)"),
    re.compile(r"(?im)(bitmex_api_secret\s*[:=]\s*)([^\s,;]+)"),
    re.compile(r"(?im)(authorization\s*[:=]\s*)(bearer\s+)?([^\s,;]+)"),
)


def is_sensitive_key(key: object) -> bool:
    normalized = str(key).replace("-", "_").casefold()
    return any(part in normalized for part in _SENSITIVE_PARTS)


def mask_secret(value: str) -> str:
    if not value:
        return REDACTED
    if len(value) > 8:
        return f"{value[:4]}{'*' * (len(value) - 8)}{value[-4:]}"
    if len(value) <= 2:
        return "*" * len(value)
    return f"{'*' * (len(value) - 2)}{value[-2:]}"


def _redact_match(match: re.Match[str]) -> str:
    scheme = match.group(2) if match.lastindex and match.lastindex >= 3 else ""
    return f"{match.group(1)}{scheme or ''}[REDACTED]"


def sanitize_text(text: str, known_secrets: Iterable[str] = ()) -> str:
    redacted = str(text)
    for secret in known_secrets:
        if secret:
            redacted = redacted.replace(secret, mask_secret(secret))
    for pattern in _PLAIN_SECRET_PATTERNS:
        redacted = pattern.sub(_redact_match, redacted)
    return redacted


def sanitize_mapping(data: Mapping[str, Any]) -> dict[str, Any]:
    sanitized: dict[str, Any] = {}
    for key, value in data.items():
        key_str = str(key)
        if is_sensitive_key(key_str):
            sanitized[key_str] = mask_secret(str(value)) if value is not None else REDACTED
        else:
            sanitized[key_str] = redact_data(value)
    return sanitized


def redact_data(value: Any) -> Any:
    if isinstance(value, Mapping):
        return sanitize_mapping(value)
    if isinstance(value, list):
        return [redact_data(item) for item in value]
    if isinstance(value, tuple):
        return tuple(redact_data(item) for item in value)
    if isinstance(value, str):
        return sanitize_text(value)
    return value
