from bitmexplus.security.redaction import (
    REDACTED,
    is_sensitive_key,
    mask_secret,
    redact_data,
    sanitize_mapping,
    sanitize_text,
)

__all__ = [
    "REDACTED",
    "is_sensitive_key",
    "mask_secret",
    "redact_data",
    "sanitize_mapping",
    "sanitize_text",
]
