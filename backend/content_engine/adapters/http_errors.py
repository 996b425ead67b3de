"""Classification of HTTP provider responses into the provider error taxonomy."""
import re
from typing import List, Optional

import httpx

from content_engine.errors import (
    PermanentProviderError,
    ProviderError,
    TransientProviderError,
    UnsupportedMediaError,
)

TRANSIENT_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})

# Error text that means the provider could not decode the media
_MEDIA_INDICATORS = (
    "invalid file format", "could not decode", "unsupported", "corrupt", "invalid media",
)

# Patterns that match tokens/secrets in error strings
_SENSITIVE_PATTERNS = [
    (re.compile(r"Bearer\s+[A-Za-z0-9\-_\.]+", re.IGNORECASE), "Bearer ***"),
    (re.compile(r"access_token=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "access_token=***"),
    (re.compile(r"sk-[A-Za-z0-9\-_]{8,}"), "sk-***"),
]


def sanitize(text: Optional[str]) -> Optional[str]:
    """Strip credentials from error messages before they are logged or persisted."""
    if not text:
        return text
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def extract_error_detail(response: httpx.Response) -> str:
    """Extract concise error detail from a provider response."""
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return sanitize(text[:500]) or f"HTTP {response.status_code}"

    if isinstance(payload, dict):
        error = payload.get("error")
        parts: List[str] = []
        if isinstance(error, dict):
            for key in ("code", "type", "message"):
                if error.get(key):
                    parts.append(str(error[key]))
        elif error:
            parts.append(str(error))
        if payload.get("message"):
            parts.append(str(payload["message"]))
        if parts:
            return sanitize(": ".join(parts))

    return f"HTTP {response.status_code}"


def error_for_response(response: httpx.Response, provider: str) -> ProviderError:
    """Map a non-2xx response onto a provider error."""
    status = response.status_code
    detail = extract_error_detail(response)

    if status == 401:
        return PermanentProviderError(f"{provider}: invalid API key ({detail})", status)
    if status == 402:
        return PermanentProviderError(f"{provider}: insufficient quota ({detail})", status)
    if status == 429:
        # Exhausted quota is reported as 429 too and will not recover on retry
        if "insufficient_quota" in detail or "quota" in detail.lower():
            return PermanentProviderError(f"{provider}: insufficient quota ({detail})", status)
        return TransientProviderError(f"{provider}: rate limit exceeded ({detail})", status)
    if status in TRANSIENT_STATUS_CODES:
        return TransientProviderError(f"{provider}: temporary failure HTTP {status} ({detail})", status)
    if status in (400, 415, 422) and any(ind in detail.lower() for ind in _MEDIA_INDICATORS):
        return UnsupportedMediaError(f"{provider}: unsupported media ({detail})", status)
    return PermanentProviderError(f"{provider}: HTTP {status} ({detail})", status)
