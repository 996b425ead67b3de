"""
Publishing layer for destination platforms.

Each platform adapter implements `PublishAdapter.publish` and always returns a
`PublishResult`; failures are reported in the result with a `retryable` flag
rather than raised, so the dispatcher can decide between retry and failure.
"""
import logging
from typing import Dict, Optional

import httpx

from content_engine.adapters.base import PublishAdapter, PublishContent, PublishResult
from content_engine.adapters.http_errors import TRANSIENT_STATUS_CODES, extract_error_detail, sanitize
from content_engine.config import settings

logger = logging.getLogger(__name__)

# Error text that indicates a retryable failure
RETRYABLE_INDICATORS = (
    "timeout", "timed out", "429", "too many requests",
    "502", "503", "504", "connection", "reset by peer",
    "temporary", "service unavailable", "rate limit",
    "network", "eof", "broken pipe",
)


def is_retryable_error(error: Optional[str]) -> bool:
    """Determine if an error message indicates a retryable failure."""
    if not error:
        return False
    lower = error.lower()
    return any(ind in lower for ind in RETRYABLE_INDICATORS)


class HttpPublishAdapter(PublishAdapter):
    """Posts the content package to a platform publishing endpoint.

    The endpoint receives JSON with the text, title, clip window and a media
    reference, authorised with the connected account's access token.
    """

    def __init__(
        self,
        platform: str,
        endpoint: str,
        timeout: Optional[float] = None,
    ):
        self.platform = platform
        self.endpoint = endpoint
        self.timeout = timeout or settings.publish_timeout_seconds

    def _log(self, msg: str):
        logger.info(f"[{self.platform}] {msg}")

    def _error(self, msg: str):
        logger.error(f"[{self.platform}] {msg}")

    async def publish(
        self,
        platform: str,
        account,
        content: PublishContent,
        media_ref: Optional[str],
    ) -> PublishResult:
        access_token = getattr(account, "access_token", None)
        if not access_token:
            msg = "Account has no access token"
            self._error(msg)
            return PublishResult(success=False, platform=platform, error=msg, retryable=False)

        body = {
            "platform": platform,
            "account_handle": getattr(account, "handle", None),
            "platform_user_id": getattr(account, "platform_user_id", None),
            "text": content.text,
            "title": content.title,
            "clip_id": content.clip_id,
            "aspect_ratio": content.aspect_ratio,
            "start_time": content.start_time,
            "end_time": content.end_time,
            "media_ref": media_ref,
        }
        headers = {"Authorization": f"Bearer {access_token}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.endpoint, json=body, headers=headers)
        except httpx.TimeoutException:
            msg = "Publish request timed out"
            self._error(msg)
            return PublishResult(success=False, platform=platform, error=msg, retryable=True)
        except httpx.RequestError as exc:
            msg = sanitize(f"Network error: {type(exc).__name__}: {exc}")
            self._error(msg)
            return PublishResult(success=False, platform=platform, error=msg, retryable=True)

        if response.status_code not in (200, 201, 202):
            detail = extract_error_detail(response)
            msg = f"HTTP {response.status_code}: {detail}"
            self._error(msg)
            retryable = response.status_code in TRANSIENT_STATUS_CODES or is_retryable_error(detail)
            return PublishResult(success=False, platform=platform, error=msg, retryable=retryable)

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        external_id = data.get("id") or data.get("external_id") or data.get("post_id")
        self._log(f"Published as {external_id}")
        return PublishResult(
            success=True,
            external_post_id=str(external_id) if external_id is not None else None,
            url=data.get("url"),
            platform=platform,
        )


class PublishAdapterRegistry:
    """Maps platform names to publish adapters."""

    def __init__(self, adapters: Optional[Dict[str, PublishAdapter]] = None):
        self._adapters: Dict[str, PublishAdapter] = dict(adapters or {})

    def register(self, platform: str, adapter: PublishAdapter):
        self._adapters[platform] = adapter

    def get(self, platform: str) -> Optional[PublishAdapter]:
        return self._adapters.get(platform)

    def platforms(self):
        return sorted(self._adapters)

    @classmethod
    def from_settings(cls) -> "PublishAdapterRegistry":
        registry = cls()
        for platform, endpoint in settings.publish_endpoints.items():
            registry.register(platform, HttpPublishAdapter(platform, endpoint))
        return registry
