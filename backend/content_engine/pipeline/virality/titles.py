"""Titles and descriptions for candidate clips."""
import json
import logging
import re
from typing import Optional, Tuple

import httpx

from content_engine.adapters.http_errors import error_for_response
from content_engine.config import settings
from content_engine.errors import ProviderError, TransientProviderError

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 80
DESCRIPTION_MAX_CHARS = 280


def _truncate(text: str, limit: int) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    cut = text[:limit - 3].rsplit(" ", 1)[0]
    return cut + "..."


class HeuristicTitleWriter:
    """Builds a title from the first sentence of the excerpt."""

    async def write(self, excerpt: str, fallback_title: Optional[str] = None) -> Tuple[str, str]:
        sentences = [s.strip() for s in re.split(r"(?<=[.!?])\s+", excerpt.strip()) if s.strip()]
        if sentences:
            title = _truncate(sentences[0].rstrip("."), TITLE_MAX_CHARS)
        else:
            title = fallback_title or "Untitled clip"
        description = _truncate(excerpt, DESCRIPTION_MAX_CHARS) if excerpt.strip() else ""
        return title, description


class OpenAITitleWriter:
    """Asks a chat model for a short title and description.

    Any provider failure falls back to the heuristic writer; a title is never
    a reason for analysis to fail.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.model = model or settings.title_model
        self.base_url = (base_url or settings.openai_base_url).rstrip("/")
        self.timeout = timeout or settings.title_timeout_seconds
        self.fallback = HeuristicTitleWriter()

    async def write(self, excerpt: str, fallback_title: Optional[str] = None) -> Tuple[str, str]:
        if not self.api_key or not excerpt.strip():
            return await self.fallback.write(excerpt, fallback_title)

        try:
            return await self._request(excerpt)
        except ProviderError as e:
            logger.warning(f"Title generation failed, using heuristic title: {e}")
            return await self.fallback.write(excerpt, fallback_title)

    async def _request(self, excerpt: str) -> Tuple[str, str]:
        body = {
            "model": self.model,
            "temperature": 0.7,
            "max_tokens": 200,
            "response_format": {"type": "json_object"},
            "messages": [
                {
                    "role": "system",
                    "content": (
                        "You write titles for short-form social video clips. "
                        'Reply with JSON: {"title": "...", "description": "..."}. '
                        f"Title at most {TITLE_MAX_CHARS} characters, description at most "
                        f"{DESCRIPTION_MAX_CHARS} characters."
                    ),
                },
                {"role": "user", "content": excerpt[:4000]},
            ],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}/chat/completions", json=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientProviderError("Title model timed out") from exc
        except httpx.RequestError as exc:
            raise TransientProviderError(f"Title model unreachable ({type(exc).__name__})") from exc

        if response.status_code != 200:
            raise error_for_response(response, "Title model")

        try:
            content = response.json()["choices"][0]["message"]["content"]
            parsed = json.loads(content)
            title = _truncate(str(parsed["title"]).strip().strip('"'), TITLE_MAX_CHARS)
            description = _truncate(str(parsed.get("description") or ""), DESCRIPTION_MAX_CHARS)
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise TransientProviderError("Title model returned an unreadable response") from exc

        if not title:
            raise TransientProviderError("Title model returned an empty title")
        return title, description
