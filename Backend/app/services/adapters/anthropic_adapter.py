from __future__ import annotations

from app.core.config import settings
from app.services.adapters.base import TEMPERATURE, AdapterError, HttpModelAdapter

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


class AnthropicAdapter(HttpModelAdapter):
    """Claude through the Messages REST API."""

    name = "claude"
    display_name = "Claude"
    api_key_setting = "ANTHROPIC_API_KEY"

    async def _complete(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        data = await self._post_json(
            ANTHROPIC_URL,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            payload={
                "model": settings.ANTHROPIC_MODEL,
                "max_tokens": max_tokens,
                "temperature": TEMPERATURE,
                "system": system_prompt,
                "messages": [{"role": "user", "content": user_prompt}],
            },
        )

        blocks = data.get("content") or []
        text = "".join(block.get("text", "") for block in blocks if block.get("type") == "text")
        if not text.strip():
            raise AdapterError(f"{self.display_name} processing failed: empty response body")
        return text.strip()
