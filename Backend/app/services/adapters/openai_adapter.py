from __future__ import annotations

import logging
from typing import Any

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    RateLimitError,
)

from app.core.config import settings
from app.services.adapters.base import TEMPERATURE, AdapterError, ModelAdapter, TransientBackendError

logger = logging.getLogger(__name__)

# Errors that are transient and worth retrying
_RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (
    RateLimitError,
    APIConnectionError,
    APITimeoutError,
    InternalServerError,
)


class OpenAIAdapter(ModelAdapter):
    """GPT-4 through the official SDK's chat completions endpoint."""

    name = "gpt4"
    display_name = "GPT-4"
    api_key_setting = "OPENAI_API_KEY"

    def __init__(self, api_key: str | None = None, client: Any = None):
        super().__init__(api_key)
        self.model = settings.OPENAI_MODEL
        # Retries are driven by ModelAdapter._call_with_retry, not the SDK
        self.client = client or AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)

    async def _complete(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user",   "content": user_prompt},
                ],
                temperature=TEMPERATURE,
                max_tokens=max_tokens,
            )
        except _RETRYABLE_EXCEPTIONS as e:
            raise TransientBackendError(f"{type(e).__name__}: {e}") from e
        except APIStatusError as e:
            # Auth and request errors are not retried
            logger.error("OpenAI request rejected (%s): %s", e.status_code, e.message)
            raise AdapterError(f"{self.display_name} processing failed: {e.message}") from e

        if not response.choices:
            raise AdapterError(f"{self.display_name} processing failed: response had no choices")
        content = response.choices[0].message.content
        if not content or not content.strip():
            raise AdapterError(f"{self.display_name} processing failed: empty response body")

        if response.usage:
            logger.debug("OpenAI usage — prompt %d, completion %d tokens.",
                         response.usage.prompt_tokens, response.usage.completion_tokens)
        return content.strip()
