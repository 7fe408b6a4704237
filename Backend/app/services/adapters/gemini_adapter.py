from __future__ import annotations

from app.core.config import settings
from app.services.adapters.base import TEMPERATURE, AdapterError, HttpModelAdapter

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"


class GeminiAdapter(HttpModelAdapter):
    """Gemini through the generateContent REST API."""

    name = "gemini"
    display_name = "Gemini"
    api_key_setting = "GEMINI_API_KEY"

    async def _complete(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        data = await self._post_json(
            f"{GEMINI_BASE_URL}/{settings.GEMINI_MODEL}:generateContent",
            # Header rather than ?key= so the key never lands in access logs
            headers={"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
            payload={
                "systemInstruction": {"parts": [{"text": system_prompt}]},
                "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
                "generationConfig": {"temperature": TEMPERATURE, "maxOutputTokens": max_tokens},
            },
        )

        candidates = data.get("candidates") or []
        if not candidates:
            reason = (data.get("promptFeedback") or {}).get("blockReason", "no candidates returned")
            raise AdapterError(f"{self.display_name} processing failed: {reason}")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        if not text.strip():
            raise AdapterError(f"{self.display_name} processing failed: empty response body")
        return text.strip()
