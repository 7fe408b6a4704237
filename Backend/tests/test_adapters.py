"""
test_adapters.py
~~~~~~~~~~~~~~~~
Model adapters against mocked backends: the three-call contract, retry and
backoff, and error mapping. No network access.
"""
from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from app.core.config import settings
from app.services.adapters import (
    ADAPTERS,
    AdapterError,
    MissingCredentialsError,
    SupportedModel,
    UnsupportedModelError,
    get_adapter,
    resolve_model,
)
from app.services.adapters import base
from app.services.adapters.anthropic_adapter import AnthropicAdapter
from app.services.adapters.gemini_adapter import GeminiAdapter
from app.services.adapters.openai_adapter import OpenAIAdapter
from app.services.adapters.prompts import count_tokens, truncate_to_budget

PREVIEW = "<div><h1>Jane Doe</h1></div>"


@pytest.fixture(autouse=True)
def fast_backoff(monkeypatch):
    monkeypatch.setattr(base, "RETRY_BASE_DELAY_SEC", 0.0)
    monkeypatch.setattr(base, "RETRY_MAX_DELAY_SEC", 0.0)


@pytest.fixture
def replies(sample_cv, sample_registration):
    """The three replies in call order: CV, registration, preview."""
    return [json.dumps(sample_cv), f"```json\n{json.dumps(sample_registration)}\n```", PREVIEW]


def anthropic_body(text: str) -> dict:
    return {"content": [{"type": "text", "text": text}]}


def gemini_body(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class TestRegistry:

    def test_closed_set(self):
        assert set(ADAPTERS) == set(SupportedModel)
        assert resolve_model("claude") is SupportedModel.CLAUDE

    @pytest.mark.parametrize("name", ["unknown", "GPT4", "", "gpt-4"])
    def test_unknown_model(self, name):
        with pytest.raises(UnsupportedModelError, match="Supported models: gpt4, claude, gemini"):
            resolve_model(name)

    @pytest.mark.parametrize("name,key", [
        ("gpt4", "OPENAI_API_KEY"),
        ("claude", "ANTHROPIC_API_KEY"),
        ("gemini", "GEMINI_API_KEY"),
    ])
    def test_missing_credentials_before_any_call(self, monkeypatch, name, key):
        monkeypatch.setattr(settings, key, None)
        with pytest.raises(MissingCredentialsError, match=key):
            get_adapter(name)

    def test_missing_credentials_is_adapter_error(self):
        assert issubclass(MissingCredentialsError, AdapterError)


class TestAnthropicAdapter:

    def test_three_calls_produce_result(self, replies):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=anthropic_body(replies[len(seen) - 1]))

        adapter = AnthropicAdapter(api_key="test-key", transport=httpx.MockTransport(handler))
        result = asyncio.run(adapter.process("Jane Doe, nanny, ten years experience"))

        assert len(seen) == 3
        assert seen[0].url.path == "/v1/messages"
        assert seen[0].headers["x-api-key"] == "test-key"
        assert json.loads(seen[0].content)["model"] == settings.ANTHROPIC_MODEL
        assert json.loads(seen[0].content)["temperature"] == base.TEMPERATURE
        assert result.structured_cv["fullName"] == "Jane Doe"
        assert result.structured_registration["emergencyContactDetails"]["name"] == "John Doe"
        assert result.preview_markup == PREVIEW
        assert result.model_used == "claude"
        assert result.retries_attempted == 0

    def test_preview_is_built_from_structured_cv(self, replies):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=anthropic_body(replies[len(bodies) - 1]))

        adapter = AnthropicAdapter(api_key="k", transport=httpx.MockTransport(handler))
        asyncio.run(adapter.process("raw text"))

        preview_input = json.loads(bodies[2]["messages"][0]["content"])
        assert preview_input["fullName"] == "Jane Doe"
        assert "Palatino Linotype" in bodies[2]["system"]

    def test_transient_errors_are_retried(self, replies):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] <= 2:
                return httpx.Response(529, json={"error": {"message": "Overloaded"}})
            return httpx.Response(200, json=anthropic_body(replies[calls["n"] - 3]))

        adapter = AnthropicAdapter(api_key="k", transport=httpx.MockTransport(handler))
        result = asyncio.run(adapter.process("raw text"))

        assert calls["n"] == 5
        assert result.retries_attempted == 2

    def test_retries_exhausted(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(503, text="unavailable")

        adapter = AnthropicAdapter(api_key="k", transport=httpx.MockTransport(handler))
        with pytest.raises(AdapterError, match="Claude processing failed"):
            asyncio.run(adapter.process("raw text"))
        assert calls["n"] == settings.ADAPTER_MAX_RETRIES + 1

    def test_client_error_fails_immediately(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(401, json={"error": {"message": "invalid x-api-key"}})

        adapter = AnthropicAdapter(api_key="k", transport=httpx.MockTransport(handler))
        with pytest.raises(AdapterError, match="invalid x-api-key"):
            asyncio.run(adapter.process("raw text"))
        assert calls["n"] == 1

    def test_connection_error_is_transient(self, replies):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json=anthropic_body(replies[calls["n"] - 2]))

        adapter = AnthropicAdapter(api_key="k", transport=httpx.MockTransport(handler))
        result = asyncio.run(adapter.process("raw text"))
        assert result.retries_attempted == 1

    def test_malformed_cv_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=anthropic_body("Here's the CV: {fullName: Jane"))

        adapter = AnthropicAdapter(api_key="k", transport=httpx.MockTransport(handler))
        with pytest.raises(AdapterError, match="not valid JSON"):
            asyncio.run(adapter.process("raw text"))

    def test_empty_preview(self, replies):
        replies[2] = "```html\n```"
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(200, json=anthropic_body(replies[calls["n"] - 1] or " "))

        adapter = AnthropicAdapter(api_key="k", transport=httpx.MockTransport(handler))
        with pytest.raises(AdapterError, match="preview"):
            asyncio.run(adapter.process("raw text"))

    def test_blank_source_text(self):
        adapter = AnthropicAdapter(api_key="k", transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        with pytest.raises(AdapterError):
            asyncio.run(adapter.process("   "))

    def test_hung_backend_times_out(self, monkeypatch):
        monkeypatch.setattr(settings, "ADAPTER_TIMEOUT_SECONDS", 0.05)
        monkeypatch.setattr(settings, "ADAPTER_MAX_RETRIES", 0)

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return httpx.Response(200, json=anthropic_body("{}"))

        adapter = AnthropicAdapter(api_key="k", transport=httpx.MockTransport(handler))
        with pytest.raises(AdapterError, match="timed out"):
            asyncio.run(adapter.process("raw text"))


class TestGeminiAdapter:

    def test_three_calls_produce_result(self, replies):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=gemini_body(replies[len(seen) - 1]))

        adapter = GeminiAdapter(api_key="g-key", transport=httpx.MockTransport(handler))
        result = asyncio.run(adapter.process("raw text"))

        assert seen[0].url.path.endswith(f"/{settings.GEMINI_MODEL}:generateContent")
        assert seen[0].headers["x-goog-api-key"] == "g-key"
        assert "key" not in seen[0].url.params
        assert json.loads(seen[0].content)["generationConfig"]["temperature"] == base.TEMPERATURE
        assert result.model_used == "gemini"
        assert result.preview_markup == PREVIEW

    def test_blocked_prompt(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})

        adapter = GeminiAdapter(api_key="g", transport=httpx.MockTransport(handler))
        with pytest.raises(AdapterError, match="SAFETY"):
            asyncio.run(adapter.process("raw text"))


class FakeCompletions:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=outcome))],
            usage=None,
        )


def fake_openai_client(outcomes):
    completions = FakeCompletions(outcomes)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


class TestOpenAIAdapter:

    def test_three_calls_produce_result(self, replies):
        client, completions = fake_openai_client(replies)
        adapter = OpenAIAdapter(api_key="sk-test", client=client)
        result = asyncio.run(adapter.process("raw text"))

        assert len(completions.calls) == 3
        assert completions.calls[0]["model"] == settings.OPENAI_MODEL
        assert completions.calls[0]["temperature"] == base.TEMPERATURE
        assert completions.calls[0]["messages"][0]["role"] == "system"
        assert result.model_used == "gpt4"

    def test_connection_error_is_retried(self, replies):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        client, completions = fake_openai_client([openai.APIConnectionError(request=request), *replies])
        adapter = OpenAIAdapter(api_key="sk-test", client=client)
        result = asyncio.run(adapter.process("raw text"))

        assert len(completions.calls) == 4
        assert result.retries_attempted == 1

    def test_auth_error_fails_immediately(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        response = httpx.Response(401, request=request, json={"error": {"message": "Incorrect API key"}})
        error = openai.AuthenticationError("Incorrect API key", response=response, body=None)
        client, completions = fake_openai_client([error])
        adapter = OpenAIAdapter(api_key="sk-test", client=client)

        with pytest.raises(AdapterError, match="Incorrect API key"):
            asyncio.run(adapter.process("raw text"))
        assert len(completions.calls) == 1

    def test_empty_completion(self):
        client, _ = fake_openai_client([""])
        adapter = OpenAIAdapter(api_key="sk-test", client=client)
        with pytest.raises(AdapterError, match="empty response"):
            asyncio.run(adapter.process("raw text"))


class TestPromptBudget:

    def test_short_text_untouched(self):
        assert truncate_to_budget("Jane Doe", 100) == "Jane Doe"

    def test_long_text_truncated(self):
        text = "experience " * 5000
        truncated = truncate_to_budget(text, 50)
        assert len(truncated) < len(text)
        assert count_tokens(truncated) <= 70
