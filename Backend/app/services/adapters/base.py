from __future__ import annotations

import abc
import asyncio
import json
import logging
import math
import random
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from app.core.config import settings
from app.services.adapters.prompts import (
    build_cv_prompt,
    build_preview_prompt,
    build_registration_prompt,
    truncate_to_budget,
)
from app.services.cv_schema import (
    SchemaValidationError,
    parse_structured_cv,
    parse_structured_registration,
    strip_code_fences,
)

# ─── Logger ──────────────────────────────────────────────────────────────────
logger = logging.getLogger(__name__)

# ─── Constants ───────────────────────────────────────────────────────────────
CV_MAX_TOKENS: int           = 2000
REGISTRATION_MAX_TOKENS: int = 1000
PREVIEW_MAX_TOKENS: int      = 1500
TEMPERATURE: float           = 0.1
RETRY_BASE_DELAY_SEC: float  = 1.0                 # base delay for exponential backoff
RETRY_MAX_DELAY_SEC: float   = 16.0                # cap on backoff delay
CALLS_PER_JOB: int           = 3                   # cv, registration, preview
PROCESSING_MARGIN_SEC: float = 60.0                # parsing, DB writes, scheduling

# HTTP statuses worth retrying (529 is Anthropic's "overloaded")
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504, 529})


def processing_budget_seconds() -> float:
    """
    Longest a healthy `ModelAdapter.process` run can take: every call times
    out on every attempt, with the capped backoff between attempts.
    Broker redelivery and the stale-job reaper must both wait longer than this.
    """
    retries = settings.ADAPTER_MAX_RETRIES
    per_call = (retries + 1) * settings.ADAPTER_TIMEOUT_SECONDS + retries * RETRY_MAX_DELAY_SEC
    return CALLS_PER_JOB * per_call + PROCESSING_MARGIN_SEC


def stale_after_seconds() -> int:
    """
    Age at which the reaper fails a PROCESSING record. Leaves room for one
    broker redelivery plus a full second run. STALE_PROCESSING_SECONDS can
    raise this floor but not lower it.
    """
    floor = 2 * math.ceil(processing_budget_seconds())
    configured = settings.STALE_PROCESSING_SECONDS
    if configured and configured < floor:
        logger.warning(
            "STALE_PROCESSING_SECONDS=%d is shorter than a worst-case run; using %d.", configured, floor
        )
    return max(configured, floor)


# ─── Custom Exceptions ───────────────────────────────────────────────────────
class AdapterError(RuntimeError):
    """Raised when a backend cannot turn raw text into the three artifacts."""


class MissingCredentialsError(AdapterError):
    """Raised before any network call when the backend's API key is not configured."""


class TransientBackendError(AdapterError):
    """A backend failure that may succeed on retry (rate limit, 5xx, network)."""


# ─── Result Dataclass ────────────────────────────────────────────────────────
@dataclass
class AdapterResult:
    """
    The three artifacts of one successful run.

    Attributes:
        structured_cv:            Validated CV record (JSON-ready dict).
        structured_registration:  Validated registration record (JSON-ready dict).
        preview_markup:           HTML body fragment previewing the CV.
        model_used:               Logical model name that produced them.
        response_time_ms:         Wall time for all three calls.
        retries_attempted:        Retries summed over the three calls.
    """
    structured_cv:            dict[str, Any]
    structured_registration:  dict[str, Any]
    preview_markup:           str
    model_used:               str
    response_time_ms:         float = 0.0
    retries_attempted:        int   = 0


class ModelAdapter(abc.ABC):
    """
    One language-model backend.

    Subclasses provide `_complete`; `process` drives the three sequential
    calls and guarantees all-or-nothing: any failed or unparseable step
    raises AdapterError and nothing is returned.
    """

    name: str = ""
    display_name: str = ""
    api_key_setting: str = ""

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key if api_key is not None else getattr(settings, self.api_key_setting, None)
        if not self.api_key:
            raise MissingCredentialsError(f"{self.display_name} API key not configured ({self.api_key_setting})")
        self.timeout = settings.ADAPTER_TIMEOUT_SECONDS
        self.max_retries = settings.ADAPTER_MAX_RETRIES
        self._retries_used = 0

    @abc.abstractmethod
    async def _complete(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        """Send one prompt and return the reply text. Map backend errors to AdapterError subclasses."""

    # ─── Main Entry Point ────────────────────────────────────────────────────
    async def process(self, raw_text: str) -> AdapterResult:
        if not raw_text or not raw_text.strip():
            raise AdapterError("No source text to process")

        logger.info("═══ %s processing started ═══", self.display_name)
        start_time = time.perf_counter()
        self._retries_used = 0
        source = truncate_to_budget(raw_text, settings.ADAPTER_MAX_INPUT_TOKENS)

        # 1. Structured CV
        cv_reply = await self._call_with_retry("cv", build_cv_prompt(), source, CV_MAX_TOKENS)
        structured_cv = self._parse(parse_structured_cv, cv_reply)

        # 2. Registration record
        reg_reply = await self._call_with_retry(
            "registration", build_registration_prompt(), source, REGISTRATION_MAX_TOKENS
        )
        structured_registration = self._parse(parse_structured_registration, reg_reply)

        # 3. Preview markup rendered from the validated CV
        preview_reply = await self._call_with_retry(
            "preview", build_preview_prompt(), json.dumps(structured_cv), PREVIEW_MAX_TOKENS
        )
        preview_markup = strip_code_fences(preview_reply or "")
        if not preview_markup:
            raise AdapterError(f"{self.display_name} processing failed: preview markup was empty")

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "═══ %s processing complete — %.2f ms, %d retry(ies) ═══",
            self.display_name, elapsed_ms, self._retries_used
        )
        return AdapterResult(
            structured_cv=structured_cv,
            structured_registration=structured_registration,
            preview_markup=preview_markup,
            model_used=self.name,
            response_time_ms=elapsed_ms,
            retries_attempted=self._retries_used,
        )

    def _parse(self, parser: Callable[[str], dict[str, Any]], reply: str) -> dict[str, Any]:
        try:
            return parser(reply)
        except SchemaValidationError as e:
            logger.error("%s returned malformed output: %s", self.display_name, e)
            raise AdapterError(f"{self.display_name} processing failed: {e}") from e

    # ─── Retry Logic ─────────────────────────────────────────────────────────
    async def _call_with_retry(self, step: str, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        """
        Run one backend call with a hard timeout and exponential backoff.

        TransientBackendError and timeouts are retried up to max_retries
        times; any other AdapterError fails immediately.
        """
        for attempt in range(self.max_retries + 1):
            try:
                logger.info(
                    "%s %s call — attempt %d/%d.",
                    self.display_name, step, attempt + 1, self.max_retries + 1
                )
                return await asyncio.wait_for(
                    self._complete(system_prompt, user_prompt, max_tokens),
                    timeout=self.timeout,
                )

            except (TransientBackendError, asyncio.TimeoutError) as e:
                reason = str(e) or f"timed out after {self.timeout:.0f}s"
                if attempt < self.max_retries:
                    self._retries_used += 1
                    delay = min(
                        RETRY_BASE_DELAY_SEC * (2 ** attempt) + random.uniform(0, 1),
                        RETRY_MAX_DELAY_SEC,
                    )
                    logger.warning(
                        "Transient error on %s %s attempt %d (%s) — retrying in %.1f s.",
                        self.display_name, step, attempt + 1, reason, delay
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error("All %d retries exhausted. Last error: %s", self.max_retries, reason)
                    raise AdapterError(f"{self.display_name} processing failed: {reason}") from e

            except AdapterError:
                raise

        # Should never reach here, but just in case
        raise AdapterError(f"{self.display_name} processing failed: unexpected state in retry loop")


class HttpModelAdapter(ModelAdapter):
    """Backends reached through their REST API with httpx."""

    def __init__(self, api_key: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(api_key)
        self._transport = transport

    async def _post_json(self, url: str, headers: dict[str, str], payload: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, headers=headers, json=payload)
                response.raise_for_status()
                return response.json()

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            message = _error_message(e.response)
            if status in RETRYABLE_STATUS_CODES:
                raise TransientBackendError(f"HTTP {status}: {message}") from e
            logger.error("%s client error (non-retryable): %s %s", self.display_name, status, message)
            raise AdapterError(f"{self.display_name} processing failed: {message}") from e

        except httpx.RequestError as e:
            raise TransientBackendError(f"{type(e).__name__}: {e}") from e

        except ValueError as e:
            raise AdapterError(f"{self.display_name} processing failed: response body is not JSON") from e


def _error_message(response: httpx.Response) -> str:
    """Pull the backend's own message out of an error body when there is one."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:300] or response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.text[:300] or response.reason_phrase
