"""
poller.py
~~~~~~~~~
Async client for the processing API: submit a document, then poll its
status until it reaches a terminal state, the wait ceiling runs out, or the
caller cancels.

    async with CVProcessingClient("http://localhost:8000", owner_id="u-1") as client:
        result = await client.process_and_wait(document_id, "claude")
        if result.outcome is PollOutcome.COMPLETED:
            ...
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL: float = 3.0
MAX_WAIT_INTERVALS: int      = 100
OWNER_HEADER: str            = "X-User-Id"

# Statuses on a poll that mean the job can never be seen again
_GONE_STATUS_CODES = frozenset({401, 403, 404})


class PollOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"        # gave up waiting; the job may still be running
    NOT_FOUND = "not_found"    # 404/401/403 while polling
    REJECTED = "rejected"      # submit was refused
    CANCELLED = "cancelled"


@dataclass
class PollResult:
    document_id: str
    outcome: PollOutcome
    processing_error: str | None = None
    detail: str | None = None
    polls: int = 0
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def structured_cv(self) -> dict[str, Any] | None:
        return self.payload.get("structured_cv")

    @property
    def structured_registration(self) -> dict[str, Any] | None:
        return self.payload.get("structured_registration")

    @property
    def preview_markup(self) -> str | None:
        return self.payload.get("preview_markup")


class CVProcessingClient:
    """
    At most one poll loop runs per document: starting another for the same
    document cancels the first, which then resolves as CANCELLED.
    """

    def __init__(
        self,
        base_url: str,
        owner_id: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_wait: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.poll_interval = poll_interval
        self.max_wait = max_wait if max_wait is not None else poll_interval * MAX_WAIT_INTERVALS
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers={OWNER_HEADER: owner_id},
            timeout=timeout,
            transport=transport,
        )
        self._loops: dict[str, asyncio.Task] = {}
        self._closed = False

    async def __aenter__(self) -> "CVProcessingClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ─── Public API ──────────────────────────────────────────────────────────
    async def process_and_wait(self, document_id: str, model_name: str) -> PollResult:
        if self._closed:
            raise RuntimeError("CVProcessingClient is closed")

        await self.cancel(document_id)
        task = asyncio.create_task(self._run(document_id, model_name))
        self._loops[document_id] = task
        try:
            # wait() rather than await task: a cancel() of the loop must not
            # surface as CancelledError in this caller
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._loops.get(document_id) is task:
                del self._loops[document_id]

        if task.cancelled():
            logger.info(f"Polling for {document_id} cancelled.")
            return PollResult(document_id, PollOutcome.CANCELLED)
        return task.result()

    async def cancel(self, document_id: str) -> bool:
        """Stop the poll loop for a document. Returns False if none was running."""
        task = self._loops.pop(document_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.wait({task})
        return True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for document_id in list(self._loops):
            await self.cancel(document_id)
        await self._http.aclose()

    # ─── Loop ────────────────────────────────────────────────────────────────
    async def _run(self, document_id: str, model_name: str) -> PollResult:
        rejected = await self._submit(document_id, model_name)
        if rejected is not None:
            return rejected

        loop = asyncio.get_running_loop()
        started = loop.time()
        polls = 0
        while True:
            await asyncio.sleep(self.poll_interval)
            polls += 1
            result = await self._poll_once(document_id)
            if result is not None:
                result.polls = polls
                return result
            if loop.time() - started >= self.max_wait:
                logger.warning(f"Stopped polling {document_id} after {self.max_wait:.0f}s; job may still be running.")
                return PollResult(
                    document_id,
                    PollOutcome.TIMEOUT,
                    detail=f"No terminal status after {self.max_wait:.0f}s",
                    polls=polls,
                )

    async def _submit(self, document_id: str, model_name: str) -> PollResult | None:
        try:
            response = await self._http.post(
                "/api/ai/process",
                json={"document_id": document_id, "model": model_name},
            )
        except httpx.RequestError as e:
            logger.error(f"Submit for {document_id} failed: {e}")
            return PollResult(document_id, PollOutcome.REJECTED, detail=f"Submit failed: {e}")

        if response.status_code == 409:
            # An attempt is already running server-side; follow it instead
            logger.info(f"{document_id} is already being processed; following the running attempt.")
            return None

        if response.status_code != 202:
            detail = _detail(response)
            logger.warning(f"Submit for {document_id} refused ({response.status_code}): {detail}")
            return PollResult(document_id, PollOutcome.REJECTED, detail=detail)

        logger.info(f"Submitted {document_id} for processing with {model_name}.")
        return None

    async def _poll_once(self, document_id: str) -> PollResult | None:
        """A terminal PollResult, or None to keep polling."""
        try:
            response = await self._http.get(f"/api/ai/status/{document_id}")
        except httpx.RequestError as e:
            logger.warning(f"Status check for {document_id} failed, retrying: {e}")
            return None

        code = response.status_code
        if code in _GONE_STATUS_CODES:
            return PollResult(document_id, PollOutcome.NOT_FOUND, detail=_detail(response))
        if code == 429 or code >= 500:
            logger.warning(f"Status check for {document_id} returned {code}, retrying.")
            return None
        if code >= 400:
            return PollResult(document_id, PollOutcome.REJECTED, detail=_detail(response))

        try:
            payload = response.json()
        except ValueError:
            logger.warning(f"Status check for {document_id} returned an undecodable body, retrying.")
            return None
        if not isinstance(payload, dict):
            return None

        status = payload.get("status")
        if status == "completed":
            return PollResult(document_id, PollOutcome.COMPLETED, payload=payload)
        if status == "failed":
            return PollResult(
                document_id,
                PollOutcome.FAILED,
                processing_error=payload.get("processing_error") or "Processing failed",
                payload=payload,
            )
        return None


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return response.text or response.reason_phrase
