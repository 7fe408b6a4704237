"""
CV processing orchestrator.

Request path (`submit`): validate, durably mark the record PROCESSING, hand
the attempt to a background worker, return at once.

Background path (`run`): call the model adapter, re-check its output, write
COMPLETED or FAILED. `run` is the error boundary of the background step and
never raises.
"""
import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from app.core.config import settings
from app.services.adapters import (
    AdapterError,
    AdapterResult,
    ModelAdapter,
    UnsupportedModelError,
    get_adapter,
    resolve_model,
)
from app.services.cv_schema import is_complete_cv, is_complete_registration
from app.services.job_store import JobStatus, JobStore, cv_job_store, is_valid_document_id

logger = logging.getLogger(__name__)


# ─── Custom Exceptions ───────────────────────────────────────────────────────
class JobValidationError(ValueError):
    """Client-caused rejection; the record is left untouched."""


class JobNotFoundError(LookupError):
    """Record absent or owned by someone else (deliberately indistinguishable)."""


class JobConflictError(RuntimeError):
    """An attempt for this document is already in flight."""


@dataclass
class SubmitReceipt:
    document_id: str
    status: str
    attempt_id: str
    model: str


# (document_id, owner_id, model_name, attempt_id)
Dispatcher = Callable[[str, str, str, str], None]


def run_async_wrapper(coro):
    """
    Run an async coroutine synchronously, handling existing event loops.
    If a loop is already running in this thread, run in a separate thread.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        result = None
        exception = None

        def run_in_thread():
            nonlocal result, exception
            try:
                result = asyncio.run(coro)
            except BaseException as e:
                exception = e

        thread = threading.Thread(target=run_in_thread)
        thread.start()
        thread.join()

        if exception:
            raise exception
        return result
    return asyncio.run(coro)


class CVProcessingOrchestrator:
    """
    Drives one document through pending → processing → completed | failed.

    `dispatcher` schedules `run` off the request path; it is injected so the
    API can choose Celery or the local executor, and tests can hold work back.
    """

    def __init__(
        self,
        store: JobStore = cv_job_store,
        dispatcher: Optional[Dispatcher] = None,
        adapter_factory: Callable[[str], ModelAdapter] = get_adapter,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.adapter_factory = adapter_factory

    # ─── Request Path ────────────────────────────────────────────────────────
    async def submit(self, document_id: Optional[str], owner_id: str, model_name: Optional[str]) -> SubmitReceipt:
        if not document_id or not model_name:
            raise JobValidationError("CV ID and model are required")
        if not is_valid_document_id(document_id):
            raise JobValidationError("Invalid CV ID format")
        try:
            model = resolve_model(model_name)
        except UnsupportedModelError as e:
            raise JobValidationError(str(e)) from e

        job = await self.store.get_job_async(document_id, owner_id)
        if not job:
            raise JobNotFoundError("CV not found")
        if not job.raw_text or not job.raw_text.strip():
            raise JobValidationError("CV has no content to process")
        if job.status == JobStatus.PROCESSING:
            raise JobConflictError("CV is already being processed")

        attempt_id = await self.store.begin_processing_async(document_id, owner_id)
        if attempt_id is None:
            # Lost a race with another submit, or the record vanished in between
            current = await self.store.get_job_async(document_id, owner_id)
            if not current:
                raise JobNotFoundError("CV not found")
            raise JobConflictError("CV is already being processed")

        logger.info(f"Processing CV {document_id} with {model.value}...")
        dispatcher = self.dispatcher or dispatch_processing
        try:
            dispatcher(document_id, owner_id, model.value, attempt_id)
        except Exception as e:
            # Nothing will ever pick this attempt up; don't leave it PROCESSING
            logger.error(f"Dispatch failed for CV {document_id}: {e}", exc_info=True)
            self._record_failure(document_id, owner_id, attempt_id, f"Could not start processing: {e}", model.value)
            raise

        return SubmitReceipt(
            document_id=document_id,
            status=JobStatus.PROCESSING.value,
            attempt_id=attempt_id,
            model=model.value,
        )

    # ─── Background Path ─────────────────────────────────────────────────────
    def run(self, document_id: str, owner_id: str, model_name: str, attempt_id: str) -> JobStatus:
        """
        Execute one attempt. Returns the status that was written (or the
        record's current status when the write was skipped). Never raises.
        """
        try:
            job = self.store.get_job(document_id, owner_id)
            if not job:
                logger.error(f"CV {document_id} vanished before processing started.")
                return JobStatus.FAILED
            if job.attempt_id != attempt_id or job.status != JobStatus.PROCESSING:
                logger.warning(f"CV {document_id}: attempt {attempt_id} superseded before it started.")
                return job.status

            try:
                adapter = self.adapter_factory(model_name)
                result = run_async_wrapper(adapter.process(job.raw_text))
                self._check_complete(result)
            except AdapterError as e:
                logger.error(f"{model_name} processing error for CV {document_id}: {e}")
                self.store.fail_job(document_id, owner_id, attempt_id, str(e), model_name)
                return JobStatus.FAILED

            self.store.complete_job(
                document_id,
                owner_id,
                attempt_id,
                model_used=result.model_used,
                structured_cv=result.structured_cv,
                structured_registration=result.structured_registration,
                preview_markup=result.preview_markup,
            )
            logger.info(f"Successfully processed CV {document_id} with {model_name}")
            return JobStatus.COMPLETED

        except Exception as e:
            logger.error(f"Unexpected failure processing CV {document_id}: {e}", exc_info=True)
            self._record_failure(document_id, owner_id, attempt_id, f"Internal error during CV processing: {e}", model_name)
            return JobStatus.FAILED

    @staticmethod
    def _check_complete(result: AdapterResult) -> None:
        if result is None:
            raise AdapterError("AI service returned no data")
        if not is_complete_cv(result.structured_cv) or not is_complete_registration(result.structured_registration):
            raise AdapterError("AI service returned incomplete data")
        if not result.preview_markup or not result.preview_markup.strip():
            raise AdapterError("AI service returned incomplete data")

    def _record_failure(self, document_id: str, owner_id: str, attempt_id: str, message: str, model_name: str) -> None:
        try:
            self.store.fail_job(document_id, owner_id, attempt_id, message, model_name)
        except Exception as e:
            # The record stays PROCESSING until the stale-job reaper fails it
            logger.critical(
                f"Failed to record failure for CV {document_id} (attempt {attempt_id}): {e}",
                exc_info=True,
            )


# ─── Dispatch ────────────────────────────────────────────────────────────────
# Used when Celery has no broker and would otherwise run tasks inline on the
# request thread.
local_executor = ThreadPoolExecutor(max_workers=settings.LOCAL_WORKERS, thread_name_prefix="cv-worker")


def _log_unhandled(future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.critical(f"Background CV processing crashed outside its error boundary: {exc!r}")


def dispatch_processing(document_id: str, owner_id: str, model_name: str, attempt_id: str) -> None:
    """Queue `run` on Celery, or on the local executor when no broker is reachable."""
    from app.core.celery_app import is_eager
    from app.tasks import process_cv_task

    if is_eager():
        future = local_executor.submit(orchestrator.run, document_id, owner_id, model_name, attempt_id)
        future.add_done_callback(_log_unhandled)
    else:
        process_cv_task.delay(document_id, owner_id, model_name, attempt_id)


orchestrator = CVProcessingOrchestrator()
