import logging

from app.core.celery_app import celery_app
from app.services.adapters.base import stale_after_seconds
from app.services.job_store import cv_job_store
from app.services.orchestrator import orchestrator

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.process_cv")
def process_cv_task(document_id: str, owner_id: str, model_name: str, attempt_id: str):
    """
    Background step of one processing attempt.
    The orchestrator writes the terminal status itself; this only hands it the attempt.
    """
    status = orchestrator.run(document_id, owner_id, model_name, attempt_id)
    return status.value


@celery_app.task(name="app.tasks.reap_stale_jobs")
def reap_stale_jobs_task():
    """
    Fail records stuck in PROCESSING longer than a worst-case run allows.
    Covers workers that died before they could write a terminal status.
    """
    try:
        reaped = cv_job_store.reap_stale_jobs(stale_after_seconds())
    except Exception as e:
        logger.error(f"Stale job reaper failed: {e}", exc_info=True)
        raise
    if reaped:
        logger.warning(f"Reaped {reaped} stale processing job(s).")
    return reaped
