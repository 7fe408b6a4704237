"""
Read-only projection of a CV Job Record for status polling.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel

from app.services.job_store import CVJob, JobStatus, JobStore, cv_job_store


class JobStatusView(BaseModel):
    document_id: str
    status: JobStatus
    processing_error: Optional[str] = None
    model_used: Optional[str] = None
    processed_at: Optional[str] = None
    structured_cv: Optional[Dict[str, Any]] = None
    structured_registration: Optional[Dict[str, Any]] = None
    preview_markup: Optional[str] = None

    @classmethod
    def from_job(cls, job: CVJob) -> "JobStatusView":
        view = cls(
            document_id=job.document_id,
            status=job.status,
            model_used=job.model_used,
            processed_at=job.processed_at,
        )
        if job.status == JobStatus.FAILED:
            view.processing_error = job.processing_error
        # Artifacts from an earlier run are hidden while a new attempt is in flight
        if job.status == JobStatus.COMPLETED and job.has_results:
            view.structured_cv = job.structured_cv
            view.structured_registration = job.structured_registration
            view.preview_markup = job.preview_markup
        return view


async def get_job_status(document_id: str, owner_id: str, store: JobStore = cv_job_store) -> Optional[JobStatusView]:
    """None when the record is absent or belongs to someone else."""
    job = await store.get_job_async(document_id, owner_id)
    if not job:
        return None
    return JobStatusView.from_job(job)
