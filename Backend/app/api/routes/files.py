"""
File Routes — upload, listing, headshot and DOCX export.
"""
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, List, Optional
import logging
import os
import re
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from app.api.deps import get_owner_id, require_document_id
from app.core.config import settings
from app.core.file_validation import IMAGE_EXTENSIONS, validate_file_signature
from app.core.limiter import limiter, UPLOAD_LIMIT, EXPORT_LIMIT
from app.services.docx_renderer import render_final_cv_docx, render_registration_docx
from app.services.job_store import CVJob, JobStatus, cv_job_store
from app.services.storage import get_storage_provider
from app.services.text_extraction import (
    EmptyDocumentError,
    FileTooLargeError,
    TextExtractionError,
    UnsupportedFileTypeError,
    extract_text,
)

storage = get_storage_provider()
logger = logging.getLogger(__name__)
router = APIRouter()

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
CHUNK_SIZE = 64 * 1024  # 64KB chunks

# ─── Data Models ─────────────────────────────────────────────────────────────

class UploadResponse(BaseModel):
    document_id: str
    filename: str
    file_type: str
    file_size: int
    content_preview: str

class FileSummary(BaseModel):
    document_id: str
    filename: Optional[str] = None
    file_type: Optional[str] = None
    file_size: int = 0
    status: JobStatus
    model_used: Optional[str] = None
    processed_at: Optional[str] = None
    has_headshot: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_job(cls, job: CVJob) -> "FileSummary":
        return cls(
            document_id=job.document_id,
            filename=job.original_filename,
            file_type=job.file_type,
            file_size=job.file_size,
            status=job.status,
            model_used=job.model_used,
            processed_at=job.processed_at,
            has_headshot=bool(job.headshot_ref),
            created_at=job.created_at,
            updated_at=job.updated_at,
        )

class FileDetail(FileSummary):
    content_preview: str = ""
    processing_error: Optional[str] = None
    structured_cv: Optional[Dict[str, Any]] = None
    structured_registration: Optional[Dict[str, Any]] = None
    preview_markup: Optional[str] = None

class FileListResponse(BaseModel):
    data: List[FileSummary]

class FileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    filename: Optional[str] = None


def _safe_filename(filename: Optional[str], default: str) -> str:
    base_name = os.path.basename(filename or "")
    return re.sub(r'[^a-zA-Z0-9_.-]', '_', base_name) or default


async def _read_limited(file: UploadFile, max_mb: int) -> bytes:
    """Read an upload in chunks, aborting with 413 once it passes max_mb."""
    max_bytes = max_mb * 1024 * 1024
    chunks = []
    size = 0
    while True:
        chunk = await file.read(CHUNK_SIZE)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise HTTPException(413, f"File too large. Max size: {max_mb}MB")
        chunks.append(chunk)
    return b"".join(chunks)


async def _get_owned_job(document_id: str, owner_id: str) -> CVJob:
    job = await cv_job_store.get_job_async(document_id, owner_id)
    if not job:
        raise HTTPException(404, "CV not found")
    return job


# ─── Upload & Listing ────────────────────────────────────────────────────────

@router.post("/files", response_model=UploadResponse, status_code=201)
@limiter.limit(UPLOAD_LIMIT)
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
):
    """
    Extract the text of an uploaded résumé and create its record (status pending).
    """
    try:
        safe_filename = _safe_filename(file.filename, "unnamed_file")
        await validate_file_signature(file)
        content = await _read_limited(file, settings.MAX_UPLOAD_SIZE_MB)

        extracted = await run_in_threadpool(extract_text, content, safe_filename)
        document_id = await cv_job_store.create_job_async(
            owner_id,
            extracted.text,
            filename=safe_filename,
            file_type=extracted.file_type,
            file_size=extracted.file_size,
        )

        return UploadResponse(
            document_id=document_id,
            filename=safe_filename,
            file_type=extracted.file_type,
            file_size=extracted.file_size,
            content_preview=extracted.content_preview,
        )

    except (UnsupportedFileTypeError, EmptyDocumentError, TextExtractionError) as e:
        raise HTTPException(400, str(e))
    except FileTooLargeError as e:
        raise HTTPException(413, str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Upload failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server error during file upload")


@router.get("/files", response_model=FileListResponse)
async def list_files(owner_id: str = Depends(get_owner_id)):
    jobs = await cv_job_store.list_jobs_async(owner_id)
    return FileListResponse(data=[FileSummary.from_job(job) for job in jobs])


@router.get("/files/{document_id}", response_model=FileDetail)
async def get_file(
    document_id: str = Depends(require_document_id),
    owner_id: str = Depends(get_owner_id),
):
    job = await _get_owned_job(document_id, owner_id)
    detail = FileDetail(
        **FileSummary.from_job(job).model_dump(),
        content_preview=job.raw_text[:500],
        processing_error=job.processing_error if job.status == JobStatus.FAILED else None,
    )
    if job.status == JobStatus.COMPLETED and job.has_results:
        detail.structured_cv = job.structured_cv
        detail.structured_registration = job.structured_registration
        detail.preview_markup = job.preview_markup
    return detail


@router.put("/files/{document_id}", response_model=FileSummary)
async def update_file(
    body: FileUpdate,
    document_id: str = Depends(require_document_id),
    owner_id: str = Depends(get_owner_id),
):
    """Rename a CV. Status, text and artifacts are owned by the pipeline and cannot be set here."""
    fields = {}
    if body.filename is not None:
        if not body.filename.strip():
            raise HTTPException(400, "Filename cannot be empty")
        fields["original_filename"] = _safe_filename(body.filename, "unnamed_file")

    if not await cv_job_store.update_async(document_id, owner_id, **fields):
        raise HTTPException(404, "CV not found")
    job = await _get_owned_job(document_id, owner_id)
    return FileSummary.from_job(job)


@router.delete("/files/{document_id}")
async def delete_file(
    document_id: str = Depends(require_document_id),
    owner_id: str = Depends(get_owner_id),
):
    job = await cv_job_store.delete_job_async(document_id, owner_id)
    if not job:
        raise HTTPException(404, "CV not found")
    if job.headshot_ref:
        storage.delete(job.headshot_ref)
    return {"message": "CV deleted successfully"}


# ─── Headshot ────────────────────────────────────────────────────────────────

def _embeddable_image(content: bytes, filename: str) -> tuple[BytesIO, str]:
    """python-docx only embeds PNG/JPEG/GIF/BMP/TIFF, so WEBP is stored as PNG."""
    if not filename.endswith(".webp"):
        return BytesIO(content), filename
    try:
        with Image.open(BytesIO(content)) as image:
            image.load()
            converted = BytesIO()
            image.save(converted, format="PNG")
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Could not decode WEBP headshot {filename}: {e}")
        raise HTTPException(400, "Invalid image file")
    converted.seek(0)
    return converted, os.path.splitext(filename)[0] + ".png"


@router.post("/files/{document_id}/headshot")
@limiter.limit(UPLOAD_LIMIT)
async def upload_headshot(
    request: Request,
    document_id: str = Depends(require_document_id),
    photo: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
):
    """
    Attach a headshot (PNG/JPEG/WEBP) to be placed on the exported CV.
    Replaces any earlier one.
    """
    job = await _get_owned_job(document_id, owner_id)

    filename = (photo.filename or "").lower()
    if not filename.endswith(IMAGE_EXTENSIONS):
        raise HTTPException(400, "Only PNG, JPEG or WEBP images are allowed")
    await validate_file_signature(photo)
    content = await _read_limited(photo, settings.MAX_HEADSHOT_SIZE_MB)
    if not content:
        raise HTTPException(400, "Uploaded image is empty")

    image, stored_name = _embeddable_image(content, filename)
    headshot_ref = storage.save_upload(image, stored_name)
    updated = await cv_job_store.update_async(document_id, owner_id, headshot_ref=headshot_ref)
    if not updated:
        # Record deleted while the image was being written
        storage.delete(headshot_ref)
        raise HTTPException(404, "CV not found")
    if job.headshot_ref and job.headshot_ref != headshot_ref:
        storage.delete(job.headshot_ref)

    logger.info(f"Headshot stored for CV {document_id}.")
    return {"message": "Headshot uploaded", "document_id": document_id}


# ─── DOCX Export ─────────────────────────────────────────────────────────────

def _docx_response(buffer, filename: str) -> StreamingResponse:
    return StreamingResponse(
        buffer,
        media_type=DOCX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _require_processed(job: CVJob) -> None:
    if job.status != JobStatus.COMPLETED or not job.has_results:
        raise HTTPException(400, "CV has not been processed yet")


@router.get("/files/{document_id}/export/cv")
@limiter.limit(EXPORT_LIMIT)
async def export_cv(
    request: Request,
    document_id: str = Depends(require_document_id),
    owner_id: str = Depends(get_owner_id),
):
    job = await _get_owned_job(document_id, owner_id)
    _require_processed(job)

    headshot_path = None
    if job.headshot_ref and storage.exists(job.headshot_ref):
        headshot_path = storage.get_absolute_path(job.headshot_ref)

    try:
        buffer = await run_in_threadpool(render_final_cv_docx, job.structured_cv, headshot_path)
    except Exception as e:
        logger.error(f"CV export failed for {document_id}: {e}", exc_info=True)
        raise HTTPException(500, "Failed to render CV document")
    return _docx_response(buffer, f"cv-{document_id}.docx")


@router.get("/files/{document_id}/export/registration")
@limiter.limit(EXPORT_LIMIT)
async def export_registration(
    request: Request,
    document_id: str = Depends(require_document_id),
    owner_id: str = Depends(get_owner_id),
):
    job = await _get_owned_job(document_id, owner_id)
    _require_processed(job)

    try:
        buffer = await run_in_threadpool(render_registration_docx, job.structured_registration)
    except Exception as e:
        logger.error(f"Registration export failed for {document_id}: {e}", exc_info=True)
        raise HTTPException(500, "Failed to render registration document")
    return _docx_response(buffer, f"registration-{document_id}.docx")
