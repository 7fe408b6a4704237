"""
Processing Routes — submit a CV to a model backend and poll its status.
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from typing import Optional
import logging

from app.api.deps import get_owner_id, require_document_id
from app.core.limiter import limiter, PROCESS_LIMIT, STATUS_LIMIT
from app.services.orchestrator import (
    JobConflictError,
    JobNotFoundError,
    JobValidationError,
    orchestrator,
)
from app.services.status_query import JobStatusView, get_job_status

logger = logging.getLogger(__name__)
router = APIRouter()

class ProcessRequest(BaseModel):
    document_id: Optional[str] = None
    model: Optional[str] = None

class ProcessResponse(BaseModel):
    document_id: str
    status: str


@router.post("/ai/process", response_model=ProcessResponse, status_code=202)
@limiter.limit(PROCESS_LIMIT)
async def process_cv(
    request: Request,
    body: ProcessRequest,
    owner_id: str = Depends(get_owner_id),
):
    """
    Accepts the job and returns as soon as the record is marked processing.
    Poll /ai/status/{document_id} for the outcome.
    """
    try:
        receipt = await orchestrator.submit(body.document_id, owner_id, body.model)
        return ProcessResponse(document_id=receipt.document_id, status=receipt.status)

    except JobValidationError as e:
        raise HTTPException(400, str(e))
    except JobNotFoundError as e:
        raise HTTPException(404, str(e))
    except JobConflictError as e:
        raise HTTPException(409, str(e))
    except Exception as e:
        logger.error(f"AI process error: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server error during AI processing")


@router.get("/ai/status/{document_id}", response_model=JobStatusView, response_model_exclude_none=True)
@limiter.limit(STATUS_LIMIT)
async def get_processing_status(
    request: Request,
    document_id: str = Depends(require_document_id),
    owner_id: str = Depends(get_owner_id),
):
    view = await get_job_status(document_id, owner_id)
    if not view:
        raise HTTPException(status_code=404, detail="CV not found")
    return view
