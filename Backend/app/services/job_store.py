import json
import logging
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Dict, Any, List

from app.db import get_db_connection, get_async_db_connection

logger = logging.getLogger(__name__)

DOCUMENT_ID_PATTERN = re.compile(r"[0-9a-fA-F]{24}")

class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)

# Columns a caller may set through JobStore.update(). Status and results only
# move through the pipeline methods below.
UPDATABLE_FIELDS = frozenset({"original_filename", "headshot_ref"})


@dataclass
class CVJob:
    document_id: str
    owner_id: str
    status: JobStatus
    raw_text: str = ""
    original_filename: Optional[str] = None
    file_type: Optional[str] = None
    file_size: int = 0
    model_used: Optional[str] = None
    structured_cv: Optional[Dict[str, Any]] = None
    structured_registration: Optional[Dict[str, Any]] = None
    preview_markup: Optional[str] = None
    processing_error: Optional[str] = None
    processed_at: Optional[str] = None
    attempt_id: Optional[str] = None
    headshot_ref: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    version: int = 0

    @property
    def has_results(self) -> bool:
        return (
            self.structured_cv is not None
            and self.structured_registration is not None
            and self.preview_markup is not None
        )


def new_document_id() -> str:
    return secrets.token_hex(12)

def is_valid_document_id(document_id: Optional[str]) -> bool:
    return bool(document_id) and bool(DOCUMENT_ID_PATTERN.fullmatch(document_id))

def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

def _loads(value: Optional[str]) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    return json.loads(value)

def _row_to_job(row) -> CVJob:
    return CVJob(
        document_id=row["document_id"],
        owner_id=row["owner_id"],
        status=JobStatus(row["status"]),
        raw_text=row["raw_text"] or "",
        original_filename=row["original_filename"],
        file_type=row["file_type"],
        file_size=row["file_size"] or 0,
        model_used=row["model_used"],
        structured_cv=_loads(row["structured_cv"]),
        structured_registration=_loads(row["structured_registration"]),
        preview_markup=row["preview_markup"],
        processing_error=row["processing_error"],
        processed_at=row["processed_at"],
        attempt_id=row["attempt_id"],
        headshot_ref=row["headshot_ref"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        version=row["version"] or 0,
    )


class JobStore:
    """
    Persistence for CV Job Records.

    Every read and write is scoped by owner: a record owned by someone else
    behaves exactly like a missing one. Async methods serve FastAPI, sync
    methods serve Celery workers and the local executor.
    """

    # ─── ASYNC METHODS (For FastAPI) ─────────────────────────────────────────

    async def create_job_async(
        self,
        owner_id: str,
        raw_text: str,
        filename: Optional[str] = None,
        file_type: Optional[str] = None,
        file_size: int = 0,
        document_id: Optional[str] = None,
    ) -> str:
        document_id = document_id or new_document_id()
        now = utc_now()
        query = """
            INSERT INTO cvs (document_id, owner_id, original_filename, file_type, file_size,
                             raw_text, status, created_at, updated_at, version)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        args = (document_id, owner_id, filename, file_type, file_size,
                raw_text, JobStatus.PENDING.value, now, now, 1)

        async with get_async_db_connection() as conn:
            await conn.execute(query, args)
            await conn.commit()

        logger.info(f"CV {document_id} created for owner {owner_id}.")
        return document_id

    async def get_job_async(self, document_id: str, owner_id: str) -> Optional[CVJob]:
        async with get_async_db_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM cvs WHERE document_id = ? AND owner_id = ?",
                (document_id, owner_id),
            )
            row = await cursor.fetchone()
        return _row_to_job(row) if row else None

    async def list_jobs_async(self, owner_id: str) -> List[CVJob]:
        async with get_async_db_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM cvs WHERE owner_id = ? ORDER BY created_at DESC",
                (owner_id,),
            )
            rows = await cursor.fetchall()
        return [_row_to_job(row) for row in rows]

    async def update_async(self, document_id: str, owner_id: str, **fields: Any) -> bool:
        """Partial update of metadata columns. Returns False when nothing matched."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")
        if not fields:
            return await self.get_job_async(document_id, owner_id) is not None

        assignments = ", ".join(f"{name} = ?" for name in fields)
        args = (*fields.values(), utc_now(), document_id, owner_id)
        async with get_async_db_connection() as conn:
            cursor = await conn.execute(
                f"""
                UPDATE cvs SET {assignments}, updated_at = ?, version = version + 1
                WHERE document_id = ? AND owner_id = ?
                RETURNING document_id
                """,
                args,
            )
            rows = await cursor.fetchall()
            await conn.commit()
        return bool(rows)

    async def delete_job_async(self, document_id: str, owner_id: str) -> Optional[CVJob]:
        job = await self.get_job_async(document_id, owner_id)
        if not job:
            return None
        async with get_async_db_connection() as conn:
            await conn.execute(
                "DELETE FROM cvs WHERE document_id = ? AND owner_id = ?",
                (document_id, owner_id),
            )
            await conn.commit()
        logger.info(f"CV {document_id} deleted.")
        return job

    async def begin_processing_async(self, document_id: str, owner_id: str) -> Optional[str]:
        """
        Compare-and-set a record into PROCESSING.

        Clears processing_error and issues a fresh attempt_id; prior results
        stay in place until a completed attempt replaces them. Returns the
        attempt_id, or None when the record is missing, not owned, or
        already PROCESSING.
        """
        attempt_id = uuid.uuid4().hex
        async with get_async_db_connection() as conn:
            cursor = await conn.execute(
                """
                UPDATE cvs
                SET status = ?, processing_error = NULL, attempt_id = ?,
                    updated_at = ?, version = version + 1
                WHERE document_id = ? AND owner_id = ? AND status != ?
                RETURNING document_id
                """,
                (JobStatus.PROCESSING.value, attempt_id, utc_now(),
                 document_id, owner_id, JobStatus.PROCESSING.value),
            )
            rows = await cursor.fetchall()
            await conn.commit()

        if not rows:
            return None
        logger.info(f"CV {document_id} marked PROCESSING (attempt {attempt_id}).")
        return attempt_id

    # ─── SYNC METHODS (Celery / executor) ────────────────────────────────────

    def get_job(self, document_id: str, owner_id: str) -> Optional[CVJob]:
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM cvs WHERE document_id = ? AND owner_id = ?",
                (document_id, owner_id),
            ).fetchone()
        return _row_to_job(row) if row else None

    def complete_job(
        self,
        document_id: str,
        owner_id: str,
        attempt_id: str,
        model_used: str,
        structured_cv: Dict[str, Any],
        structured_registration: Dict[str, Any],
        preview_markup: str,
    ) -> bool:
        """Write all three artifacts with the COMPLETED status in one statement."""
        now = utc_now()
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                UPDATE cvs
                SET status = ?,
                    structured_cv = ?,
                    structured_registration = ?,
                    preview_markup = ?,
                    model_used = ?,
                    processing_error = NULL,
                    processed_at = ?,
                    updated_at = ?,
                    version = version + 1
                WHERE document_id = ? AND owner_id = ? AND attempt_id = ? AND status = ?
                RETURNING document_id
                """,
                (JobStatus.COMPLETED.value,
                 json.dumps(structured_cv), json.dumps(structured_registration), preview_markup,
                 model_used, now, now,
                 document_id, owner_id, attempt_id, JobStatus.PROCESSING.value),
            ).fetchall()
            conn.commit()

        if not rows:
            logger.warning(f"CV {document_id}: completion of superseded attempt {attempt_id} discarded.")
            return False
        logger.info(f"CV {document_id} COMPLETED with {model_used}.")
        return True

    def fail_job(
        self,
        document_id: str,
        owner_id: str,
        attempt_id: str,
        error_msg: str,
        model_used: Optional[str] = None,
    ) -> bool:
        """Record a failure. Structured artifacts are left untouched."""
        now = utc_now()
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                UPDATE cvs
                SET status = ?,
                    processing_error = ?,
                    model_used = COALESCE(?, model_used),
                    processed_at = ?,
                    updated_at = ?,
                    version = version + 1
                WHERE document_id = ? AND owner_id = ? AND attempt_id = ? AND status = ?
                RETURNING document_id
                """,
                (JobStatus.FAILED.value, error_msg, model_used, now, now,
                 document_id, owner_id, attempt_id, JobStatus.PROCESSING.value),
            ).fetchall()
            conn.commit()

        if not rows:
            logger.warning(f"CV {document_id}: failure of superseded attempt {attempt_id} discarded.")
            return False
        logger.error(f"CV {document_id} marked as FAILED in DB: {error_msg}")
        return True

    def reap_stale_jobs(self, max_age_seconds: int) -> int:
        """
        Fail every record stuck in PROCESSING for longer than max_age_seconds.

        Clearing attempt_id fences off any worker that is still running the
        reaped attempt.
        """
        now = datetime.now(timezone.utc)
        cutoff = (now - timedelta(seconds=max_age_seconds)).strftime("%Y-%m-%d %H:%M:%S")
        stamp = now.strftime("%Y-%m-%d %H:%M:%S")
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                UPDATE cvs
                SET status = ?,
                    processing_error = ?,
                    attempt_id = NULL,
                    processed_at = ?,
                    updated_at = ?,
                    version = version + 1
                WHERE status = ? AND updated_at < ?
                RETURNING document_id
                """,
                (JobStatus.FAILED.value,
                 f"Processing timed out after {max_age_seconds} seconds. Please try again.",
                 stamp, stamp, JobStatus.PROCESSING.value, cutoff),
            ).fetchall()
            conn.commit()

        if rows:
            logger.warning(f"Reaper: failed {len(rows)} stale PROCESSING job(s).")
        return len(rows)


cv_job_store = JobStore()
