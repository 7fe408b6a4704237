from typing import Optional

from fastapi import Header, HTTPException

from app.services.job_store import is_valid_document_id


async def get_owner_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """
    Principal making the request. Authentication happens upstream (gateway);
    this service only trusts the forwarded identity header.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()


def require_document_id(document_id: str) -> str:
    if not is_valid_document_id(document_id):
        raise HTTPException(status_code=400, detail="Invalid CV ID format")
    return document_id
