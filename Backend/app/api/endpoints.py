from fastapi import APIRouter

from app.api.routes import files, processing

router = APIRouter()

router.include_router(files.router, tags=["files"])
router.include_router(processing.router, tags=["ai"])
