"""Health endpoint."""

from fastapi import APIRouter, Request

from sccs.config import settings
from sccs.storage.evidence import RecorderDep, now_iso

router = APIRouter()


@router.get("/health")
async def health(request: Request, recorder: RecorderDep):
    """Health check endpoint."""
    await recorder.record(
        "health_check",
        "info",
        {"ip": request.client.host if request.client else None, "timestamp": now_iso()},
    )
    return {"status": "ok", "timestamp": now_iso(), "version": settings.app_version}
