"""Evidence log endpoints."""

import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from sccs.api.compliance import ProjectRef
from sccs.auth.middleware import TokenDep
from sccs.schemas.evidence import EvidenceLogsResponse
from sccs.storage.evidence import RecorderDep, now_iso

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/logs", response_model=EvidenceLogsResponse)
async def all_evidence_logs(request: Request, token: TokenDep, recorder: RecorderDep):
    """Evidence recorded by this process since it started."""
    await recorder.record(
        "evidence_logs_request",
        "info",
        {
            "projectRef": "all",
            "ip": request.client.host if request.client else None,
            "timestamp": now_iso(),
        },
    )
    return EvidenceLogsResponse(logs=recorder.list_all(), timestamp=now_iso())


@router.get("/logs/{project_ref}", response_model=EvidenceLogsResponse)
async def project_evidence_logs(
    project_ref: ProjectRef, request: Request, token: TokenDep, recorder: RecorderDep
):
    """Persisted evidence for one project, newest first."""
    await recorder.record(
        "evidence_logs_request",
        "info",
        {
            "projectRef": project_ref,
            "ip": request.client.host if request.client else None,
            "timestamp": now_iso(),
        },
        project_ref,
    )
    try:
        logs = await recorder.list_for_project(project_ref)
    except OSError as exc:
        logger.error("Error fetching evidence logs: %s", exc)
        await recorder.record(
            "evidence_logs_request_failure",
            "error",
            {"projectRef": project_ref, "error": str(exc), "timestamp": now_iso()},
            project_ref,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Failed to fetch evidence logs",
                "details": str(exc),
                "timestamp": now_iso(),
            },
        )
    return EvidenceLogsResponse(logs=logs, timestamp=now_iso())
