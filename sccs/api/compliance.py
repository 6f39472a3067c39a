"""Compliance check and fix endpoints."""

import logging
import traceback
from typing import Annotated

from fastapi import APIRouter, Depends, Path, Request, status
from fastapi.responses import JSONResponse

from sccs.auth.middleware import TokenDep
from sccs.client.management import ManagementApiDep
from sccs.engine.orchestrator import ComplianceService
from sccs.schemas.compliance import ComplianceReport
from sccs.schemas.fix import FixRequest, FixResult
from sccs.storage.evidence import EvidenceRecorder, RecorderDep, now_iso

logger = logging.getLogger(__name__)

router = APIRouter()


def get_compliance_service(api: ManagementApiDep, recorder: RecorderDep) -> ComplianceService:
    return ComplianceService(api, recorder)


ServiceDep = Annotated[ComplianceService, Depends(get_compliance_service)]

# Project refs are used as evidence directory names, so only plain slugs are accepted
ProjectRef = Annotated[str, Path(pattern=r"^[A-Za-z0-9_-]+$")]


async def _server_error(
    recorder: EvidenceRecorder, action: str, project_ref: str, message: str, exc: Exception
) -> JSONResponse:
    """Record the failure with its stack and answer 500 without it."""
    await recorder.record(
        action,
        "error",
        {
            "projectRef": project_ref,
            "error": str(exc),
            "stack": traceback.format_exc(),
            "timestamp": now_iso(),
        },
        project_ref,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": message, "details": str(exc), "timestamp": now_iso()},
    )


@router.get("/check/{project_ref}", response_model=ComplianceReport)
async def run_compliance_check(
    project_ref: ProjectRef,
    request: Request,
    token: TokenDep,
    service: ServiceDep,
    recorder: RecorderDep,
):
    """
    Run the MFA, RLS and PITR checks concurrently.
    Category failures are reported inside the payload, not as a transport error.
    """
    try:
        return await service.run_check(
            project_ref, token, request.client.host if request.client else None
        )
    except Exception as exc:
        logger.exception("Error running compliance checks")
        return await _server_error(
            recorder,
            "compliance_check_failed",
            project_ref,
            "Failed to run compliance checks",
            exc,
        )


@router.post("/fix/{project_ref}", response_model=FixResult)
async def fix_compliance_issues(
    project_ref: ProjectRef,
    request: Request,
    token: TokenDep,
    service: ServiceDep,
    recorder: RecorderDep,
    body: FixRequest | None = None,
):
    """
    Re-check the project and apply the fixes it needs.
    `fixMfa`, `fixRls` and `fixPitr` opt categories out; all default to true.
    """
    options = body or FixRequest()
    try:
        return await service.run_fix(
            project_ref, token, options, request.client.host if request.client else None
        )
    except Exception as exc:
        logger.exception("Error in compliance fix")
        return await _server_error(
            recorder,
            "compliance_fix_failure",
            project_ref,
            "Failed to fix compliance issues",
            exc,
        )
