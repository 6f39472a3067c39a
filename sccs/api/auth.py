"""Token validation endpoint."""

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from sccs.client.management import ManagementApiDep
from sccs.errors import ManagementApiError
from sccs.storage.evidence import RecorderDep, now_iso

router = APIRouter()


class ValidateTokenRequest(BaseModel):
    """POST /api/auth/validate request."""

    token: str | None = None


@router.post("/validate")
async def validate_token(
    body: ValidateTokenRequest,
    request: Request,
    api: ManagementApiDep,
    recorder: RecorderDep,
):
    """Check a management API token by listing the projects it can see."""
    client_ip = request.client.host if request.client else None
    if not body.token:
        await recorder.record(
            "token_validation",
            "failure",
            {"message": "Token is required", "ip": client_ip, "timestamp": now_iso()},
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token is required")

    attempt_id = await recorder.record(
        "token_validation_attempt", "info", {"ip": client_ip, "timestamp": now_iso()}
    )
    try:
        projects = await api.list_projects(body.token)
    except ManagementApiError as exc:
        await recorder.record(
            "token_validation",
            "failure",
            {
                "message": "Invalid token",
                "validationAttemptId": attempt_id,
                "error": exc.message,
                "errorStatus": exc.status_code,
                "errorDetails": exc.body,
                "timestamp": now_iso(),
            },
        )
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={
                "error": "Invalid Supabase token",
                "details": exc.message,
                "timestamp": now_iso(),
            },
        )

    await recorder.record(
        "token_validation",
        "success",
        {
            "message": "Token validated successfully",
            "validationAttemptId": attempt_id,
            "projectCount": len(projects),
            "projectRefs": [p.get("ref") for p in projects],
            "timestamp": now_iso(),
        },
    )
    return {"valid": True, "projects": projects, "timestamp": now_iso()}
