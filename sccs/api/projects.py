"""Project listing endpoint."""

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from sccs.auth.middleware import TokenDep
from sccs.client.management import ManagementApiDep
from sccs.errors import ManagementApiError
from sccs.storage.evidence import RecorderDep, now_iso

router = APIRouter()


@router.get("/projects")
async def list_projects(
    request: Request,
    token: TokenDep,
    api: ManagementApiDep,
    recorder: RecorderDep,
):
    """Projects visible to the caller's token."""
    request_id = await recorder.record(
        "projects_request",
        "info",
        {"ip": request.client.host if request.client else None, "timestamp": now_iso()},
    )
    try:
        projects = await api.list_projects(token)
    except ManagementApiError as exc:
        await recorder.record(
            "projects_retrieval_failure",
            "error",
            {
                "requestId": request_id,
                "error": exc.message,
                "errorStatus": exc.status_code,
                "errorDetails": exc.body,
                "timestamp": now_iso(),
            },
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Failed to fetch projects",
                "details": exc.message,
                "timestamp": now_iso(),
            },
        )

    await recorder.record(
        "projects_retrieved",
        "success",
        {
            "requestId": request_id,
            "projectCount": len(projects),
            "projectRefs": [p.get("ref") for p in projects],
            "timestamp": now_iso(),
        },
    )
    return {"projects": projects, "timestamp": now_iso()}
