"""Access token resolution for management API calls."""

import json
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from sccs.storage.evidence import RecorderDep, now_iso

TOKEN_HEADER = "supabase-token"


async def _body_token(request: Request) -> str | None:
    body = await request.body()
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("token"), str):
        return payload["token"]
    return None


async def resolve_token(request: Request) -> tuple[str | None, str | None]:
    """
    Return (token, source). Precedence: Bearer header, supabase-token header,
    body `token`, query `token`.
    """
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        # An empty bearer token is rejected, not replaced by another source
        return auth_header[7:].strip(), "Authorization header"
    if request.headers.get(TOKEN_HEADER):
        return request.headers[TOKEN_HEADER], "supabase-token header"
    body_token = await _body_token(request)
    if body_token:
        return body_token, "request body"
    if request.query_params.get("token"):
        return request.query_params["token"], "query parameter"
    return None, None


async def get_token(
    request: Request,
    recorder: RecorderDep,
) -> str:
    """Extract the caller's management API token or reject with 401."""
    client_ip = request.client.host if request.client else None
    token, source = await resolve_token(request)
    if not token:
        await recorder.record(
            "token_validation",
            "failure",
            {
                "message": "Missing token",
                "endpoint": request.url.path,
                "method": request.method,
                "ip": client_ip,
                "timestamp": now_iso(),
            },
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Supabase token is required",
        )

    await recorder.record(
        "token_validation_attempt",
        "info",
        {
            "endpoint": request.url.path,
            "method": request.method,
            "ip": client_ip,
            "tokenProvided": True,
            "tokenSource": source,
            "timestamp": now_iso(),
        },
    )
    return token


# Type alias for dependency injection
TokenDep = Annotated[str, Depends(get_token)]
