"""Async client for the Supabase management API.

Covers the endpoints the compliance checks and fixes need: project listing,
auth config, database backups and the SQL execution endpoint. Every call
forwards the caller's access token as a bearer credential.
"""

import logging
from collections.abc import AsyncGenerator
from typing import Annotated, Any

import httpx
from fastapi import Depends

from sccs.config import settings
from sccs.errors import AuthError, ManagementApiError, QueryFailed, UpstreamUnavailable
from sccs.schemas.upstream import AuthConfig, BackupsConfig

logger = logging.getLogger(__name__)


class ManagementApiClient:
    """Thin async wrapper over httpx that maps failures onto typed errors."""

    def __init__(
        self,
        base_url: str = settings.management_api_url,
        timeout: float = settings.request_timeout_seconds,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport
        )

    async def __aenter__(self) -> "ManagementApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        json: Any = None,
        error_cls: type[ManagementApiError] = ManagementApiError,
    ) -> Any:
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailable(f"{method} {path} timed out") from exc
        except httpx.RequestError as exc:
            raise UpstreamUnavailable(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            body = _safe_body(response)
            message = f"{method} {path} returned {response.status_code}"
            if response.status_code in (401, 403):
                raise AuthError(message, response.status_code, body)
            if response.status_code >= 500:
                raise UpstreamUnavailable(message, response.status_code, body)
            raise error_cls(message, response.status_code, body)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise error_cls(
                f"{method} {path} returned a non-JSON body",
                response.status_code,
                response.text[:500],
            ) from exc

    async def list_projects(self, token: str) -> list[dict[str, Any]]:
        data = await self._request("GET", "/projects", token)
        return data if isinstance(data, list) else []

    async def get_auth_config(self, project_ref: str, token: str) -> AuthConfig:
        data = await self._request("GET", f"/projects/{project_ref}/config/auth", token)
        return AuthConfig.model_validate(data or {})

    async def update_auth_config(
        self, project_ref: str, token: str, payload: dict[str, Any]
    ) -> Any:
        return await self._request(
            "PATCH", f"/projects/{project_ref}/config/auth", token, json=payload
        )

    async def get_backups(self, project_ref: str, token: str) -> BackupsConfig:
        data = await self._request("GET", f"/projects/{project_ref}/database/backups", token)
        return BackupsConfig.model_validate(data if isinstance(data, dict) else {})

    async def update_backups(
        self, project_ref: str, token: str, payload: dict[str, Any]
    ) -> Any:
        return await self._request(
            "PATCH", f"/projects/{project_ref}/database/backups", token, json=payload
        )

    async def run_query(self, project_ref: str, token: str, query: str) -> Any:
        """POST one SQL statement (or batch) and return the decoded JSON payload."""
        return await self._request(
            "POST",
            f"/projects/{project_ref}/database/query",
            token,
            json={"query": query},
            error_cls=QueryFailed,
        )


def _safe_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500]


async def get_management_api() -> AsyncGenerator[ManagementApiClient, None]:
    """Dependency yielding a client for the duration of one request."""
    async with ManagementApiClient() as api:
        yield api


# Type alias for dependency injection
ManagementApiDep = Annotated[ManagementApiClient, Depends(get_management_api)]
