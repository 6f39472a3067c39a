"""Error types for management API and evidence failures."""

from typing import Any


class ComplianceServiceError(Exception):
    """Base error carrying the upstream status code and body when known."""

    def __init__(
        self, message: str, status_code: int | None = None, body: Any = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class ManagementApiError(ComplianceServiceError):
    """Management API rejected the request or returned a non-JSON body."""


class AuthError(ManagementApiError):
    """Token missing, expired or without access to the project (401/403)."""


class UpstreamUnavailable(ManagementApiError):
    """Transport failure, timeout or 5xx from the management API."""


class QueryFailed(ManagementApiError):
    """The SQL endpoint rejected a statement."""


class PersistenceFailed(ComplianceServiceError):
    """An evidence sink could not be written."""
