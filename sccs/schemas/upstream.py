"""Schemas for payloads returned by the management API.

Every model tolerates unknown fields. Missing fields fall back to the
defaults declared here, so a sparse config reads as "feature off".
"""

from typing import Any

from pydantic import BaseModel, ConfigDict

REDACTED = "[REDACTED]"
SENSITIVE_AUTH_FIELDS = (
    "sms_provider_auth_token",
    "smtp_pass",
    "secure_email_change_token",
)


class AuthConfig(BaseModel):
    """GET /projects/{ref}/config/auth."""

    model_config = ConfigDict(extra="allow")

    sms_provider: str | None = None
    mfa_enabled: bool | None = None
    external_mfa_enabled: bool | None = None

    @property
    def mfa_enabled_globally(self) -> bool:
        """Any one signal is enough: an SMS provider, the MFA flag, or external MFA."""
        sms_configured = bool(self.sms_provider) and self.sms_provider != "NONE"
        return sms_configured or bool(self.mfa_enabled) or bool(self.external_mfa_enabled)

    def redacted(self) -> dict[str, Any]:
        data = self.model_dump()
        for key in SENSITIVE_AUTH_FIELDS:
            if data.get(key):
                data[key] = REDACTED
        return data


class BackupsConfig(BaseModel):
    """GET /projects/{ref}/database/backups.

    `pitr_enabled` is kept raw: only the JSON boolean true counts as enabled.
    """

    model_config = ConfigDict(extra="allow")

    pitr_enabled: Any = None

    @property
    def pitr_active(self) -> bool:
        return self.pitr_enabled is True


class MfaUserRow(BaseModel):
    """Row of the auth.users / auth.mfa_factors query."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    email: str | None = None
    has_mfa: bool | None = False


class RlsTableRow(BaseModel):
    """Row of the pg_class catalog query."""

    model_config = ConfigDict(extra="allow")

    schemaname: str
    tablename: str
    tableowner: str | None = None
    has_policies: bool | None = False
    rls_enabled: bool | None = False


class TableRef(BaseModel):
    """A table that still needs row level security."""

    schema_name: str
    name: str

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"

    @property
    def quoted_name(self) -> str:
        schema = self.schema_name.replace('"', '""')
        name = self.name.replace('"', '""')
        return f'"{schema}"."{name}"'
