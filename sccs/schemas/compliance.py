"""Compliance check schemas."""

from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializerFunctionWrapHandler,
    model_serializer,
)
from pydantic.alias_generators import to_camel

CheckStatus = Literal["pass", "fail"]


class CamelModel(BaseModel):
    """Serializes to the camelCase keys the UI consumes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ComplianceSummary(CamelModel):
    """Counts of evaluated units (users, tables, or the single PITR unit)."""

    total: int = 0
    passing: int = 0
    failing: int = 0

    @classmethod
    def from_statuses(cls, statuses: list[str]) -> "ComplianceSummary":
        return cls(
            total=len(statuses),
            passing=sum(1 for s in statuses if s == "pass"),
            failing=sum(1 for s in statuses if s == "fail"),
        )


class MfaUser(CamelModel):
    id: str | None = None
    email: str | None = None
    has_mfa: bool = Field(default=False, alias="hasMFA")
    status: CheckStatus


class CategoryResult(CamelModel):
    """Base for per-category payloads.

    Unset `error`, `users` and `tables` keys are left out, so a healthy category
    has no `error` key and a failed one has no empty payload. Every other field
    is kept, null included.
    """

    @model_serializer(mode="wrap")
    def _drop_unset_payload(self, handler: SerializerFunctionWrapHandler):
        data = handler(self)
        for key in ("error", "users", "tables"):
            if key in data and data[key] is None:
                del data[key]
        return data


class MfaCheckResult(CategoryResult):
    """MFA payload. On failure only `error` and a zeroed summary are set."""

    mfa_enabled_globally: bool | None = None
    users: list[MfaUser] | None = None
    summary: ComplianceSummary = Field(default_factory=ComplianceSummary)
    check_id: str | None = None
    error: str | None = None


class RlsTable(CamelModel):
    id: str
    schema_name: str = Field(alias="schema")
    name: str
    rls_enabled: bool
    has_policies: bool
    status: CheckStatus


class RlsCheckResult(CategoryResult):
    tables: list[RlsTable] | None = None
    summary: ComplianceSummary = Field(default_factory=ComplianceSummary)
    check_id: str | None = None
    error: str | None = None


class PitrCheckResult(CategoryResult):
    """PITR payload. `status` is 'error' when the backups config could not be read."""

    pitr_enabled: bool = False
    status: Literal["pass", "fail", "error"]
    backups_config: dict[str, Any] | None = None
    summary: ComplianceSummary = Field(default_factory=ComplianceSummary)
    check_id: str | None = None
    error: str | None = None

    @classmethod
    def summarize(cls, status: str) -> ComplianceSummary:
        return ComplianceSummary(
            passing=1 if status == "pass" else 0,
            failing=1 if status == "fail" else 0,
            total=0 if status == "error" else 1,
        )


class ReportSummary(CamelModel):
    mfa: ComplianceSummary
    rls: ComplianceSummary
    pitr: ComplianceSummary
    overall_status: CheckStatus


class ComplianceReport(CamelModel):
    """GET /api/compliance/check/{project_ref} response."""

    project_ref: str
    timestamp: str
    check_id: str | None = None
    mfa: MfaCheckResult
    rls: RlsCheckResult
    pitr: PitrCheckResult
    summary: ReportSummary
