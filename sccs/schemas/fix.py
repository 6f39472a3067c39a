"""Compliance fix schemas."""

from typing import Literal

from pydantic import Field

from sccs.schemas.compliance import CamelModel
from sccs.schemas.upstream import TableRef

FixLabel = Literal["no_action_needed", "fixed", "partially_fixed", "failed"]


class FixRequest(CamelModel):
    """POST /api/compliance/fix/{project_ref} body. Every category defaults to opted in."""

    fix_mfa: bool = True
    fix_rls: bool = True
    fix_pitr: bool = True
    token: str | None = None


class CategoryStatus(CamelModel):
    """Result of the reduced status probe used for fix planning."""

    needs_fix: bool
    tables: list[TableRef] | None = None
    error: str | None = None


class FixOutcome(CamelModel):
    needed: bool
    applied: bool = False
    success: bool = False
    error: str | None = None

    def label(self) -> FixLabel:
        if not self.needed:
            return "no_action_needed"
        return "fixed" if self.success else "failed"


class TableFixOutcome(CamelModel):
    table: str
    success: bool
    error: str | None = None


class RlsFixOutcome(FixOutcome):
    table_count: int = 0
    tables: list[TableFixOutcome] = Field(default_factory=list)

    def label(self) -> FixLabel:
        if self.needed and not self.success and any(t.success for t in self.tables):
            return "partially_fixed"
        return super().label()


class FixSummary(CamelModel):
    mfa: FixLabel
    rls: FixLabel
    pitr: FixLabel


class FixDetails(CamelModel):
    mfa: FixOutcome
    rls: RlsFixOutcome
    pitr: FixOutcome


class FixResult(CamelModel):
    """POST /api/compliance/fix/{project_ref} response."""

    project_ref: str
    timestamp: str
    fix_id: str | None = None
    summary: FixSummary
    details: FixDetails
    all_successful: bool
