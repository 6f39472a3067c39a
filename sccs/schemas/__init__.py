"""API and upstream schemas."""

from sccs.schemas.compliance import (
    ComplianceReport,
    ComplianceSummary,
    MfaCheckResult,
    MfaUser,
    PitrCheckResult,
    ReportSummary,
    RlsCheckResult,
    RlsTable,
)
from sccs.schemas.evidence import EvidenceLogsResponse, EvidenceRecord
from sccs.schemas.fix import (
    CategoryStatus,
    FixDetails,
    FixOutcome,
    FixRequest,
    FixResult,
    FixSummary,
    RlsFixOutcome,
    TableFixOutcome,
)
from sccs.schemas.upstream import AuthConfig, BackupsConfig, MfaUserRow, RlsTableRow, TableRef

__all__ = [
    "AuthConfig",
    "BackupsConfig",
    "CategoryStatus",
    "ComplianceReport",
    "ComplianceSummary",
    "EvidenceLogsResponse",
    "EvidenceRecord",
    "FixDetails",
    "FixOutcome",
    "FixRequest",
    "FixResult",
    "FixSummary",
    "MfaCheckResult",
    "MfaUser",
    "MfaUserRow",
    "PitrCheckResult",
    "ReportSummary",
    "RlsCheckResult",
    "RlsFixOutcome",
    "RlsTable",
    "RlsTableRow",
    "TableFixOutcome",
    "TableRef",
]
