"""Compliance checkers for MFA, RLS and PITR.

Each checker has two entry points:

- ``check`` produces the full category payload for the compliance report.
- ``probe`` is the reduced status read used to plan fixes.

Both turn upstream failures into a typed result instead of raising, so one
category failing never takes the others down with it.
"""

import logging
from typing import Protocol

from pydantic import ValidationError

from sccs.client.management import ManagementApiClient
from sccs.engine.query import QueryExecutor
from sccs.errors import ManagementApiError
from sccs.schemas.compliance import (
    ComplianceSummary,
    MfaCheckResult,
    MfaUser,
    PitrCheckResult,
    RlsCheckResult,
    RlsTable,
)
from sccs.schemas.fix import CategoryStatus
from sccs.schemas.upstream import MfaUserRow, RlsTableRow, TableRef
from sccs.storage.evidence import EvidenceRecorder, now_iso

logger = logging.getLogger(__name__)

PROBE_ERRORS = (ManagementApiError, ValidationError)

MFA_USERS_QUERY = """
SELECT
  id,
  email,
  (
    SELECT count(*) > 0
    FROM auth.mfa_factors
    WHERE user_id = u.id
  ) AS has_mfa
FROM auth.users u;
"""

RLS_TABLES_QUERY = """
SELECT
  n.nspname AS schemaname,
  c.relname AS tablename,
  pg_get_userbyid(c.relowner) AS tableowner,
  (SELECT EXISTS (
    SELECT 1 FROM pg_policies
    WHERE schemaname = n.nspname AND tablename = c.relname
  )) AS has_policies,
  c.relrowsecurity AS rls_enabled
FROM pg_catalog.pg_class c
JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
WHERE c.relkind = 'r'
AND n.nspname = 'public'
AND c.relname NOT LIKE 'pg_%'
AND c.relname NOT LIKE 'sql_%'
ORDER BY n.nspname, c.relname;
"""

RLS_MISSING_TABLES_QUERY = """
SELECT
  n.nspname AS schemaname,
  c.relname AS tablename
FROM pg_catalog.pg_class c
JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
WHERE c.relkind = 'r'
AND n.nspname = 'public'
AND c.relname NOT LIKE 'pg_%'
AND c.relname NOT LIKE 'sql_%'
AND NOT c.relrowsecurity
ORDER BY n.nspname, c.relname;
"""


class Checker(Protocol):
    async def check(self, project_ref: str, token: str, parent_check_id: str | None = None): ...

    async def probe(
        self, project_ref: str, token: str, status_check_id: str | None = None
    ) -> CategoryStatus: ...


class BaseChecker:
    """Shared collaborators and failure recording."""

    category: str = ""

    def __init__(
        self,
        api: ManagementApiClient,
        recorder: EvidenceRecorder,
        executor: QueryExecutor,
    ) -> None:
        self.api = api
        self.recorder = recorder
        self.executor = executor

    async def _record_failure(
        self, action: str, project_ref: str, exc: Exception, **refs: str | None
    ) -> None:
        logger.error("Error in %s: %s", action, exc)
        await self.recorder.record(
            action,
            "error",
            {
                "projectRef": project_ref,
                **refs,
                "error": str(exc),
                "errorDetails": getattr(exc, "body", None),
                "timestamp": now_iso(),
            },
            project_ref,
        )


class MfaChecker(BaseChecker):
    """Global MFA comes from the auth config; per-user MFA from auth.mfa_factors."""

    category = "mfa"

    async def check(
        self, project_ref: str, token: str, parent_check_id: str | None = None
    ) -> MfaCheckResult:
        mfa_check_id = await self.recorder.record(
            "mfa_check_started",
            "info",
            {"projectRef": project_ref, "parentCheckId": parent_check_id, "timestamp": now_iso()},
            project_ref,
        )
        try:
            auth_config = await self.api.get_auth_config(project_ref, token)
        except PROBE_ERRORS as exc:
            await self._record_failure(
                "mfa_check_failed", project_ref, exc, parentCheckId=parent_check_id
            )
            return MfaCheckResult(error=str(exc))

        mfa_enabled = auth_config.mfa_enabled_globally
        await self.recorder.record(
            "auth_config_retrieved",
            "info",
            {
                "projectRef": project_ref,
                "mfaCheckId": mfa_check_id,
                "config": auth_config.redacted(),
                "mfaEnabled": mfa_enabled,
                "timestamp": now_iso(),
            },
            project_ref,
        )

        users = await self._user_statuses(project_ref, token, mfa_check_id)
        # Only the user list feeds the summary, even when MFA is on globally.
        summary = ComplianceSummary.from_statuses([u.status for u in users])

        await self.recorder.record(
            "mfa_check_completed",
            "info",
            {
                "projectRef": project_ref,
                "mfaCheckId": mfa_check_id,
                "mfaEnabledGlobally": mfa_enabled,
                "summary": summary.model_dump(),
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return MfaCheckResult(
            mfa_enabled_globally=mfa_enabled,
            users=users,
            summary=summary,
            check_id=mfa_check_id,
        )

    async def _user_statuses(
        self, project_ref: str, token: str, mfa_check_id: str | None
    ) -> list[MfaUser]:
        """Per-user MFA. A failed query degrades to no users rather than failing the check."""
        try:
            rows = await self.executor.execute(
                project_ref, token, MFA_USERS_QUERY, "mfa_user_query"
            )
            parsed = [MfaUserRow.model_validate(row) for row in rows]
        except PROBE_ERRORS as exc:
            logger.warning("Error fetching users with SQL: %s", exc)
            await self.recorder.record(
                "mfa_user_query_failure",
                "warning",
                {
                    "projectRef": project_ref,
                    "mfaCheckId": mfa_check_id,
                    "error": str(exc),
                    "timestamp": now_iso(),
                },
                project_ref,
            )
            return []

        users = [
            MfaUser(
                id=row.id,
                email=row.email,
                has_mfa=bool(row.has_mfa),
                status="pass" if row.has_mfa else "fail",
            )
            for row in parsed
        ]
        with_mfa = sum(1 for u in users if u.has_mfa)
        await self.recorder.record(
            "user_mfa_status",
            "info",
            {
                "projectRef": project_ref,
                "mfaCheckId": mfa_check_id,
                "userCount": len(users),
                "usersWithMfa": with_mfa,
                "usersWithoutMfa": len(users) - with_mfa,
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return users

    async def probe(
        self, project_ref: str, token: str, status_check_id: str | None = None
    ) -> CategoryStatus:
        try:
            auth_config = await self.api.get_auth_config(project_ref, token)
        except PROBE_ERRORS as exc:
            await self._record_failure(
                "mfa_status_check_failed", project_ref, exc, statusCheckId=status_check_id
            )
            return CategoryStatus(needs_fix=False, error=str(exc))

        needs_fix = not auth_config.mfa_enabled_globally
        await self.recorder.record(
            "mfa_status_checked",
            "info",
            {
                "projectRef": project_ref,
                "statusCheckId": status_check_id,
                "mfaNeedsFix": needs_fix,
                "mfaEnabled": not needs_fix,
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return CategoryStatus(needs_fix=needs_fix)


class RlsChecker(BaseChecker):
    """A table passes when row level security is on; policies are informational."""

    category = "rls"

    async def check(
        self, project_ref: str, token: str, parent_check_id: str | None = None
    ) -> RlsCheckResult:
        rls_check_id = await self.recorder.record(
            "rls_check_started",
            "info",
            {"projectRef": project_ref, "parentCheckId": parent_check_id, "timestamp": now_iso()},
            project_ref,
        )
        try:
            rows = await self.executor.execute(
                project_ref, token, RLS_TABLES_QUERY, "rls_tables_query"
            )
            parsed = [RlsTableRow.model_validate(row) for row in rows]
        except PROBE_ERRORS as exc:
            await self._record_failure(
                "rls_check_failed", project_ref, exc, parentCheckId=parent_check_id
            )
            return RlsCheckResult(error=str(exc))

        tables = [
            RlsTable(
                id=f"{row.schemaname}.{row.tablename}",
                name=row.tablename,
                schema_name=row.schemaname,
                rls_enabled=bool(row.rls_enabled),
                has_policies=bool(row.has_policies),
                status="pass" if row.rls_enabled else "fail",
            )
            for row in parsed
        ]
        with_rls = sum(1 for t in tables if t.rls_enabled)
        with_policies = sum(1 for t in tables if t.has_policies)
        await self.recorder.record(
            "table_rls_status",
            "info",
            {
                "projectRef": project_ref,
                "rlsCheckId": rls_check_id,
                "tableCount": len(tables),
                "tablesWithRls": with_rls,
                "tablesWithoutRls": len(tables) - with_rls,
                "tablesWithPolicies": with_policies,
                "tablesWithoutPolicies": len(tables) - with_policies,
                "timestamp": now_iso(),
            },
            project_ref,
        )

        summary = ComplianceSummary.from_statuses([t.status for t in tables])
        await self.recorder.record(
            "rls_check_completed",
            "info",
            {
                "projectRef": project_ref,
                "rlsCheckId": rls_check_id,
                "summary": summary.model_dump(),
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return RlsCheckResult(tables=tables, summary=summary, check_id=rls_check_id)

    async def probe(
        self, project_ref: str, token: str, status_check_id: str | None = None
    ) -> CategoryStatus:
        try:
            rows = await self.executor.execute(
                project_ref, token, RLS_MISSING_TABLES_QUERY, "rls_missing_tables_query"
            )
            tables = [
                TableRef(schema_name=row["schemaname"], name=row["tablename"])
                for row in rows
            ]
        except (*PROBE_ERRORS, KeyError, TypeError) as exc:
            await self._record_failure(
                "rls_status_check_failed", project_ref, exc, statusCheckId=status_check_id
            )
            return CategoryStatus(needs_fix=False, tables=[], error=str(exc))

        await self.recorder.record(
            "rls_tables_checked",
            "info",
            {
                "projectRef": project_ref,
                "statusCheckId": status_check_id,
                "tablesNeedingRls": len(tables),
                "tables": [t.qualified_name for t in tables],
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return CategoryStatus(needs_fix=bool(tables), tables=tables)


class PitrChecker(BaseChecker):
    """PITR passes only when the backups config reports pitr_enabled as boolean true."""

    category = "pitr"

    async def check(
        self, project_ref: str, token: str, parent_check_id: str | None = None
    ) -> PitrCheckResult:
        pitr_check_id = await self.recorder.record(
            "pitr_check_started",
            "info",
            {"projectRef": project_ref, "parentCheckId": parent_check_id, "timestamp": now_iso()},
            project_ref,
        )
        try:
            backups = await self.api.get_backups(project_ref, token)
        except PROBE_ERRORS as exc:
            await self._record_failure(
                "pitr_check_failed", project_ref, exc, parentCheckId=parent_check_id
            )
            return PitrCheckResult(
                status="error",
                error=str(exc),
                summary=PitrCheckResult.summarize("error"),
            )

        pitr_enabled = backups.pitr_active
        status = "pass" if pitr_enabled else "fail"
        config = backups.model_dump()
        await self.recorder.record(
            "pitr_config_retrieved",
            "info",
            {
                "projectRef": project_ref,
                "pitrCheckId": pitr_check_id,
                "config": config,
                "pitrEnabled": pitr_enabled,
                "timestamp": now_iso(),
            },
            project_ref,
        )
        await self.recorder.record(
            "pitr_check_completed",
            "info",
            {
                "projectRef": project_ref,
                "pitrCheckId": pitr_check_id,
                "pitrEnabled": pitr_enabled,
                "status": status,
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return PitrCheckResult(
            pitr_enabled=pitr_enabled,
            status=status,
            backups_config=config,
            summary=PitrCheckResult.summarize(status),
            check_id=pitr_check_id,
        )

    async def probe(
        self, project_ref: str, token: str, status_check_id: str | None = None
    ) -> CategoryStatus:
        try:
            backups = await self.api.get_backups(project_ref, token)
        except PROBE_ERRORS as exc:
            await self._record_failure(
                "pitr_status_check_failed", project_ref, exc, statusCheckId=status_check_id
            )
            return CategoryStatus(needs_fix=False, error=str(exc))

        needs_fix = not backups.pitr_active
        await self.recorder.record(
            "pitr_status_checked",
            "info",
            {
                "projectRef": project_ref,
                "statusCheckId": status_check_id,
                "pitrNeedsFix": needs_fix,
                "pitrEnabled": not needs_fix,
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return CategoryStatus(needs_fix=needs_fix)
