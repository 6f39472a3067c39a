"""Remediation routines for MFA, RLS and PITR.

Fixers never raise for upstream failures; the outcome carries the error.
RLS and PITR each have a fallback strategy that runs when the primary one
fails.
"""

import asyncio
import logging
from typing import Protocol

from sccs.client.management import ManagementApiClient
from sccs.engine.query import QueryExecutor, truncate_sql
from sccs.errors import ManagementApiError
from sccs.schemas.fix import CategoryStatus, FixOutcome, RlsFixOutcome, TableFixOutcome
from sccs.schemas.upstream import TableRef
from sccs.storage.evidence import EvidenceRecorder, now_iso

logger = logging.getLogger(__name__)

MFA_UPDATE_PAYLOAD = {"mfa_enabled": True, "mfa_required": True}
PITR_SQL = "SELECT pg_create_physical_replication_slot('pitr_slot');"
PITR_UPDATE_PAYLOAD = {"pitr_enabled": True}


def enable_rls_statement(table: TableRef) -> str:
    return f"ALTER TABLE {table.quoted_name} ENABLE ROW LEVEL SECURITY;"


def enable_rls_batch(tables: list[TableRef]) -> str:
    """Single transaction enabling RLS on every table."""
    statements = "".join(f"{enable_rls_statement(t)}\n" for t in tables)
    return f"BEGIN;\n{statements}COMMIT;"


class Fixer(Protocol):
    async def fix(
        self,
        project_ref: str,
        token: str,
        status: CategoryStatus,
        parent_fix_id: str | None = None,
    ) -> FixOutcome: ...


class BaseFixer:
    def __init__(
        self,
        api: ManagementApiClient,
        recorder: EvidenceRecorder,
        executor: QueryExecutor,
    ) -> None:
        self.api = api
        self.recorder = recorder
        self.executor = executor


class MfaFixer(BaseFixer):
    """Turns MFA on and makes it required through the auth config."""

    async def fix(
        self,
        project_ref: str,
        token: str,
        status: CategoryStatus,
        parent_fix_id: str | None = None,
    ) -> FixOutcome:
        outcome = FixOutcome(needed=True, applied=True)
        mfa_fix_id = await self.recorder.record(
            "mfa_fix_attempt",
            "info",
            {"projectRef": project_ref, "parentFixId": parent_fix_id, "timestamp": now_iso()},
            project_ref,
        )
        await self.recorder.record(
            "mfa_config_update",
            "info",
            {
                "projectRef": project_ref,
                "mfaFixId": mfa_fix_id,
                "updatePayload": MFA_UPDATE_PAYLOAD,
                "timestamp": now_iso(),
            },
            project_ref,
        )
        try:
            response = await self.api.update_auth_config(
                project_ref, token, MFA_UPDATE_PAYLOAD
            )
        except ManagementApiError as exc:
            outcome.error = exc.message
            await self.recorder.record(
                "mfa_fix_failure",
                "error",
                {
                    "projectRef": project_ref,
                    "mfaFixId": mfa_fix_id,
                    "error": exc.message,
                    "errorStatus": exc.status_code,
                    "errorDetails": exc.body,
                    "timestamp": now_iso(),
                },
                project_ref,
            )
            return outcome

        outcome.success = True
        await self.recorder.record(
            "mfa_fix_success",
            "success",
            {
                "projectRef": project_ref,
                "mfaFixId": mfa_fix_id,
                "response": response,
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return outcome


class RlsFixer(BaseFixer):
    """Enables RLS in one transaction, falling back to concurrent per-table statements."""

    async def fix(
        self,
        project_ref: str,
        token: str,
        status: CategoryStatus,
        parent_fix_id: str | None = None,
    ) -> RlsFixOutcome:
        tables = status.tables or []
        outcome = RlsFixOutcome(needed=True, applied=True, table_count=len(tables))
        rls_fix_id = await self.recorder.record(
            "rls_fix_attempt",
            "info",
            {
                "projectRef": project_ref,
                "parentFixId": parent_fix_id,
                "tableCount": len(tables),
                "tables": [t.qualified_name for t in tables],
                "timestamp": now_iso(),
            },
            project_ref,
        )

        query = enable_rls_batch(tables)
        await self.recorder.record(
            "rls_batch_transaction",
            "info",
            {
                "projectRef": project_ref,
                "rlsFixId": rls_fix_id,
                "query": truncate_sql(query),
                "timestamp": now_iso(),
            },
            project_ref,
        )
        try:
            await self.executor.execute(project_ref, token, query, "rls_batch_enable")
        except ManagementApiError as exc:
            logger.warning("RLS batch enable failed, falling back to per-table: %s", exc.message)
            outcome.error = exc.message
            await self.recorder.record(
                "rls_batch_fix_failure",
                "error",
                {
                    "projectRef": project_ref,
                    "rlsFixId": rls_fix_id,
                    "error": exc.message,
                    "errorStatus": exc.status_code,
                    "errorDetails": exc.body,
                    "timestamp": now_iso(),
                },
                project_ref,
            )
            return await self._fix_individually(project_ref, token, tables, rls_fix_id, outcome)

        outcome.success = True
        outcome.tables = [TableFixOutcome(table=t.qualified_name, success=True) for t in tables]
        await self.recorder.record(
            "rls_fix_success",
            "success",
            {
                "projectRef": project_ref,
                "rlsFixId": rls_fix_id,
                "tableCount": len(tables),
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return outcome

    async def _fix_individually(
        self,
        project_ref: str,
        token: str,
        tables: list[TableRef],
        rls_fix_id: str | None,
        outcome: RlsFixOutcome,
    ) -> RlsFixOutcome:
        batch_error = outcome.error
        await self.recorder.record(
            "rls_individual_fix_fallback",
            "info",
            {
                "projectRef": project_ref,
                "rlsFixId": rls_fix_id,
                "tableCount": len(tables),
                "timestamp": now_iso(),
            },
            project_ref,
        )

        results = await asyncio.gather(
            *(self._fix_table(project_ref, token, t, rls_fix_id) for t in tables),
            return_exceptions=True,
        )
        fallback_errors = []
        for table, result in zip(tables, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, Exception):
                logger.error(
                    "Unexpected error enabling RLS on %s",
                    table.qualified_name,
                    exc_info=result,
                )
                fallback_errors.append(str(result))
                result = TableFixOutcome(
                    table=table.qualified_name, success=False, error=str(result)
                )
            outcome.tables.append(result)

        outcome.success = all(t.success for t in outcome.tables)
        if fallback_errors:
            outcome.error = (
                f"Batch error: {batch_error}. Fallback error: {'; '.join(fallback_errors)}"
            )
            await self.recorder.record(
                "rls_fallback_failure",
                "error",
                {
                    "projectRef": project_ref,
                    "rlsFixId": rls_fix_id,
                    "error": outcome.error,
                    "timestamp": now_iso(),
                },
                project_ref,
            )

        succeeded = sum(1 for t in outcome.tables if t.success)
        await self.recorder.record(
            "rls_individual_fixes_completed",
            "success" if outcome.success else "partial_success",
            {
                "projectRef": project_ref,
                "rlsFixId": rls_fix_id,
                "tableCount": len(outcome.tables),
                "successCount": succeeded,
                "failureCount": len(outcome.tables) - succeeded,
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return outcome

    async def _fix_table(
        self, project_ref: str, token: str, table: TableRef, rls_fix_id: str | None
    ) -> TableFixOutcome:
        query = enable_rls_statement(table)
        table_fix_id = await self.recorder.record(
            "rls_table_fix_attempt",
            "info",
            {
                "projectRef": project_ref,
                "rlsFixId": rls_fix_id,
                "table": table.qualified_name,
                "query": query,
                "timestamp": now_iso(),
            },
            project_ref,
        )
        try:
            await self.executor.execute(
                project_ref, token, query, f"rls_enable_{table.schema_name}_{table.name}"
            )
        except ManagementApiError as exc:
            await self.recorder.record(
                "rls_table_fix_failure",
                "error",
                {
                    "projectRef": project_ref,
                    "rlsFixId": rls_fix_id,
                    "tableFixId": table_fix_id,
                    "table": table.qualified_name,
                    "error": exc.message,
                    "errorStatus": exc.status_code,
                    "errorDetails": exc.body,
                    "timestamp": now_iso(),
                },
                project_ref,
            )
            return TableFixOutcome(table=table.qualified_name, success=False, error=exc.message)

        await self.recorder.record(
            "rls_table_fix_success",
            "success",
            {
                "projectRef": project_ref,
                "rlsFixId": rls_fix_id,
                "tableFixId": table_fix_id,
                "table": table.qualified_name,
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return TableFixOutcome(table=table.qualified_name, success=True)


class PitrFixer(BaseFixer):
    """Tries a replication slot over SQL first, then the backups config endpoint."""

    async def fix(
        self,
        project_ref: str,
        token: str,
        status: CategoryStatus,
        parent_fix_id: str | None = None,
    ) -> FixOutcome:
        outcome = FixOutcome(needed=True, applied=True)
        pitr_fix_id = await self.recorder.record(
            "pitr_fix_attempt",
            "info",
            {"projectRef": project_ref, "parentFixId": parent_fix_id, "timestamp": now_iso()},
            project_ref,
        )

        if await self._enable_with_sql(project_ref, token, pitr_fix_id):
            outcome.success = True
            return outcome

        api_attempt_id = await self.recorder.record(
            "pitr_api_fix_attempt",
            "info",
            {"projectRef": project_ref, "pitrFixId": pitr_fix_id, "timestamp": now_iso()},
            project_ref,
        )
        try:
            response = await self.api.update_backups(project_ref, token, PITR_UPDATE_PAYLOAD)
        except ManagementApiError as exc:
            outcome.error = exc.message
            await self.recorder.record(
                "pitr_fix_failure",
                "error",
                {
                    "projectRef": project_ref,
                    "pitrFixId": pitr_fix_id,
                    "pitrApiFixId": api_attempt_id,
                    "error": exc.message,
                    "errorStatus": exc.status_code,
                    "errorDetails": exc.body,
                    "timestamp": now_iso(),
                },
                project_ref,
            )
            return outcome

        outcome.success = True
        await self.recorder.record(
            "pitr_api_fix_success",
            "success",
            {
                "projectRef": project_ref,
                "pitrFixId": pitr_fix_id,
                "pitrApiFixId": api_attempt_id,
                "response": response,
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return outcome

    async def _enable_with_sql(
        self, project_ref: str, token: str, pitr_fix_id: str | None
    ) -> bool:
        sql_attempt_id = await self.recorder.record(
            "pitr_sql_fix_attempt",
            "info",
            {
                "projectRef": project_ref,
                "pitrFixId": pitr_fix_id,
                "query": PITR_SQL,
                "timestamp": now_iso(),
            },
            project_ref,
        )
        try:
            await self.executor.execute(project_ref, token, PITR_SQL, "pitr_enable_sql")
        except ManagementApiError as exc:
            logger.warning("SQL approach to enable PITR failed, trying API: %s", exc.message)
            await self.recorder.record(
                "pitr_sql_fix_failure",
                "warning",
                {
                    "projectRef": project_ref,
                    "pitrFixId": pitr_fix_id,
                    "pitrSqlFixId": sql_attempt_id,
                    "error": exc.message,
                    "errorDetails": exc.body,
                    "timestamp": now_iso(),
                },
                project_ref,
            )
            return False

        await self.recorder.record(
            "pitr_sql_fix_success",
            "success",
            {
                "projectRef": project_ref,
                "pitrFixId": pitr_fix_id,
                "pitrSqlFixId": sql_attempt_id,
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return True
