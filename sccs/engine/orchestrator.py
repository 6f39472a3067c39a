"""Check and fix orchestration across the three compliance categories."""

import asyncio
import logging
from typing import Any

from sccs.client.management import ManagementApiClient
from sccs.engine.checkers import MfaChecker, PitrChecker, RlsChecker
from sccs.engine.fixers import MfaFixer, PitrFixer, RlsFixer
from sccs.engine.query import QueryExecutor
from sccs.schemas.compliance import (
    ComplianceReport,
    MfaCheckResult,
    PitrCheckResult,
    ReportSummary,
    RlsCheckResult,
)
from sccs.schemas.fix import (
    CategoryStatus,
    FixDetails,
    FixOutcome,
    FixRequest,
    FixResult,
    FixSummary,
    RlsFixOutcome,
)
from sccs.storage.evidence import EvidenceRecorder, now_iso

logger = logging.getLogger(__name__)


def overall_status(
    mfa: MfaCheckResult, rls: RlsCheckResult, pitr: PitrCheckResult
) -> str:
    """Pass only with no failing users, no failing tables and PITR on."""
    if mfa.summary.failing == 0 and rls.summary.failing == 0 and pitr.status == "pass":
        return "pass"
    return "fail"


def _degraded_result(category: str, exc: BaseException):
    if category == "mfa":
        return MfaCheckResult(error=str(exc))
    if category == "rls":
        return RlsCheckResult(error=str(exc))
    return PitrCheckResult(
        status="error", error=str(exc), summary=PitrCheckResult.summarize("error")
    )


class ComplianceService:
    """Runs compliance checks and fixes for one management API session."""

    def __init__(self, api: ManagementApiClient, recorder: EvidenceRecorder) -> None:
        self.recorder = recorder
        executor = QueryExecutor(api, recorder)
        self.checkers = {
            "mfa": MfaChecker(api, recorder, executor),
            "rls": RlsChecker(api, recorder, executor),
            "pitr": PitrChecker(api, recorder, executor),
        }
        self.fixers = {
            "mfa": MfaFixer(api, recorder, executor),
            "rls": RlsFixer(api, recorder, executor),
            "pitr": PitrFixer(api, recorder, executor),
        }

    async def run_check(
        self, project_ref: str, token: str, client_ip: str | None = None
    ) -> ComplianceReport:
        """
        Run the three checkers concurrently and merge them into one report.
        A failing category degrades to an error payload; the others still report.
        """
        logger.info("Starting compliance check for project: %s", project_ref)
        check_id = await self.recorder.record(
            "compliance_check_initiated",
            "info",
            {"projectRef": project_ref, "ip": client_ip, "timestamp": now_iso()},
            project_ref,
        )

        categories = list(self.checkers)
        outcomes = await asyncio.gather(
            *(self.checkers[c].check(project_ref, token, check_id) for c in categories),
            return_exceptions=True,
        )
        results: dict[str, Any] = {}
        for category, outcome in zip(categories, outcomes):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, Exception):
                logger.error("Error in %s check", category.upper(), exc_info=outcome)
                await self.recorder.record(
                    f"{category}_check_failed",
                    "error",
                    {
                        "projectRef": project_ref,
                        "parentCheckId": check_id,
                        "error": str(outcome),
                        "timestamp": now_iso(),
                    },
                    project_ref,
                )
                outcome = _degraded_result(category, outcome)
            results[category] = outcome

        mfa, rls, pitr = results["mfa"], results["rls"], results["pitr"]
        summary = ReportSummary(
            mfa=mfa.summary,
            rls=rls.summary,
            pitr=PitrCheckResult.summarize(pitr.status),
            overall_status=overall_status(mfa, rls, pitr),
        )
        report = ComplianceReport(
            project_ref=project_ref,
            timestamp=now_iso(),
            check_id=check_id,
            mfa=mfa,
            rls=rls,
            pitr=pitr,
            summary=summary,
        )
        await self.recorder.record(
            "compliance_check_completed",
            "success",
            {
                "projectRef": project_ref,
                "checkId": check_id,
                "summary": summary.model_dump(by_alias=True),
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return report

    async def plan_fixes(
        self, project_ref: str, token: str, fix_id: str | None
    ) -> dict[str, CategoryStatus]:
        """Re-read the live status of every category. Never reuses an earlier report."""
        try:
            status_check_id = await self.recorder.record(
                "compliance_status_check",
                "info",
                {"projectRef": project_ref, "parentFixId": fix_id, "timestamp": now_iso()},
                project_ref,
            )
            categories = list(self.checkers)
            probes = await asyncio.gather(
                *(self.checkers[c].probe(project_ref, token, status_check_id) for c in categories)
            )
            statuses = dict(zip(categories, probes))
            await self.recorder.record(
                "compliance_status_check_completed",
                "info",
                {
                    "projectRef": project_ref,
                    "statusCheckId": status_check_id,
                    **{
                        f"{c}Status": s.model_dump(mode="json", by_alias=True)
                        for c, s in statuses.items()
                    },
                    "timestamp": now_iso(),
                },
                project_ref,
            )
            return statuses
        except Exception as exc:
            logger.error("Error checking compliance status: %s", exc)
            await self.recorder.record(
                "compliance_status_check_failed",
                "error",
                {
                    "projectRef": project_ref,
                    "parentFixId": fix_id,
                    "error": str(exc),
                    "timestamp": now_iso(),
                },
                project_ref,
            )
            raise

    async def run_fix(
        self,
        project_ref: str,
        token: str,
        options: FixRequest,
        client_ip: str | None = None,
    ) -> FixResult:
        """
        Plan from a fresh status read, apply the opted-in fixes that are needed,
        and aggregate a per-category label. Categories not needed are untouched.
        """
        logger.info("Starting compliance fixes for project: %s", project_ref)
        fix_id = await self.recorder.record(
            "compliance_fix_initiated",
            "info",
            {
                "projectRef": project_ref,
                "fixOptions": {
                    "fixMfa": options.fix_mfa,
                    "fixRls": options.fix_rls,
                    "fixPitr": options.fix_pitr,
                },
                "ip": client_ip,
                "timestamp": now_iso(),
            },
            project_ref,
        )

        statuses = await self.plan_fixes(project_ref, token, fix_id)
        opted_in = {"mfa": options.fix_mfa, "rls": options.fix_rls, "pitr": options.fix_pitr}
        rls_tables = statuses["rls"].tables or []
        details = FixDetails(
            mfa=FixOutcome(needed=statuses["mfa"].needs_fix and opted_in["mfa"]),
            rls=RlsFixOutcome(
                needed=statuses["rls"].needs_fix and opted_in["rls"],
                table_count=len(rls_tables),
            ),
            pitr=FixOutcome(needed=statuses["pitr"].needs_fix and opted_in["pitr"]),
        )
        await self.recorder.record(
            "compliance_fix_plan",
            "info",
            {
                "projectRef": project_ref,
                "fixId": fix_id,
                "fixes": details.model_dump(by_alias=True),
                "timestamp": now_iso(),
            },
            project_ref,
        )

        for category in ("mfa", "rls", "pitr"):
            if not getattr(details, category).needed:
                continue
            outcome = await self._apply(category, project_ref, token, statuses[category], fix_id)
            setattr(details, category, outcome)

        summary = FixSummary(
            mfa=details.mfa.label(), rls=details.rls.label(), pitr=details.pitr.label()
        )
        all_successful = all(
            not outcome.needed or outcome.success
            for outcome in (details.mfa, details.rls, details.pitr)
        )
        await self.recorder.record(
            "compliance_fix_completed",
            "success" if all_successful else "partial_success",
            {
                "projectRef": project_ref,
                "fixId": fix_id,
                "summary": summary.model_dump(),
                "allSuccessful": all_successful,
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return FixResult(
            project_ref=project_ref,
            timestamp=now_iso(),
            fix_id=fix_id,
            summary=summary,
            details=details,
            all_successful=all_successful,
        )

    async def _apply(
        self,
        category: str,
        project_ref: str,
        token: str,
        status: CategoryStatus,
        fix_id: str | None,
    ) -> FixOutcome:
        """Run one fixer; an unexpected error fails this category only."""
        try:
            return await self.fixers[category].fix(project_ref, token, status, fix_id)
        except Exception as exc:
            logger.exception("Unexpected error fixing %s", category.upper())
            await self.recorder.record(
                f"{category}_fix_failure",
                "error",
                {
                    "projectRef": project_ref,
                    "parentFixId": fix_id,
                    "error": str(exc),
                    "timestamp": now_iso(),
                },
                project_ref,
            )
            outcome_cls = RlsFixOutcome if category == "rls" else FixOutcome
            return outcome_cls(needed=True, applied=True, error=str(exc))
