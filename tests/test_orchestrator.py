"""End-to-end tests of check and fix orchestration against the fake management API."""

import asyncio

import pytest

from conftest import PROJECT_REF, TOKEN, actions
from sccs.engine.orchestrator import ComplianceService
from sccs.schemas.fix import FixRequest


@pytest.fixture()
def service(api, recorder) -> ComplianceService:
    return ComplianceService(api, recorder)


def _make_compliant(fake) -> None:
    for user in fake.users:
        user["has_mfa"] = True
    for table in fake.tables.values():
        table["rls"] = True
    fake.backups["pitr_enabled"] = True


def test_check_report(service, recorder):
    """The default project fails every category."""
    report = asyncio.run(service.run_check(PROJECT_REF, TOKEN, "10.0.0.1"))
    summary = report.summary.model_dump(by_alias=True)

    assert summary == {
        "mfa": {"total": 2, "passing": 1, "failing": 1},
        "rls": {"total": 3, "passing": 2, "failing": 1},
        "pitr": {"total": 1, "passing": 0, "failing": 1},
        "overallStatus": "fail",
    }
    assert report.check_id == recorder.list_all()[0].id
    assert recorder.list_all()[0].details["ip"] == "10.0.0.1"
    assert actions(recorder)[-1] == "compliance_check_completed"


def test_check_links_categories_to_parent(service, recorder):
    asyncio.run(service.run_check(PROJECT_REF, TOKEN))
    check_id = recorder.list_all()[0].id
    started = [r for r in recorder.list_all() if r.action.endswith("_check_started")]
    assert len(started) == 3
    assert {r.details["parentCheckId"] for r in started} == {check_id}


def test_check_all_pass(service, fake):
    _make_compliant(fake)
    report = asyncio.run(service.run_check(PROJECT_REF, TOKEN))
    assert report.summary.overall_status == "pass"


def test_check_isolates_failing_category(service, recorder, monkeypatch):
    """An unexpected error in one checker leaves the other categories intact."""

    async def explode(*args, **kwargs):
        raise RuntimeError("catalog exploded")

    monkeypatch.setattr(service.checkers["rls"], "check", explode)
    report = asyncio.run(service.run_check(PROJECT_REF, TOKEN))

    assert report.rls.error == "catalog exploded"
    assert report.summary.rls.total == 0
    assert report.mfa.summary.total == 2
    assert report.pitr.status == "fail"
    assert report.summary.overall_status == "fail"
    assert "rls_check_failed" in actions(recorder)


def test_check_pitr_error_still_fails_overall(service, fake):
    """An unreadable backups config never counts as passing."""
    _make_compliant(fake)
    fake.failures[("GET", "/database/backups")] = 500
    report = asyncio.run(service.run_check(PROJECT_REF, TOKEN))

    assert report.pitr.status == "error"
    assert report.summary.pitr.total == 0
    assert report.summary.overall_status == "fail"


def test_fix_everything(service, recorder, fake):
    """Every needed category is fixed and the project is compliant afterwards."""
    result = asyncio.run(service.run_fix(PROJECT_REF, TOKEN, FixRequest()))

    assert result.summary.model_dump() == {"mfa": "fixed", "rls": "fixed", "pitr": "fixed"}
    assert result.all_successful is True
    assert result.details.rls.table_count == 1
    assert result.fix_id == recorder.list_all()[0].id

    report = asyncio.run(service.run_check(PROJECT_REF, TOKEN))
    assert report.summary.rls.failing == 0
    assert report.pitr.status == "pass"
    assert report.mfa.mfa_enabled_globally is True


def test_fix_is_idempotent(service, fake):
    """A second fix run finds nothing left to do and changes nothing."""

    async def twice():
        await service.run_fix(PROJECT_REF, TOKEN, FixRequest())
        return await service.run_fix(PROJECT_REF, TOKEN, FixRequest())

    second = asyncio.run(twice())
    patches_before = len([r for r in fake.requests if r.method == "PATCH"])

    assert second.summary.model_dump() == {
        "mfa": "no_action_needed",
        "rls": "no_action_needed",
        "pitr": "no_action_needed",
    }
    assert second.all_successful is True
    assert patches_before == 2


def test_fix_respects_opt_out(service, fake):
    """Opted-out categories are left untouched even when non-compliant."""
    result = asyncio.run(service.run_fix(PROJECT_REF, TOKEN, FixRequest(fix_rls=False)))

    assert result.summary.rls == "no_action_needed"
    assert result.details.rls.needed is False
    assert result.summary.pitr in {"fixed", "failed"}
    assert fake.tables[("public", "profiles")]["rls"] is False
    assert not [q for q in fake.queries if "ALTER TABLE" in q]


def test_fix_probe_failure_means_no_action(service, recorder, fake):
    """A category whose live status cannot be read is not fixed blindly."""
    fake.failures[("GET", "/database/backups")] = 500
    result = asyncio.run(service.run_fix(PROJECT_REF, TOKEN, FixRequest()))

    assert result.summary.pitr == "no_action_needed"
    assert "pitr_status_check_failed" in actions(recorder)
    assert not [q for q in fake.queries if "replication_slot" in q]


def test_fix_partial_failure(service, fake):
    fake.failures[("PATCH", "/config/auth")] = 400
    result = asyncio.run(service.run_fix(PROJECT_REF, TOKEN, FixRequest()))

    assert result.summary.mfa == "failed"
    assert result.summary.rls == "fixed"
    assert result.all_successful is False


def test_fix_unexpected_error_fails_one_category(service, recorder, monkeypatch):
    async def explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(service.fixers["mfa"], "fix", explode)
    result = asyncio.run(service.run_fix(PROJECT_REF, TOKEN, FixRequest()))

    assert result.summary.mfa == "failed"
    assert result.details.mfa.error == "boom"
    assert result.summary.pitr == "fixed"
    assert "mfa_fix_failure" in actions(recorder)


def test_status_check_failure_propagates(service, recorder, monkeypatch):
    async def explode(*args, **kwargs):
        raise RuntimeError("probe crashed")

    monkeypatch.setattr(service.checkers["mfa"], "probe", explode)
    with pytest.raises(RuntimeError):
        asyncio.run(service.run_fix(PROJECT_REF, TOKEN, FixRequest()))
    assert actions(recorder)[-1] == "compliance_status_check_failed"


def test_fix_evidence_is_correlated(service, recorder):
    """Every fix attempt is referenced by a later record of the same fix."""
    asyncio.run(service.run_fix(PROJECT_REF, TOKEN, FixRequest()))
    records = recorder.list_all()

    attempts = [r for r in records if r.action.endswith("_fix_attempt")]
    assert {r.action for r in attempts} >= {
        "mfa_fix_attempt",
        "rls_fix_attempt",
        "pitr_fix_attempt",
        "pitr_sql_fix_attempt",
        "pitr_api_fix_attempt",
    }
    for attempt in attempts:
        later = records[records.index(attempt) + 1 :]
        assert any(
            value == attempt.id
            for r in later
            for key, value in r.details.items()
            if key.endswith("FixId")
        ), attempt.action
