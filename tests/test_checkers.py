"""Unit tests for the MFA, RLS and PITR checkers."""

import asyncio

import pytest

from conftest import PROJECT_REF, TOKEN, actions
from sccs.engine.checkers import MfaChecker, PitrChecker, RlsChecker
from sccs.engine.query import QueryExecutor


def _checker(cls, api, recorder):
    return cls(api, recorder, QueryExecutor(api, recorder))


@pytest.mark.parametrize(
    "value, expected",
    [(True, True), (False, False), ("true", False), (1, False), (None, False), ({}, False)],
)
def test_pitr_enabled_only_for_boolean_true(api, recorder, fake, value, expected):
    """Truthy values other than the boolean true count as disabled."""
    fake.backups = {"pitr_enabled": value}
    result = asyncio.run(_checker(PitrChecker, api, recorder).check(PROJECT_REF, TOKEN))

    assert result.pitr_enabled is expected
    assert result.status == ("pass" if expected else "fail")
    assert result.summary.total == 1


def test_pitr_missing_field_is_disabled(api, recorder, fake):
    fake.backups = {}
    result = asyncio.run(_checker(PitrChecker, api, recorder).check(PROJECT_REF, TOKEN))
    assert result.status == "fail"


def test_pitr_fetch_failure_is_error(api, recorder, fake):
    """A failed backups fetch is neither pass nor fail and counts for nothing."""
    fake.failures[("GET", "/database/backups")] = 500
    result = asyncio.run(_checker(PitrChecker, api, recorder).check(PROJECT_REF, TOKEN, "parent"))

    assert result.status == "error"
    assert result.pitr_enabled is False
    assert result.error
    assert result.summary.model_dump() == {"total": 0, "passing": 0, "failing": 0}
    failed = recorder.list_all()[-1]
    assert failed.action == "pitr_check_failed"
    assert failed.details["parentCheckId"] == "parent"


def test_rls_status_ignores_policies(api, recorder, fake):
    """RLS on without policies passes; RLS off with policies fails."""
    fake.tables = {
        ("public", "no_policies"): {"rls": True, "policies": False},
        ("public", "policies_only"): {"rls": False, "policies": True},
    }
    result = asyncio.run(_checker(RlsChecker, api, recorder).check(PROJECT_REF, TOKEN))

    statuses = {t.name: (t.status, t.has_policies) for t in result.tables}
    assert statuses == {"no_policies": ("pass", False), "policies_only": ("fail", True)}
    assert result.summary.model_dump() == {"total": 2, "passing": 1, "failing": 1}


def test_rls_table_payload(api, recorder):
    """Tables are reported with schema-qualified ids and camelCase keys."""
    result = asyncio.run(_checker(RlsChecker, api, recorder).check(PROJECT_REF, TOKEN))
    table = result.model_dump(by_alias=True)["tables"][0]
    assert table == {
        "id": "public.accounts",
        "schema": "public",
        "name": "accounts",
        "rlsEnabled": True,
        "hasPolicies": True,
        "status": "pass",
    }
    assert result.check_id == recorder.list_all()[0].id


def test_rls_query_failure_fails_whole_check(api, recorder, fake):
    """No partial result for RLS when the catalog query fails."""
    fake.fail_table_query = True
    result = asyncio.run(_checker(RlsChecker, api, recorder).check(PROJECT_REF, TOKEN))

    assert result.tables is None
    assert result.error
    assert result.summary.total == 0
    assert "rls_check_failed" in actions(recorder)


@pytest.mark.parametrize(
    "config, expected",
    [
        ({"sms_provider": "NONE"}, False),
        ({}, False),
        ({"sms_provider": "twilio"}, True),
        ({"sms_provider": "NONE", "mfa_enabled": True}, True),
        ({"external_mfa_enabled": True}, True),
    ],
)
def test_mfa_global_any_signal(api, recorder, fake, config, expected):
    """Any one of SMS provider, MFA flag or external MFA enables MFA globally."""
    fake.auth_config = config
    result = asyncio.run(_checker(MfaChecker, api, recorder).check(PROJECT_REF, TOKEN))
    assert result.mfa_enabled_globally is expected


def test_mfa_users(api, recorder):
    """Per-user MFA drives the summary."""
    result = asyncio.run(_checker(MfaChecker, api, recorder).check(PROJECT_REF, TOKEN))

    users = [u.model_dump(by_alias=True) for u in result.users]
    assert users == [
        {"id": "u1", "email": "alice@example.com", "hasMFA": True, "status": "pass"},
        {"id": "u2", "email": "bob@example.com", "hasMFA": False, "status": "fail"},
    ]
    assert result.summary.model_dump() == {"total": 2, "passing": 1, "failing": 1}


def test_mfa_user_query_failure_zeroes_summary(api, recorder, fake):
    """Global MFA is still reported, but the summary only counts users."""
    fake.auth_config = {"mfa_enabled": True}
    fake.fail_user_query = True
    result = asyncio.run(_checker(MfaChecker, api, recorder).check(PROJECT_REF, TOKEN))

    assert result.mfa_enabled_globally is True
    assert result.users == []
    assert result.error is None
    assert result.summary.total == 0
    warning = next(r for r in recorder.list_all() if r.action == "mfa_user_query_failure")
    assert warning.status == "warning"
    assert actions(recorder)[-1] == "mfa_check_completed"


def test_mfa_config_failure(api, recorder, fake):
    """Without the auth config the MFA category degrades to an error payload."""
    fake.failures[("GET", "/config/auth")] = 404
    result = asyncio.run(_checker(MfaChecker, api, recorder).check(PROJECT_REF, TOKEN))

    assert result.error
    assert result.mfa_enabled_globally is None
    assert result.summary.total == 0
    assert actions(recorder)[-1] == "mfa_check_failed"


def test_mfa_config_secrets_redacted(api, recorder):
    """Sensitive auth settings never reach the evidence trail."""
    asyncio.run(_checker(MfaChecker, api, recorder).check(PROJECT_REF, TOKEN))
    retrieved = next(r for r in recorder.list_all() if r.action == "auth_config_retrieved")
    assert retrieved.details["config"]["smtp_pass"] == "[REDACTED]"


def test_rls_probe_lists_missing_tables(api, recorder):
    """The fix probe returns only tables without RLS."""
    status = asyncio.run(_checker(RlsChecker, api, recorder).probe(PROJECT_REF, TOKEN, "s1"))

    assert status.needs_fix is True
    assert [t.qualified_name for t in status.tables] == ["public.profiles"]
    assert recorder.list_all()[-1].details["statusCheckId"] == "s1"


def test_probe_failure_means_no_fix(api, recorder, fake):
    """A failed probe is reported but never plans a blind fix."""
    fake.failures[("GET", "/database/backups")] = 503
    status = asyncio.run(_checker(PitrChecker, api, recorder).probe(PROJECT_REF, TOKEN))

    assert status.needs_fix is False
    assert status.error
    assert actions(recorder)[-1] == "pitr_status_check_failed"
