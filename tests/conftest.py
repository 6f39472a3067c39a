"""Test fixtures: an in-memory fake of the management API and isolated recorders.

The default FakeSupabase project has 2 users (1 with MFA), 3 public tables
(1 without RLS), MFA off globally and PITR disabled.
"""

import json
import re

import httpx
import pytest

from sccs.client.management import ManagementApiClient
from sccs.storage.evidence import EvidenceRecorder

TOKEN = "sbp_test_token"
PROJECT_REF = "abcdefghijklmnop"
BASE_URL = "https://api.test/v1"

_ALTER_RE = re.compile(r'ALTER TABLE "((?:[^"]|"")+)"\."((?:[^"]|"")+)" ENABLE')


class FakeSupabase:
    """Serves the management API endpoints the service calls."""

    def __init__(self) -> None:
        self.projects = [{"ref": PROJECT_REF, "name": "Demo project"}]
        self.auth_config = {
            "sms_provider": "NONE",
            "mfa_enabled": False,
            "external_mfa_enabled": False,
            "smtp_pass": "hunter2",
        }
        self.backups = {"pitr_enabled": False, "backups": []}
        self.users = [
            {"id": "u1", "email": "alice@example.com", "has_mfa": True},
            {"id": "u2", "email": "bob@example.com", "has_mfa": False},
        ]
        self.tables = {
            ("public", "accounts"): {"rls": True, "policies": True},
            ("public", "orders"): {"rls": True, "policies": False},
            ("public", "profiles"): {"rls": False, "policies": False},
        }
        # (method, path suffix) -> status code to answer with
        self.failures: dict[tuple[str, str], int] = {}
        self.fail_user_query = False
        self.fail_table_query = False
        self.fail_batch = False
        self.failing_tables: set[str] = set()
        self.pitr_sql_ok = False
        self.nested_rows = False
        self.queries: list[str] = []
        self.requests: list[httpx.Request] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("authorization") != f"Bearer {TOKEN}":
            return httpx.Response(401, json={"message": "Unauthorized"})

        path = request.url.path
        for (method, suffix), code in self.failures.items():
            if request.method == method and path.endswith(suffix):
                return httpx.Response(code, json={"message": f"forced {code}"})

        body = json.loads(request.content) if request.content else None
        if path.endswith("/projects") and request.method == "GET":
            return httpx.Response(200, json=self.projects)
        if path.endswith("/config/auth"):
            if request.method == "PATCH":
                self.auth_config.update(body)
            return httpx.Response(200, json=self.auth_config)
        if path.endswith("/database/backups"):
            if request.method == "PATCH":
                self.backups.update(body)
            return httpx.Response(200, json=self.backups)
        if path.endswith("/database/query") and request.method == "POST":
            return self._query(body["query"])
        return httpx.Response(404, json={"message": "Not found"})

    def _rows(self, rows: list) -> httpx.Response:
        return httpx.Response(200, json=[rows] if self.nested_rows else rows)

    def _query(self, query: str) -> httpx.Response:
        self.queries.append(query)
        if "auth.users" in query:
            if self.fail_user_query:
                return httpx.Response(400, json={"message": "permission denied for schema auth"})
            return self._rows(self.users)
        if "NOT c.relrowsecurity" in query:
            return self._rows(
                [
                    {"schemaname": schema, "tablename": name}
                    for (schema, name), t in sorted(self.tables.items())
                    if not t["rls"]
                ]
            )
        if "pg_policies" in query:
            if self.fail_table_query:
                return httpx.Response(400, json={"message": "relation does not exist"})
            return self._rows(
                [
                    {
                        "schemaname": schema,
                        "tablename": name,
                        "tableowner": "postgres",
                        "has_policies": t["policies"],
                        "rls_enabled": t["rls"],
                    }
                    for (schema, name), t in sorted(self.tables.items())
                ]
            )
        if query.startswith("BEGIN;"):
            if self.fail_batch:
                return httpx.Response(400, json={"message": "batch statements not allowed"})
            for schema, name in self._targets(query):
                self.tables[(schema, name)]["rls"] = True
            return self._rows([])
        if query.startswith("ALTER TABLE"):
            ((schema, name),) = self._targets(query)
            if name in self.failing_tables:
                return httpx.Response(400, json={"message": f"must be owner of table {name}"})
            self.tables[(schema, name)]["rls"] = True
            return self._rows([])
        if "pg_create_physical_replication_slot" in query:
            if not self.pitr_sql_ok:
                return httpx.Response(400, json={"message": "permission denied to create replication slot"})
            return self._rows([{"slot_name": "pitr_slot"}])
        return httpx.Response(400, json={"message": "unexpected query"})

    @staticmethod
    def _targets(query: str) -> list[tuple[str, str]]:
        return [
            (schema.replace('""', '"'), name.replace('""', '"'))
            for schema, name in _ALTER_RE.findall(query)
        ]


@pytest.fixture()
def fake() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture()
def api(fake: FakeSupabase) -> ManagementApiClient:
    return ManagementApiClient(base_url=BASE_URL, transport=httpx.MockTransport(fake.handle))


@pytest.fixture()
def recorder(tmp_path) -> EvidenceRecorder:
    return EvidenceRecorder(tmp_path / "evidence")


def actions(recorder: EvidenceRecorder) -> list[str]:
    return [r.action for r in recorder.list_all()]
