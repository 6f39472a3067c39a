"""Remote SQL execution with evidence logging."""

import logging
from typing import Any

from sccs.client.management import ManagementApiClient
from sccs.config import settings
from sccs.errors import ManagementApiError
from sccs.storage.evidence import EvidenceRecorder, now_iso

logger = logging.getLogger(__name__)


def truncate_sql(query: str, max_chars: int = settings.sql_log_max_chars) -> str:
    """Bound the SQL text stored in evidence."""
    if len(query) > max_chars:
        return f"{query[:max_chars]}..."
    return query


def normalize_rows(payload: Any) -> list[Any]:
    """
    The SQL endpoint answers with either a flat row array or an array of
    result sets. Unwrap one level in the latter case; anything else is no rows.
    """
    if not isinstance(payload, list):
        return []
    if payload and isinstance(payload[0], list):
        return payload[0]
    return payload


class QueryExecutor:
    """Runs one statement against a project's database and records the outcome."""

    def __init__(
        self,
        api: ManagementApiClient,
        recorder: EvidenceRecorder,
        max_logged_chars: int = settings.sql_log_max_chars,
    ) -> None:
        self.api = api
        self.recorder = recorder
        self.max_logged_chars = max_logged_chars

    async def execute(
        self,
        project_ref: str,
        token: str,
        query: str,
        query_name: str = "unnamed_query",
    ) -> list[Any]:
        """Return the result rows. Failures are recorded and re-raised."""
        logged_query = truncate_sql(query, self.max_logged_chars)
        query_log_id = await self.recorder.record(
            "sql_query_attempt",
            "info",
            {
                "projectRef": project_ref,
                "queryName": query_name,
                "query": logged_query,
                "timestamp": now_iso(),
            },
            project_ref,
        )

        try:
            payload = await self.api.run_query(project_ref, token, query)
        except ManagementApiError as exc:
            await self.recorder.record(
                "sql_query_failure",
                "error",
                {
                    "projectRef": project_ref,
                    "queryName": query_name,
                    "query": logged_query,
                    "queryLogId": query_log_id,
                    "error": exc.message,
                    "errorCode": exc.status_code,
                    "errorDetails": exc.body,
                    "timestamp": now_iso(),
                },
                project_ref,
            )
            logger.error("SQL execution error for %s: %s", query_name, exc.message)
            raise

        rows = normalize_rows(payload)
        await self.recorder.record(
            "sql_query_success",
            "success",
            {
                "projectRef": project_ref,
                "queryName": query_name,
                "query": logged_query,
                "resultCount": len(rows),
                "queryLogId": query_log_id,
                "timestamp": now_iso(),
            },
            project_ref,
        )
        return rows
