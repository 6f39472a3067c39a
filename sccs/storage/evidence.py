"""Evidence recorder - append-only audit trail in memory and on disk.

Every orchestration step is written to three sinks:

- an in-process list, kept for the lifetime of the process;
- one JSON file per record under ``<evidence_dir>/<project_ref>/``;
- the global ``<evidence_dir>/evidence_log.json`` array.

The global log is read, modified and written back on every call without a
lock, so concurrent requests can lose updates there. The in-memory list and
the per-project files are the authoritative sources for reads.
"""

import asyncio
import copy
import json
import logging
import random
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any

from fastapi import Depends
from pydantic import ValidationError

from sccs.config import settings
from sccs.errors import PersistenceFailed
from sccs.schemas.evidence import EvidenceRecord, EvidenceStatus

logger = logging.getLogger(__name__)

GLOBAL_LOG_NAME = "evidence_log.json"


def now_iso() -> str:
    """UTC timestamp with millisecond precision, e.g. 2024-05-01T12:00:00.000Z."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def new_record_id() -> str:
    return f"{int(time.time() * 1000)}-{random.randint(0, 9999)}"


def record_filename(action: str, timestamp: str) -> str:
    return f"{action}_{timestamp.replace(':', '-')}.json"


class EvidenceRecorder:
    """Records immutable evidence entries. Sink failures never reach the caller."""

    def __init__(self, evidence_dir: str | Path) -> None:
        self.evidence_dir = Path(evidence_dir)
        self._records: list[EvidenceRecord] = []

    @property
    def global_log_path(self) -> Path:
        return self.evidence_dir / GLOBAL_LOG_NAME

    async def ensure_directory(self) -> None:
        try:
            await asyncio.to_thread(self.evidence_dir.mkdir, parents=True, exist_ok=True)
            logger.info("Evidence directory ensured at %s", self.evidence_dir)
        except OSError:
            logger.exception("Failed to create evidence directory %s", self.evidence_dir)

    async def record(
        self,
        action: str,
        status: EvidenceStatus,
        details: dict[str, Any] | None = None,
        project_ref: str | None = None,
    ) -> str | None:
        """Append one record and return its id, or None if it could not be persisted."""
        entry = EvidenceRecord(
            id=new_record_id(),
            timestamp=now_iso(),
            action=action,
            status=status,
            details=copy.deepcopy(details or {}),
            project_ref=project_ref,
        )
        self._records.append(entry)
        logger.info("Evidence logged: %s - %s", action, status)

        try:
            await asyncio.to_thread(self._persist, entry)
        except PersistenceFailed as exc:
            logger.error("Failed to save evidence log: %s", exc.message, exc_info=exc)
            return None
        return entry.id

    def _persist(self, entry: EvidenceRecord) -> None:
        try:
            payload = entry.model_dump(mode="json", by_alias=True)
            if entry.project_ref:
                project_dir = self._project_dir(entry.project_ref)
                project_dir.mkdir(parents=True, exist_ok=True)
                path = project_dir / record_filename(entry.action, entry.timestamp)
                path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")

            self.evidence_dir.mkdir(parents=True, exist_ok=True)
            main_log = self._read_global_log()
            main_log.append(payload)
            self.global_log_path.write_text(
                json.dumps(main_log, indent=2, default=str), encoding="utf-8"
            )
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceFailed(str(exc)) from exc

    def _project_dir(self, project_ref: str) -> Path:
        """Directory for one project. Refs resolving outside the evidence directory are refused."""
        root = self.evidence_dir.resolve()
        project_dir = (self.evidence_dir / project_ref).resolve()
        if project_dir == root or not project_dir.is_relative_to(root):
            raise PersistenceFailed(
                f"Project ref {project_ref!r} is outside the evidence directory"
            )
        return project_dir

    def _read_global_log(self) -> list[dict[str, Any]]:
        try:
            existing = json.loads(self.global_log_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("No existing evidence log found or error reading it: %s", exc)
            return []
        if not isinstance(existing, list):
            logger.warning(
                "Evidence log at %s is not an array, starting over", self.global_log_path
            )
            return []
        return existing

    def list_all(self) -> list[EvidenceRecord]:
        """Records written by this process, oldest first."""
        return list(self._records)

    async def list_for_project(self, project_ref: str) -> list[EvidenceRecord]:
        """Records persisted for a project, newest first."""
        return await asyncio.to_thread(self._load_project, project_ref)

    def _load_project(self, project_ref: str) -> list[EvidenceRecord]:
        try:
            project_dir = self._project_dir(project_ref)
        except PersistenceFailed as exc:
            logger.warning("Refusing to list evidence: %s", exc.message)
            return []
        if not project_dir.is_dir():
            return []

        records = []
        for path in project_dir.glob("*.json"):
            try:
                records.append(
                    EvidenceRecord.model_validate_json(path.read_text(encoding="utf-8"))
                )
            except (OSError, ValidationError) as exc:
                logger.warning("Skipping unreadable evidence file %s: %s", path, exc)
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records


recorder = EvidenceRecorder(settings.evidence_dir)


def get_recorder() -> EvidenceRecorder:
    """Dependency for the process-wide evidence recorder."""
    return recorder


# Type alias for dependency injection
RecorderDep = Annotated[EvidenceRecorder, Depends(get_recorder)]
