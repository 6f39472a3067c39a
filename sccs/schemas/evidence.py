"""Evidence record schemas."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

EvidenceStatus = Literal[
    "info", "success", "warning", "error", "partial_success", "failure"
]


class EvidenceRecord(BaseModel):
    """One immutable audit entry. `details` may back-reference a parent record id."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    id: str
    timestamp: str
    action: str
    status: EvidenceStatus
    details: dict[str, Any] = Field(default_factory=dict)
    project_ref: str | None = None


class EvidenceLogsResponse(BaseModel):
    """GET /api/evidence/logs response."""

    logs: list[EvidenceRecord]
    timestamp: str
