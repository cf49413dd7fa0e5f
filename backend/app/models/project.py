import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ProjectRecord(BaseModel):
    """Stored in MongoDB 'projects' collection, keyed by `id`."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: str
    status: str = "draft"
    source_preset: Any = None
    target_preset: Any = None
    source_config: Any = None
    target_config: Any = None
    field_mapping: Any = None
    schedule: Any = None
    load_mode: str | None = None
    load_policy: Any = None
    pipeline_nodes: list[Any] = Field(default_factory=list)
    pipeline_edges: list[Any] = Field(default_factory=list)
    file_profile: dict[str, Any] | None = None
    recommendation: Any = None
    artifacts_preview: Any = None
    report_draft: str | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
