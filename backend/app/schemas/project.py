from typing import Any

from app.models.profile import CamelModel


class ProjectPayload(CamelModel):
    """Create/update body. Omitted fields are left untouched on update."""
    name: str | None = None
    description: str | None = None
    status: str | None = None
    source_preset: Any = None
    target_preset: Any = None
    source_config: Any = None
    target_config: Any = None
    field_mapping: Any = None
    schedule: Any = None
    load_mode: str | None = None
    load_policy: Any = None
    pipeline_nodes: list[Any] | None = None
    pipeline_edges: list[Any] | None = None
    file_profile: dict[str, Any] | None = None
    recommendation: Any = None
    artifacts_preview: Any = None
    report_draft: str | None = None
