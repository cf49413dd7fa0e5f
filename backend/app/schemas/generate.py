from typing import Any

from pydantic import Field, model_validator

from app.models.pipeline_spec import Artifact
from app.models.profile import CamelModel, FileProfile


class ProjectMeta(CamelModel):
    name: str = ""
    description: str = ""


class IngestConfig(CamelModel):
    mode: str = "file"
    file_profile: FileProfile | None = None
    constructor_spec: dict[str, Any] | None = None
    # The UI sends preview rows and the file name inside fileProfile.
    sample_data: list[Any] = Field(default_factory=list)
    file_name: str | None = None

    @model_validator(mode="before")
    @classmethod
    def lift_profile_extras(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        profile = data.get("fileProfile")
        if isinstance(profile, dict):
            data = dict(data)
            data.setdefault("sampleData", profile.get("sampleData") or [])
            data.setdefault("fileName", profile.get("name"))
        return data


class ScheduleInput(CamelModel):
    frequency: str = "daily"
    cron: str = "0 2 * * *"


class RecommendationInput(CamelModel):
    storage: str = "PostgreSQL"
    partitioning: str | None = None
    load_mode: str = "append"
    schedule: ScheduleInput | None = None
    rationale: list[str] = Field(default_factory=list)


class PipelineCanvas(CamelModel):
    nodes: list[dict[str, Any]] = Field(default_factory=list)
    edges: list[dict[str, Any]] = Field(default_factory=list)


class GenerateSpecRequest(CamelModel):
    project_meta: ProjectMeta
    ingest: IngestConfig
    recommendation: RecommendationInput
    pipeline: PipelineCanvas = Field(default_factory=PipelineCanvas)


class GenerationMetadata(CamelModel):
    generated_at: str
    version: str = "1.0"
    validation_passed: bool
    attempts: int
    fallback_used: bool


class GenerateSpecResponse(CamelModel):
    pipeline_spec: dict[str, Any]
    report_markdown: str
    artifacts: list[Artifact]
    metadata: GenerationMetadata


class ValidateSpecRequest(CamelModel):
    pipeline_spec: Any = None
