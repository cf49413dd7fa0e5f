from typing import Any

from pydantic import Field

from app.models.profile import CamelModel


class ValidationResult(CamelModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class Artifact(CamelModel):
    path: str
    summary: str


class GenerationResult(CamelModel):
    """Outcome of one spec generation request.

    `pipeline_spec` stays a plain dict: it is untrusted model output until the
    validator has accepted it.
    """
    pipeline_spec: dict[str, Any]
    report_markdown: str
    artifacts: list[Artifact] = Field(default_factory=list)
    validation_passed: bool = False
    attempts: int = 0
    fallback_used: bool = False
