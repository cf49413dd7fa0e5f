from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field


class JSONFieldSchema(BaseModel):
    type: str
    format: str | None = None
    examples: list[Any] = Field(default_factory=list)
    nullable: bool = False
    nested: "JSONSchema | None" = None  # only for object/array types


class JSONSchema(BaseModel):
    type: str
    properties: dict[str, JSONFieldSchema] | None = None
    items: JSONFieldSchema | None = None


JSONFieldSchema.model_rebuild()


class JSONAnalysisResult(BaseModel):
    schema_: JSONSchema = Field(alias="schema")
    samples: list[Any]
    total_records: int
    file_size: int
    structure: Literal["array", "object", "nested"]
    estimated_fields: int

    model_config = {"populate_by_name": True}


@dataclass(frozen=True)
class AnalysisFailure:
    """Returned instead of raising when the structural analyzer cannot handle the input."""
    reason: str
