from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.json_schema import JSONAnalysisResult

InferredType = Literal["string", "integer", "float", "boolean", "date", "timestamp"]
ProfileFormat = Literal["csv", "json", "ndjson", "json-object", "xml"]


class CamelModel(BaseModel):
    """Serializes with camelCase keys; the UI and spec templates depend on them."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NumericRange(BaseModel):
    min: float
    max: float


class ColumnQuality(CamelModel):
    not_null: float
    unique: float
    range: NumericRange | None = None


class ColumnStats(BaseModel):
    """Per-column result shared by every profiler variant."""
    name: str
    inferred_type: InferredType = "string"
    missing: int = 0
    is_time_field: bool = False
    is_key_candidate: bool = False
    quality: ColumnQuality


class SampleInfo(CamelModel):
    original_size: int
    sampled_bytes: int
    percent: float
    is_full_file: bool = False
    actual_samples: int | None = None
    total_records: int | None = None
    sampling_strategy: str | None = None


class FileProfile(CamelModel):
    """Normalized statistical description of one uploaded file."""
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="ignore"
    )

    format: ProfileFormat
    columns: list[str] = Field(default_factory=list)
    inferred_types: dict[str, str] = Field(default_factory=dict)
    sample_rows_count: int = 0
    missing_stats: dict[str, int] = Field(default_factory=dict)
    duplicates_share: float = 0.0
    time_fields: list[str] = Field(default_factory=list)
    primary_key_candidates: list[str] = Field(default_factory=list)
    encoding: str = "utf-8"
    delimiter: str | None = None
    header_present: bool | None = None
    sample_info: SampleInfo | None = None
    sampling_warning: bool = False
    schema_confidence: float = 0.7
    quality_stats: dict[str, ColumnQuality] = Field(default_factory=dict)
    json_analysis: dict[str, Any] | None = None


class _ProfileVariant(CamelModel):
    columns: list[ColumnStats]
    sample_rows_count: int
    duplicates_share: float = 0.0
    encoding: str
    sample_info: SampleInfo
    schema_confidence: float
    sampling_warning: bool = False

    def _normalize(self, format: str, **extra: Any) -> FileProfile:
        return FileProfile(
            format=format,
            columns=[c.name for c in self.columns],
            inferred_types={c.name: c.inferred_type for c in self.columns},
            sample_rows_count=self.sample_rows_count,
            missing_stats={c.name: c.missing for c in self.columns},
            duplicates_share=self.duplicates_share,
            time_fields=[c.name for c in self.columns if c.is_time_field],
            primary_key_candidates=[c.name for c in self.columns if c.is_key_candidate],
            encoding=self.encoding,
            sample_info=self.sample_info,
            sampling_warning=self.sampling_warning,
            schema_confidence=self.schema_confidence,
            quality_stats={c.name: c.quality for c in self.columns},
            **extra,
        )


class CsvProfile(_ProfileVariant):
    kind: Literal["csv"] = "csv"
    delimiter: str
    header_present: bool = True

    def to_file_profile(self) -> FileProfile:
        return self._normalize("csv", delimiter=self.delimiter, header_present=self.header_present)


class JsonProfile(_ProfileVariant):
    kind: Literal["json"] = "json"
    format: Literal["json", "ndjson", "json-object"]
    analysis: JSONAnalysisResult | None = None  # absent on the legacy line-by-line path

    def to_file_profile(self) -> FileProfile:
        json_analysis = None
        if self.analysis is not None:
            json_analysis = {
                "structure": self.analysis.structure,
                "estimatedFields": self.analysis.estimated_fields,
                "fileSize": self.analysis.file_size,
                "schema": self.analysis.schema_.model_dump(exclude_none=True),
            }
        return self._normalize(self.format, json_analysis=json_analysis)


class XmlProfile(_ProfileVariant):
    kind: Literal["xml"] = "xml"
    root_element: str

    def to_file_profile(self) -> FileProfile:
        return self._normalize("xml")


SourceProfile = Annotated[CsvProfile | JsonProfile | XmlProfile, Field(discriminator="kind")]
