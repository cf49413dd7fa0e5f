import json
import logging
import re
from typing import Any

from app.middleware.error_handler import ValidationError
from app.models.json_schema import JSONAnalysisResult
from app.models.profile import ColumnQuality, ColumnStats, JsonProfile, NumericRange, SampleInfo
from app.services.heuristics import (
    is_integer_value,
    is_key_candidate,
    is_number_value,
    is_time_field_name,
    looks_like_date,
    looks_like_timestamp,
    ratio,
)
from app.services.json_analyzer import record_fields

logger = logging.getLogger(__name__)

JSON_MAX_OBJECTS = 1000
TYPE_SAMPLE_SIZE = 500

_FIRST_ARRAY_ELEMENT_RE = re.compile(r"\[\s*({[^}]*})", re.DOTALL)
_TRAILING_COMMA_OBJECT_RE = re.compile(r",\s*}")
_TRAILING_COMMA_ARRAY_RE = re.compile(r",\s*]")


def map_schema_type(schema_type: str, fmt: str | None = None) -> str:
    if fmt == "date-time":
        return "timestamp"
    if fmt == "date":
        return "date"
    if schema_type == "integer":
        return "integer"
    if schema_type == "number":
        return "float"
    if schema_type == "boolean":
        return "boolean"
    return "string"


def profile_from_analysis(
    analysis: JSONAnalysisResult,
    sample_info: SampleInfo,
    encoding: str,
    is_full_file: bool = False,
) -> JsonProfile:
    """Per-column statistics over the analyzer's stratified sample."""
    samples = analysis.samples
    columns = []
    for name, field in record_fields(analysis.schema_).items():
        inferred = map_schema_type(field.type, field.format)
        values = _present_values(samples, name)
        presence = ratio(len(values), len(samples))
        uniqueness = ratio(_distinct_count(values), len(values))

        value_range = None
        if field.type in ("integer", "number"):
            value_range = _numeric_range([v for v in values if is_number_value(v)])

        columns.append(ColumnStats(
            name=name,
            inferred_type=inferred,
            missing=len(samples) - len(values),
            is_time_field=field.format in ("date", "date-time") or is_time_field_name(name),
            is_key_candidate=is_key_candidate(presence, uniqueness),
            quality=ColumnQuality(not_null=presence, unique=uniqueness, range=value_range),
        ))

    sampled = analysis.total_records > len(samples)
    info = sample_info.model_copy(update={
        "actual_samples": len(samples),
        "total_records": analysis.total_records,
        "sampling_strategy": "smart-sampling" if sampled else "full-data",
    })

    return JsonProfile(
        format="json" if analysis.structure == "array" else "json-object",
        analysis=analysis,
        columns=columns,
        sample_rows_count=analysis.total_records,
        duplicates_share=_duplicates_share(samples),
        encoding=encoding,
        sample_info=info,
        sampling_warning=sampled,
        schema_confidence=0.95 if is_full_file else 0.85,
    )


def profile_json_lines(
    text: str,
    sample_info: SampleInfo,
    encoding: str,
    is_full_file: bool = False,
) -> JsonProfile:
    """Simpler line-by-line profiler used when structural analysis is not possible.

    Handles NDJSON and bracketed arrays, with best-effort recovery of malformed
    input. Raises ValidationError when nothing can be parsed.
    """
    items, is_ndjson = _load_records(text, is_full_file)
    items = [item for item in items if item is not None]
    if not items:
        raise ValidationError("Invalid JSON format: no records found")

    key_frequency: dict[str, int] = {}
    for item in items:
        if isinstance(item, dict):
            for key in item:
                key_frequency[key] = key_frequency.get(key, 0) + 1

    duplicates_share = _duplicates_share(items)
    logger.info(
        "Legacy JSON profile: %d objects, %d keys, duplicates share %.4f",
        len(items), len(key_frequency), duplicates_share,
    )

    columns = []
    for name, frequency in key_frequency.items():
        values = _present_values(items, name)
        sample = values[:TYPE_SAMPLE_SIZE]
        inferred = infer_value_type(name, sample)
        presence = frequency / len(items)
        uniqueness = ratio(_distinct_count(values), len(values))

        value_range = None
        if inferred in ("integer", "float"):
            value_range = _numeric_range([v for v in sample if is_number_value(v)])

        columns.append(ColumnStats(
            name=name,
            inferred_type=inferred,
            missing=len(items) - len(values),
            is_time_field=inferred in ("timestamp", "date"),
            is_key_candidate=is_key_candidate(presence, uniqueness),
            quality=ColumnQuality(not_null=presence, unique=uniqueness, range=value_range),
        ))

    if is_full_file:
        confidence = 0.95
    else:
        confidence = 0.8 if sample_info.percent >= 50 else 0.6

    return JsonProfile(
        format="ndjson" if is_ndjson else "json",
        columns=columns,
        sample_rows_count=len(items),
        duplicates_share=duplicates_share,
        encoding=encoding,
        sample_info=sample_info,
        sampling_warning=not is_full_file and sample_info.percent < 100,
        schema_confidence=confidence,
    )


def infer_value_type(name: str, sample: list[Any]) -> str:
    if sample:
        if all(is_integer_value(v) for v in sample):
            return "integer"
        if all(is_number_value(v) for v in sample):
            return "float"
        if all(isinstance(v, bool) for v in sample):
            return "boolean"
        strings = [v for v in sample if isinstance(v, str)]
        if any(looks_like_timestamp(v) for v in strings):
            return "timestamp"
        if any(looks_like_date(v) for v in strings):
            return "date"
    if is_time_field_name(name):
        return "timestamp"
    return "string"


def is_ndjson_text(text: str) -> bool:
    trimmed = text.strip()
    return "\n" in trimmed and not trimmed.startswith("[")


def _load_records(text: str, is_full_file: bool) -> tuple[list[Any], bool]:
    if is_ndjson_text(text):
        lines = [line for line in text.split("\n") if line.strip()]
        if not is_full_file:
            lines = lines[:JSON_MAX_OBJECTS]
        items = []
        for line in lines:
            try:
                items.append(json.loads(line))
            except ValueError:
                continue
        return items, True

    try:
        data = json.loads(text)
    except ValueError as e:
        logger.info("JSON parsing failed, attempting recovery: %s", e)
        data = _recover_json(text)

    items = data if isinstance(data, list) else [data]
    if not is_full_file:
        items = items[:JSON_MAX_OBJECTS]
    return items, False


def _recover_json(text: str) -> Any:
    match = _FIRST_ARRAY_ELEMENT_RE.search(text)
    if match:
        try:
            data = json.loads(f"[{match.group(1)}]")
        except ValueError as e:
            raise ValidationError("Invalid JSON format: unable to parse or recover", detail=str(e))
        logger.info("Recovered first element of a truncated JSON array")
        return data

    fixed = _TRAILING_COMMA_OBJECT_RE.sub("}", text)
    fixed = _TRAILING_COMMA_ARRAY_RE.sub("]", fixed).replace("'", '"')
    try:
        data = json.loads(fixed)
    except ValueError as e:
        raise ValidationError("Invalid JSON format: unable to parse, recover, or fix", detail=str(e))
    logger.info("Parsed JSON after loosening trailing commas and quotes")
    return data


def _present_values(records: list[Any], name: str) -> list[Any]:
    return [
        record[name]
        for record in records
        if isinstance(record, dict) and record.get(name) is not None
    ]


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)


def _distinct_count(values: list[Any]) -> int:
    return len({_canonical(v) for v in values})


def _duplicates_share(records: list[Any]) -> float:
    if not records:
        return 0.0
    seen: set[str] = set()
    duplicates = 0
    for record in records:
        key = _canonical(record)
        if key in seen:
            duplicates += 1
        else:
            seen.add(key)
    return duplicates / len(records)


def _numeric_range(numbers: list[Any]) -> NumericRange | None:
    if not numbers:
        return None
    return NumericRange(min=min(numbers), max=max(numbers))
