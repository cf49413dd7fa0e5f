"""Structural schema inference for JSON documents.

The analyzer keeps no state between calls: every function here is pure and
only reads the module-level limits below.
"""

import json
import logging
from collections import Counter
from typing import Any

from app.models.json_schema import AnalysisFailure, JSONAnalysisResult, JSONFieldSchema, JSONSchema
from app.services.heuristics import is_integer_value, string_format

logger = logging.getLogger(__name__)

MAX_SAMPLES = 50  # records kept for display and per-column statistics
MAX_SCHEMA_ELEMENTS = 1000  # array elements inspected for schema inference
MAX_DEPTH = 10
MAX_MERGED_EXAMPLES = 10
ARRAY_EXAMPLE_ITEMS = 3


def analyze_json(content: str) -> JSONAnalysisResult | AnalysisFailure:
    """Parse a single JSON value and describe its structure."""
    try:
        data = json.loads(content)
    except (ValueError, RecursionError) as e:
        return AnalysisFailure(f"JSON parse error: {e}")

    file_size = len(content.encode("utf-8"))

    if isinstance(data, list):
        schema = infer_array_schema(data)
        samples = sample_array(data)
        structure = "array"
        total_records = len(data)
    elif isinstance(data, dict):
        schema = infer_object_schema(data)
        samples = [data]
        structure = "object"
        total_records = 1
    else:
        return AnalysisFailure("JSON must contain an object or an array")

    logger.info(
        "JSON analysis: structure=%s, %d records, %d samples",
        structure, total_records, len(samples),
    )
    return JSONAnalysisResult(
        schema=schema,
        samples=samples,
        total_records=total_records,
        file_size=file_size,
        structure=structure,
        estimated_fields=count_fields(schema),
    )


def stratified_indices(length: int, max_samples: int = MAX_SAMPLES) -> list[int]:
    """Evenly spaced indices over the array, always including the first and last element."""
    if length <= max_samples:
        return list(range(length))

    step = length // max_samples
    indices = [min(i * step, length - 1) for i in range(max_samples)]
    indices[0] = 0
    indices[-1] = length - 1
    return indices


def sample_array(data: list[Any]) -> list[Any]:
    return [data[i] for i in stratified_indices(len(data))]


def infer_array_schema(data: list[Any], depth: int = 0) -> JSONSchema:
    if not data:
        return JSONSchema(type="array", items=JSONFieldSchema(type="unknown", nullable=True))

    item_schemas = [infer_value_schema(item, depth + 1) for item in data[:MAX_SCHEMA_ELEMENTS]]
    return JSONSchema(type="array", items=merge_schemas(item_schemas))


def infer_object_schema(data: dict[str, Any], depth: int = 0) -> JSONSchema:
    if depth > MAX_DEPTH:
        return JSONSchema(type="object", properties={})

    properties = {key: infer_value_schema(value, depth + 1) for key, value in data.items()}
    return JSONSchema(type="object", properties=properties)


def infer_value_schema(value: Any, depth: int = 0) -> JSONFieldSchema:
    if value is None:
        return JSONFieldSchema(type="null", examples=[None], nullable=True)

    if isinstance(value, bool):
        return JSONFieldSchema(type="boolean", examples=[value])

    if isinstance(value, str):
        return JSONFieldSchema(type="string", format=string_format(value), examples=[value])

    if isinstance(value, (int, float)):
        return JSONFieldSchema(
            type="integer" if is_integer_value(value) else "number",
            examples=[value],
        )

    if isinstance(value, list):
        nested = infer_array_schema(value, depth) if value and depth < MAX_DEPTH else None
        return JSONFieldSchema(type="array", examples=[value[:ARRAY_EXAMPLE_ITEMS]], nested=nested)

    if isinstance(value, dict):
        nested = infer_object_schema(value, depth) if depth < MAX_DEPTH else None
        return JSONFieldSchema(type="object", examples=[value], nested=nested)

    return JSONFieldSchema(type="unknown", examples=[value])


def merge_schemas(schemas: list[JSONFieldSchema]) -> JSONFieldSchema:
    """Fold per-element schemas into one.

    The most frequent type wins (ties go to the type seen first); nested
    schemas of the winning type are merged property by property.
    """
    if not schemas:
        return JSONFieldSchema(type="unknown", nullable=True)
    if len(schemas) == 1:
        return schemas[0]

    type_counts = Counter(s.type for s in schemas)
    winner = type_counts.most_common(1)[0][0]

    examples = [example for s in schemas for example in s.examples][:MAX_MERGED_EXAMPLES]
    fmt = next((s.format for s in schemas if s.format), None)
    nested = _merge_nested([s.nested for s in schemas if s.type == winner and s.nested is not None])

    return JSONFieldSchema(
        type=winner,
        format=fmt,
        examples=examples,
        nullable=any(s.nullable for s in schemas),
        nested=nested,
    )


def _merge_nested(nested: list[JSONSchema]) -> JSONSchema | None:
    if not nested:
        return None
    if len(nested) == 1:
        return nested[0]

    first = nested[0]
    if first.type == "object":
        grouped: dict[str, list[JSONFieldSchema]] = {}
        for schema in nested:
            for key, field in (schema.properties or {}).items():
                grouped.setdefault(key, []).append(field)
        return JSONSchema(
            type="object",
            properties={key: merge_schemas(fields) for key, fields in grouped.items()},
        )

    items = [schema.items for schema in nested if schema.items is not None]
    return JSONSchema(type=first.type, items=merge_schemas(items) if items else None)


def count_fields(schema: JSONSchema) -> int:
    count = 0
    if schema.properties:
        count += len(schema.properties)
        for prop in schema.properties.values():
            if prop.nested:
                count += count_fields(prop.nested)
    if schema.items and schema.items.nested:
        count += count_fields(schema.items.nested)
    return count


def record_fields(schema: JSONSchema) -> dict[str, JSONFieldSchema]:
    """Top-level record fields: a root object's properties, or the element properties of an array of objects."""
    if schema.type == "object" and schema.properties:
        return schema.properties
    items = schema.items
    if (
        schema.type == "array"
        and items is not None
        and items.type == "object"
        and items.nested is not None
        and items.nested.properties
    ):
        return items.nested.properties
    return {}
