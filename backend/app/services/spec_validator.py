"""Validation of PipelineSpec v1 documents.

Two phases run on every call and their errors accumulate:

1. structural: a small JSON-Schema interpreter walks PIPELINE_SPEC_SCHEMA
   (required keys, types, enums, minItems, minLength, minimum);
2. business rules: cross-field invariants the templating layer relies on.

Nothing here raises; untrusted model output goes in, a ValidationResult
comes out.
"""

import logging
from typing import Any

from app.models.pipeline_spec import ValidationResult

logger = logging.getLogger(__name__)

_STRING_LIST = {"type": "array", "items": {"type": "string"}}
_NULLABLE_STRING = {"type": ["string", "null"]}

FIELD_TYPES = ["string", "integer", "float", "boolean", "datetime", "date", "timestamp", "json"]
SOURCE_KINDS = ["file", "postgres", "clickhouse", "hdfs", "kafka", "api"]
TARGET_KINDS = ["postgres", "clickhouse", "hdfs"]
TRANSFORM_OPERATORS = ["Filter", "Project", "Aggregate", "Join", "Deduplicate", "TypeCast", "DateTrunc", "UpsertPrep"]
LOAD_MODES = ["append", "upsert", "merge", "replace"]
FREQUENCIES = ["hourly", "daily", "weekly"]

PIPELINE_SPEC_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["version", "project", "sources", "targets", "schedule"],
    "properties": {
        "version": {"type": "string"},
        "project": {
            "type": "object",
            "required": ["name", "description"],
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "description": {"type": "string", "minLength": 1},
            },
        },
        "sources": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["name", "kind", "entity", "schema"],
                "properties": {
                    "name": {"type": "string"},
                    "kind": {"enum": SOURCE_KINDS},
                    "entity": {"type": "string"},
                    "format": _NULLABLE_STRING,
                    "schema": {
                        "type": "object",
                        "required": ["fields"],
                        "properties": {
                            "fields": {
                                "type": "array",
                                "minItems": 1,
                                "items": {
                                    "type": "object",
                                    "required": ["name", "type", "nullable"],
                                    "properties": {
                                        "name": {"type": "string"},
                                        "type": {"enum": FIELD_TYPES},
                                        "nullable": {"type": "boolean"},
                                    },
                                },
                            },
                            "primaryKey": _STRING_LIST,
                            "timeField": _NULLABLE_STRING,
                        },
                    },
                },
            },
        },
        "transforms": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "operator"],
                "properties": {
                    "id": {"type": "string"},
                    "operator": {"enum": TRANSFORM_OPERATORS},
                    "params": {"type": "object"},
                },
            },
        },
        "targets": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["name", "kind", "entity", "ddl", "loadPolicy"],
                "properties": {
                    "name": {"type": "string"},
                    "kind": {"enum": TARGET_KINDS},
                    "entity": {"type": "string"},
                    "ddl": {
                        "type": "object",
                        "required": ["table", "partitions", "indexes", "orderBy"],
                        "properties": {
                            "table": _NULLABLE_STRING,
                            "partitions": {
                                "type": "object",
                                "properties": {
                                    "type": {"enum": ["by_date", "by_key", "by_hash", "none", None]},
                                    "field": _NULLABLE_STRING,
                                    "granularity": {"enum": ["hour", "day", "month", "year", None]},
                                },
                            },
                            "indexes": {
                                "type": "array",
                                "items": {
                                    "type": "object",
                                    "required": ["fields"],
                                    "properties": {
                                        "fields": _STRING_LIST,
                                        "type": {"enum": ["btree", "hash", "gin", "gist", None]},
                                    },
                                },
                            },
                            "orderBy": _STRING_LIST,
                        },
                    },
                    "loadPolicy": {
                        "type": "object",
                        "required": ["mode"],
                        "properties": {
                            "mode": {"enum": LOAD_MODES},
                            "dedupKeys": _STRING_LIST,
                            "watermark": {
                                "type": "object",
                                "properties": {
                                    "field": _NULLABLE_STRING,
                                    "delay": {"type": "string"},
                                },
                            },
                        },
                    },
                },
            },
        },
        "schedule": {
            "type": "object",
            "required": ["frequency", "cron", "retries"],
            "properties": {
                "frequency": {"enum": FREQUENCIES},
                "cron": {"type": "string"},
                "slaNote": _NULLABLE_STRING,
                "retries": {
                    "type": "object",
                    "required": ["count", "delaySec"],
                    "properties": {
                        "count": {"type": "integer", "minimum": 0},
                        "delaySec": {"type": "integer", "minimum": 0},
                    },
                },
            },
        },
        "mappings": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["from", "to"],
                "properties": {
                    "from": {"type": "string"},
                    "to": {"type": "string"},
                    "transformId": _NULLABLE_STRING,
                },
            },
        },
        "nonFunctional": {
            "type": "object",
            "properties": {
                "retention": {
                    "type": "object",
                    "properties": {"policy": _NULLABLE_STRING},
                },
                "dataQualityChecks": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["check", "field"],
                        "properties": {
                            "check": {"enum": ["not_null", "unique", "range", "format"]},
                            "field": {"type": "string"},
                            "min": {"type": ["number", "string", "null"]},
                            "max": {"type": ["number", "string", "null"]},
                        },
                    },
                },
                "pii": {
                    "type": "object",
                    "properties": {
                        "masking": _STRING_LIST,
                        "notes": _NULLABLE_STRING,
                    },
                },
            },
        },
    },
}


def validate_pipeline_spec(spec: Any) -> ValidationResult:
    errors = _validate_node(spec, PIPELINE_SPEC_SCHEMA, "")
    rule_errors, warnings = check_business_rules(spec)
    errors.extend(rule_errors)

    if errors:
        logger.info("Pipeline spec rejected with %d errors", len(errors))
    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _matches_type(value: Any, expected: str) -> bool:
    actual = json_type(value)
    if expected == "number":
        return actual in ("integer", "number")
    if expected == "integer":
        return actual == "integer" or (actual == "number" and value.is_integer())
    return actual == expected


def _validate_node(value: Any, schema: dict[str, Any], path: str) -> list[str]:
    expected = schema.get("type")
    if expected is not None:
        allowed = expected if isinstance(expected, list) else [expected]
        if not any(_matches_type(value, t) for t in allowed):
            if not path:
                return [f"Expected {expected}, got {json_type(value)}"]
            wanted = f"one of {', '.join(allowed)}" if isinstance(expected, list) else expected
            return [f"Field {path}: expected {wanted}, got {json_type(value)}"]

    errors: list[str] = []

    if "enum" in schema and value not in schema["enum"]:
        allowed_values = ", ".join("null" if v is None else str(v) for v in schema["enum"])
        errors.append(f'Field {path}: value "{value}" not in allowed values: {allowed_values}')

    min_length = schema.get("minLength")
    if min_length is not None and isinstance(value, str) and len(value) < min_length:
        errors.append(f"Field {path}: string must be at least {min_length} characters")

    minimum = schema.get("minimum")
    if minimum is not None and json_type(value) in ("integer", "number") and value < minimum:
        errors.append(f"Field {path}: number must be at least {minimum}")

    if isinstance(value, list):
        min_items = schema.get("minItems")
        if min_items is not None and len(value) < min_items:
            errors.append(f"Field {path}: array must have at least {min_items} items")
        if "items" in schema:
            for index, item in enumerate(value):
                errors.extend(_validate_node(item, schema["items"], f"{path}[{index}]"))

    if isinstance(value, dict):
        for key in schema.get("required", []):
            if key not in value:
                errors.append(f"Missing required field: {_join(path, key)}")
        for key, child in schema.get("properties", {}).items():
            if key in value:
                errors.extend(_validate_node(value[key], child, _join(path, key)))

    return errors


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _dig(obj: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def check_business_rules(spec: Any) -> tuple[list[str], list[str]]:
    """Cross-field invariants. Returns (errors, warnings).

    When `targets` or `sources` is not a list the structural phase has already
    reported it, and no rule is evaluated.
    """
    errors: list[str] = []
    warnings: list[str] = []

    targets = _dig(spec, "targets")
    sources = _dig(spec, "sources")
    if not isinstance(targets, list) or not isinstance(sources, list):
        return errors, warnings

    for target in targets:
        if not isinstance(target, dict):
            continue
        name = target.get("name")
        kind = target.get("kind")

        if kind == "clickhouse" and not _dig(target, "ddl", "orderBy"):
            errors.append(f'ClickHouse target "{name}" must have at least one orderBy field')

        mode = _dig(target, "loadPolicy", "mode")
        if mode in ("merge", "upsert") and not _dig(target, "loadPolicy", "dedupKeys"):
            errors.append(f'Target "{name}" with {mode} mode must have dedupKeys')

        entity = target.get("entity")
        if kind == "hdfs" and isinstance(entity, str) and "/" not in entity and "." in entity:
            warnings.append(f'HDFS target "{name}" entity should be a path, not a table name')

        if _dig(target, "ddl", "partitions", "type") == "by_date" and not _dig(target, "ddl", "partitions", "field"):
            errors.append(f'Target "{name}" with by_date partitioning must specify partition field')

    for source in sources:
        time_field = _dig(source, "schema", "timeField")
        if not time_field:
            continue
        fields = _dig(source, "schema", "fields")
        names = [f.get("name") for f in fields if isinstance(f, dict)] if isinstance(fields, list) else []
        if time_field not in names:
            errors.append(
                f'Source "{_dig(source, "name")}" timeField "{time_field}" not found in schema fields'
            )

    return errors, warnings


def validation_error_prompt(errors: list[str], warnings: list[str]) -> str:
    """Retry preamble listing what the previous answer got wrong."""
    parts = ["The generated pipeline specification has validation errors. Please fix the following issues:\n"]

    if errors:
        parts.append("ERRORS (must fix):")
        parts.extend(f"{i}. {error}" for i, error in enumerate(errors, 1))
        parts.append("")

    if warnings:
        parts.append("WARNINGS (recommended to fix):")
        parts.extend(f"{i}. {warning}" for i, warning in enumerate(warnings, 1))
        parts.append("")

    parts.append(
        "Please regenerate the pipeline specification addressing these issues. "
        "Ensure all required fields are present and business rules are followed."
    )
    return "\n".join(parts)
