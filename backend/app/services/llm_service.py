import json
import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from app.config import settings
from app.middleware.error_handler import LLMError
from app.middleware.input_guard import (
    MAX_FILENAME_LENGTH,
    MAX_PROJECT_DESCRIPTION_LENGTH,
    MAX_PROJECT_NAME_LENGTH,
    sanitize_text_for_prompt,
)
from app.models.profile import FileProfile
from app.services.spec_validator import validation_error_prompt

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("deepProfile", "recommendation", "reportMarkdown", "proposedSpec")
PROMPT_PREVIEW_ROWS = 50
COLUMN_EXAMPLE_ROWS = 3

SYSTEM_PROMPT = """You are AI Data Engineer, a data file analyst.
Your job: from a file sample (usually the first 10 MB) and profiler statistics, infer structure, quality and risks, and produce actionable storage and ETL recommendations.

Hard constraints:
- Analyze only the provided file metadata, header, sample statistics and preview rows. No external lookups, no assumptions beyond the data.
- Do not invent secrets or endpoints; all access details are placeholders filled in later.
- You do not connect to databases; you recommend a target storage and propose DDL, load logic and a schedule.
- Platform defaults: ClickHouse for time-series and analytics, PostgreSQL for operational and upsert workloads, HDFS for raw and archival data. Prefer date partitioning when a time field exists; ClickHouse targets always need ORDER BY.
- Acknowledge sampling: include warnings when confidence is low or distributions look truncated.

Quality:
- Be precise, concise and unambiguous.
- If a critical input is missing, output exactly one line starting with CLARIFY: and still return best-effort results."""

DEVELOPER_PROMPT = """Return valid JSON with exactly the keys below. No extra keys, no comments.
{
  "deepProfile": {
    "format": "csv|json|ndjson|xml",
    "encoding": "utf-8|...|unknown",
    "delimiter": ",|;|\\t|pipe|unknown",
    "headerPresent": true,
    "schema": {
      "fields": [
        { "name": "string", "type": "integer|float|boolean|string|date|timestamp", "nullable": true, "example": "string" }
      ],
      "primaryKeyCandidates": [["colA"], ["colA", "colB"]],
      "businessKeyCandidates": [["..."]],
      "timeField": "string|null",
      "timezone": "UTC|local|null"
    },
    "quality": {
      "rowCountSampled": 0,
      "missingShareByField": { "field": 0.0 },
      "duplicatesShare": 0.0,
      "mixedTypeFields": ["field"],
      "outlierFields": ["field"],
      "piiFlags": ["email", "phone", "name", "address"]
    },
    "temporal": {
      "granularity": "second|minute|hour|day|null",
      "regularity": "regular|bursty|gapped|null",
      "monotonicIncrease": true
    },
    "categorical": {
      "highCardinality": ["field"],
      "lowCardinality": [{ "field": "status", "top": ["ok", "err"] }]
    },
    "sampling": {
      "sampleBytes": 0,
      "originalSizeBytes": 0,
      "schemaConfidence": 0.0,
      "notes": ["first 10MB only", "stats may be biased"]
    }
  },
  "recommendation": {
    "targetStorage": "PostgreSQL|ClickHouse|HDFS",
    "rationale": ["short bullet explaining why this storage fits the data"],
    "ddlStrategy": {
      "partitions": { "type": "by_date|by_key|null", "field": "string|null", "granularity": "day|month|null" },
      "orderBy": ["field1", "field2"],
      "indexes": [{ "fields": ["field1", "field2"], "type": "btree|hash|null" }]
    },
    "loadPolicy": {
      "mode": "append|merge|upsert",
      "dedupKeys": ["key1", "key2"],
      "watermark": { "field": "string|null", "delay": "PT0S|PT1H|P1D" }
    },
    "schedule": { "frequency": "hourly|daily|weekly", "cron": "string", "slaNote": "string|null" },
    "suggestedTransforms": [
      { "operator": "TypeCast", "params": { "field": "value", "toType": "float" } },
      { "operator": "DateTrunc", "params": { "field": "event_time", "granularity": "hour" } },
      { "operator": "Deduplicate", "params": { "keys": ["user_id", "event_time"] } },
      { "operator": "Filter", "params": { "expression": "status IN ('ok','pending')" } }
    ]
  },
  "reportMarkdown": "Short Russian report (<=1200 words): purpose of the data (operational/analytical/raw), key and time fields, quality and risks including the sampling caveat, why the chosen target fits (PG/CH/HDFS), DDL strategy (partitions/indexes/ORDER BY), load logic (append/merge/upsert with dedup and watermark), schedule, transform and PII masking advice, alternatives and trade-offs.",
  "proposedSpec": {
    "version": "1.0",
    "project": { "name": "{{project.name}}", "description": "{{project.description}}" },
    "sources": [
      {
        "name": "file_input",
        "kind": "file",
        "entity": "{{file.name}}",
        "format": "csv|json|xml",
        "schema": {
          "fields": [{ "name": "string", "type": "string|integer|float|boolean|date|timestamp|json", "nullable": true }],
          "primaryKey": [],
          "timeField": "string|null",
          "encoding": "utf-8|...|null",
          "timezone": "UTC|...|null"
        }
      }
    ],
    "transforms": [
      { "id": "f1", "operator": "Filter", "params": { "expression": "..." } },
      { "id": "t1", "operator": "TypeCast", "params": { "field": "...", "toType": "..." } },
      { "id": "d1", "operator": "Deduplicate", "params": { "keys": ["..."] } },
      { "id": "dt1", "operator": "DateTrunc", "params": { "field": "...", "granularity": "..." } }
    ],
    "targets": [
      {
        "name": "target_main",
        "kind": "postgres|clickhouse|hdfs",
        "entity": "table|path",
        "ddl": {
          "table": "schema.table|null",
          "partitions": { "type": "by_date|by_key|null", "field": "string|null", "granularity": "day|month|null" },
          "indexes": [{ "fields": ["..."], "type": "btree|hash|null" }],
          "orderBy": ["..."]
        },
        "loadPolicy": {
          "mode": "append|merge|upsert",
          "dedupKeys": ["..."],
          "watermark": { "field": "string|null", "delay": "PT0S" }
        }
      }
    ],
    "mappings": [{ "from": "file_input.field", "to": "target.field", "transformId": "t1" }],
    "schedule": { "frequency": "hourly|daily|weekly", "cron": "...", "slaNote": "...", "retries": { "count": 2, "delaySec": 300 } },
    "nonFunctional": {
      "retention": { "policy": null },
      "dataQualityChecks": [{ "check": "not_null", "field": "..." }, { "check": "unique", "field": "..." }],
      "pii": { "masking": ["email", "phone"], "notes": "маскируйте PII в целевой системе" }
    }
  },
  "artifacts": [{ "path": "/ddl/create_tables_postgres.sql", "summary": "short description" }]
}
Rules:
- If targetStorage is ClickHouse, ddlStrategy.orderBy and every clickhouse target's ddl.orderBy must be non-empty.
- If loadPolicy.mode is merge or upsert, dedupKeys must be non-empty.
- If partitions.type is by_date, partitions.field must name a valid time field.
- A source schema.timeField must be one of its schema.fields.
- HDFS target entities are paths, not table names.
- Keep reportMarkdown in Russian and under 1200 words."""

CONTEXT_BLOCK = """CONTEXT:
- Only a sample of the file was analyzed; sampling bias is possible.
- Follow platform defaults: ClickHouse for analytics/time-series; PostgreSQL for operational/upsert; HDFS for raw.
- No secrets or live connections: only recommendations and a proposed spec."""


@dataclass(frozen=True)
class PromptParts:
    system: str
    developer: str
    user: str

    def to_messages(self) -> list[dict]:
        return [
            {"role": "system", "content": self.system},
            {"role": "system", "content": self.developer},
            {"role": "user", "content": self.user},
        ]


def build_prompt_parts(user_prompt: str, prior_errors: list[str] | tuple[str, ...] = ()) -> PromptParts:
    """Three-part prompt; on a retry the user part is prefixed with the previous validation errors."""
    if prior_errors:
        user_prompt = (
            validation_error_prompt(list(prior_errors), [])
            + "\n\nOriginal request:\n"
            + user_prompt
        )
    return PromptParts(system=SYSTEM_PROMPT, developer=DEVELOPER_PROMPT, user=user_prompt)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _column_examples(column: str, rows: list[Any]) -> list[Any]:
    examples = []
    for row in rows[:COLUMN_EXAMPLE_ROWS]:
        value = row.get(column) if isinstance(row, dict) else None
        if value not in (None, ""):
            examples.append(value)
    return examples


def build_file_prompt(
    profile: FileProfile,
    project_name: str,
    project_description: str,
    sample_rows: list[Any],
    file_name: str | None = None,
) -> str:
    """User prompt for a profiled file. Columns, types and time-field candidates are always sent in full."""
    info = profile.sample_info
    columns = [
        {
            "name": col,
            "typeGuess": profile.inferred_types.get(col, "string"),
            "nullableGuess": profile.missing_stats.get(col, 0) > 0,
            "examples": _column_examples(col, sample_rows),
        }
        for col in profile.columns
    ]

    return f"""PROJECT:
- name: {sanitize_text_for_prompt(project_name, MAX_PROJECT_NAME_LENGTH)}
- description: {sanitize_text_for_prompt(project_description, MAX_PROJECT_DESCRIPTION_LENGTH)}

FILE PROFILE ({profile.format.upper()}):
- name: {sanitize_text_for_prompt(file_name or "unknown", MAX_FILENAME_LENGTH)}
- sizeBytes: {info.original_size if info else 0}
- sampledBytes: {info.sampled_bytes if info else 0}
- isFullFile: {_dumps(info.is_full_file if info else False)}
- encoding: {profile.encoding}
- delimiter: {_dumps(profile.delimiter)}
- headerPresent: {_dumps(profile.header_present)}
- sampleRowsCount: {profile.sample_rows_count}
- columns: {_dumps(columns)}
- inferredTypes: {_dumps(profile.inferred_types)}
- timeFieldCandidates: {_dumps(profile.time_fields)}
- primaryKeyCandidates: {_dumps(profile.primary_key_candidates)}
- missingStats: {_dumps(profile.missing_stats)}
- duplicatesShare: {profile.duplicates_share}
- schemaConfidence: {profile.schema_confidence}
- sampleRowsPreview: {_dumps(sample_rows[:PROMPT_PREVIEW_ROWS])}

{CONTEXT_BLOCK}

TASK:
1) Build a comprehensive "deepProfile" of this sample.
2) Recommend the best target storage and ETL approach with a clear rationale.
3) Propose a concise set of transforms (Filter/TypeCast/DateTrunc/Deduplicate/UpsertPrep) and a safe schedule.
4) Return a short Russian report with risks and alternatives.
5) Produce a minimal consistent "proposedSpec" (PipelineSpec v1) suitable for templating artifacts.

OUTPUT:
Return JSON exactly per the developer prompt schema."""


def build_constructor_prompt(
    project_name: str,
    project_description: str,
    ingest: dict,
    recommendation: dict,
    pipeline: dict,
) -> str:
    """User prompt for constructor mode, where source and target are described instead of uploaded."""
    return f"""PROJECT:
- name: {sanitize_text_for_prompt(project_name, MAX_PROJECT_NAME_LENGTH)}
- description: {sanitize_text_for_prompt(project_description, MAX_PROJECT_DESCRIPTION_LENGTH)}

INGEST:
- mode: {ingest.get("mode")}
- constructorSpec: {_dumps(ingest.get("constructorSpec"))}

RECOMMENDATION:
- storage: {recommendation.get("storage")}
- partitioning: {recommendation.get("partitioning")}
- loadMode: {recommendation.get("loadMode")}
- schedule: {_dumps(recommendation.get("schedule"))}

PIPELINE CANVAS:
- nodes: {_dumps(pipeline.get("nodes", []))}
- edges: {_dumps(pipeline.get("edges", []))}

{CONTEXT_BLOCK}

TASK:
Return every key of the developer prompt schema. Fill "deepProfile" from the constructor spec as best you can; "proposedSpec", "reportMarkdown" and "artifacts" must be consistent with each other.
Language: Russian. If anything critical is missing, output one line starting with "CLARIFY:" and proceed with best assumptions."""


async def complete_chat(
    messages: list[dict],
    json_mode: bool = True,
    temperature: float | None = None,
) -> str:
    """Call the LiteLLM proxy and return the raw completion text."""
    url = f"{settings.litellm_proxy_url}/v1/chat/completions"
    headers = {}
    if settings.litellm_api_key:
        headers["Authorization"] = f"Bearer {settings.litellm_api_key}"

    payload: dict[str, Any] = {
        "model": settings.llm_model,
        "messages": messages,
        "temperature": settings.llm_temperature if temperature is None else temperature,
    }
    if json_mode:
        payload["response_format"] = {"type": "json_object"}

    try:
        async with httpx.AsyncClient(timeout=settings.llm_timeout_seconds) as client:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
    except httpx.TimeoutException:
        raise LLMError(
            "LLM request timed out",
            detail=f"Request exceeded {settings.llm_timeout_seconds:g} seconds",
        )
    except httpx.HTTPStatusError as e:
        raise LLMError(
            f"LLM proxy returned {e.response.status_code}",
            detail=e.response.text[:500],
        )
    except httpx.ConnectError:
        raise LLMError(
            "Cannot connect to LLM proxy",
            detail=f"Check that LiteLLM proxy is running at {settings.litellm_proxy_url}",
        )
    except httpx.HTTPError as e:
        raise LLMError("LLM request failed", detail=str(e))

    try:
        data = response.json()
        content = data["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError):
        raise LLMError("LLM proxy returned an unexpected payload", detail=response.text[:500])
    usage = data.get("usage") or {}
    logger.info(
        "LLM response received, %d characters (prompt tokens: %s, completion tokens: %s)",
        len(content or ""), usage.get("prompt_tokens", "?"), usage.get("completion_tokens", "?"),
    )
    return content or ""


_JSON_BLOCK_RE = re.compile(r"\{.*\}", re.DOTALL)
_STRAY_BACKSLASH_RE = re.compile(r'\\([^"\\/bfnrtu])')
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_ALL_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1F\x7F]")


def sanitize_json_text(text: str) -> str:
    text = _STRAY_BACKSLASH_RE.sub(r"\\\\\1", text)
    return _CONTROL_CHARS_RE.sub("", text)


def parse_model_json(text: str, required: tuple[str, ...] = REQUIRED_KEYS) -> dict:
    """Pull the JSON object out of a model reply.

    The reply may wrap the object in prose or code fences. Parsing is tried
    strictly, then after escaping stray backslashes and dropping control
    characters, then with every control character removed.
    """
    match = _JSON_BLOCK_RE.search(text or "")
    if not match:
        logger.warning("No JSON object in LLM response: %s", (text or "")[:200])
        raise LLMError("No valid JSON found in LLM response")

    block = match.group(0)
    errors = []
    for candidate in (block, sanitize_json_text(block), _ALL_CONTROL_CHARS_RE.sub("", block)):
        try:
            parsed = json.loads(candidate)
        except ValueError as e:
            errors.append(str(e))
            continue
        if not isinstance(parsed, dict):
            errors.append("top-level JSON value is not an object")
            continue
        if "proposedSpec" not in parsed and "pipelineSpec" in parsed:
            parsed["proposedSpec"] = parsed.pop("pipelineSpec")

        missing = [key for key in required if not parsed.get(key)]
        if missing:
            logger.warning("LLM response missing fields %s, has %s", missing, list(parsed))
            raise LLMError("Missing required fields in LLM response", detail=missing)
        return parsed

    logger.warning("All JSON parsing attempts failed: %s", errors[0])
    raise LLMError("Failed to parse LLM response", detail=errors[0])
