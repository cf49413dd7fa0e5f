"""Pipeline spec generation: prompt, call the model, validate, retry, fall back.

One generation request runs a short sequence of attempts. Each attempt is an
immutable record carrying the validation errors the next prompt must show the
model. Whatever happens upstream, the caller always gets a spec that passes
the validator.
"""

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from app.config import settings
from app.middleware.error_handler import LLMError
from app.models.pipeline_spec import Artifact, GenerationResult
from app.models.profile import FileProfile
from app.schemas.generate import GenerateSpecRequest, IngestConfig, ProjectMeta, RecommendationInput
from app.services import llm_service
from app.services.spec_validator import FIELD_TYPES, FREQUENCIES, TRANSFORM_OPERATORS, validate_pipeline_spec

logger = logging.getLogger(__name__)

Completion = Callable[[list[dict]], Awaitable[str]]

MAX_PROMPT_SAMPLE_ROWS = 300
DEFAULT_CRON = "0 2 * * *"
RAW_PAYLOAD_FIELD = "raw_payload"

STORAGE_OPTIONS = ("PostgreSQL", "ClickHouse", "HDFS")
REQUEST_LOAD_MODES = ("append", "merge", "upsert")
INGEST_MODES = ("file", "constructor")

STORAGE_LABELS = {"postgres": "PostgreSQL", "clickhouse": "ClickHouse", "hdfs": "HDFS"}
OPERATOR_ALIASES = {"upsert": "UpsertPrep"}


@dataclass(frozen=True)
class Attempt:
    index: int
    prior_errors: tuple[str, ...] = ()

    def retry(self, errors: list[str] | None = None) -> "Attempt":
        """Next attempt; a call failure keeps the errors already collected."""
        prior = tuple(errors) if errors is not None else self.prior_errors
        return Attempt(index=self.index + 1, prior_errors=prior)


def check_generation_request(payload: Any) -> list[str]:
    """Every problem with a raw generation request, so the client can fix them in one go."""
    if not isinstance(payload, dict):
        return ["Request body must be a JSON object"]

    errors = []

    project = payload.get("projectMeta")
    if not isinstance(project, dict):
        errors.append("Missing projectMeta")
    else:
        if not _non_empty_str(project.get("name")):
            errors.append("Project name is required and must be a non-empty string")
        if not _non_empty_str(project.get("description")):
            errors.append("Project description is required and must be a non-empty string")

    ingest = payload.get("ingest")
    if not isinstance(ingest, dict):
        errors.append("Missing ingest configuration")
    else:
        mode = ingest.get("mode")
        if mode not in INGEST_MODES:
            errors.append("Ingest mode must be 'file' or 'constructor'")
        if mode == "file" and not ingest.get("fileProfile"):
            errors.append("File profile is required for file ingest mode")
        if mode == "constructor" and not ingest.get("constructorSpec"):
            errors.append("Constructor spec is required for constructor ingest mode")

    recommendation = payload.get("recommendation")
    if not isinstance(recommendation, dict):
        errors.append("Missing recommendation")
    else:
        if recommendation.get("storage") not in STORAGE_OPTIONS:
            errors.append("Storage must be one of: PostgreSQL, ClickHouse, HDFS")
        if recommendation.get("loadMode") not in REQUEST_LOAD_MODES:
            errors.append("Load mode must be one of: append, merge, upsert")
        schedule = recommendation.get("schedule")
        if not isinstance(schedule, dict):
            errors.append("Schedule configuration is required")
        else:
            if schedule.get("frequency") not in FREQUENCIES:
                errors.append("Schedule frequency must be one of: hourly, daily, weekly")
            if not _non_empty_str(schedule.get("cron")):
                errors.append("Schedule cron expression is required")

    pipeline = payload.get("pipeline")
    if not isinstance(pipeline, dict):
        errors.append("Missing pipeline configuration")
    else:
        if not isinstance(pipeline.get("nodes"), list):
            errors.append("Pipeline nodes must be an array")
        if not isinstance(pipeline.get("edges"), list):
            errors.append("Pipeline edges must be an array")

    return errors


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def build_request_prompt(request: GenerateSpecRequest) -> str:
    project = request.project_meta
    ingest = request.ingest
    if ingest.file_profile is not None:
        profile = ingest.file_profile
        if profile.sample_rows_count > MAX_PROMPT_SAMPLE_ROWS:
            profile = profile.model_copy(update={"sample_rows_count": MAX_PROMPT_SAMPLE_ROWS})
        return llm_service.build_file_prompt(
            profile,
            project.name,
            project.description,
            ingest.sample_data[:MAX_PROMPT_SAMPLE_ROWS],
            ingest.file_name,
        )
    return llm_service.build_constructor_prompt(
        project.name,
        project.description,
        ingest.model_dump(by_alias=True, exclude={"file_profile", "sample_data"}),
        request.recommendation.model_dump(by_alias=True),
        request.pipeline.model_dump(by_alias=True),
    )


async def _call_model(complete: Completion, user_prompt: str, attempt: Attempt) -> dict:
    messages = llm_service.build_prompt_parts(user_prompt, attempt.prior_errors).to_messages()
    try:
        text = await asyncio.wait_for(complete(messages), timeout=settings.llm_timeout_seconds)
    except asyncio.TimeoutError:
        raise LLMError(f"API timeout: request exceeded {settings.llm_timeout_seconds:g} seconds")
    except LLMError:
        raise
    except Exception as e:
        logger.exception("Completion raised an unexpected error")
        raise LLMError(f"Unexpected completion error ({type(e).__name__})", detail=str(e)) from e
    return llm_service.parse_model_json(text)


async def generate_pipeline_spec(
    request: GenerateSpecRequest,
    complete: Completion | None = None,
    max_retries: int | None = None,
) -> GenerationResult:
    """Run the attempt sequence; makes at most max_retries + 1 model calls."""
    complete = complete or llm_service.complete_chat
    max_retries = settings.llm_max_retries if max_retries is None else max_retries
    user_prompt = build_request_prompt(request)

    attempt = Attempt(index=0)
    while True:
        logger.info("Spec generation attempt %d of %d", attempt.index + 1, max_retries + 1)
        try:
            response = await _call_model(complete, user_prompt, attempt)
        except LLMError as e:
            logger.warning("LLM call failed on attempt %d: %s", attempt.index + 1, e.message)
            if attempt.index < max_retries:
                attempt = attempt.retry()
                continue
            return build_fallback_result(request, [f"LLM call failed: {e.message}"], attempt.index + 1)

        spec = response["proposedSpec"]
        validation = validate_pipeline_spec(spec)
        if validation.is_valid:
            report = str(response["reportMarkdown"])
            if validation.warnings:
                logger.info("Validation warnings: %s", validation.warnings)
                report += "\n\n## ⚠️ Предупреждения\n\n" + "\n".join(f"- {w}" for w in validation.warnings)
            return GenerationResult(
                pipeline_spec=spec,
                report_markdown=report,
                artifacts=_model_artifacts(response.get("artifacts"), spec),
                validation_passed=True,
                attempts=attempt.index + 1,
            )

        logger.info("Validation failed on attempt %d: %s", attempt.index + 1, validation.errors)
        if attempt.index < max_retries:
            attempt = attempt.retry(validation.errors)
            continue
        return build_fallback_result(request, validation.errors, attempt.index + 1)


def _model_artifacts(raw: Any, spec: dict) -> list[Artifact]:
    if isinstance(raw, list) and raw and all(
        isinstance(a, dict) and isinstance(a.get("path"), str) and isinstance(a.get("summary"), str)
        for a in raw
    ):
        return [Artifact(path=a["path"], summary=a["summary"]) for a in raw]

    targets = spec.get("targets") or [{}]
    return fallback_artifacts(targets[0].get("kind") or "postgres")


def build_fallback_result(request: GenerateSpecRequest, errors: list[str], attempts: int) -> GenerationResult:
    logger.warning("Using fallback spec after %d attempts: %s", attempts, errors)
    spec = build_fallback_spec(request)
    report = (
        build_fallback_report(request)
        + "\n\n## ⚠️ Системное уведомление\n\n"
        + "Данная спецификация была сгенерирована в резервном режиме из-за ошибок валидации. "
        + "Рекомендуется проверить конфигурацию вручную.\n\n"
        + "Ошибки:\n"
        + "\n".join(f"- {e}" for e in errors)
    )
    return GenerationResult(
        pipeline_spec=spec,
        report_markdown=report,
        artifacts=fallback_artifacts(spec["targets"][0]["kind"]),
        validation_passed=validate_pipeline_spec(spec).is_valid,
        attempts=attempts,
        fallback_used=True,
    )


def build_fallback_spec(request: GenerateSpecRequest) -> dict[str, Any]:
    """Minimal PipelineSpec v1 derived from the request alone.

    Always a PostgreSQL append target without partitioning, so none of the
    business rules can fail.
    """
    project = request.project_meta
    ingest = request.ingest
    profile = ingest.file_profile
    recommendation = request.recommendation

    columns = profile.columns if profile else []
    fields = [
        {"name": col, "type": _field_type(profile.inferred_types.get(col)), "nullable": True}
        for col in columns
    ] or [{"name": RAW_PAYLOAD_FIELD, "type": "string", "nullable": True}]
    time_field = next((f for f in profile.time_fields if f in columns), None) if profile else None

    is_file = ingest.mode == "file" or profile is not None
    if is_file:
        entity = ingest.file_name or f"data.{_file_extension(profile)}"
    else:
        entity = "source_table"

    schedule = recommendation.schedule
    frequency = schedule.frequency if schedule and schedule.frequency in FREQUENCIES else "daily"
    cron = schedule.cron.strip() if schedule and schedule.cron.strip() else DEFAULT_CRON

    return {
        "version": "1.0",
        "project": {
            "name": project.name.strip() or "Untitled project",
            "description": project.description.strip() or "Pipeline specification",
        },
        "sources": [
            {
                "name": "source_data",
                "kind": "file" if is_file else "postgres",
                "entity": entity,
                "format": profile.format if profile else None,
                "schema": {
                    "fields": fields,
                    "primaryKey": [],
                    "timeField": time_field,
                    "encoding": profile.encoding if profile else None,
                    "timezone": "UTC",
                },
                "notes": None,
            }
        ],
        "transforms": _canvas_transforms(request.pipeline.nodes),
        "targets": [
            {
                "name": "target_data",
                "kind": "postgres",
                "entity": "target_table",
                "ddl": {
                    "table": "target_table",
                    "partitions": {"type": None, "field": None, "granularity": None},
                    "indexes": [],
                    "orderBy": [],
                },
                "loadPolicy": {
                    "mode": "append",
                    "dedupKeys": [],
                    "watermark": {"field": None, "delay": "PT0S"},
                },
            }
        ],
        "mappings": [],
        "schedule": {
            "frequency": frequency,
            "cron": cron,
            "slaNote": None,
            "retries": {"count": 2, "delaySec": 300},
        },
        "nonFunctional": {
            "retention": {"policy": None},
            "dataQualityChecks": [],
            "pii": {"masking": [], "notes": None},
        },
    }


def _field_type(inferred: str | None) -> str:
    return inferred if inferred in FIELD_TYPES else "string"


def _file_extension(profile: FileProfile | None) -> str:
    if profile is None or profile.format == "csv":
        return "csv"
    return "xml" if profile.format == "xml" else "json"


def _canvas_transforms(nodes: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Transform nodes from the canvas whose operator maps onto a known one; others are dropped."""
    by_lower = {op.lower(): op for op in TRANSFORM_OPERATORS}
    transforms = []
    for index, node in enumerate(nodes, 1):
        if node.get("type") != "transform":
            continue
        raw = str(node.get("operator") or "").strip().lower()
        operator = by_lower.get(raw) or OPERATOR_ALIASES.get(raw)
        if operator is None:
            logger.info("Dropping canvas node %s with unknown operator %r", node.get("id"), raw)
            continue
        params = node.get("config") or node.get("params") or {}
        transforms.append({
            "id": str(node.get("id") or f"t{index}"),
            "operator": operator,
            "params": params if isinstance(params, dict) else {},
        })
    return transforms


def build_fallback_report(request: GenerateSpecRequest) -> str:
    project = request.project_meta
    recommendation = request.recommendation
    profile = request.ingest.file_profile

    sampling = ""
    if profile and profile.sampling_warning and profile.sample_info:
        info = profile.sample_info
        sampling = (
            "\n## ⚠️ Ограничения анализа данных\n\n"
            f"Данный анализ основан на выборке из {info.percent:.1f}% файла "
            f"({format_file_size(info.sampled_bytes)} из {format_file_size(info.original_size)}).\n\n"
            "**Рекомендации:**\n"
            "- Выполните валидацию на полном датасете перед продакшеном\n"
            "- Проверьте редкие значения и крайние случаи\n"
            "- Настройте мониторинг схемы данных в продакшене\n"
        )

    rationale = "\n".join(f"- {r}" for r in recommendation.rationale) or (
        "Выбор основан на характеристиках данных и требованиях к производительности."
    )
    frequency = recommendation.schedule.frequency if recommendation.schedule else "daily"

    lines = [
        f"# Отчет по проекту: {project.name}",
        "",
        "## Обзор",
        project.description,
        sampling,
        "## Рекомендуемая архитектура",
        f"- **Запрошенное хранилище:** {recommendation.storage}",
        f"- **Режим загрузки:** {recommendation.load_mode}",
        f"- **Расписание:** {frequency}",
        "- **Резервная спецификация:** PostgreSQL, режим append, без партиционирования",
        "",
        "## Обоснование выбора",
        rationale,
        "",
        "## Следующие шаги",
        "1. Настроить окружение согласно README.md",
        "2. Выполнить DDL скрипты",
        "3. Развернуть Airflow DAG",
        "4. Запустить пайплайн",
    ]
    if profile and profile.sampling_warning:
        lines.append("5. Провести валидацию на полном датасете")
    lines += ["", "*Отчет сгенерирован автоматически*"]
    return "\n".join(lines)


def fallback_artifacts(kind: str) -> list[Artifact]:
    storage = kind.lower()
    label = STORAGE_LABELS.get(storage, kind)
    return [
        Artifact(path=f"/ddl/create_tables_{storage}.sql", summary=f"DDL для {label}"),
        Artifact(path="/etl/dag_pipeline.py", summary="Airflow DAG для ETL процесса"),
        Artifact(path="/config/pipeline.yaml", summary="Конфигурация пайплайна"),
        Artifact(path="/config/.env.sample", summary="Шаблон переменных окружения"),
        Artifact(path="/scripts/run.sh", summary="Скрипт запуска"),
        Artifact(path="/docs/README.md", summary="Инструкция по установке и запуску"),
        Artifact(path="/docs/schedule.md", summary="Настройки расписания и мониторинга"),
        Artifact(path="/docs/design_report.md", summary="Техническое обоснование архитектуры"),
    ]


def format_file_size(size: int | None) -> str:
    if not size:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB")
    exponent = min(int(math.log(size, 1024)), len(units) - 1)
    return f"{round(size / 1024 ** exponent, 2):g} {units[exponent]}"


async def analyze_file(
    profile: FileProfile,
    project_name: str,
    project_description: str,
    sample_rows: list[Any],
    file_name: str | None = None,
    complete: Completion | None = None,
) -> dict[str, Any]:
    """Single-shot deep analysis of an uploaded file.

    On any model failure the deterministic fallback analysis is returned with
    an `error` entry instead of raising.
    """
    complete = complete or llm_service.complete_chat
    user_prompt = llm_service.build_file_prompt(
        profile, project_name, project_description, sample_rows, file_name
    )
    try:
        result = await _call_model(complete, user_prompt, Attempt(index=0))
    except LLMError as e:
        logger.warning("File analysis failed, returning basic profile: %s", e.message)
        fallback = build_fallback_analysis(profile, project_name, project_description, e.message, file_name)
        fallback["error"] = e.message
        return fallback

    quality = result["deepProfile"].get("quality") if isinstance(result["deepProfile"], dict) else None
    if isinstance(quality, dict) and not quality.get("rowCountSampled"):
        quality["rowCountSampled"] = profile.sample_rows_count

    return {key: result[key] for key in llm_service.REQUIRED_KEYS}


def build_fallback_analysis(
    profile: FileProfile,
    project_name: str,
    project_description: str,
    reason: str,
    file_name: str | None = None,
) -> dict[str, Any]:
    info = profile.sample_info
    request = GenerateSpecRequest(
        project_meta=ProjectMeta(name=project_name, description=project_description),
        ingest=IngestConfig(mode="file", file_profile=profile, file_name=file_name),
        recommendation=RecommendationInput(),
    )
    return {
        "deepProfile": {
            "format": profile.format,
            "encoding": profile.encoding,
            "delimiter": profile.delimiter or ",",
            "headerPresent": True if profile.header_present is None else profile.header_present,
            "schema": {
                "fields": [
                    {
                        "name": col,
                        "type": profile.inferred_types.get(col, "string"),
                        "nullable": True,
                        "example": "",
                    }
                    for col in profile.columns
                ],
                "primaryKeyCandidates": [[col] for col in profile.primary_key_candidates],
                "businessKeyCandidates": [],
                "timeField": profile.time_fields[0] if profile.time_fields else None,
                "timezone": "UTC",
            },
            "quality": {
                "rowCountSampled": profile.sample_rows_count,
                "missingShareByField": {
                    col: missing / max(profile.sample_rows_count, 1)
                    for col, missing in profile.missing_stats.items()
                },
                "duplicatesShare": profile.duplicates_share,
                "mixedTypeFields": [],
                "outlierFields": [],
                "piiFlags": [],
            },
            "temporal": {"granularity": None, "regularity": None, "monotonicIncrease": False},
            "categorical": {"highCardinality": [], "lowCardinality": []},
            "sampling": {
                "sampleBytes": info.sampled_bytes if info else 0,
                "originalSizeBytes": info.original_size if info else 0,
                "schemaConfidence": profile.schema_confidence,
                "notes": [reason, "Используется базовый профиль без LLM анализа"],
            },
        },
        "recommendation": {
            "targetStorage": "PostgreSQL",
            "rationale": [
                "Базовая рекомендация: PostgreSQL подходит для большинства операционных задач",
                "Для точных рекомендаций требуется полный анализ данных",
            ],
            "ddlStrategy": {
                "partitions": {"type": None, "field": None, "granularity": None},
                "orderBy": [],
                "indexes": [],
            },
            "loadPolicy": {
                "mode": "append",
                "dedupKeys": [],
                "watermark": {"field": None, "delay": "PT0S"},
            },
            "schedule": {"frequency": "daily", "cron": DEFAULT_CRON, "slaNote": None},
            "suggestedTransforms": [],
        },
        "reportMarkdown": "\n".join([
            f"# Базовый анализ файла: {project_name}",
            "",
            "## ⚠️ Ограничение анализа",
            "",
            f"{reason}. Представлен базовый профиль данных без детального LLM анализа.",
            "",
            "## Обнаруженная структура",
            "",
            f"- **Формат**: {profile.format}",
            f"- **Полей**: {len(profile.columns)}",
            f"- **Строк**: {profile.sample_rows_count}",
            f"- **Кодировка**: {profile.encoding}",
            "",
            "## Рекомендации",
            "",
            "Для получения детальных рекомендаций по хранению и обработке данных:",
            "1. Попробуйте повторить анализ",
            "2. Убедитесь в стабильности сетевого подключения",
            "3. Рассмотрите уменьшение размера выборки данных",
            "",
            "*Базовый отчет сгенерирован автоматически*",
        ]),
        "proposedSpec": build_fallback_spec(request),
    }
