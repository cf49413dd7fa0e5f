import json
import logging
from dataclasses import dataclass
from typing import Any

from app.middleware.error_handler import ValidationError
from app.models.json_schema import AnalysisFailure
from app.models.profile import FileProfile, SampleInfo, SourceProfile
from app.services import csv_profiler, json_profiler, xml_profiler
from app.services.encoding_sniffer import decode_bytes, truncate_to_last_line
from app.services.json_analyzer import analyze_json

logger = logging.getLogger(__name__)

CSV_MIME = "text/csv"
JSON_MIME = "application/json"
XML_MIMES = ("text/xml", "application/xml")
ALLOWED_MIME_TYPES = (CSV_MIME, JSON_MIME, *XML_MIMES)

GENERIC_MIME_TYPES = ("", "application/octet-stream", "text/plain")
EXTENSION_MIME_TYPES = {
    "csv": CSV_MIME,
    "json": JSON_MIME,
    "ndjson": JSON_MIME,
    "xml": "application/xml",
}

MAX_JSON_SIZE = 100 * 1024 * 1024
MAX_FILE_SIZE = 5 * 1024 * 1024 * 1024
MAX_PROFILE_BYTES = 10 * 1024 * 1024
SAMPLE_PREVIEW_ROWS = 50

DEFAULT_PROJECT_NAME = "File Analysis Project"
DEFAULT_PROJECT_DESCRIPTION = "Automated file analysis for data pipeline"


@dataclass(frozen=True)
class ProfiledFile:
    profile: FileProfile
    text: str  # decoded text the profile was computed from


def resolve_mime_type(content_type: str | None, filename: str | None) -> str:
    """Map the declared content type onto a supported one.

    Browsers often send a generic type for .csv/.ndjson uploads, so those are
    resolved from the file extension.
    """
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime in GENERIC_MIME_TYPES and filename and "." in filename:
        ext = filename.rsplit(".", 1)[-1].lower()
        mime = EXTENSION_MIME_TYPES.get(ext, mime)

    if mime not in ALLOWED_MIME_TYPES:
        raise ValidationError(
            "Unsupported file type",
            detail=f"Supported types: {', '.join(ALLOWED_MIME_TYPES)}",
        )
    return mime


def parse_project_meta(raw: str | None) -> tuple[str, str]:
    """Project name and description from the optional `project` form field; defaults when absent or unparsable."""
    name, description = DEFAULT_PROJECT_NAME, DEFAULT_PROJECT_DESCRIPTION
    if not raw:
        return name, description
    try:
        data = json.loads(raw)
    except ValueError:
        logger.info("Failed to parse project data, using defaults")
        return name, description
    if isinstance(data, dict):
        if isinstance(data.get("name"), str) and data["name"].strip():
            name = data["name"].strip()
        if isinstance(data.get("description"), str) and data["description"].strip():
            description = data["description"].strip()
    return name, description


def check_file_size(mime: str, original_size: int) -> None:
    if mime == JSON_MIME and original_size > MAX_JSON_SIZE:
        raise ValidationError("JSON file too large (max 100MB)")
    if original_size > MAX_FILE_SIZE:
        raise ValidationError("File too large (max 5GB)")


def build_sample_info(original_size: int, sampled_bytes: int, is_full_file: bool = False) -> SampleInfo:
    percent = sampled_bytes / original_size * 100 if original_size > 0 else 100.0
    return SampleInfo(
        original_size=original_size,
        sampled_bytes=sampled_bytes,
        percent=percent,
        is_full_file=is_full_file,
    )


def profile_file(data: bytes, mime: str, sample_info: SampleInfo) -> ProfiledFile:
    """Decode the uploaded bytes and run the profiler for their MIME type."""
    if not data:
        raise ValidationError("File is empty")

    if mime != JSON_MIME:
        data = truncate_to_last_line(data, MAX_PROFILE_BYTES)

    text, encoding = decode_bytes(data)
    logger.info("Profiling %d bytes as %s (encoding %s)", len(data), mime, encoding)

    source = _run_profiler(text, mime, sample_info, encoding)
    return ProfiledFile(profile=source.to_file_profile(), text=text)


def _run_profiler(text: str, mime: str, sample_info: SampleInfo, encoding: str) -> SourceProfile:
    if mime == CSV_MIME:
        return csv_profiler.profile_csv(text, sample_info, encoding)
    if mime == JSON_MIME:
        return _profile_json(text, sample_info, encoding)
    return xml_profiler.profile_xml(text, sample_info, encoding)


def _profile_json(text: str, sample_info: SampleInfo, encoding: str) -> SourceProfile:
    is_full_file = sample_info.is_full_file
    result = analyze_json(text)
    if isinstance(result, AnalysisFailure):
        logger.info("Structural JSON analysis failed (%s), using line-by-line profiler", result.reason)
        return json_profiler.profile_json_lines(text, sample_info, encoding, is_full_file)
    return json_profiler.profile_from_analysis(result, sample_info, encoding, is_full_file)


def extract_sample_data(text: str, mime: str, max_rows: int = SAMPLE_PREVIEW_ROWS) -> list[Any]:
    """First rows of the file as records for the model prompt. Returns [] on any parse problem."""
    try:
        if mime == CSV_MIME:
            return _csv_rows(text, max_rows)
        if mime == JSON_MIME:
            return _json_rows(text, max_rows)
    except (ValueError, RecursionError) as e:
        logger.warning("Failed to extract sample data: %s", e)
    return []


def header_delimiter(header: str) -> str:
    """Delimiter giving the most header columns; ties keep the earlier candidate."""
    best, best_columns = csv_profiler.DELIMITER_CANDIDATES[0], 0
    for delimiter in csv_profiler.DELIMITER_CANDIDATES:
        columns = len(header.split(delimiter))
        if columns > best_columns:
            best, best_columns = delimiter, columns
    return best


def _csv_rows(text: str, max_rows: int) -> list[dict[str, str]]:
    lines = text.split("\n")[: max_rows + 1]
    if len(lines) < 2:
        return []

    delimiter = header_delimiter(lines[0])
    headers = csv_profiler.split_cells(lines[0], delimiter)
    rows = []
    for line in lines[1:]:
        if not line.strip():
            continue
        values = csv_profiler.split_cells(line, delimiter)
        rows.append({h: values[i] if i < len(values) else "" for i, h in enumerate(headers)})
    return rows[:max_rows]


def _json_rows(text: str, max_rows: int) -> list[Any]:
    if json_profiler.is_ndjson_text(text):
        items = []
        for line in [line for line in text.split("\n") if line.strip()][:max_rows]:
            try:
                items.append(json.loads(line))
            except ValueError:
                continue
        return items

    data = json.loads(text)
    return data[:max_rows] if isinstance(data, list) else [data]
