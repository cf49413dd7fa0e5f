import logging

import pandas as pd

from app.middleware.error_handler import ValidationError
from app.models.profile import ColumnQuality, ColumnStats, CsvProfile, NumericRange, SampleInfo
from app.services.heuristics import (
    is_boolean_text,
    is_finite_number_text,
    is_integer_text,
    is_key_candidate,
    is_time_field_name,
    looks_like_date,
    looks_like_timestamp,
    ratio,
)

logger = logging.getLogger(__name__)

CSV_MAX_LINES = 1000
DELIMITER_CANDIDATES = (",", ";", "\t", "|")  # declaration order breaks score ties
DELIMITER_PROBE_LINES = 10
TYPE_SAMPLE_SIZE = 500


def detect_delimiter(lines: list[str]) -> str:
    """Pick the delimiter that splits the first lines into a consistent column count.

    Among consistent candidates the highest total token count wins; if none is
    consistent, the highest raw token count wins.
    """
    probe = lines[:DELIMITER_PROBE_LINES]
    if not probe:
        return DELIMITER_CANDIDATES[0]

    best_consistent, best_consistent_score = None, 0
    best_raw, best_raw_score = DELIMITER_CANDIDATES[0], 0
    for delimiter in DELIMITER_CANDIDATES:
        counts = [len(line.split(delimiter)) for line in probe]
        score = sum(counts)
        if all(c == counts[0] for c in counts) and score > best_consistent_score:
            best_consistent, best_consistent_score = delimiter, score
        if score > best_raw_score:
            best_raw, best_raw_score = delimiter, score

    return best_consistent if best_consistent is not None else best_raw


def split_cells(line: str, delimiter: str) -> list[str]:
    return [cell.strip().replace('"', "") for cell in line.split(delimiter)]


def profile_csv(text: str, sample_info: SampleInfo, encoding: str) -> CsvProfile:
    """Build column statistics and type guesses from delimited text."""
    lines = [line for line in text.split("\n")[:CSV_MAX_LINES] if line.strip()]
    if not lines:
        raise ValidationError("CSV file contains no rows")

    delimiter = detect_delimiter(lines)
    headers = _unique_headers(split_cells(lines[0], delimiter))
    data_lines = lines[1:]

    width = len(headers)
    rows = [_fit(split_cells(line, delimiter), width) for line in data_lines]
    df = pd.DataFrame(rows, columns=headers, dtype=str) if rows else pd.DataFrame(columns=headers, dtype=str)

    duplicate_count = int(pd.Series([line.strip() for line in data_lines], dtype=str).duplicated().sum())
    duplicates_share = duplicate_count / len(data_lines) if data_lines else 0.0
    logger.info(
        "CSV profile: delimiter=%r, %d columns, %d duplicates out of %d rows",
        delimiter, width, duplicate_count, len(data_lines),
    )

    columns = [_column_stats(name, df[name]) for name in headers]

    return CsvProfile(
        delimiter=delimiter,
        header_present=True,
        columns=columns,
        sample_rows_count=len(data_lines),
        duplicates_share=duplicates_share,
        encoding=encoding,
        sample_info=sample_info,
        sampling_warning=sample_info.percent < 100,
        schema_confidence=0.8 if sample_info.percent >= 50 else 0.6,
    )


def infer_text_type(name: str, sample: pd.Series) -> str:
    """Priority order: integer, float, boolean, timestamp, date, time-like name, string.

    A column without any non-empty value is integer: the "every value" checks hold vacuously.
    """
    if sample.map(is_integer_text).all():
        return "integer"
    if sample.map(is_finite_number_text).all():
        return "float"
    if sample.map(is_boolean_text).all():
        return "boolean"
    if sample.map(looks_like_timestamp).any():
        return "timestamp"
    if sample.map(looks_like_date).any():
        return "date"
    if is_time_field_name(name):
        return "timestamp"
    return "string"


def _column_stats(name: str, values: pd.Series) -> ColumnStats:
    non_empty = values[values != ""]
    sample = non_empty.head(TYPE_SAMPLE_SIZE)
    inferred = infer_text_type(name, sample)

    presence = ratio(len(non_empty), len(values))
    uniqueness = ratio(int(non_empty.nunique()), len(non_empty))

    value_range = None
    if inferred in ("integer", "float"):
        numeric = pd.to_numeric(sample, errors="coerce").dropna()
        if not numeric.empty:
            value_range = NumericRange(min=float(numeric.min()), max=float(numeric.max()))

    return ColumnStats(
        name=name,
        inferred_type=inferred,
        missing=len(values) - len(non_empty),
        is_time_field=inferred in ("timestamp", "date"),
        is_key_candidate=is_key_candidate(presence, uniqueness),
        quality=ColumnQuality(not_null=presence, unique=uniqueness, range=value_range),
    )


def _fit(cells: list[str], width: int) -> list[str]:
    if len(cells) >= width:
        return cells[:width]
    return cells + [""] * (width - len(cells))


def _unique_headers(raw: list[str]) -> list[str]:
    """Blank names become column_N; repeated names get a numeric suffix."""
    headers: list[str] = []
    seen: set[str] = set()
    for index, name in enumerate(raw):
        name = name or f"column_{index + 1}"
        candidate, suffix = name, 2
        while candidate in seen:
            candidate = f"{name}_{suffix}"
            suffix += 1
        seen.add(candidate)
        headers.append(candidate)
    return headers
