"""Named predicates used by the profilers for type, format and key sniffing.

Each heuristic is deliberately small so it can be tested on its own.
"""

import math
import re
from typing import Any

KEY_CANDIDATE_THRESHOLD = 0.98

INTEGER_RE = re.compile(r"-?[0-9]+")
BOOLEAN_RE = re.compile(r"true|false|yes|no|1|0", re.IGNORECASE)
TIMESTAMP_PREFIX_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}[\sT][0-9]{2}:[0-9]{2}:[0-9]{2}")
ISO_DATETIME_PREFIX_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}T[0-9]{2}:[0-9]{2}:[0-9]{2}")
ISO_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
BARE_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}|[0-9]{2}[./][0-9]{2}[./][0-9]{4}")
TIME_NAME_RE = re.compile(r"(time|date|timestamp|created|updated|modified)(_at|_on)?", re.IGNORECASE)
EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
URL_PREFIX_RE = re.compile(r"https?://")
UUID_RE = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)


def is_integer_text(value: str) -> bool:
    return INTEGER_RE.fullmatch(value) is not None


def is_finite_number_text(value: str) -> bool:
    text = value.strip()
    if not text or "_" in text:
        return False
    try:
        return math.isfinite(float(text))
    except ValueError:
        return False


def is_boolean_text(value: str) -> bool:
    return BOOLEAN_RE.fullmatch(value) is not None


def looks_like_timestamp(value: str) -> bool:
    """`YYYY-MM-DD[ T]HH:MM:SS` at the start of the value."""
    return TIMESTAMP_PREFIX_RE.match(value) is not None


def looks_like_date(value: str) -> bool:
    return BARE_DATE_RE.fullmatch(value) is not None


def is_time_field_name(name: str) -> bool:
    return TIME_NAME_RE.fullmatch(name) is not None


def is_key_candidate(presence: float, uniqueness: float) -> bool:
    return presence > KEY_CANDIDATE_THRESHOLD and uniqueness > KEY_CANDIDATE_THRESHOLD


def is_integer_value(value: Any) -> bool:
    """Exact integers, including floats with no fractional part (1.0)."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def is_number_value(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def string_format(value: str) -> str | None:
    """Guess a JSON-schema style format for a string value."""
    if ISO_DATETIME_PREFIX_RE.match(value):
        return "date-time"
    if ISO_DATE_RE.fullmatch(value):
        return "date"
    if EMAIL_RE.fullmatch(value):
        return "email"
    if URL_PREFIX_RE.match(value):
        return "url"
    if UUID_RE.fullmatch(value):
        return "uuid"
    return None


def ratio(part: int, whole: int) -> float:
    return part / max(whole, 1)
