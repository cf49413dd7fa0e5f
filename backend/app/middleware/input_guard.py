"""Checks for user text that is embedded into LLM prompts: chat messages, project metadata, file names."""

import logging
import re

from app.middleware.error_handler import ValidationError

logger = logging.getLogger(__name__)

MAX_CHAT_MESSAGE_LENGTH = 4000
MAX_PROJECT_NAME_LENGTH = 200
MAX_PROJECT_DESCRIPTION_LENGTH = 2000
MAX_FILENAME_LENGTH = 255
DEFAULT_FILENAME = "unnamed_file"

# Attempts to override the assistant's system instructions, in English and Russian.
_INSTRUCTION_OVERRIDE_RE = re.compile(
    "|".join([
        r"(ignore|disregard)\s+(all\s+)?(previous|above|prior)\s+(instructions?|prompts?|rules?)",
        r"override\s+(all\s+)?instructions?",
        r"forget\s+(everything|all|prior|previous)",
        r"do\s+not\s+follow\s+(your|the|any)\s+(rules?|instructions?)",
        r"new\s+instructions?:",
        r"\[SYSTEM\]",
        r"<\|?(system|im_start)\|?>",
        r"(игнорируй|забудь)\s+(все\s+)?(предыдущие|прошлые)\s+(инструкции|указания|правила)",
        r"забудь\s+вс[её]",
    ]),
    re.IGNORECASE,
)

_INVISIBLE_CHARS_RE = re.compile(
    r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f"
    r"\u200b-\u200f\u2028-\u202f\u2060\ufeff]"
)
_LINE_BREAKS_RE = re.compile(r"\s*[\r\n]+\s*")
_UNSAFE_FILENAME_CHARS_RE = re.compile(r"[^\w.\-\s]")


def validate_chat_message(message: str) -> str:
    """Return the cleaned message; SQL is allowed, instruction overrides are not."""
    if len(message) > MAX_CHAT_MESSAGE_LENGTH:
        raise ValidationError(f"Message too long (max {MAX_CHAT_MESSAGE_LENGTH} characters)")

    message = strip_invisible(message)
    if not message.strip():
        raise ValidationError("Message cannot be empty")

    if _INSTRUCTION_OVERRIDE_RE.search(message):
        logger.warning("Instruction override attempt in chat message: %r", message[:200])
        raise ValidationError("Input contains suspicious instruction override patterns")
    return message


def validate_project_meta(name: str, description: str) -> tuple[str, str]:
    name = strip_invisible(name or "").strip()
    description = strip_invisible(description or "").strip()
    if not name or len(name) > MAX_PROJECT_NAME_LENGTH:
        raise ValidationError(f"Project name must be 1-{MAX_PROJECT_NAME_LENGTH} characters")
    if not description or len(description) > MAX_PROJECT_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Project description must be 1-{MAX_PROJECT_DESCRIPTION_LENGTH} characters"
        )
    return name, description


def sanitize_filename(filename: str | None) -> str:
    """Reduce an uploaded file name to its base name with safe characters, keeping the extension."""
    if not filename:
        return DEFAULT_FILENAME
    base = strip_invisible(filename.replace("\\", "/").rsplit("/", 1)[-1])
    base = _UNSAFE_FILENAME_CHARS_RE.sub("_", base)
    base = re.sub(r"[_\s]+", "_", base).strip("_.")
    if len(base) > MAX_FILENAME_LENGTH:
        stem, dot, ext = base.rpartition(".")
        if dot and len(ext) < 10:
            base = stem[:MAX_FILENAME_LENGTH - len(ext) - 1] + "." + ext
        else:
            base = base[:MAX_FILENAME_LENGTH]
    return base or DEFAULT_FILENAME


def sanitize_text_for_prompt(text: str, max_length: int = 500) -> str:
    """Flatten user text to a single escaped line so it cannot open new prompt sections."""
    text = _LINE_BREAKS_RE.sub(" ", strip_invisible(str(text))).strip()
    text = text.replace("<", "&lt;").replace(">", "&gt;")
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def strip_invisible(text: str) -> str:
    return _INVISIBLE_CHARS_RE.sub("", text)
