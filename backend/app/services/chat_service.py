import asyncio
import logging
from typing import Any

from app.config import settings
from app.middleware.error_handler import LLMError
from app.middleware.input_guard import sanitize_text_for_prompt, validate_chat_message
from app.services import llm_service

logger = logging.getLogger(__name__)

BACKOFF_BASE_SECONDS = 1.0
MAX_HISTORY_MESSAGES = 20

ASSISTANT_PROMPT = """Ты опытный AI-ассистент дата-инженера: ETL/ELT пайплайны, интеграция данных, архитектура хранилищ.

Текущий контекст:
- Источник: {source} ({source_type})
- Приемник: {target} ({target_type})
- Маппинг: полей сопоставлено {mapping_count}
- Режим загрузки: {load_mode}

Давай:
1. Конкретные практические советы
2. Лучшие практики дата-инжиниринга
3. Советы по производительности
4. Помощь в диагностике проблем
5. Примеры кода, когда они уместны

Отвечай кратко, но полно. Отвечай на русском языке."""


def summarize_context(context: dict[str, Any] | None) -> dict[str, Any]:
    context = context or {}
    source = context.get("sourcePreset") or {}
    target = context.get("targetPreset") or {}
    mapping = context.get("mapping")
    load_policy = context.get("loadPolicy") or {}
    return {
        "source": source.get("name") or "Not specified",
        "source_type": source.get("type") or "unknown",
        "target": target.get("name") or "Not specified",
        "target_type": target.get("type") or "unknown",
        "mapping_count": len(mapping) if isinstance(mapping, list) else 0,
        "load_mode": load_policy.get("mode") or "Not specified",
    }


def build_chat_messages(
    message: str,
    context: dict[str, Any] | None,
    chat_history: list[dict[str, Any]] | None,
) -> list[dict]:
    summary = {
        key: sanitize_text_for_prompt(str(value), 200)
        for key, value in summarize_context(context).items()
    }
    messages = [{"role": "system", "content": ASSISTANT_PROMPT.format(**summary)}]

    for item in (chat_history or [])[-MAX_HISTORY_MESSAGES:]:
        content = item.get("content")
        if not isinstance(content, str) or not content.strip():
            continue
        role = "user" if item.get("role") == "user" else "assistant"
        messages.append({"role": role, "content": content})

    messages.append({"role": "user", "content": message})
    return messages


async def reply(
    message: str,
    context: dict[str, Any] | None = None,
    chat_history: list[dict[str, Any]] | None = None,
) -> str:
    """Answer one assistant chat message, retrying the model with exponential backoff."""
    message = validate_chat_message(message)
    messages = build_chat_messages(message, context, chat_history)

    attempts = max(settings.chat_max_attempts, 1)
    last_error: LLMError | None = None
    for attempt in range(1, attempts + 1):
        try:
            text = await llm_service.complete_chat(messages, json_mode=False, temperature=0.7)
            if not text.strip():
                raise LLMError("Empty response from LLM")
            return text
        except LLMError as e:
            last_error = e
            logger.warning("Chat attempt %d of %d failed: %s", attempt, attempts, e.message)
            if attempt < attempts:
                await asyncio.sleep(BACKOFF_BASE_SECONDS * 2 ** (attempt - 1))

    raise last_error
