from typing import Any

from pydantic import Field

from app.models.profile import CamelModel


class ChatHistoryItem(CamelModel):
    role: str
    content: str


class AssistantChatRequest(CamelModel):
    message: str = Field(min_length=1)
    context: dict[str, Any] | None = None
    chat_history: list[ChatHistoryItem] = Field(default_factory=list)


class AssistantChatResponse(CamelModel):
    response: str
