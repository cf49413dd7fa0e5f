from fastapi import APIRouter

from app.schemas.chat import AssistantChatRequest, AssistantChatResponse
from app.services import chat_service

router = APIRouter(prefix="/llm", tags=["chat"])


@router.post("/chat", response_model=AssistantChatResponse)
async def chat(body: AssistantChatRequest):
    """Ask the data-engineering assistant about the pipeline being configured."""
    text = await chat_service.reply(
        body.message,
        context=body.context,
        chat_history=[item.model_dump() for item in body.chat_history],
    )
    return AssistantChatResponse(response=text)
