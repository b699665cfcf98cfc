from fastapi import APIRouter, Depends, Request

from worksy.api.deps import get_chat_service
from worksy.schemas.schemas import ChatRequest, ChatResponse
from worksy.services.chat_service import ChatService

router = APIRouter(prefix="/api", tags=["chat"])


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/chat", response_model=ChatResponse)
async def post_chat(
    body: ChatRequest,
    request: Request,
    service: ChatService = Depends(get_chat_service),
):
    """One chat turn. Creates the session when no sessionId is supplied."""
    result = await service.post_turn(
        assignment_id=body.assignment_id,
        student_ref=body.student_ref,
        message=body.message,
        session_id=body.session_id,
        locale=body.locale,
        ip=_client_ip(request),
    )
    return ChatResponse(
        session_id=result.session_id,
        reply=result.reply,
        usage=result.usage,
        prompts_used=result.prompts_used,
        prompt_cap=result.prompt_cap,
    )
