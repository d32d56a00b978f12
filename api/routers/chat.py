# api/routers/chat.py
import json
import logging
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from core.chat_orchestrator import (
    process_chat_request,
    process_chat_request_stream,
    prime_stream,
    to_event_stream,
)
from core.llm.exceptions import InvalidRequestBody
from core.llm.models import MODEL_ALIASES
from schemas.chat_schemas import ChatRequest, ChatResponse, DeleteResponse, ErrorResponse, ModelsResponse
from ..dependencies import get_registry, require_model_alias, require_user_id
from ..session_manager import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["Chat"]
)


async def _read_chat_request(request: Request) -> ChatRequest:
    try:
        return ChatRequest.model_validate(await request.json())
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
        logger.info(f"Rejected chat request body: {e}")
        raise InvalidRequestBody() from e


@router.post("/chat/{model}", response_model=ChatResponse)
async def chat_endpoint(
    request: Request,
    model_alias: str = Depends(require_model_alias),
    user_id: str = Depends(require_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Sends one message in the caller's conversation and returns the whole reply.

    The conversation is created on the first message from a User-ID; its
    model is fixed from then on.
    """
    body = await _read_chat_request(request)
    logger.info(f"Received chat request for client '{user_id}' (model alias '{model_alias}').")
    reply = await process_chat_request(registry, user_id, model_alias, body.message)
    return ChatResponse(response=reply)


@router.post("/chat/{model}/stream")
async def chat_stream_endpoint(
    request: Request,
    model_alias: str = Depends(require_model_alias),
    user_id: str = Depends(require_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Same as POST /chat/{model}, but relays the reply as server-sent events.

    Failures before the first chunk are reported as ordinary error responses;
    later failures end the stream with an `error` event.
    """
    body = await _read_chat_request(request)
    logger.info(f"Received streaming chat request for client '{user_id}' (model alias '{model_alias}').")
    chunks = await prime_stream(process_chat_request_stream(registry, user_id, model_alias, body.message))
    return StreamingResponse(to_event_stream(chunks), media_type="text/event-stream")


@router.delete(
    "/chat/{model}",
    response_model=DeleteResponse,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
)
async def delete_chat_endpoint(
    user_id: str = Depends(require_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Deletes the caller's conversation. The model segment is accepted but not checked."""
    if registry.delete(user_id):
        return DeleteResponse(message="Chat session deleted")
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": "Chat session not found"},
    )


@router.get("/models", response_model=ModelsResponse)
async def list_models() -> ModelsResponse:
    return ModelsResponse(models=dict(MODEL_ALIASES))
