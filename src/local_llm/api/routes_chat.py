"""
Chat session routes.

Sessions live in process memory. Replies come back whole
(POST /chat/sessions/{id}/messages) or as server-sent events
(POST /chat/sessions/{id}/stream): one `data: {"delta": ...}` event per
generated piece, then `data: [DONE]`.
"""

import json
from typing import Any, AsyncIterator, Dict, Optional

import structlog
from fastapi import APIRouter, Body, Depends, Response, status
from fastapi.responses import StreamingResponse

from local_llm.api.dependencies import get_chat_service, get_error_handler, get_session_store
from local_llm.api.error_handlers import error_body
from local_llm.api.models import (
    CreateSessionRequest,
    SendMessageRequest,
    SessionListResponse,
    SessionResponse,
)
from local_llm.chat.service import ChatReply, ChatService
from local_llm.chat.session import ChatSessionStore
from local_llm.guidance.error_handler import ErrorHandler
from local_llm.llm.exceptions import LLMClientError
from local_llm.llm.streaming import DONE_SENTINEL
from local_llm.models.enums import Feature

logger = structlog.get_logger(__name__)

router = APIRouter()


def _sse(data: Any) -> str:
    payload = data if isinstance(data, str) else json.dumps(data)
    return f"data: {payload}\n\n"


@router.post(
    "/sessions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a chat session",
)
async def create_session(
    body: Optional[CreateSessionRequest] = None,
    store: ChatSessionStore = Depends(get_session_store),
) -> SessionResponse:
    return SessionResponse.from_session(store.create(model=body.model if body else None))


@router.get("/sessions", response_model=SessionListResponse, summary="List chat sessions")
async def list_sessions(store: ChatSessionStore = Depends(get_session_store)) -> SessionListResponse:
    return SessionListResponse(sessions=[SessionResponse.from_session(s) for s in store.list()])


@router.post(
    "/sessions/import",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Import an exported session",
)
async def import_session(
    payload: Dict[str, Any] = Body(...),
    store: ChatSessionStore = Depends(get_session_store),
) -> SessionResponse:
    return SessionResponse.from_session(store.import_session(payload))


@router.get(
    "/sessions/{session_id}",
    response_model=SessionResponse,
    summary="Get a chat session with its transcript",
    responses={404: {"description": "Session not found"}},
)
async def get_session(
    session_id: str,
    store: ChatSessionStore = Depends(get_session_store),
) -> SessionResponse:
    return SessionResponse.from_session(store.get(session_id))


@router.delete(
    "/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a chat session",
)
async def delete_session(
    session_id: str,
    store: ChatSessionStore = Depends(get_session_store),
) -> Response:
    store.delete(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/sessions/{session_id}/messages",
    response_model=ChatReply,
    summary="Send a message and wait for the reply",
    responses={
        400: {"description": "Empty message or invalid request"},
        404: {"description": "Session not found"},
        409: {"description": "No usable model"},
    },
)
async def send_message(
    session_id: str,
    body: SendMessageRequest,
    chat_service: ChatService = Depends(get_chat_service),
) -> ChatReply:
    return await chat_service.send_message(session_id, body.content, model=body.model)


@router.post(
    "/sessions/{session_id}/stream",
    summary="Send a message and stream the reply (SSE)",
    responses={200: {"content": {"text/event-stream": {}}}},
)
async def stream_message(
    session_id: str,
    body: SendMessageRequest,
    chat_service: ChatService = Depends(get_chat_service),
    error_handler: ErrorHandler = Depends(get_error_handler),
) -> StreamingResponse:
    # Fail before the response starts when the turn cannot be sent at all
    session = chat_service.store.get(session_id)
    chat_service.check_text(body.content)
    await chat_service.degradation.check_feature_enabled(Feature.CHAT)
    model = await chat_service.resolve_model(body.model, session)

    async def event_stream() -> AsyncIterator[str]:
        try:
            async for delta in chat_service.stream_message(session_id, body.content, model=model):
                yield _sse({"delta": delta})
        except LLMClientError as e:
            logger.warning("Chat stream failed", session_id=session_id, code=e.code)
            await error_handler.handle_error(e, {"operation": "chat_stream"})
            yield _sse({"error": error_body(e)})
        yield _sse(DONE_SENTINEL)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post(
    "/sessions/{session_id}/clear",
    response_model=SessionResponse,
    summary="Clear a session's history",
)
async def clear_session(
    session_id: str,
    store: ChatSessionStore = Depends(get_session_store),
) -> SessionResponse:
    return SessionResponse.from_session(store.clear(session_id))


@router.get(
    "/sessions/{session_id}/export",
    summary="Export a session as JSON",
    responses={200: {"content": {"application/json": {}}}},
)
async def export_session(
    session_id: str,
    store: ChatSessionStore = Depends(get_session_store),
) -> Response:
    document = store.export_session(session_id)
    return Response(
        content=document,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="chat-{session_id}.json"'},
    )
