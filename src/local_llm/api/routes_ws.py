"""
WebSocket chat route.

Speaks the chat panel protocol: JSON messages discriminated by `type`.
Each connection owns one chat session (replaced by `newSession`); the
sessions a connection creates are deleted when it closes. Replies
are streamed as one `messageAdded` for the assistant turn followed by
`messageUpdated` events, the last one with `isStreaming: false`.
"""

import json
import uuid
from typing import Any, List, Optional

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from local_llm.api.dependencies import (
    get_chat_service,
    get_degradation_service,
    get_error_handler,
    get_llm_client,
)
from local_llm.api.models import (
    ChatClearedMessage,
    ChatState,
    ClearChatMessage,
    ErrorMessage,
    MessageAddedMessage,
    MessageUpdatedMessage,
    NewSessionMessage,
    PingMessage,
    PongMessage,
    ReadyMessage,
    RefreshModelsMessage,
    SelectModelMessage,
    SendMessageMessage,
    StateUpdateMessage,
    SuccessMessage,
    inbound_message_adapter,
)
from local_llm.chat.service import ChatService
from local_llm.chat.session import ChatSession
from local_llm.guidance.error_handler import ErrorHandler
from local_llm.llm.exceptions import LLMClientError
from local_llm.llm.openai_client import LocalLLMClient
from local_llm.models.enums import Feature, MessageRole
from local_llm.resilience.degradation import GracefulDegradationService

logger = structlog.get_logger(__name__)

router = APIRouter()


class ChatConnection:
    """State and message handling for one WebSocket client."""

    def __init__(
        self,
        websocket: WebSocket,
        chat_service: ChatService,
        client: LocalLLMClient,
        degradation: GracefulDegradationService,
        error_handler: ErrorHandler,
    ):
        self.websocket = websocket
        self.chat_service = chat_service
        self.client = client
        self.degradation = degradation
        self.error_handler = error_handler
        self.session: ChatSession = chat_service.store.create()
        self.created_sessions: List[str] = [self.session.id]

    def close(self) -> None:
        """Delete the sessions this connection created."""
        store = self.chat_service.store
        for session_id in self.created_sessions:
            if session_id in store:
                store.delete(session_id)
        self.created_sessions.clear()

    async def send(self, message) -> None:
        await self.websocket.send_json(message.to_wire())

    async def send_error(self, message: str, context: str, code: Optional[str] = None) -> None:
        await self.send(ErrorMessage(message=message, context=context, code=code))

    async def send_state(self) -> None:
        models = await self.degradation.get_models_with_fallback()
        state = ChatState(
            session_id=self.session.id,
            chat_history=[m.model_dump(mode="json") for m in self.session.messages],
            active_model=self.session.model or self.chat_service.default_model,
            available_models=[m.id for m in models if m.supports_chat],
            features=self.degradation.get_status()["features"],
        )
        await self.send(StateUpdateMessage(state=state))

    async def handle(self, raw: str) -> None:
        try:
            data: Any = json.loads(raw)
        except ValueError:
            logger.warning("Rejected non-JSON WebSocket message")
            await self.send_error("Malformed message", "Protocol")
            return

        try:
            message = inbound_message_adapter.validate_python(data)
        except ValidationError as e:
            message_type = data.get("type") if isinstance(data, dict) else None
            logger.warning("Rejected WebSocket message", message_type=message_type, errors=e.error_count())
            await self.send_error(f"Unknown message type: {message_type}", "Protocol")
            return

        try:
            await self.dispatch(message)
        except WebSocketDisconnect:
            raise
        except LLMClientError as e:
            await self.error_handler.handle_error(e, {"operation": f"ws:{message.type}"})
            await self.send_error(e.user_message(), message.type, e.code)
        except Exception as e:
            logger.exception("WebSocket handler failed", message_type=message.type)
            await self.error_handler.handle_error(e, {"operation": f"ws:{message.type}"})
            await self.send_error("An unexpected error occurred", message.type)

    async def dispatch(self, message) -> None:
        if isinstance(message, PingMessage):
            await self.send(PongMessage())
        elif isinstance(message, ReadyMessage):
            await self.send_state()
        elif isinstance(message, SendMessageMessage):
            await self.send_message(message)
        elif isinstance(message, ClearChatMessage):
            self.chat_service.store.clear(self.session.id)
            await self.send(ChatClearedMessage())
        elif isinstance(message, SelectModelMessage):
            model = await self.client.validate_chat_model(message.model_id)
            self.session.model = model.id
            await self.send(SuccessMessage(message=f"Selected model {model.id}", data={"model": model.id}))
            await self.send_state()
        elif isinstance(message, RefreshModelsMessage):
            await self.send_state()
        elif isinstance(message, NewSessionMessage):
            self.session = self.chat_service.store.create(model=message.model or self.session.model)
            self.created_sessions.append(self.session.id)
            await self.send_state()

    async def send_message(self, message: SendMessageMessage) -> None:
        self.chat_service.check_text(message.text)
        await self.degradation.check_feature_enabled(Feature.CHAT)
        model = await self.chat_service.resolve_model(message.model, self.session)

        await self.send(
            MessageAddedMessage(message_id=uuid.uuid4().hex, role=MessageRole.USER.value, content=message.text)
        )
        reply_id = uuid.uuid4().hex
        await self.send(
            MessageAddedMessage(
                message_id=reply_id, role=MessageRole.ASSISTANT.value, content="", is_streaming=True
            )
        )

        content = ""
        async for delta in self.chat_service.stream_message(self.session.id, message.text, model=model):
            content += delta
            await self.send(MessageUpdatedMessage(message_id=reply_id, content=content, is_streaming=True))

        await self.send(MessageUpdatedMessage(message_id=reply_id, content=content, is_streaming=False))


@router.websocket("/ws/chat")
async def chat_socket(
    websocket: WebSocket,
    chat_service: ChatService = Depends(get_chat_service),
    client: LocalLLMClient = Depends(get_llm_client),
    degradation: GracefulDegradationService = Depends(get_degradation_service),
    error_handler: ErrorHandler = Depends(get_error_handler),
):
    await websocket.accept()
    connection = ChatConnection(websocket, chat_service, client, degradation, error_handler)
    logger.info("Chat socket connected", session_id=connection.session.id)

    try:
        while True:
            raw = await websocket.receive_text()
            await connection.handle(raw)
    except WebSocketDisconnect:
        logger.info("Chat socket disconnected", session_id=connection.session.id)
    finally:
        connection.close()
