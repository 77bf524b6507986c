"""
Chat orchestration.

Resolves the model for a turn, windows the history, sends the request
through the degradation layer and records the reply in the session.
"""

from typing import AsyncIterator, List, Optional

import structlog
from pydantic import BaseModel, Field

from local_llm.chat.session import ChatSession, ChatSessionStore
from local_llm.llm.base_client import BaseLLMClient
from local_llm.llm.exceptions import LLMModelError, LLMValidationError
from local_llm.llm.prompt_builder import ASSIST_ACTIONS, PromptBuilder
from local_llm.llm.streaming import extract_delta_content
from local_llm.models.api_models import (
    ChatCompletionRequest,
    ChatMessage,
    CompletionRequest,
    TokenUsage,
)
from local_llm.models.enums import Feature, MessageRole
from local_llm.resilience.degradation import GracefulDegradationService


logger = structlog.get_logger(__name__)

# finish_reason used by the degradation layer for stand-in responses
FALLBACK_FINISH_REASON = "error"


class ChatReply(BaseModel):
    """Assistant reply for one turn."""

    session_id: str
    model: str
    message: ChatMessage
    degraded: bool = Field(default=False, description="True when a fallback answer was served")
    usage: Optional[TokenUsage] = None


class ChatService:
    """
    Chat turns and code-assist actions on top of the degradation layer.

    Model resolution order: explicit argument, the session's model, the
    configured default, then the first loaded chat-capable model.
    """

    def __init__(
        self,
        client: BaseLLMClient,
        degradation: GracefulDegradationService,
        prompt_builder: PromptBuilder,
        store: ChatSessionStore,
        default_model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        completion_temperature: float = 0.7,
        completion_max_tokens: int = 500,
        completion_stop: Optional[List[str]] = None,
    ):
        self.client = client
        self.degradation = degradation
        self.prompt_builder = prompt_builder
        self.store = store
        self.default_model = default_model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.completion_temperature = completion_temperature
        self.completion_max_tokens = completion_max_tokens
        self.completion_stop = completion_stop

    async def resolve_model(self, model: Optional[str] = None, session: Optional[ChatSession] = None) -> str:
        if model:
            return model
        if session is not None and session.model:
            return session.model
        if self.default_model:
            return self.default_model

        models = await self.degradation.get_models_with_fallback()
        for candidate in models:
            if candidate.supports_chat and candidate.is_loaded:
                return candidate.id

        raise LLMModelError(
            "No active model selected. Please select a model first.",
            "NO_ACTIVE_MODEL",
        )

    @staticmethod
    def check_text(text: str) -> None:
        if not text or not text.strip():
            raise LLMValidationError("Message content cannot be empty", "EMPTY_MESSAGE_CONTENT", field="content")

    def _prepare_turn(self, session: ChatSession, text: str, model: str, stream: bool) -> ChatCompletionRequest:
        messages = self.prompt_builder.build_chat_messages(session.messages, text)
        return ChatCompletionRequest(
            model=model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            stream=stream,
        )

    async def send_message(
        self, session_id: str, text: str, model: Optional[str] = None
    ) -> ChatReply:
        """
        Send one user turn and wait for the full reply.

        The user turn and the reply are stored together once a real reply
        arrives. A fallback answer from the degradation layer is returned
        but leaves the transcript untouched.

        Raises:
            LLMValidationError: Empty message
            LLMModelError: Unknown session or no model to use
        """
        session = self.store.get(session_id)
        self.check_text(text)
        resolved = await self.resolve_model(model, session)
        request = self._prepare_turn(session, text, resolved, stream=False)

        session.model = resolved
        logger.info("Chat message sent", session_id=session_id, model=resolved, history=len(session.messages))

        response = await self.degradation.chat_completion_with_fallback(request)
        finish_reason = response.choices[0].finish_reason if response.choices else None
        degraded = finish_reason == FALLBACK_FINISH_REASON

        if degraded:
            reply = ChatMessage(role=MessageRole.ASSISTANT, content=response.content)
        else:
            session.add_message(MessageRole.USER, text)
            reply = session.add_message(MessageRole.ASSISTANT, response.content)

        return ChatReply(
            session_id=session_id,
            model=resolved,
            message=reply,
            degraded=degraded,
            usage=response.usage,
        )

    async def stream_message(
        self, session_id: str, text: str, model: Optional[str] = None
    ) -> AsyncIterator[str]:
        """
        Send one user turn and yield the reply as it is generated.

        Both turns are stored once the stream completes. Failures update the
        chat feature state and propagate.

        Raises:
            LLMRuntimeError: FEATURE_DISABLED while chat is disabled
        """
        session = self.store.get(session_id)
        self.check_text(text)
        await self.degradation.check_feature_enabled(Feature.CHAT)
        resolved = await self.resolve_model(model, session)
        request = self._prepare_turn(session, text, resolved, stream=True)

        session.model = resolved
        logger.info("Chat stream started", session_id=session_id, model=resolved)

        parts: List[str] = []
        try:
            async for chunk in self.client.iter_chat_completion_stream(request):
                delta = extract_delta_content(chunk)
                if delta:
                    parts.append(delta)
                    yield delta
        except LLMValidationError:
            raise
        except Exception as e:
            await self.degradation.record_failure(Feature.CHAT, e)
            raise

        await self.degradation.record_success(Feature.CHAT)
        session.add_message(MessageRole.USER, text)
        session.add_message(MessageRole.ASSISTANT, "".join(parts))
        logger.info("Chat stream finished", session_id=session_id, chunks=len(parts))

    async def assist(
        self,
        action: str,
        code: str,
        language: str = "text",
        model: Optional[str] = None,
    ) -> str:
        """Run a code-assist action (explain, improve or generate) and return the text."""
        if action not in ASSIST_ACTIONS:
            raise LLMValidationError(
                f"Unknown assist action: {action}", "INVALID_ASSIST_ACTION", field="action", value=action
            )
        resolved = await self.resolve_model(model)
        logger.info("Code assist requested", action=action, language=language, model=resolved)

        if action == "generate":
            prompt = self.prompt_builder.build_generate_prompt(code, language)
            completion = await self.degradation.text_completion_with_fallback(
                CompletionRequest(
                    model=resolved,
                    prompt=prompt,
                    temperature=self.completion_temperature,
                    max_tokens=self.completion_max_tokens,
                    stop=self.completion_stop,
                )
            )
            return completion.text

        messages = self.prompt_builder.build_assist_messages(action, code, language)
        response = await self.degradation.chat_completion_with_fallback(
            ChatCompletionRequest(
                model=resolved,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        )
        return response.content
