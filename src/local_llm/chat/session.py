"""
In-memory chat sessions.

A session keeps its own transcript and selected model. The store is
process-local; sessions can be exported to and imported from JSON to
survive restarts.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel, Field, ValidationError

from local_llm.llm.exceptions import LLMModelError, LLMValidationError
from local_llm.models.api_models import ChatMessage
from local_llm.models.enums import MessageRole


logger = structlog.get_logger(__name__)

EXPORT_FORMAT_VERSION = 1
MAX_SESSION_MESSAGES = 100


class ChatSession(BaseModel):
    """A conversation: transcript plus the model selected for it."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Session identifier")
    model: Optional[str] = Field(default=None, description="Selected model, if any")
    messages: List[ChatMessage] = Field(default_factory=list, description="Transcript, oldest first")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def add_message(self, role: MessageRole, content: str) -> ChatMessage:
        message = ChatMessage(role=role, content=content)
        self.messages.append(message)
        if len(self.messages) > MAX_SESSION_MESSAGES:
            del self.messages[:-MAX_SESSION_MESSAGES]
        return message

    def clear(self) -> None:
        self.messages.clear()


class SessionExport(BaseModel):
    """Serialized form of a session."""

    version: int = EXPORT_FORMAT_VERSION
    exported_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    session: ChatSession


class ChatSessionStore:
    """Keeps sessions by id."""

    def __init__(self):
        self._sessions: Dict[str, ChatSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def create(self, model: Optional[str] = None) -> ChatSession:
        session = ChatSession(model=model)
        self._sessions[session.id] = session
        logger.info("Chat session created", session_id=session.id, model=model)
        return session

    def get(self, session_id: str) -> ChatSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise LLMModelError(
                f"Chat session '{session_id}' not found",
                "SESSION_NOT_FOUND",
                recoverable=False,
                details={"session_id": session_id},
            ) from None

    def list(self) -> List[ChatSession]:
        return sorted(self._sessions.values(), key=lambda s: s.created_at)

    def delete(self, session_id: str) -> None:
        self.get(session_id)
        del self._sessions[session_id]
        logger.info("Chat session deleted", session_id=session_id)

    def clear(self, session_id: str) -> ChatSession:
        session = self.get(session_id)
        session.clear()
        logger.info("Chat history cleared", session_id=session_id)
        return session

    def export_session(self, session_id: str) -> str:
        """JSON document holding the session and its transcript."""
        session = self.get(session_id)
        return SessionExport(session=session).model_dump_json(indent=2)

    def import_session(self, data: Union[str, bytes, Dict[str, Any]]) -> ChatSession:
        """
        Restore a session from `export_session` output.

        An imported session replaces any existing session with the same id.

        Raises:
            LLMValidationError: INVALID_SESSION_DATA on malformed input,
                UNSUPPORTED_EXPORT_VERSION on a newer export format
        """
        try:
            if isinstance(data, (str, bytes)):
                export = SessionExport.model_validate_json(data)
            else:
                export = SessionExport.model_validate(data)
        except ValidationError as e:
            raise LLMValidationError(
                f"Invalid session data: {e.error_count()} validation error(s)",
                "INVALID_SESSION_DATA",
                field="session",
                details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
            ) from e

        if export.version > EXPORT_FORMAT_VERSION:
            raise LLMValidationError(
                f"Unsupported export version: {export.version}",
                "UNSUPPORTED_EXPORT_VERSION",
                field="version",
                value=export.version,
            )

        session = export.session
        self._sessions[session.id] = session
        logger.info("Chat session imported", session_id=session.id, messages=len(session.messages))
        return session
