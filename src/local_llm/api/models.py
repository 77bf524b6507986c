"""
API-specific request and response models for FastAPI endpoints.

Also defines the WebSocket chat protocol: JSON messages discriminated by
`type`, camelCase on the wire.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from local_llm.chat.session import ChatSession
from local_llm.guidance.notifier import Notification
from local_llm.guidance.user_guidance import Guidance
from local_llm.models.api_models import ChatMessage, Model, TokenUsage
from local_llm.models.enums import Feature, FeatureState


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# === System ===

class HealthResponse(BaseModel):
    """Response for the health endpoint."""

    status: str = Field(description="healthy or unhealthy", examples=["healthy", "unhealthy"])
    version: str
    server_url: str = Field(description="Inference server base URL")
    connected: bool
    timestamp: datetime = Field(default_factory=_utcnow)


class StatusResponse(BaseModel):
    client: Dict[str, Any] = Field(description="Client configuration and health")
    degradation: Dict[str, Any] = Field(description="Feature states, connection and retry queue")
    errors: Dict[str, Any] = Field(description="Error statistics")


class ConnectionCheckResponse(BaseModel):
    connected: bool
    last_check: Optional[datetime] = None


class FeatureStateResponse(BaseModel):
    feature: Feature
    state: FeatureState


# === Models ===

class ModelListResponse(BaseModel):
    models: List[Model] = Field(default_factory=list)
    count: int = Field(ge=0)


# === Chat ===

class CreateSessionRequest(BaseModel):
    model: Optional[str] = Field(default=None, description="Model for the session")


class SessionResponse(BaseModel):
    id: str
    model: Optional[str] = None
    created_at: datetime
    message_count: int = Field(ge=0)
    messages: List[ChatMessage] = Field(default_factory=list)

    @classmethod
    def from_session(cls, session: ChatSession) -> "SessionResponse":
        return cls(
            id=session.id,
            model=session.model,
            created_at=session.created_at,
            message_count=len(session.messages),
            messages=list(session.messages),
        )


class SessionListResponse(BaseModel):
    sessions: List[SessionResponse] = Field(default_factory=list)


class SendMessageRequest(BaseModel):
    content: str = Field(description="User message")
    model: Optional[str] = Field(default=None, description="Overrides the session model")


# === Completions / embeddings / assist ===

class CompletionApiRequest(BaseModel):
    prompt: str
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stop: Optional[Union[str, List[str]]] = None


class CompletionApiResponse(BaseModel):
    model: str
    text: str
    degraded: bool = False
    usage: Optional[TokenUsage] = None


class EmbeddingApiRequest(BaseModel):
    input: Union[str, List[str]]
    model: Optional[str] = None


class EmbeddingApiResponse(BaseModel):
    model: str
    embeddings: List[List[float]] = Field(default_factory=list)
    degraded: bool = False
    usage: Optional[TokenUsage] = None


class AssistRequest(BaseModel):
    code: str = Field(description="Code to explain or improve, or a description of code to generate")
    language: str = Field(default="text", description="Language identifier (python, javascript, ...)")
    model: Optional[str] = None


class AssistResponse(BaseModel):
    action: str
    content: str


# === Notifications / guidance ===

class NotificationListResponse(BaseModel):
    notifications: List[Notification] = Field(default_factory=list)


class GuidanceResponse(BaseModel):
    guidance: Guidance
    markdown: str


# === WebSocket chat protocol ===

class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ReadyMessage(_WireModel):
    type: Literal["ready"]


class PingMessage(_WireModel):
    type: Literal["ping"]


class SendMessageMessage(_WireModel):
    type: Literal["sendMessage"]
    text: str
    model: Optional[str] = None


class ClearChatMessage(_WireModel):
    type: Literal["clearChat"]


class SelectModelMessage(_WireModel):
    type: Literal["selectModel"]
    model_id: str


class RefreshModelsMessage(_WireModel):
    type: Literal["refreshModels"]


class NewSessionMessage(_WireModel):
    type: Literal["newSession"]
    model: Optional[str] = None


InboundMessage = Annotated[
    Union[
        ReadyMessage,
        PingMessage,
        SendMessageMessage,
        ClearChatMessage,
        SelectModelMessage,
        RefreshModelsMessage,
        NewSessionMessage,
    ],
    Field(discriminator="type"),
]
inbound_message_adapter = TypeAdapter(InboundMessage)


class PongMessage(_WireModel):
    type: Literal["pong"] = "pong"


class ChatState(_WireModel):
    session_id: str
    chat_history: List[Dict[str, Any]] = Field(default_factory=list)
    active_model: Optional[str] = None
    available_models: List[str] = Field(default_factory=list)
    features: Dict[str, str] = Field(default_factory=dict)
    is_streaming: bool = False


class StateUpdateMessage(_WireModel):
    type: Literal["stateUpdate"] = "stateUpdate"
    state: ChatState


class MessageAddedMessage(_WireModel):
    type: Literal["messageAdded"] = "messageAdded"
    message_id: str
    role: str
    content: str
    is_streaming: bool = False


class MessageUpdatedMessage(_WireModel):
    type: Literal["messageUpdated"] = "messageUpdated"
    message_id: str
    content: str
    is_streaming: bool


class ChatClearedMessage(_WireModel):
    type: Literal["chatCleared"] = "chatCleared"


class ErrorMessage(_WireModel):
    type: Literal["error"] = "error"
    message: str
    context: str = "Unknown"
    code: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class SuccessMessage(_WireModel):
    type: Literal["success"] = "success"
    message: str
    data: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_utcnow)
