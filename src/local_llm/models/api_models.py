"""
Wire models for the OpenAI-compatible inference API.

Responses are parsed leniently: servers differ in which optional fields
they send (LM Studio adds `stats` and `model_info`, Ollama omits model
`type` and `state`), so anything not needed to read the result defaults.
Requests serialize to the exact JSON body posted to the server.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from local_llm.models.enums import MessageRole, ModelType


_LOADED_STATES = frozenset({"loaded", "ready", "active"})


class Model(BaseModel):
    """
    Model entry from GET /v1/models.

    `type` and `state` are LM Studio extensions. When a server does not
    report them the model is treated as a loaded chat model, which keeps
    plain OpenAI-compatible servers usable but can let an embedding-only
    model through chat validation.
    """
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(..., description="Model identifier used in requests")
    object: str = Field(default="model", description="API object type")
    type: Optional[str] = Field(default=None, description="llm, vlm or embeddings")
    publisher: Optional[str] = Field(default=None, description="Model publisher")
    arch: Optional[str] = Field(default=None, description="Model architecture")
    compatibility_type: Optional[str] = Field(default=None, description="Weights format (gguf, mlx, ...)")
    quantization: Optional[str] = Field(default=None, description="Quantization level")
    state: Optional[str] = Field(default=None, description="Load state")
    max_context_length: Optional[int] = Field(default=None, description="Context window in tokens")

    @property
    def is_loaded(self) -> bool:
        if self.state is None:
            return True
        return self.state in _LOADED_STATES

    @property
    def supports_chat(self) -> bool:
        if self.type is None:
            return True
        return self.type in (ModelType.LLM.value, ModelType.VLM.value)

    @property
    def supports_embeddings(self) -> bool:
        return self.type == ModelType.EMBEDDINGS.value

    def metadata(self) -> Dict[str, Any]:
        """Flat summary used by the model listing endpoints."""
        return {
            "id": self.id,
            "type": self.type,
            "publisher": self.publisher,
            "architecture": self.arch,
            "quantization": self.quantization,
            "state": self.state,
            "max_context_length": self.max_context_length,
            "compatibility_type": self.compatibility_type,
            "is_loaded": self.is_loaded,
            "supports_chat": self.supports_chat,
            "supports_embeddings": self.supports_embeddings,
        }


class ChatMessage(BaseModel):
    """Single chat turn. `timestamp` is local bookkeeping and never sent."""

    role: MessageRole = Field(..., description="Message author")
    content: str = Field(..., description="Message text")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation time (UTC)"
    )

    def to_api_format(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class ChatCompletionRequest(BaseModel):
    """Body of POST /v1/chat/completions."""

    model: str = Field(..., description="Model identifier")
    messages: List[ChatMessage] = Field(..., description="Conversation so far")
    temperature: Optional[float] = Field(default=None, description="Sampling temperature (0-2)")
    max_tokens: Optional[int] = Field(default=None, description="Maximum tokens to generate")
    stream: bool = Field(default=False, description="Request SSE streaming")
    stop: Optional[Union[str, List[str]]] = Field(default=None, description="Stop sequences")

    def to_payload(self) -> Dict[str, Any]:
        payload = self.model_dump(mode="json", exclude_none=True, exclude={"messages"})
        payload["messages"] = [message.to_api_format() for message in self.messages]
        return payload


class CompletionRequest(BaseModel):
    """Body of POST /v1/completions."""

    model: str = Field(..., description="Model identifier")
    prompt: str = Field(..., description="Text to complete")
    temperature: Optional[float] = Field(default=None, description="Sampling temperature (0-2)")
    max_tokens: Optional[int] = Field(default=None, description="Maximum tokens to generate")
    stop: Optional[Union[str, List[str]]] = Field(default=None, description="Stop sequences")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class EmbeddingRequest(BaseModel):
    """Body of POST /v1/embeddings."""

    model: str = Field(..., description="Embedding model identifier")
    input: Union[str, List[str]] = Field(..., description="Text or texts to embed")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class TokenUsage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class PerformanceStats(BaseModel):
    """LM Studio generation statistics."""
    model_config = ConfigDict(extra="ignore")

    tokens_per_second: Optional[float] = None
    time_to_first_token: Optional[float] = None
    generation_time: Optional[float] = None
    stop_reason: Optional[str] = None


class ModelInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    arch: Optional[str] = None
    context_length: Optional[int] = None


class ChatChoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    index: int = 0
    message: Dict[str, Any] = Field(default_factory=dict)
    finish_reason: Optional[str] = None


class ChatCompletionResponse(BaseModel):
    """Response of POST /v1/chat/completions (non-streaming)."""
    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    id: Optional[str] = None
    object: str = "chat.completion"
    created: Optional[int] = None
    model: Optional[str] = None
    choices: List[ChatChoice] = Field(default_factory=list)
    usage: Optional[TokenUsage] = None
    stats: Optional[PerformanceStats] = None
    model_info: Optional[ModelInfo] = None

    @property
    def content(self) -> str:
        """Text of the first choice, empty when the server sent none."""
        if not self.choices:
            return ""
        return self.choices[0].message.get("content") or ""


class CompletionChoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    index: int = 0
    text: str = ""
    finish_reason: Optional[str] = None


class CompletionResponse(BaseModel):
    """Response of POST /v1/completions."""
    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    id: Optional[str] = None
    object: str = "text_completion"
    created: Optional[int] = None
    model: Optional[str] = None
    choices: List[CompletionChoice] = Field(default_factory=list)
    usage: Optional[TokenUsage] = None
    stats: Optional[PerformanceStats] = None
    model_info: Optional[ModelInfo] = None

    @property
    def text(self) -> str:
        if not self.choices:
            return ""
        return self.choices[0].text


class EmbeddingData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: str = "embedding"
    embedding: List[float] = Field(default_factory=list)
    index: int = 0


class EmbeddingResponse(BaseModel):
    """Response of POST /v1/embeddings."""
    model_config = ConfigDict(extra="ignore")

    object: str = "list"
    data: List[EmbeddingData] = Field(default_factory=list)
    model: Optional[str] = None
    usage: Optional[TokenUsage] = None

    @property
    def embeddings(self) -> List[List[float]]:
        return [item.embedding for item in self.data]
