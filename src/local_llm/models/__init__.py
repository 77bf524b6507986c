"""
Pydantic data models for Local LLM Companion.

Includes:
- Enums (model types/states, error categories, feature states, strategies)
- Wire DTOs for the OpenAI-compatible API (models, chat, completions, embeddings)
"""

from local_llm.models.enums import (
    ApiObjectType,
    ErrorCategory,
    FallbackStrategy,
    Feature,
    FeatureState,
    GuidanceType,
    MessageRole,
    ModelState,
    ModelType,
    NotificationLevel,
    RecoveryStrategy,
    StopReason,
)
from local_llm.models.api_models import (
    ChatChoice,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    CompletionChoice,
    CompletionRequest,
    CompletionResponse,
    EmbeddingData,
    EmbeddingRequest,
    EmbeddingResponse,
    Model,
    ModelInfo,
    PerformanceStats,
    TokenUsage,
)

__all__ = [
    # Enums
    "ApiObjectType",
    "ErrorCategory",
    "FallbackStrategy",
    "Feature",
    "FeatureState",
    "GuidanceType",
    "MessageRole",
    "ModelState",
    "ModelType",
    "NotificationLevel",
    "RecoveryStrategy",
    "StopReason",
    # Wire models
    "ChatChoice",
    "ChatCompletionRequest",
    "ChatCompletionResponse",
    "ChatMessage",
    "CompletionChoice",
    "CompletionRequest",
    "CompletionResponse",
    "EmbeddingData",
    "EmbeddingRequest",
    "EmbeddingResponse",
    "Model",
    "ModelInfo",
    "PerformanceStats",
    "TokenUsage",
]
