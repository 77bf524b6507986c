"""
Abstract base client for OpenAI-compatible inference servers.

Defines the interface the degradation service, the chat service and the API
layer depend on, so tests and alternative backends can stand in for the
HTTP implementation.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Mapping, Union

import structlog

from local_llm.llm.exceptions import LLMValidationError
from local_llm.models.api_models import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    CompletionRequest,
    CompletionResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    Model,
)


logger = structlog.get_logger(__name__)


ChatRequestLike = Union[ChatCompletionRequest, Mapping[str, Any]]
CompletionRequestLike = Union[CompletionRequest, Mapping[str, Any]]
EmbeddingRequestLike = Union[EmbeddingRequest, Mapping[str, Any]]


class BaseLLMClient(ABC):
    """
    Abstract base class for inference clients.

    Responsibilities:
    - Send requests to the inference server and retry transient failures
    - Classify every failure into the LLMClientError taxonomy
    - Parse responses into the wire models

    Does NOT handle:
    - Feature availability and fallbacks (GracefulDegradationService)
    - User notifications and recovery (ErrorHandler)
    - Conversation state (ChatService)
    """

    def __init__(self, base_url: str, timeout: float = 120.0, retry_attempts: int = 3):
        """
        Args:
            base_url: Server URL without the /v1 suffix (e.g. http://localhost:1234)
            timeout: Request timeout in seconds
            retry_attempts: Retries after the first try for transient failures
        """
        if not isinstance(base_url, str):
            raise LLMValidationError(
                "Server URL must be a string", "INVALID_URL", field="base_url", value=base_url
            )
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_attempts = retry_attempts

        logger.info(
            "Initialized LLM client",
            client_class=self.__class__.__name__,
            base_url=self.base_url,
            timeout=timeout,
            retry_attempts=retry_attempts,
        )

    @abstractmethod
    async def check_health(self) -> bool:
        """
        Check if the inference server is reachable.

        Returns:
            True if server is healthy, False otherwise

        Note:
            This should NOT raise exceptions - return False on error.
        """

    @abstractmethod
    async def list_models(self) -> List[Model]:
        """List models known to the server."""

    @abstractmethod
    async def chat_completion(
        self, request: ChatRequestLike, *, validate_model: bool = True
    ) -> ChatCompletionResponse:
        """Run a non-streaming chat completion."""

    @abstractmethod
    def iter_chat_completion_stream(
        self, request: ChatRequestLike, *, validate_model: bool = True
    ) -> AsyncIterator[Dict[str, Any]]:
        """Yield streamed chat completion chunks until the server signals [DONE]."""

    @abstractmethod
    async def text_completion(
        self, request: CompletionRequestLike, *, validate_model: bool = True
    ) -> CompletionResponse:
        """Run a text completion."""

    @abstractmethod
    async def generate_embeddings(
        self, request: EmbeddingRequestLike, *, validate_model: bool = True
    ) -> EmbeddingResponse:
        """Compute embeddings for one or more texts."""

    async def close(self):
        """Release connections. Default implementation does nothing."""
        logger.debug("Closing LLM client", client_class=self.__class__.__name__)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"base_url={self.base_url}, "
            f"timeout={self.timeout}s)"
        )
