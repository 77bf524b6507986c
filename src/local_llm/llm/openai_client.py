"""
Client for OpenAI-compatible inference servers (LM Studio, Ollama, llama.cpp).

Communicates with the /v1 REST API using httpx AsyncClient. Supports:
- Model listing and capability checks
- Chat, text completion and embeddings
- SSE streaming for chat completions
- Retry with exponential backoff and jitter on transient failures
- Health checks
"""

import asyncio
import inspect
import time
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Union

import httpx
import structlog
from pydantic import BaseModel

from local_llm.llm.backoff import compute_backoff_delay
from local_llm.llm.base_client import (
    BaseLLMClient,
    ChatRequestLike,
    CompletionRequestLike,
    EmbeddingRequestLike,
)
from local_llm.llm.exceptions import (
    LLMApiError,
    LLMClientError,
    LLMConnectionError,
    LLMModelError,
    connection_error_from_exception,
    error_from_status,
)
from local_llm.llm.streaming import iter_sse_chunks
from local_llm.models.api_models import (
    ChatCompletionResponse,
    CompletionResponse,
    EmbeddingResponse,
    Model,
    TokenUsage,
)
from local_llm.models.enums import ModelType
from local_llm.monitoring.metrics import (
    connection_up,
    llm_errors_total,
    llm_latency_seconds,
    llm_requests_total,
    llm_retries_total,
    llm_tokens_total,
)
from local_llm.validation.requests import (
    validate_api_response,
    validate_chat_completion_request,
    validate_completion_request,
    validate_embedding_request,
    validate_server_url,
)


logger = structlog.get_logger(__name__)

MODELS_ENDPOINT = "/v1/models"
CHAT_ENDPOINT = "/v1/chat/completions"
COMPLETIONS_ENDPOINT = "/v1/completions"
EMBEDDINGS_ENDPOINT = "/v1/embeddings"

ChunkCallback = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class LocalLLMClient(BaseLLMClient):
    """
    HTTP client for a local OpenAI-compatible server.

    API Endpoints:
    - GET /v1/models: List models (also used as health check)
    - POST /v1/chat/completions: Chat completion (JSON or SSE stream)
    - POST /v1/completions: Text completion
    - POST /v1/embeddings: Embeddings

    Retry policy: at most `retry_attempts + 1` tries per request. Connection
    failures, timeouts, 5xx, 408 and 429 are retried; every other status is
    raised immediately.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:1234",
        timeout: float = 120.0,
        retry_attempts: int = 3,
        *,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 10.0,
        retry_jitter_ratio: float = 0.1,
        connection_limits: Optional[httpx.Limits] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Server URL (trailing slash stripped)
            timeout: Request timeout in seconds
            retry_attempts: Retries after the first try
            retry_base_delay: Delay before the first retry, doubled each time
            retry_max_delay: Cap on a single retry delay
            retry_jitter_ratio: Random jitter as a fraction of the delay
            connection_limits: httpx pool limits (default: 10 max connections)
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        super().__init__(base_url, timeout, retry_attempts)
        validate_server_url(self.base_url)

        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.retry_jitter_ratio = retry_jitter_ratio
        self.is_healthy = False
        self.last_health_check: Optional[datetime] = None

        if connection_limits is None:
            connection_limits = httpx.Limits(
                max_keepalive_connections=5,
                max_connections=10,
                keepalive_expiry=30.0,
            )
        self._connection_limits = connection_limits
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                limits=self._connection_limits,
                transport=self._transport,
                follow_redirects=True,
            )
            logger.debug("Created new httpx AsyncClient", base_url=self.base_url)
        return self._client

    # ------------------------------------------------------------------
    # Request core
    # ------------------------------------------------------------------

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Best-effort error text from an error response body."""
        text = response.text
        try:
            data = response.json()
        except ValueError:
            data = None

        message = None
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict):
                message = error.get("message")
            elif isinstance(error, str):
                message = error
            message = message or data.get("message")

        return message or text or f"HTTP {response.status_code} {response.reason_phrase}"

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        stream: bool = False,
    ) -> httpx.Response:
        """
        Send a request with retries and return the successful response.

        For `stream=True` the returned response is open and the caller
        must close it.

        Raises:
            LLMClientError: Last classified error once retries are exhausted,
                or the first non-retryable error
        """
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if stream else "application/json",
        }
        model_id = payload.get("model") if payload else None
        start_time = time.perf_counter()
        last_error: Optional[LLMClientError] = None

        for attempt in range(self.retry_attempts + 1):
            try:
                client = await self._get_client()
                request = client.build_request(method, path, json=payload, headers=headers)
                logger.debug("Sending request", method=method, path=path, attempt=attempt + 1, stream=stream)
                response = await client.send(request, stream=stream)

                if response.is_success:
                    latency = time.perf_counter() - start_time
                    llm_requests_total.labels(endpoint=path, outcome="success").inc()
                    llm_latency_seconds.labels(endpoint=path, success="true").observe(latency)
                    logger.debug(
                        "Request succeeded",
                        path=path,
                        status_code=response.status_code,
                        attempt=attempt + 1,
                        latency_ms=int(latency * 1000),
                    )
                    return response

                if stream:
                    await response.aread()
                    await response.aclose()
                last_error = error_from_status(
                    response.status_code, self._error_message(response), model_id=model_id
                )
                logger.warning(
                    "Inference server returned an error",
                    path=path,
                    status_code=response.status_code,
                    code=last_error.code,
                    error=last_error.message,
                    attempt=attempt + 1,
                )

            except httpx.TransportError as e:
                last_error = connection_error_from_exception(e)
                logger.warning(
                    "Inference server unreachable",
                    path=path,
                    code=last_error.code,
                    error=str(e),
                    error_type=type(e).__name__,
                    attempt=attempt + 1,
                )

            if not last_error.retryable or attempt >= self.retry_attempts:
                break

            delay = compute_backoff_delay(
                attempt,
                base_delay=self.retry_base_delay,
                max_delay=self.retry_max_delay,
                jitter_ratio=self.retry_jitter_ratio,
            )
            llm_retries_total.labels(endpoint=path, code=last_error.code).inc()
            logger.info(
                "Retrying request",
                path=path,
                attempt=attempt + 1,
                max_attempts=self.retry_attempts + 1,
                delay_s=round(delay, 3),
            )
            await asyncio.sleep(delay)

        latency = time.perf_counter() - start_time
        llm_requests_total.labels(endpoint=path, outcome="error").inc()
        llm_latency_seconds.labels(endpoint=path, success="false").observe(latency)
        llm_errors_total.labels(category=last_error.category.value, code=last_error.code).inc()
        logger.error(
            "Request failed",
            path=path,
            code=last_error.code,
            category=last_error.category.value,
            error=last_error.message,
        )
        raise last_error

    async def _request_json(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> Any:
        response = await self._request(method, path, payload)
        try:
            return response.json()
        except ValueError as e:
            raise LLMApiError(
                f"Invalid JSON response from {path}: {e}",
                "INVALID_JSON_RESPONSE",
                cause=e,
                status_code=response.status_code,
                details={"body": response.text[:500]},
            ) from e

    @staticmethod
    def _prepare_payload(
        request: Union[BaseModel, Mapping[str, Any]],
        validator: Callable[[Any], None],
    ) -> Dict[str, Any]:
        if isinstance(request, BaseModel):
            payload = request.to_payload()
        elif isinstance(request, Mapping):
            payload = dict(request)
        else:
            payload = request
        validator(payload)
        return payload

    @staticmethod
    def _record_usage(model: str, usage: Optional[TokenUsage]) -> None:
        if usage is None:
            return
        if usage.prompt_tokens:
            llm_tokens_total.labels(model=model, token_type="prompt").inc(usage.prompt_tokens)
        if usage.completion_tokens:
            llm_tokens_total.labels(model=model, token_type="completion").inc(usage.completion_tokens)

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    async def check_health(self) -> bool:
        """
        Check server health via GET /v1/models (single try, no retries).

        Updates `is_healthy` and `last_health_check`.
        """
        try:
            client = await self._get_client()
            response = await client.get(MODELS_ENDPOINT, timeout=min(self.timeout, 10.0))
            healthy = response.is_success
            if not healthy:
                logger.warning("Health check returned error status", status_code=response.status_code)
        except httpx.HTTPError as e:
            logger.warning("Health check failed", error=str(e), error_type=type(e).__name__)
            healthy = False

        self.is_healthy = healthy
        self.last_health_check = datetime.now(timezone.utc)
        connection_up.set(1 if healthy else 0)
        return healthy

    async def validate_connection(self) -> None:
        """
        Raises:
            LLMConnectionError: CONNECTION_VALIDATION_FAILED if the server is unreachable
        """
        if not await self.check_health():
            raise LLMConnectionError(
                f"Unable to connect to inference server at {self.base_url}",
                "CONNECTION_VALIDATION_FAILED",
                details={"base_url": self.base_url},
            )

    async def update_config(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
    ) -> None:
        """Apply new connection settings. Health state is reset and the pool recycled."""
        if base_url is not None:
            validate_server_url(base_url)
            self.base_url = base_url.rstrip("/")
        if timeout is not None:
            self.timeout = timeout
        if retry_attempts is not None:
            self.retry_attempts = retry_attempts

        self.is_healthy = False
        self.last_health_check = None
        await self.close()
        self._client = None

        logger.info(
            "Client configuration updated",
            base_url=self.base_url,
            timeout=self.timeout,
            retry_attempts=self.retry_attempts,
        )

    def get_status(self) -> Dict[str, Any]:
        return {
            "base_url": self.base_url,
            "timeout": self.timeout,
            "retry_attempts": self.retry_attempts,
            "is_healthy": self.is_healthy,
            "last_health_check": self.last_health_check.isoformat() if self.last_health_check else None,
        }

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    async def list_models(self) -> List[Model]:
        """
        List models via GET /v1/models.

        Raises:
            LLMApiError: INVALID_MODELS_RESPONSE if `data` is not a list,
                GET_MODELS_FAILED for unreadable entries
            LLMConnectionError: Server unreachable
        """
        data = await self._request_json("GET", MODELS_ENDPOINT)

        entries = data.get("data") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise LLMApiError(
                "Invalid models response format: expected a data array",
                "INVALID_MODELS_RESPONSE",
                details={"response_type": type(data).__name__},
            )

        try:
            models = [Model.model_validate(entry) for entry in entries]
        except Exception as e:
            raise LLMApiError(
                f"Failed to retrieve models: {e}",
                "GET_MODELS_FAILED",
                cause=e,
            ) from e

        logger.debug("Listed available models", count=len(models), models=[m.id for m in models])
        return models

    async def get_model(self, model_id: str) -> Model:
        """
        Raises:
            LLMModelError: INVALID_MODEL_ID for an empty id, MODEL_NOT_FOUND
                if the server does not list it
        """
        if not model_id or not isinstance(model_id, str):
            raise LLMModelError(
                "Model ID is required and must be a string", "INVALID_MODEL_ID", model_id=model_id
            )

        for model in await self.list_models():
            if model.id == model_id:
                return model

        raise LLMModelError(f"Model '{model_id}' not found", "MODEL_NOT_FOUND", model_id=model_id)

    async def get_models_by_type(self, model_type: Union[ModelType, str]) -> List[Model]:
        """Models whose reported type equals `model_type` (untyped models excluded)."""
        try:
            model_type = ModelType(model_type)
        except ValueError:
            raise LLMModelError(
                f"Invalid model type '{model_type}'. Must be one of: "
                + ", ".join(t.value for t in ModelType),
                "INVALID_MODEL_TYPE",
                details={"model_type": str(model_type)},
            ) from None

        return [m for m in await self.list_models() if m.type == model_type.value]

    async def get_loaded_models(self) -> List[Model]:
        return [m for m in await self.list_models() if m.is_loaded]

    async def get_chat_models(self) -> List[Model]:
        return [m for m in await self.list_models() if m.supports_chat]

    async def get_embedding_models(self) -> List[Model]:
        return [m for m in await self.list_models() if m.supports_embeddings]

    async def is_model_loaded(self, model_id: str) -> bool:
        """False for models the server does not know; other errors propagate."""
        try:
            model = await self.get_model(model_id)
        except LLMModelError as e:
            if e.code == "MODEL_NOT_FOUND":
                return False
            raise
        return model.is_loaded

    async def get_model_metadata(self, model_id: str) -> Dict[str, Any]:
        model = await self.get_model(model_id)
        return model.metadata()

    async def validate_chat_model(self, model_id: str) -> Model:
        model = await self.get_model(model_id)
        if not model.supports_chat:
            raise LLMModelError(
                f"Model '{model_id}' does not support chat completions",
                "MODEL_INCOMPATIBLE_CHAT",
                model_id=model_id,
            )
        if not model.is_loaded:
            raise LLMModelError(f"Model '{model_id}' is not loaded", "MODEL_NOT_LOADED", model_id=model_id)
        return model

    async def validate_text_model(self, model_id: str) -> Model:
        model = await self.get_model(model_id)
        if not model.is_loaded:
            raise LLMModelError(f"Model '{model_id}' is not loaded", "MODEL_NOT_LOADED", model_id=model_id)
        return model

    async def validate_embedding_model(self, model_id: str) -> Model:
        model = await self.get_model(model_id)
        if not model.supports_embeddings:
            raise LLMModelError(
                f"Model '{model_id}' does not support embeddings",
                "MODEL_INCOMPATIBLE_EMBEDDINGS",
                model_id=model_id,
            )
        if not model.is_loaded:
            raise LLMModelError(f"Model '{model_id}' is not loaded", "MODEL_NOT_LOADED", model_id=model_id)
        return model

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def chat_completion(
        self, request: ChatRequestLike, *, validate_model: bool = True
    ) -> ChatCompletionResponse:
        """
        POST /v1/chat/completions (non-streaming).

        Accepts a ChatCompletionRequest or the equivalent wire dict.
        """
        payload = self._prepare_payload(request, validate_chat_completion_request)
        payload["stream"] = False

        logger.info(
            "Sending chat completion request",
            model=payload["model"],
            messages=len(payload["messages"]),
            temperature=payload.get("temperature"),
            max_tokens=payload.get("max_tokens"),
        )

        try:
            if validate_model:
                await self.validate_chat_model(payload["model"])
            data = await self._request_json("POST", CHAT_ENDPOINT, payload)
            validate_api_response(data)
            response = ChatCompletionResponse.model_validate(data)
        except LLMClientError:
            raise
        except Exception as e:
            raise LLMApiError(
                f"Chat completion failed: {e}", "CHAT_COMPLETION_FAILED", cause=e
            ) from e

        self._record_usage(response.model or payload["model"], response.usage)
        logger.info(
            "Chat completion successful",
            model=response.model or payload["model"],
            finish_reason=response.choices[0].finish_reason if response.choices else None,
            total_tokens=response.usage.total_tokens if response.usage else None,
        )
        return response

    async def iter_chat_completion_stream(
        self, request: ChatRequestLike, *, validate_model: bool = True
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        POST /v1/chat/completions with `stream: true`, yielding each chunk.

        Retries apply until the server starts answering; once chunks flow a
        dropped connection is raised as a connection error.
        """
        payload = self._prepare_payload(request, validate_chat_completion_request)
        payload["stream"] = True

        if validate_model:
            await self.validate_chat_model(payload["model"])

        logger.info("Starting chat completion stream", model=payload["model"], messages=len(payload["messages"]))
        response = await self._request("POST", CHAT_ENDPOINT, payload, stream=True)
        chunk_count = 0
        try:
            async for chunk in iter_sse_chunks(response.aiter_bytes()):
                chunk_count += 1
                yield chunk
        except httpx.TransportError as e:
            raise connection_error_from_exception(e) from e
        finally:
            await response.aclose()

        logger.info("Chat completion stream finished", model=payload["model"], chunks=chunk_count)

    async def stream_chat_completion(
        self,
        request: ChatRequestLike,
        on_chunk: ChunkCallback,
        *,
        validate_model: bool = True,
    ) -> None:
        """
        Stream a chat completion, invoking `on_chunk` (sync or async) per chunk.

        Returns once the stream ends.
        """
        try:
            async for chunk in self.iter_chat_completion_stream(request, validate_model=validate_model):
                result = on_chunk(chunk)
                if inspect.isawaitable(result):
                    await result
        except LLMClientError:
            raise
        except Exception as e:
            raise LLMApiError(
                f"Streaming chat completion failed: {e}",
                "STREAM_CHAT_COMPLETION_FAILED",
                cause=e,
            ) from e

    async def text_completion(
        self, request: CompletionRequestLike, *, validate_model: bool = True
    ) -> CompletionResponse:
        """POST /v1/completions."""
        payload = self._prepare_payload(request, validate_completion_request)

        logger.info(
            "Sending text completion request",
            model=payload["model"],
            prompt_length=len(payload["prompt"]),
            max_tokens=payload.get("max_tokens"),
        )

        try:
            if validate_model:
                await self.validate_text_model(payload["model"])
            data = await self._request_json("POST", COMPLETIONS_ENDPOINT, payload)
            validate_api_response(data)
            response = CompletionResponse.model_validate(data)
        except LLMClientError:
            raise
        except Exception as e:
            raise LLMApiError(
                f"Text completion failed: {e}", "TEXT_COMPLETION_FAILED", cause=e
            ) from e

        self._record_usage(response.model or payload["model"], response.usage)
        return response

    async def generate_embeddings(
        self, request: EmbeddingRequestLike, *, validate_model: bool = True
    ) -> EmbeddingResponse:
        """POST /v1/embeddings."""
        payload = self._prepare_payload(request, validate_embedding_request)

        logger.info(
            "Sending embeddings request",
            model=payload["model"],
            inputs=len(payload["input"]) if isinstance(payload["input"], list) else 1,
        )

        try:
            if validate_model:
                await self.validate_embedding_model(payload["model"])
            data = await self._request_json("POST", EMBEDDINGS_ENDPOINT, payload)
            validate_api_response(data)
            response = EmbeddingResponse.model_validate(data)
        except LLMClientError:
            raise
        except Exception as e:
            raise LLMApiError(
                f"Embedding generation failed: {e}", "EMBEDDING_GENERATION_FAILED", cause=e
            ) from e

        self._record_usage(response.model or payload["model"], response.usage)
        return response

    async def close(self):
        """Close the HTTP client connection."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            logger.debug("Closed inference client connection")
