"""Shared test fixtures and configuration for all tests.

This conftest.py provides common fixtures used across unit and integration tests.
"""

from typing import Any, Dict, List

import pytest

from local_llm.config import Settings
from local_llm.models.api_models import Model


@pytest.fixture
def test_settings() -> Settings:
    """Test settings with safe defaults for local testing.

    Override specific settings in individual tests as needed:
        def test_something(test_settings):
            test_settings.SERVER_URL = "http://custom:8080"
    """
    return Settings(
        # === Application ===
        APP_NAME="Local LLM Companion (Test)",
        APP_VERSION="0.1.0",
        DEBUG=True,
        LOG_LEVEL="DEBUG",
        ENVIRONMENT="development",

        # === Inference Server ===
        SERVER_URL="http://localhost:1234",
        DEFAULT_MODEL=None,
        REQUEST_TIMEOUT=5.0,

        # === Retry ===
        RETRY_ATTEMPTS=2,
        RETRY_BASE_DELAY=0.01,
        RETRY_MAX_DELAY=0.05,
        RETRY_SCHEDULER_DELAY=0.01,

        # === Feature Flags ===
        HEALTH_CHECK_ENABLED=False,  # No background polling in tests
        PROMETHEUS_ENABLED=False,  # Disable metrics in tests unless explicitly needed
    )


@pytest.fixture
def sample_models_payload() -> Dict[str, Any]:
    """GET /v1/models body as LM Studio returns it.

    One loaded chat model, one chat model that is not loaded and one
    loaded embedding model.
    """
    return {
        "object": "list",
        "data": [
            {
                "id": "qwen2.5-7b-instruct",
                "object": "model",
                "type": "llm",
                "publisher": "qwen",
                "arch": "qwen2",
                "compatibility_type": "gguf",
                "quantization": "Q4_K_M",
                "state": "loaded",
                "max_context_length": 32768,
            },
            {
                "id": "llama-3.2-3b-instruct",
                "object": "model",
                "type": "llm",
                "state": "not-loaded",
                "max_context_length": 8192,
            },
            {
                "id": "nomic-embed-text-v1.5",
                "object": "model",
                "type": "embeddings",
                "state": "loaded",
                "max_context_length": 2048,
            },
        ],
    }


@pytest.fixture
def sample_models(sample_models_payload: Dict[str, Any]) -> List[Model]:
    """Parsed models from sample_models_payload."""
    return [Model.model_validate(entry) for entry in sample_models_payload["data"]]


@pytest.fixture
def sample_chat_response() -> Dict[str, Any]:
    """POST /v1/chat/completions body (non-streaming)."""
    return {
        "id": "chatcmpl-123",
        "object": "chat.completion",
        "created": 1735689600,
        "model": "qwen2.5-7b-instruct",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": "Hello! How can I help you today?"},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 12, "completion_tokens": 9, "total_tokens": 21},
    }


@pytest.fixture
def sample_completion_response() -> Dict[str, Any]:
    """POST /v1/completions body."""
    return {
        "id": "cmpl-456",
        "object": "text_completion",
        "created": 1735689600,
        "model": "qwen2.5-7b-instruct",
        "choices": [{"index": 0, "text": "def add(a, b):\n    return a + b", "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 8, "completion_tokens": 12, "total_tokens": 20},
    }


@pytest.fixture
def sample_embedding_response() -> Dict[str, Any]:
    """POST /v1/embeddings body."""
    return {
        "object": "list",
        "data": [{"object": "embedding", "embedding": [0.1, -0.2, 0.3], "index": 0}],
        "model": "nomic-embed-text-v1.5",
        "usage": {"prompt_tokens": 4, "completion_tokens": 0, "total_tokens": 4},
    }


@pytest.fixture
def sample_stream_body() -> bytes:
    """SSE body of a streamed chat completion split into three deltas."""
    lines = [
        'data: {"choices":[{"index":0,"delta":{"role":"assistant"}}]}',
        'data: {"choices":[{"index":0,"delta":{"content":"Hel"}}]}',
        'data: {"choices":[{"index":0,"delta":{"content":"lo"}}]}',
        'data: {"choices":[{"index":0,"delta":{"content":"!"},"finish_reason":"stop"}]}',
        "data: [DONE]",
    ]
    return ("\n\n".join(lines) + "\n\n").encode("utf-8")
