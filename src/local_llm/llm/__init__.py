"""
Client layer for OpenAI-compatible inference servers.

Components:
- BaseLLMClient: Abstract client interface (base_client)
- LocalLLMClient: httpx implementation with retry and streaming (openai_client)
- PromptBuilder: Jinja2 prompts for chat and code assist (prompt_builder)
- streaming: SSE chunk parser
- backoff: Retry delay computation
- exceptions: Error taxonomy

Only the exceptions are re-exported here; import the client modules directly.
"""

from local_llm.llm.exceptions import (
    LLMApiError,
    LLMClientError,
    LLMConnectionError,
    LLMModelError,
    LLMRuntimeError,
    LLMTimeoutError,
    LLMValidationError,
    connection_error_from_exception,
    ensure_llm_error,
    error_from_status,
)

__all__ = [
    "LLMApiError",
    "LLMClientError",
    "LLMConnectionError",
    "LLMModelError",
    "LLMRuntimeError",
    "LLMTimeoutError",
    "LLMValidationError",
    "connection_error_from_exception",
    "ensure_llm_error",
    "error_from_status",
]
