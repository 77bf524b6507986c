"""
Input validation for requests sent to the inference server.

Validators take wire-shaped dicts and raise LLMValidationError with a
specific code on the first problem found.
"""

from local_llm.validation.requests import (
    validate_api_response,
    validate_chat_completion_request,
    validate_chat_message,
    validate_completion_request,
    validate_embedding_request,
    validate_server_url,
)

__all__ = [
    "validate_api_response",
    "validate_chat_completion_request",
    "validate_chat_message",
    "validate_completion_request",
    "validate_embedding_request",
    "validate_server_url",
]
