"""
Request, response and settings validators.

Run before anything is sent so that bad input fails fast with a
validation error (never retried) instead of a 400 from the server.
"""

from typing import Any, Mapping, Optional
from urllib.parse import urlparse

from local_llm.llm.exceptions import LLMApiError, LLMValidationError
from local_llm.models.enums import MessageRole


_ROLES = {role.value for role in MessageRole}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require_mapping(request: Any) -> None:
    if not isinstance(request, Mapping):
        raise LLMValidationError("Request must be an object", "INVALID_REQUEST", value=request)


def _require_model(request: Mapping[str, Any]) -> None:
    model = request.get("model")
    if not model or not isinstance(model, str):
        raise LLMValidationError(
            "Request must specify a valid model ID", "MISSING_MODEL", field="model", value=model
        )


def _check_sampling(request: Mapping[str, Any]) -> None:
    temperature = request.get("temperature")
    if temperature is not None and (not _is_number(temperature) or not 0 <= temperature <= 2):
        raise LLMValidationError(
            "Temperature must be a number between 0 and 2",
            "INVALID_TEMPERATURE",
            field="temperature",
            value=temperature,
        )

    max_tokens = request.get("max_tokens")
    if max_tokens is not None and (
        not isinstance(max_tokens, int) or isinstance(max_tokens, bool) or max_tokens <= 0
    ):
        raise LLMValidationError(
            "max_tokens must be a positive integer",
            "INVALID_MAX_TOKENS",
            field="max_tokens",
            value=max_tokens,
        )


def validate_chat_message(message: Any) -> None:
    if not isinstance(message, Mapping):
        raise LLMValidationError("Message must be an object", "INVALID_MESSAGE", value=message)

    role = message.get("role")
    if role not in _ROLES:
        raise LLMValidationError(
            f"Invalid message role: {role}", "INVALID_MESSAGE_ROLE", field="role", value=role
        )

    content = message.get("content")
    if not isinstance(content, str):
        raise LLMValidationError(
            "Message content must be a string", "INVALID_MESSAGE_CONTENT", field="content", value=content
        )
    if not content.strip():
        raise LLMValidationError(
            "Message content cannot be empty", "EMPTY_MESSAGE_CONTENT", field="content", value=content
        )


def validate_chat_completion_request(request: Any) -> None:
    """
    Validate a chat completion body.

    Raises:
        LLMValidationError: INVALID_REQUEST, MISSING_MODEL, MISSING_MESSAGES,
            INVALID_MESSAGE_IN_REQUEST, INVALID_TEMPERATURE,
            INVALID_MAX_TOKENS or INVALID_STREAM
    """
    _require_mapping(request)
    _require_model(request)

    messages = request.get("messages")
    if not isinstance(messages, list) or not messages:
        raise LLMValidationError(
            "Request must include at least one message", "MISSING_MESSAGES", field="messages"
        )

    for index, message in enumerate(messages):
        try:
            validate_chat_message(message)
        except LLMValidationError as e:
            raise LLMValidationError(
                f"Invalid message at index {index}: {e.message}",
                "INVALID_MESSAGE_IN_REQUEST",
                field=f"messages[{index}]",
                cause=e,
                details={"reason": e.code},
            ) from e

    _check_sampling(request)

    stream = request.get("stream")
    if stream is not None and not isinstance(stream, bool):
        raise LLMValidationError("stream must be a boolean", "INVALID_STREAM", field="stream", value=stream)


def validate_completion_request(request: Any) -> None:
    """
    Validate a text completion body.

    `stop` may be a single string or a list of strings.
    """
    _require_mapping(request)
    _require_model(request)

    prompt = request.get("prompt")
    if not prompt or not isinstance(prompt, str):
        raise LLMValidationError(
            "Request must include a non-empty prompt", "MISSING_PROMPT", field="prompt", value=prompt
        )
    if not prompt.strip():
        raise LLMValidationError("Prompt cannot be empty", "EMPTY_PROMPT", field="prompt", value=prompt)

    _check_sampling(request)

    stop = request.get("stop")
    if stop is None or isinstance(stop, str):
        return
    if not isinstance(stop, list):
        raise LLMValidationError(
            "stop must be a string or an array of strings", "INVALID_STOP", field="stop", value=stop
        )
    for index, sequence in enumerate(stop):
        if not isinstance(sequence, str):
            raise LLMValidationError(
                f"Stop sequence at index {index} must be a string",
                "INVALID_STOP_SEQUENCE",
                field=f"stop[{index}]",
                value=sequence,
            )


def validate_embedding_request(request: Any) -> None:
    _require_mapping(request)
    _require_model(request)

    text = request.get("input")
    if text is None or text == "":
        raise LLMValidationError("Request must include input text", "MISSING_INPUT", field="input")

    if isinstance(text, str):
        if not text.strip():
            raise LLMValidationError("Input text cannot be empty", "EMPTY_INPUT", field="input", value=text)
    elif isinstance(text, list):
        if not text:
            raise LLMValidationError("Input array cannot be empty", "EMPTY_INPUT_ARRAY", field="input")
        for index, item in enumerate(text):
            if not isinstance(item, str) or not item.strip():
                raise LLMValidationError(
                    f"Input at index {index} must be a non-empty string",
                    "INVALID_INPUT_ITEM",
                    field=f"input[{index}]",
                    value=item,
                )
    else:
        raise LLMValidationError(
            "Input must be a string or array of strings", "INVALID_INPUT_TYPE", field="input", value=text
        )


def validate_server_url(url: Any) -> None:
    if not url or not isinstance(url, str):
        raise LLMValidationError("Server URL must be a non-empty string", "INVALID_URL", field="url", value=url)

    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise LLMValidationError(
            f"Invalid server URL format: {e}", "MALFORMED_URL", field="url", value=url, cause=e
        ) from e

    if parsed.scheme not in ("http", "https"):
        raise LLMValidationError(
            "Server URL must use HTTP or HTTPS protocol", "INVALID_URL_PROTOCOL", field="url", value=url
        )
    if not parsed.netloc:
        raise LLMValidationError(
            "Invalid server URL format: missing host", "MALFORMED_URL", field="url", value=url
        )


def validate_api_response(response: Any, expected_type: Optional[str] = None) -> None:
    """
    Reject response bodies that are not objects, that carry an `error`
    member despite a 2xx status, or whose `object` is not `expected_type`.
    """
    if not isinstance(response, Mapping):
        raise LLMApiError("API response must be an object", "INVALID_RESPONSE")

    error = response.get("error")
    if error:
        if isinstance(error, Mapping):
            message = error.get("message") or "Unknown error"
            code = error.get("code") or "API_ERROR"
        else:
            message, code = str(error), "API_ERROR"
        raise LLMApiError(f"API error: {message}", str(code), details={"error": error})

    if expected_type and response.get("object") != expected_type:
        raise LLMApiError(
            f"Expected response type {expected_type}, got {response.get('object')}",
            "UNEXPECTED_RESPONSE_TYPE",
        )
