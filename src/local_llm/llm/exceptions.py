"""
Error taxonomy for the LLM client layer.

Every failure surfaced by the client is an LLMClientError subclass carrying
a category, a machine-readable code and a recoverability flag. The client
uses `retryable` to decide whether to try again; the degradation service
and the error handler use the category and code to pick a fallback and a
recovery strategy; `user_message()` is what ends up in notifications.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from local_llm.models.enums import ErrorCategory


# Status codes that are worth retrying even though they are 4xx
RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})

# Markers httpx/OS errors use for DNS resolution failures
_DNS_FAILURE_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated",
)


_USER_MESSAGES: Dict[ErrorCategory, Dict[str, str]] = {
    ErrorCategory.CONNECTION: {
        "CONNECTION_REFUSED": "Cannot connect to the inference server. Please make sure it is running and the server is started.",
        "TIMEOUT": "Connection to the inference server timed out. The server might be busy or unresponsive.",
        "NETWORK_ERROR": "Network error occurred while connecting to the inference server.",
        "SERVER_NOT_FOUND": "The inference server address could not be resolved. Please check the server URL.",
    },
    ErrorCategory.API: {
        "MODEL_NOT_FOUND": "The requested model was not found. Please check if the model is loaded.",
        "MODEL_NOT_LOADED": "No model is currently loaded. Please load a model first.",
        "INVALID_REQUEST": "Invalid request sent to the inference server. Please check your input.",
        "SERVER_ERROR": "The inference server encountered an internal error. Please try again.",
        "RATE_LIMITED": "The inference server is busy. Please wait a moment and try again.",
    },
    ErrorCategory.MODEL: {
        "MODEL_NOT_FOUND": "The requested model was not found. Please check if the model is loaded.",
        "MODEL_NOT_LOADED": "The selected model is not loaded. Please load it first.",
        "MODEL_LOAD_FAILED": "Failed to load the model. Please check the model file and try again.",
        "MODEL_INCOMPATIBLE": "The selected model is not compatible with this operation.",
        "CONTEXT_LENGTH_EXCEEDED": "The input is too long for the model's context window.",
    },
    ErrorCategory.VALIDATION: {
        "INVALID_TEMPERATURE": "Temperature must be between 0 and 2.",
        "INVALID_MAX_TOKENS": "Max tokens must be a positive number.",
        "EMPTY_MESSAGE_CONTENT": "Message content cannot be empty.",
        "INVALID_URL": "Please provide a valid server URL.",
    },
    ErrorCategory.RUNTIME: {
        "FEATURE_DISABLED": "This feature is disabled. Re-enable it to try again.",
    },
}

_DEFAULT_USER_MESSAGES: Dict[ErrorCategory, str] = {
    ErrorCategory.CONNECTION: "Connection error: {message}",
    ErrorCategory.API: "API error: {message}",
    ErrorCategory.MODEL: "Model error: {message}",
    ErrorCategory.VALIDATION: "Validation error: {message}",
    ErrorCategory.RUNTIME: "An unexpected error occurred: {message}",
}


class LLMClientError(Exception):
    """
    Base exception for all LLM client errors.

    Subclasses fix the category and the default recoverability; the code
    identifies the concrete failure (e.g. CONNECTION_REFUSED, SERVER_ERROR).
    Errors built from an HTTP response also carry `status_code`.
    """
    category: ErrorCategory = ErrorCategory.RUNTIME
    default_code: str = "RUNTIME_ERROR"
    default_recoverable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        *,
        recoverable: Optional[bool] = None,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.recoverable = self.default_recoverable if recoverable is None else recoverable
        self.cause = cause
        self.details = details or {}
        self.status_code = status_code
        self.timestamp = datetime.now(timezone.utc)
        if cause is not None:
            self.__cause__ = cause

    @property
    def is_recoverable(self) -> bool:
        return self.recoverable

    @property
    def retryable(self) -> bool:
        """Whether the client should try the same request again."""
        if self.status_code is not None:
            return self.status_code >= 500 or self.status_code in RETRYABLE_CLIENT_STATUSES
        return self.category == ErrorCategory.CONNECTION

    def user_message(self) -> str:
        """Human-readable message for notifications."""
        table = _USER_MESSAGES.get(self.category, {})
        if self.code in table:
            return table[self.code]
        return _DEFAULT_USER_MESSAGES[self.category].format(message=self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "category": self.category.value,
            "recoverable": self.recoverable,
            "status_code": self.status_code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "cause": (
                {"name": type(self.cause).__name__, "message": str(self.cause)}
                if self.cause is not None
                else None
            ),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class LLMConnectionError(LLMClientError):
    """
    Raised when the inference server cannot be reached.

    Covers refused connections, DNS failures and broken transports.
    Always retried by the client.
    """
    category = ErrorCategory.CONNECTION
    default_code = "CONNECTION_ERROR"
    default_recoverable = True


class LLMTimeoutError(LLMConnectionError):
    """Raised when a request exceeds the configured timeout."""
    default_code = "TIMEOUT"


class LLMApiError(LLMClientError):
    """Raised when the server answers with an error status or an unreadable body."""
    category = ErrorCategory.API
    default_code = "API_ERROR"
    default_recoverable = True


class LLMModelError(LLMClientError):
    """Raised for missing, unloaded or incompatible models."""
    category = ErrorCategory.MODEL
    default_code = "MODEL_ERROR"
    default_recoverable = True

    def __init__(self, message: str, code: Optional[str] = None, *, model_id: Optional[str] = None, **kwargs):
        super().__init__(message, code, **kwargs)
        self.model_id = model_id
        if model_id is not None:
            self.details.setdefault("model_id", model_id)


class LLMValidationError(LLMClientError):
    """
    Raised when a request or setting is invalid.

    Never retried: sending the same input again cannot succeed.
    """
    category = ErrorCategory.VALIDATION
    default_code = "VALIDATION_ERROR"
    default_recoverable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        *,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs,
    ):
        super().__init__(message, code, **kwargs)
        self.field = field
        self.value = value
        if field is not None:
            self.details.setdefault("field", field)

    @property
    def retryable(self) -> bool:
        return False


class LLMRuntimeError(LLMClientError):
    """Raised for unexpected internal failures."""
    category = ErrorCategory.RUNTIME
    default_code = "RUNTIME_ERROR"
    default_recoverable = False


def error_from_status(status_code: int, message: str, model_id: Optional[str] = None) -> LLMClientError:
    """
    Classify an HTTP error status into the taxonomy.

    404 is a missing model (the only resource a client addresses by id),
    400 is a rejected request, 408/429 are transient, other 4xx are final
    and 5xx are server failures worth retrying.
    """
    details = {"status": status_code}
    if status_code == 404:
        return LLMModelError(
            message, "MODEL_NOT_FOUND", model_id=model_id, status_code=status_code, details=details
        )
    if status_code == 400:
        return LLMValidationError(message, "INVALID_REQUEST", status_code=status_code, details=details)
    if status_code == 401:
        return LLMApiError(message, "UNAUTHORIZED", recoverable=False, status_code=status_code, details=details)
    if status_code == 403:
        return LLMApiError(message, "FORBIDDEN", recoverable=False, status_code=status_code, details=details)
    if status_code == 408:
        return LLMApiError(message, "REQUEST_TIMEOUT", status_code=status_code, details=details)
    if status_code == 429:
        return LLMApiError(message, "RATE_LIMITED", status_code=status_code, details=details)
    if 400 <= status_code < 500:
        return LLMApiError(message, "CLIENT_ERROR", recoverable=False, status_code=status_code, details=details)
    if status_code >= 500:
        return LLMApiError(message, "SERVER_ERROR", status_code=status_code, details=details)
    return LLMApiError(message, "API_ERROR", status_code=status_code, details=details)


def connection_error_from_exception(exc: BaseException) -> LLMConnectionError:
    """Map a transport-level exception (httpx or OS) to a connection error."""
    text = str(exc).lower()
    details = {"error_type": type(exc).__name__}

    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return LLMTimeoutError(f"Request timed out: {exc}", "TIMEOUT", cause=exc, details=details)
    if any(marker in text for marker in _DNS_FAILURE_MARKERS):
        return LLMConnectionError(
            f"Server not found: {exc}", "SERVER_NOT_FOUND", cause=exc, details=details
        )
    if isinstance(exc, (httpx.ConnectError, ConnectionRefusedError)) or "refused" in text:
        return LLMConnectionError(
            f"Connection refused: {exc}", "CONNECTION_REFUSED", cause=exc, details=details
        )
    return LLMConnectionError(f"Network error: {exc}", "NETWORK_ERROR", cause=exc, details=details)


def ensure_llm_error(exc: BaseException) -> LLMClientError:
    """Return `exc` as a taxonomy error, wrapping anything foreign."""
    if isinstance(exc, LLMClientError):
        return exc
    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
        return connection_error_from_exception(exc)
    return LLMRuntimeError(
        str(exc) or type(exc).__name__,
        "UNKNOWN_ERROR",
        cause=exc,
        details={"error_type": type(exc).__name__},
    )
