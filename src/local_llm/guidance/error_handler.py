"""
Central error handling: classify, log, count, notify and try to recover.

Every error reaching the host surface goes through `ErrorHandler.handle_error`,
which picks a recovery strategy by error code (falling back to the error
category) and acts on it:

- retry: reschedule `context["retry_operation"]` on the retry scheduler
- user_choice: offer per-code actions; a chosen action runs its registered handler
- fallback: nothing to do here, the caller serves its fallback
- disable: disable `context["feature"]` through the degradation service
- none: notify only
"""

import inspect
from collections import Counter, deque
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

import structlog

from local_llm.guidance.notifier import NotificationCenter
from local_llm.llm.exceptions import LLMClientError, ensure_llm_error
from local_llm.models.enums import ErrorCategory, Feature, NotificationLevel, RecoveryStrategy
from local_llm.monitoring.metrics import errors_handled_total
from local_llm.resilience.scheduler import RetryScheduler

if TYPE_CHECKING:
    from local_llm.resilience.degradation import GracefulDegradationService


logger = structlog.get_logger(__name__)

DEFAULT_RECOVERY_STRATEGIES: Dict[str, RecoveryStrategy] = {
    # Connection
    "CONNECTION_REFUSED": RecoveryStrategy.USER_CHOICE,
    "TIMEOUT": RecoveryStrategy.RETRY,
    "NETWORK_ERROR": RecoveryStrategy.RETRY,
    # API
    "MODEL_NOT_FOUND": RecoveryStrategy.USER_CHOICE,
    "MODEL_NOT_LOADED": RecoveryStrategy.USER_CHOICE,
    "INVALID_REQUEST": RecoveryStrategy.NONE,
    "SERVER_ERROR": RecoveryStrategy.RETRY,
    # Model
    "MODEL_LOAD_FAILED": RecoveryStrategy.USER_CHOICE,
    "MODEL_INCOMPATIBLE": RecoveryStrategy.FALLBACK,
    "CONTEXT_LENGTH_EXCEEDED": RecoveryStrategy.FALLBACK,
    # Validation
    "INVALID_TEMPERATURE": RecoveryStrategy.NONE,
    "INVALID_MAX_TOKENS": RecoveryStrategy.NONE,
    "EMPTY_MESSAGE_CONTENT": RecoveryStrategy.NONE,
    # Runtime
    "RUNTIME_ERROR": RecoveryStrategy.DISABLE,
    "FEATURE_DISABLED": RecoveryStrategy.NONE,
}

CATEGORY_RECOVERY_STRATEGIES: Dict[ErrorCategory, RecoveryStrategy] = {
    ErrorCategory.CONNECTION: RecoveryStrategy.RETRY,
    ErrorCategory.API: RecoveryStrategy.USER_CHOICE,
    ErrorCategory.MODEL: RecoveryStrategy.USER_CHOICE,
    ErrorCategory.VALIDATION: RecoveryStrategy.NONE,
    ErrorCategory.RUNTIME: RecoveryStrategy.DISABLE,
}

RECOVERY_ACTIONS: Dict[str, List[str]] = {
    "CONNECTION_REFUSED": ["Start Server", "Retry Connection", "Check Settings"],
    "MODEL_NOT_FOUND": ["Refresh Models", "Select Different Model"],
    "MODEL_NOT_LOADED": ["Load Model", "Select Different Model"],
    "MODEL_LOAD_FAILED": ["Try Again", "Select Different Model"],
}
DEFAULT_RECOVERY_ACTIONS = ["Retry"]

ActionHandler = Callable[[LLMClientError, Dict[str, Any]], Union[None, bool, Awaitable[Optional[bool]]]]


class ErrorHandler:
    """
    Turns any exception into a handled, counted, user-visible event.

    Action handlers are registered by label (e.g. "Refresh Models") by the
    host, which knows how to carry them out.
    """

    def __init__(
        self,
        notifier: NotificationCenter,
        scheduler: Optional[RetryScheduler] = None,
        degradation: Optional["GracefulDegradationService"] = None,
        enabled: bool = True,
        recent_limit: int = 10,
    ):
        self.notifier = notifier
        self.scheduler = scheduler
        self.degradation = degradation
        self._enabled = enabled
        self._strategies: Dict[str, RecoveryStrategy] = dict(DEFAULT_RECOVERY_STRATEGIES)
        self._actions: Dict[str, ActionHandler] = {}
        self._counts: Counter = Counter()
        self._last_errors: Dict[str, LLMClientError] = {}
        self._recent: Deque[LLMClientError] = deque(maxlen=recent_limit)

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        logger.info("Error handler toggled", enabled=enabled)

    def register_recovery_strategy(self, code: str, strategy: Union[RecoveryStrategy, str]) -> None:
        self._strategies[code] = RecoveryStrategy(strategy)

    def register_action(self, label: str, handler: ActionHandler) -> None:
        self._actions[label] = handler

    def get_recovery_strategy(self, error: LLMClientError) -> RecoveryStrategy:
        if error.code in self._strategies:
            return self._strategies[error.code]
        return CATEGORY_RECOVERY_STRATEGIES.get(error.category, RecoveryStrategy.NONE)

    @staticmethod
    def recovery_actions(error: LLMClientError) -> List[str]:
        return list(RECOVERY_ACTIONS.get(error.code, DEFAULT_RECOVERY_ACTIONS))

    @staticmethod
    def notification_level(error: LLMClientError, strategy: RecoveryStrategy) -> NotificationLevel:
        if error.category == ErrorCategory.RUNTIME:
            return NotificationLevel.ERROR
        if error.category == ErrorCategory.CONNECTION:
            return NotificationLevel.WARNING
        if strategy == RecoveryStrategy.NONE:
            return NotificationLevel.INFO
        return NotificationLevel.WARNING

    async def handle_error(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> bool:
        """
        Handle an error end to end.

        Args:
            error: Any exception; foreign ones become runtime errors
            context: Optional keys: operation (str), feature (Feature),
                retry_operation (zero-argument coroutine function)

        Returns:
            True if recovery was attempted successfully
        """
        if not self._enabled:
            return False

        context = dict(context or {})
        llm_error = ensure_llm_error(error)
        self._log(llm_error, context)
        self._track(llm_error)

        strategy = self.get_recovery_strategy(llm_error)
        errors_handled_total.labels(category=llm_error.category.value, strategy=strategy.value).inc()

        actions = self.recovery_actions(llm_error) if strategy == RecoveryStrategy.USER_CHOICE else []
        choice = await self.notifier.notify(
            self.notification_level(llm_error, strategy),
            llm_error.user_message(),
            actions=actions,
            details={
                "code": llm_error.code,
                "category": llm_error.category.value,
                "strategy": strategy.value,
                "operation": context.get("operation"),
            },
        )

        try:
            return await self._attempt_recovery(llm_error, strategy, context, choice)
        except Exception:
            logger.exception("Recovery attempt failed", code=llm_error.code)
            return False

    async def handle_connection_error(self, error: BaseException, operation: str = "connection") -> bool:
        return await self.handle_error(error, {"operation": operation})

    async def handle_api_error(self, error: BaseException, endpoint: str) -> bool:
        return await self.handle_error(error, {"operation": "api_request", "endpoint": endpoint})

    async def handle_model_error(self, error: BaseException, model_id: Optional[str] = None) -> bool:
        return await self.handle_error(error, {"operation": "model_operation", "model_id": model_id})

    def _log(self, error: LLMClientError, context: Dict[str, Any]) -> None:
        fields = {
            "code": error.code,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "error": error.message,
            "operation": context.get("operation"),
        }
        if error.category == ErrorCategory.RUNTIME:
            logger.error("Runtime error", exc_info=error.cause or error, **fields)
        elif error.category == ErrorCategory.CONNECTION:
            logger.warning("Connection error", **fields)
        else:
            logger.info("Handled error", **fields)

    def _track(self, error: LLMClientError) -> None:
        key = f"{error.category.value}:{error.code}"
        self._counts[key] += 1
        self._last_errors[key] = error
        self._recent.append(error)

    async def _attempt_recovery(
        self,
        error: LLMClientError,
        strategy: RecoveryStrategy,
        context: Dict[str, Any],
        choice: Optional[str],
    ) -> bool:
        if strategy == RecoveryStrategy.RETRY:
            operation = context.get("retry_operation")
            if operation is None or self.scheduler is None:
                logger.info("Retry suggested, nothing to reschedule", code=error.code)
                return False
            key = f"{context.get('operation', 'operation')}:{error.code}"
            self.scheduler.schedule(key, operation)
            return True

        if strategy == RecoveryStrategy.USER_CHOICE:
            if choice is None:
                return False
            return await self._execute_action(choice, error, context)

        if strategy == RecoveryStrategy.FALLBACK:
            logger.info("Fallback recovery", code=error.code)
            return False

        if strategy == RecoveryStrategy.DISABLE:
            feature = context.get("feature")
            if feature is None or self.degradation is None:
                logger.warning("Disable recovery without a feature", code=error.code)
                return False
            await self.degradation.disable_feature(Feature(feature), error)
            return True

        return False

    async def _execute_action(self, label: str, error: LLMClientError, context: Dict[str, Any]) -> bool:
        handler = self._actions.get(label)
        if handler is None:
            logger.info("No handler registered for action", action=label)
            return False
        result = handler(error, context)
        if inspect.isawaitable(result):
            result = await result
        return result is not False

    def get_error_statistics(self) -> Dict[str, Any]:
        by_category: Counter = Counter()
        by_code: Counter = Counter()
        for key, count in self._counts.items():
            category, code = key.split(":", 1)
            by_category[category] += count
            by_code[code] += count

        return {
            "total_errors": sum(self._counts.values()),
            "errors_by_category": dict(by_category),
            "errors_by_code": dict(by_code),
            "recent_errors": [error.to_dict() for error in reversed(self._recent)],
            "last_occurrence": {key: error.timestamp.isoformat() for key, error in self._last_errors.items()},
        }

    def clear_statistics(self) -> None:
        self._counts.clear()
        self._last_errors.clear()
        self._recent.clear()
