"""
Graceful degradation of features when the inference server misbehaves.

Each feature (models, chat, completion, embeddings, connection) has an
availability state:

    available  <- last operation succeeded
    limited    <- partial failure (model problems, 4xx) or connection just restored
    unavailable <- connection failures, server errors, unexpected errors
    disabled   <- DISABLE fallback or disable_feature(); left only through enable_feature().
                  Outcomes reported while disabled do not change the state.

Losing the connection forces every dependent feature to unavailable;
restoring it promotes unavailable features to limited, never straight to
available: each feature earns `available` back with its own success.
"""

import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from local_llm.guidance.notifier import NotificationCenter
from local_llm.guidance.user_guidance import UserGuidanceSystem
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
    LLMRuntimeError,
    LLMValidationError,
    ensure_llm_error,
)
from local_llm.models.api_models import (
    ChatChoice,
    ChatCompletionResponse,
    CompletionChoice,
    CompletionResponse,
    EmbeddingResponse,
    Model,
    TokenUsage,
)
from local_llm.models.enums import (
    DEPENDENT_FEATURES,
    FallbackStrategy,
    Feature,
    FeatureState,
    MessageRole,
    NotificationLevel,
)
from local_llm.monitoring.metrics import record_feature_state
from local_llm.resilience.monitor import ConnectionMonitor
from local_llm.resilience.scheduler import RetryScheduler


logger = structlog.get_logger(__name__)

UNAVAILABLE_TEXT = "The inference server is currently unavailable."
CHAT_FALLBACK_TEXT = (
    "I'm sorry, but the inference server is currently unavailable. "
    "Please check your connection and try again."
)
COMPLETION_FALLBACK_TEXT = (
    "// The inference server is currently unavailable\n"
    "// Please check your connection and try again"
)

FallbackHandler = Callable[[LLMClientError], Any]
StateListener = Callable[[Feature, FeatureState, FeatureState], Union[None, Awaitable[None]]]


def _chat_response(text: str, finish_reason: str = "error") -> ChatCompletionResponse:
    return ChatCompletionResponse(
        choices=[
            ChatChoice(
                message={"role": MessageRole.ASSISTANT.value, "content": text},
                finish_reason=finish_reason,
            )
        ],
        usage=TokenUsage(),
    )


def _completion_response(text: str) -> CompletionResponse:
    return CompletionResponse(
        choices=[CompletionChoice(text=text, finish_reason="error")],
        usage=TokenUsage(),
    )


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class GracefulDegradationService:
    """
    Wraps client operations with per-feature state tracking and fallbacks.

    Validation errors are re-raised untouched: they describe bad input, not
    a degraded server. With the service disabled, operations run bare and
    errors propagate.
    """

    def __init__(
        self,
        client: BaseLLMClient,
        guidance: UserGuidanceSystem,
        notifier: NotificationCenter,
        monitor: Optional[ConnectionMonitor] = None,
        scheduler: Optional[RetryScheduler] = None,
        enabled: bool = True,
    ):
        self.client = client
        self.guidance = guidance
        self.notifier = notifier
        self.monitor = monitor
        self.scheduler = scheduler or RetryScheduler()
        self._enabled = enabled
        self._states: Dict[Feature, FeatureState] = {feature: FeatureState.UNAVAILABLE for feature in Feature}
        self._cache: Dict[Feature, Any] = {}
        self._listeners: List[StateListener] = []

        for feature, state in self._states.items():
            record_feature_state(feature, state)

        if self.monitor is not None:
            self.monitor.add_listener(self._on_connection_change)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        logger.info("Graceful degradation toggled", enabled=enabled)

    def get_feature_state(self, feature: Union[Feature, str]) -> FeatureState:
        try:
            return self._states[Feature(feature)]
        except ValueError:
            return FeatureState.UNAVAILABLE

    def is_feature_available(self, feature: Union[Feature, str]) -> bool:
        return self.get_feature_state(feature) in (FeatureState.AVAILABLE, FeatureState.LIMITED)

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _set_state(self, feature: Feature, state: FeatureState) -> None:
        previous = self._states[feature]
        if previous == state:
            return
        self._states[feature] = state
        record_feature_state(feature, state)
        logger.info(
            "Feature state changed",
            feature=feature.value,
            previous=previous.value,
            state=state.value,
        )

        for listener in list(self._listeners):
            try:
                await _maybe_await(listener(feature, previous, state))
            except Exception:
                logger.exception("Feature state listener failed", feature=feature.value)

    async def enable_feature(self, feature: Union[Feature, str]) -> FeatureState:
        """Re-enable a disabled feature; it comes back as `limited`."""
        feature = Feature(feature)
        if self._states[feature] == FeatureState.DISABLED:
            await self._set_state(feature, FeatureState.LIMITED)
        return self._states[feature]

    async def disable_feature(self, feature: Union[Feature, str], reason: Optional[LLMClientError] = None) -> None:
        feature = Feature(feature)
        await self._set_state(feature, FeatureState.DISABLED)
        message = f"The {feature.value} feature has been disabled"
        if reason is not None:
            message = f"{message} after an error: {reason.user_message()}"
        await self.notifier.notify(
            NotificationLevel.WARNING,
            message,
            details={"feature": feature.value, "code": reason.code if reason is not None else None},
        )

    async def check_feature_enabled(self, feature: Union[Feature, str]) -> None:
        """
        Refuse work for a disabled feature, offering to re-enable it first.

        Raises:
            LLMRuntimeError: FEATURE_DISABLED if the feature stays disabled
        """
        feature = Feature(feature)
        if not self._enabled or self._states[feature] != FeatureState.DISABLED:
            return
        await self._handle_disabled(feature)
        if self._states[feature] == FeatureState.DISABLED:
            raise LLMRuntimeError(
                f"The {feature.value} feature is disabled",
                "FEATURE_DISABLED",
                details={"feature": feature.value},
            )

    @staticmethod
    def state_for_error(error: LLMClientError) -> FeatureState:
        if isinstance(error, LLMConnectionError):
            return FeatureState.UNAVAILABLE
        if isinstance(error, LLMModelError):
            return FeatureState.LIMITED
        if isinstance(error, LLMApiError):
            if error.status_code is not None and error.status_code >= 500:
                return FeatureState.UNAVAILABLE
            return FeatureState.LIMITED
        return FeatureState.UNAVAILABLE

    async def _on_connection_change(self, connected: bool) -> None:
        await self.apply_connection_state(connected)

    async def apply_connection_state(self, connected: bool) -> None:
        """Cascade connectivity to the dependent features. Disabled features are left alone."""
        if connected:
            await self._set_state(Feature.CONNECTION, FeatureState.AVAILABLE)
            for feature in DEPENDENT_FEATURES:
                if self._states[feature] == FeatureState.UNAVAILABLE:
                    await self._set_state(feature, FeatureState.LIMITED)
        else:
            await self._set_state(Feature.CONNECTION, FeatureState.UNAVAILABLE)
            for feature in DEPENDENT_FEATURES:
                if self._states[feature] != FeatureState.DISABLED:
                    await self._set_state(feature, FeatureState.UNAVAILABLE)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_with_degradation(
        self,
        feature: Union[Feature, str],
        operation: Callable[[], Awaitable[Any]],
        *,
        fallback_strategy: Union[FallbackStrategy, str] = FallbackStrategy.GUIDANCE,
        fallback_value: Any = None,
        fallback_handler: Optional[FallbackHandler] = None,
    ) -> Any:
        """
        Run `operation` for `feature`, degrading gracefully on failure.

        Args:
            feature: Feature the operation belongs to
            operation: Zero-argument coroutine function
            fallback_strategy: cached, simplified, guidance or disable
            fallback_value: Returned when the strategy has nothing better
            fallback_handler: Called with the error to produce a fallback
                (cached without a cached value, simplified, guidance)

        Raises:
            LLMValidationError: Always propagated, state unchanged
            Exception: Anything, when the service is disabled
        """
        feature = Feature(feature)
        fallback_strategy = FallbackStrategy(fallback_strategy)

        if not self._enabled:
            return await operation()

        if self._states[feature] == FeatureState.DISABLED:
            await self._handle_disabled(feature)
            return fallback_value

        try:
            result = await operation()
        except LLMValidationError:
            raise
        except Exception as e:
            error = ensure_llm_error(e)
            logger.warning(
                "Feature operation failed",
                feature=feature.value,
                code=error.code,
                category=error.category.value,
                strategy=fallback_strategy.value,
                error=error.message,
            )
            await self.record_failure(feature, error)
            return await self._apply_fallback(
                feature, error, fallback_strategy, fallback_value, fallback_handler, operation
            )

        await self._set_state(feature, FeatureState.AVAILABLE)
        self._cache[feature] = result
        return result

    async def record_failure(self, feature: Union[Feature, str], error: BaseException) -> None:
        """Apply a failure observed outside `execute_with_degradation` (e.g. a stream)."""
        feature = Feature(feature)
        if self._states[feature] == FeatureState.DISABLED:
            logger.debug("Ignoring failure of disabled feature", feature=feature.value)
            return
        error = ensure_llm_error(error)
        await self._set_state(feature, self.state_for_error(error))
        if isinstance(error, LLMConnectionError) and feature != Feature.CONNECTION:
            await self.apply_connection_state(False)
            if self.monitor is not None:
                await self.monitor.mark_disconnected()

    async def record_success(self, feature: Union[Feature, str]) -> None:
        feature = Feature(feature)
        if self._states[feature] != FeatureState.DISABLED:
            await self._set_state(feature, FeatureState.AVAILABLE)

    async def _apply_fallback(
        self,
        feature: Feature,
        error: LLMClientError,
        strategy: FallbackStrategy,
        fallback_value: Any,
        fallback_handler: Optional[FallbackHandler],
        operation: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> Any:
        if strategy == FallbackStrategy.CACHED:
            if feature in self._cache:
                logger.info("Serving cached result", feature=feature.value)
                return self._cache[feature]
            if fallback_handler is not None:
                return await _maybe_await(fallback_handler(error))
            return fallback_value

        if strategy == FallbackStrategy.SIMPLIFIED:
            if fallback_handler is not None:
                return await _maybe_await(fallback_handler(error))
            if fallback_value is not None:
                return fallback_value
            return self.simplified_response(feature)

        if strategy == FallbackStrategy.GUIDANCE:
            await self._show_guidance(feature, error, operation)
            if fallback_handler is not None:
                return await _maybe_await(fallback_handler(error))
            return fallback_value

        # DISABLE
        await self.disable_feature(feature, error)
        return fallback_value

    @staticmethod
    def simplified_response(feature: Feature) -> Any:
        """Minimal stand-in result for a feature."""
        if feature == Feature.MODELS:
            return []
        if feature == Feature.CHAT:
            return _chat_response(UNAVAILABLE_TEXT)
        if feature == Feature.COMPLETION:
            return _completion_response(UNAVAILABLE_TEXT)
        if feature == Feature.EMBEDDINGS:
            return EmbeddingResponse(data=[], usage=TokenUsage())
        return None

    async def _show_guidance(
        self,
        feature: Feature,
        error: LLMClientError,
        operation: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> None:
        async def on_action(action: str) -> None:
            await self._execute_guidance_action(action, feature, operation)

        if await self.guidance.show_error_guidance(error, on_action=on_action):
            return

        if isinstance(error, LLMConnectionError):
            actions = ["Check Settings", "Retry Connection"]
        elif isinstance(error, LLMModelError):
            actions = ["Refresh Models", "Select Model"]
        else:
            actions = ["Retry"]
        choice = await self.notifier.notify(
            NotificationLevel.WARNING,
            error.user_message(),
            actions=actions,
            details={"code": error.code, "category": error.category.value},
        )
        if choice is not None:
            await on_action(choice)

    async def _execute_guidance_action(
        self,
        action: str,
        feature: Feature,
        operation: Optional[Callable[[], Awaitable[Any]]],
    ) -> None:
        """Carry out an action picked from a guidance or fallback notification."""
        logger.info("Guidance action chosen", action=action, feature=feature.value)
        if action in ("Retry Connection", "Test Connection"):
            if self.monitor is not None:
                await self.monitor.check_now()
            else:
                await self.client.check_health()
        elif action == "Refresh Models":
            await self.get_models_with_fallback()
        elif action == "Retry":
            if operation is not None:
                self.schedule_retry(feature, operation)
        elif action == "Setup Guide":
            await self.guidance.show_setup_guidance()
        else:
            # Settings and model pickers belong to the host UI
            logger.info("Guidance action left to the host", action=action)

    async def _handle_disabled(self, feature: Feature) -> None:
        logger.warning("Skipping operation for disabled feature", feature=feature.value)
        choice = await self.notifier.notify(
            NotificationLevel.WARNING,
            f"The {feature.value} feature is disabled. Re-enable it to try again.",
            actions=["Enable"],
            details={"feature": feature.value},
        )
        if choice == "Enable":
            await self.enable_feature(feature)

    # ------------------------------------------------------------------
    # Feature wrappers
    # ------------------------------------------------------------------

    async def get_models_with_fallback(self) -> List[Model]:
        return await self.execute_with_degradation(
            Feature.MODELS,
            self.client.list_models,
            fallback_strategy=FallbackStrategy.CACHED,
            fallback_value=[],
        )

    async def chat_completion_with_fallback(self, request: ChatRequestLike, **kwargs) -> ChatCompletionResponse:
        return await self.execute_with_degradation(
            Feature.CHAT,
            lambda: self.client.chat_completion(request, **kwargs),
            fallback_strategy=FallbackStrategy.GUIDANCE,
            fallback_value=_chat_response(CHAT_FALLBACK_TEXT),
        )

    async def text_completion_with_fallback(self, request: CompletionRequestLike, **kwargs) -> CompletionResponse:
        return await self.execute_with_degradation(
            Feature.COMPLETION,
            lambda: self.client.text_completion(request, **kwargs),
            fallback_strategy=FallbackStrategy.GUIDANCE,
            fallback_value=_completion_response(COMPLETION_FALLBACK_TEXT),
        )

    async def generate_embeddings_with_fallback(
        self, request: EmbeddingRequestLike, **kwargs
    ) -> EmbeddingResponse:
        return await self.execute_with_degradation(
            Feature.EMBEDDINGS,
            lambda: self.client.generate_embeddings(request, **kwargs),
            fallback_strategy=FallbackStrategy.SIMPLIFIED,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def schedule_retry(
        self,
        feature: Union[Feature, str],
        operation: Callable[[], Awaitable[Any]],
        **options,
    ) -> str:
        """Retry `operation` in the background; success marks the feature available."""
        feature = Feature(feature)
        key = f"{feature.value}_retry"

        async def attempt() -> Any:
            result = await operation()
            await self.record_success(feature)
            return result

        self.scheduler.schedule(key, attempt, **options)
        return key

    def get_status(self) -> Dict[str, Any]:
        return {
            "enabled": self._enabled,
            "features": {feature.value: state.value for feature, state in self._states.items()},
            "connection": self.monitor.get_state() if self.monitor is not None else None,
            "retry_queue": self.scheduler.get_status()["queue"],
        }

    async def start(self) -> None:
        if self.monitor is not None:
            await self.monitor.start()

    async def dispose(self) -> None:
        if self.monitor is not None:
            self.monitor.remove_listener(self._on_connection_change)
            await self.monitor.stop()
        await self.scheduler.dispose()
        self._listeners.clear()
        self._cache.clear()
        logger.info("Graceful degradation service disposed")
