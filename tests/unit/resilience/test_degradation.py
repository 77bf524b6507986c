"""
Unit tests for GracefulDegradationService.

Tests the per-feature state machine, the connection cascade and each
fallback strategy.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from local_llm.llm.exceptions import (
    LLMApiError,
    LLMConnectionError,
    LLMModelError,
    LLMRuntimeError,
    LLMValidationError,
)
from local_llm.models.api_models import ChatCompletionResponse, ChatMessage, ChatCompletionRequest
from local_llm.models.enums import (
    DEPENDENT_FEATURES,
    FallbackStrategy,
    Feature,
    FeatureState,
    MessageRole,
    NotificationLevel,
)
from local_llm.resilience.degradation import (
    CHAT_FALLBACK_TEXT,
    COMPLETION_FALLBACK_TEXT,
    UNAVAILABLE_TEXT,
    GracefulDegradationService,
)
from local_llm.resilience.monitor import ConnectionMonitor


def refused() -> LLMConnectionError:
    return LLMConnectionError("Connection refused", "CONNECTION_REFUSED")


def failing(error: Exception) -> AsyncMock:
    return AsyncMock(side_effect=error)


def chat_request() -> ChatCompletionRequest:
    return ChatCompletionRequest(
        model="qwen2.5-7b-instruct",
        messages=[ChatMessage(role=MessageRole.USER, content="Hi")],
    )


# ============================================================================
# State Machine Tests
# ============================================================================


class TestFeatureStates:
    """Test state transitions driven by operation outcomes."""

    def test_initial_states(self, degradation):
        """Test every feature starts unavailable until proven otherwise."""
        for feature in Feature:
            assert degradation.get_feature_state(feature) == FeatureState.UNAVAILABLE
        assert degradation.is_feature_available(Feature.CHAT) is False

    def test_unknown_feature_is_unavailable(self, degradation):
        """Test lookups of unknown feature names."""
        assert degradation.get_feature_state("telepathy") == FeatureState.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_success_marks_available(self, degradation):
        """Test a successful operation marks the feature available."""
        result = await degradation.execute_with_degradation(Feature.MODELS, AsyncMock(return_value=["m"]))

        assert result == ["m"]
        assert degradation.get_feature_state(Feature.MODELS) == FeatureState.AVAILABLE
        assert degradation.is_feature_available("models") is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,state",
        [
            (LLMModelError("gone", "MODEL_NOT_FOUND"), FeatureState.LIMITED),
            (LLMApiError("bad", "CLIENT_ERROR", status_code=422), FeatureState.LIMITED),
            (LLMApiError("boom", "SERVER_ERROR", status_code=500), FeatureState.UNAVAILABLE),
            (RuntimeError("unexpected"), FeatureState.UNAVAILABLE),
        ],
    )
    async def test_failure_states(self, degradation, error, state):
        """Test each error class lands the feature in its state."""
        await degradation.record_success(Feature.COMPLETION)

        await degradation.execute_with_degradation(
            Feature.COMPLETION, failing(error), fallback_strategy=FallbackStrategy.SIMPLIFIED
        )

        assert degradation.get_feature_state(Feature.COMPLETION) == state

    @pytest.mark.asyncio
    async def test_validation_errors_propagate(self, degradation):
        """Test validation errors are re-raised and leave the state alone."""
        await degradation.record_success(Feature.CHAT)

        with pytest.raises(LLMValidationError):
            await degradation.execute_with_degradation(
                Feature.CHAT, failing(LLMValidationError("empty", "EMPTY_MESSAGE_CONTENT"))
            )

        assert degradation.get_feature_state(Feature.CHAT) == FeatureState.AVAILABLE

    @pytest.mark.asyncio
    async def test_disabled_service_propagates(self, degradation):
        """Test with degradation off, operations run bare."""
        degradation.set_enabled(False)

        with pytest.raises(LLMConnectionError):
            await degradation.execute_with_degradation(Feature.CHAT, failing(refused()))

        assert degradation.is_enabled is False
        assert degradation.get_feature_state(Feature.CHAT) == FeatureState.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_state_listeners(self, degradation):
        """Test listeners get (feature, previous, state) and failures are isolated."""
        broken = Mock(side_effect=RuntimeError("listener bug"))
        listener = AsyncMock()
        degradation.add_state_listener(broken)
        degradation.add_state_listener(listener)

        await degradation.record_success(Feature.EMBEDDINGS)

        listener.assert_awaited_once_with(Feature.EMBEDDINGS, FeatureState.UNAVAILABLE, FeatureState.AVAILABLE)

        degradation.remove_state_listener(listener)
        await degradation.record_failure(Feature.EMBEDDINGS, LLMModelError("x"))
        assert listener.await_count == 1

    @pytest.mark.asyncio
    async def test_listeners_only_on_change(self, degradation):
        """Test setting the same state twice notifies once."""
        listener = Mock()
        degradation.add_state_listener(listener)

        await degradation.record_success(Feature.CHAT)
        await degradation.record_success(Feature.CHAT)

        assert listener.call_count == 1


# ============================================================================
# Connection Cascade Tests
# ============================================================================


class TestConnectionCascade:
    """Test how connectivity propagates to dependent features."""

    @pytest.mark.asyncio
    async def test_connection_error_cascades(self, degradation):
        """Test a connection failure in one feature makes every dependent unavailable."""
        for feature in DEPENDENT_FEATURES:
            await degradation.record_success(feature)
        await degradation.record_success(Feature.CONNECTION)

        await degradation.execute_with_degradation(Feature.CHAT, failing(refused()))

        for feature in Feature:
            assert degradation.get_feature_state(feature) == FeatureState.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_restore_promotes_to_limited(self, degradation):
        """Test restored connectivity never jumps a feature straight to available."""
        await degradation.apply_connection_state(True)

        assert degradation.get_feature_state(Feature.CONNECTION) == FeatureState.AVAILABLE
        for feature in DEPENDENT_FEATURES:
            assert degradation.get_feature_state(feature) == FeatureState.LIMITED

    @pytest.mark.asyncio
    async def test_restore_keeps_better_states(self, degradation):
        """Test features already available or limited are not touched on restore."""
        await degradation.record_success(Feature.MODELS)
        await degradation.apply_connection_state(True)
        assert degradation.get_feature_state(Feature.MODELS) == FeatureState.AVAILABLE

    @pytest.mark.asyncio
    async def test_disabled_features_survive_cascade(self, degradation):
        """Test the cascade leaves disabled features disabled both ways."""
        await degradation.disable_feature(Feature.EMBEDDINGS)

        await degradation.apply_connection_state(False)
        assert degradation.get_feature_state(Feature.EMBEDDINGS) == FeatureState.DISABLED

        await degradation.apply_connection_state(True)
        assert degradation.get_feature_state(Feature.EMBEDDINGS) == FeatureState.DISABLED

    @pytest.mark.asyncio
    async def test_monitor_changes_drive_cascade(self, mock_client, guidance, notifier, instant_scheduler):
        """Test the connection monitor feeds the cascade."""
        monitor = ConnectionMonitor(mock_client, interval=60.0)
        service = GracefulDegradationService(
            mock_client, guidance, notifier, monitor=monitor, scheduler=instant_scheduler
        )

        await monitor.check_now()
        assert service.get_feature_state(Feature.CHAT) == FeatureState.LIMITED

        mock_client.check_health.return_value = False
        await monitor.check_now()
        assert service.get_feature_state(Feature.CHAT) == FeatureState.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_record_failure_marks_monitor_disconnected(
        self, mock_client, guidance, notifier, instant_scheduler
    ):
        """Test a connection failure seen by a feature updates the monitor."""
        monitor = ConnectionMonitor(mock_client, interval=60.0)
        service = GracefulDegradationService(
            mock_client, guidance, notifier, monitor=monitor, scheduler=instant_scheduler
        )
        await monitor.check_now()
        assert monitor.is_connected is True

        await service.record_failure(Feature.CHAT, refused())

        assert monitor.is_connected is False
        assert service.get_feature_state(Feature.CONNECTION) == FeatureState.UNAVAILABLE


# ============================================================================
# Fallback Strategy Tests
# ============================================================================


class TestFallbackStrategies:
    """Test what each fallback strategy returns."""

    @pytest.mark.asyncio
    async def test_cached_serves_last_result(self, degradation):
        """Test CACHED returns the last successful result."""
        await degradation.execute_with_degradation(
            Feature.MODELS, AsyncMock(return_value=["cached"]), fallback_strategy="cached"
        )

        result = await degradation.execute_with_degradation(
            Feature.MODELS, failing(refused()), fallback_strategy="cached", fallback_value=[]
        )

        assert result == ["cached"]

    @pytest.mark.asyncio
    async def test_cached_without_cache(self, degradation):
        """Test CACHED falls back to the handler, then the fallback value."""
        handler = Mock(return_value=["from handler"])
        result = await degradation.execute_with_degradation(
            Feature.MODELS, failing(refused()), fallback_strategy="cached", fallback_handler=handler
        )
        assert result == ["from handler"]
        assert isinstance(handler.call_args.args[0], LLMConnectionError)

        result = await degradation.execute_with_degradation(
            Feature.MODELS, failing(refused()), fallback_strategy="cached", fallback_value=[]
        )
        assert result == []

    @pytest.mark.asyncio
    async def test_simplified_defaults(self, degradation):
        """Test SIMPLIFIED stand-ins per feature."""
        chat = await degradation.execute_with_degradation(
            Feature.CHAT, failing(refused()), fallback_strategy="simplified"
        )
        assert chat.content == UNAVAILABLE_TEXT
        assert chat.choices[0].finish_reason == "error"

        models = await degradation.execute_with_degradation(
            Feature.MODELS, failing(refused()), fallback_strategy="simplified"
        )
        assert models == []

    @pytest.mark.asyncio
    async def test_simplified_prefers_handler_then_value(self, degradation):
        """Test SIMPLIFIED uses an async handler or explicit value first."""
        handler = AsyncMock(return_value="handled")
        assert (
            await degradation.execute_with_degradation(
                Feature.COMPLETION, failing(refused()), fallback_strategy="simplified", fallback_handler=handler
            )
            == "handled"
        )
        assert (
            await degradation.execute_with_degradation(
                Feature.COMPLETION, failing(refused()), fallback_strategy="simplified", fallback_value="value"
            )
            == "value"
        )

    @pytest.mark.asyncio
    async def test_guidance_shows_guidance_once(self, degradation, notifier):
        """Test GUIDANCE shows troubleshooting, then a plain notice inside the cooldown."""
        result = await degradation.execute_with_degradation(
            Feature.CHAT, failing(refused()), fallback_value="fallback"
        )
        assert result == "fallback"
        assert notifier.recent()[0].message.startswith("Cannot Connect to AI Server")

        await degradation.execute_with_degradation(Feature.CHAT, failing(refused()))
        latest = notifier.recent()[0]
        assert latest.level == NotificationLevel.WARNING
        assert latest.actions == ["Check Settings", "Retry Connection"]
        assert latest.details["code"] == "CONNECTION_REFUSED"

    @pytest.mark.asyncio
    async def test_guidance_generic_actions(self, degradation, notifier):
        """Test model errors without guidance offer model actions."""
        await degradation.execute_with_degradation(
            Feature.CHAT, failing(LLMModelError("incompatible", "MODEL_INCOMPATIBLE_CHAT"))
        )
        assert notifier.recent()[0].actions == ["Refresh Models", "Select Model"]

    @pytest.mark.asyncio
    async def test_disable_strategy(self, degradation, notifier):
        """Test DISABLE turns the feature off and skips later calls."""
        result = await degradation.execute_with_degradation(
            Feature.EMBEDDINGS, failing(RuntimeError("crash")), fallback_strategy="disable", fallback_value="off"
        )
        assert result == "off"
        assert degradation.get_feature_state(Feature.EMBEDDINGS) == FeatureState.DISABLED
        assert "has been disabled" in notifier.recent()[0].message

        operation = AsyncMock(return_value="never")
        result = await degradation.execute_with_degradation(Feature.EMBEDDINGS, operation, fallback_value="off")

        assert result == "off"
        operation.assert_not_called()
        assert notifier.recent()[0].actions == ["Enable"]

    @pytest.mark.asyncio
    async def test_disabled_feature_reenabled_by_choice(self, degradation, notifier):
        """Test choosing Enable on the disabled notice re-enables as limited."""
        await degradation.disable_feature(Feature.CHAT)
        notifier.set_action_resolver(AsyncMock(return_value="Enable"))

        await degradation.execute_with_degradation(Feature.CHAT, AsyncMock(), fallback_value=None)

        assert degradation.get_feature_state(Feature.CHAT) == FeatureState.LIMITED

    @pytest.mark.asyncio
    async def test_enable_feature(self, degradation):
        """Test enable_feature only affects disabled features."""
        await degradation.record_success(Feature.MODELS)
        assert await degradation.enable_feature(Feature.MODELS) == FeatureState.AVAILABLE

        await degradation.disable_feature(Feature.MODELS)
        assert await degradation.enable_feature("models") == FeatureState.LIMITED


# ============================================================================
# Disabled Feature Tests
# ============================================================================


class TestDisabledFeature:
    """Test a disabled feature only comes back through enable_feature."""

    @pytest.mark.asyncio
    async def test_recorded_success_keeps_disabled(self, degradation):
        await degradation.disable_feature(Feature.CHAT)

        await degradation.record_success(Feature.CHAT)

        assert degradation.get_feature_state(Feature.CHAT) == FeatureState.DISABLED

    @pytest.mark.asyncio
    async def test_recorded_failure_keeps_disabled(self, degradation):
        """Test a failure reported for a disabled feature changes nothing, not even the connection."""
        await degradation.apply_connection_state(True)
        await degradation.disable_feature(Feature.CHAT)

        await degradation.record_failure(Feature.CHAT, refused())

        assert degradation.get_feature_state(Feature.CHAT) == FeatureState.DISABLED
        assert degradation.get_feature_state(Feature.CONNECTION) == FeatureState.AVAILABLE

    @pytest.mark.asyncio
    async def test_scheduled_retry_keeps_disabled(self, degradation):
        await degradation.disable_feature(Feature.MODELS)

        degradation.schedule_retry(Feature.MODELS, AsyncMock(return_value="ok"), max_attempts=1)
        await degradation.scheduler.wait_idle()

        assert degradation.get_feature_state(Feature.MODELS) == FeatureState.DISABLED

    @pytest.mark.asyncio
    async def test_check_feature_enabled(self, degradation, notifier):
        """Test FEATURE_DISABLED is raised after the Enable offer is declined."""
        await degradation.check_feature_enabled(Feature.CHAT)
        await degradation.disable_feature(Feature.CHAT)

        with pytest.raises(LLMRuntimeError) as exc_info:
            await degradation.check_feature_enabled(Feature.CHAT)

        assert exc_info.value.code == "FEATURE_DISABLED"
        assert notifier.recent()[0].actions == ["Enable"]

    @pytest.mark.asyncio
    async def test_check_feature_enabled_accepts_enable(self, degradation, notifier):
        await degradation.disable_feature(Feature.CHAT)
        notifier.set_action_resolver(AsyncMock(return_value="Enable"))

        await degradation.check_feature_enabled(Feature.CHAT)

        assert degradation.get_feature_state(Feature.CHAT) == FeatureState.LIMITED

    @pytest.mark.asyncio
    async def test_check_skipped_when_service_disabled(self, degradation):
        await degradation.disable_feature(Feature.CHAT)
        degradation.set_enabled(False)

        await degradation.check_feature_enabled(Feature.CHAT)


# ============================================================================
# Guidance Action Tests
# ============================================================================


class TestGuidanceActions:
    """Test actions picked on guidance notifications are carried out."""

    @pytest.mark.asyncio
    async def test_retry_connection_checks_health(self, degradation, notifier, mock_client):
        notifier.set_action_resolver(AsyncMock(return_value="Retry Connection"))

        await degradation.execute_with_degradation(Feature.CHAT, failing(refused()))

        assert mock_client.check_health.await_count == 1

    @pytest.mark.asyncio
    async def test_retry_connection_goes_through_monitor(
        self, mock_client, guidance, notifier, instant_scheduler
    ):
        """Test the monitor check drives the cascade back to limited."""
        monitor = ConnectionMonitor(mock_client, interval=60.0)
        service = GracefulDegradationService(
            mock_client, guidance, notifier, monitor=monitor, scheduler=instant_scheduler
        )
        notifier.set_action_resolver(AsyncMock(return_value="Retry Connection"))

        await service.execute_with_degradation(Feature.CHAT, failing(refused()))

        mock_client.check_health.assert_awaited_once()
        assert service.get_feature_state(Feature.CONNECTION) == FeatureState.AVAILABLE
        assert service.get_feature_state(Feature.CHAT) == FeatureState.LIMITED

    @pytest.mark.asyncio
    async def test_refresh_models(self, degradation, notifier, mock_client, sample_models):
        """Test Refresh Models on a model error lists and caches the models."""
        notifier.set_action_resolver(AsyncMock(return_value="Refresh Models"))

        await degradation.execute_with_degradation(
            Feature.CHAT, failing(LLMModelError("incompatible", "MODEL_INCOMPATIBLE_CHAT"))
        )

        mock_client.list_models.assert_awaited_once()
        assert degradation.get_feature_state(Feature.MODELS) == FeatureState.AVAILABLE

    @pytest.mark.asyncio
    async def test_retry_schedules_operation(self, degradation, notifier):
        """Test Retry reruns the failed operation in the background."""
        notifier.set_action_resolver(AsyncMock(return_value="Retry"))
        operation = AsyncMock(side_effect=[LLMApiError("boom", "SERVER_ERROR", status_code=500), "ok"])

        result = await degradation.execute_with_degradation(Feature.COMPLETION, operation, fallback_value="later")
        await degradation.scheduler.wait_idle()

        assert result == "later"
        assert operation.await_count == 2
        assert degradation.get_feature_state(Feature.COMPLETION) == FeatureState.AVAILABLE

    @pytest.mark.asyncio
    async def test_host_actions_do_nothing_here(self, degradation, notifier, mock_client):
        notifier.set_action_resolver(AsyncMock(return_value="Check Settings"))

        await degradation.execute_with_degradation(Feature.CHAT, failing(refused()))

        mock_client.check_health.assert_not_called()
        assert degradation.scheduler.get_status()["queue"] == []


# ============================================================================
# Feature Wrapper Tests
# ============================================================================


class TestFeatureWrappers:
    """Test the per-feature convenience wrappers."""

    @pytest.mark.asyncio
    async def test_models_served_from_cache(self, degradation, mock_client, sample_models):
        """Test the model list survives a later outage."""
        assert await degradation.get_models_with_fallback() == sample_models

        mock_client.list_models.side_effect = refused()
        assert await degradation.get_models_with_fallback() == sample_models

    @pytest.mark.asyncio
    async def test_models_empty_without_cache(self, degradation, mock_client):
        mock_client.list_models.side_effect = refused()
        assert await degradation.get_models_with_fallback() == []

    @pytest.mark.asyncio
    async def test_chat_fallback(self, degradation, mock_client, sample_chat_response):
        """Test chat returns the real reply, then the apology on failure."""
        mock_client.chat_completion.return_value = ChatCompletionResponse.model_validate(sample_chat_response)
        response = await degradation.chat_completion_with_fallback(chat_request())
        assert response.content == "Hello! How can I help you today?"

        request = chat_request()
        mock_client.chat_completion.side_effect = refused()
        response = await degradation.chat_completion_with_fallback(request, validate_model=False)

        assert response.content == CHAT_FALLBACK_TEXT
        assert response.choices[0].finish_reason == "error"
        mock_client.chat_completion.assert_awaited_with(request, validate_model=False)

    @pytest.mark.asyncio
    async def test_completion_fallback(self, degradation, mock_client):
        mock_client.text_completion.side_effect = LLMApiError("boom", "SERVER_ERROR", status_code=500)

        response = await degradation.text_completion_with_fallback({"model": "m", "prompt": "p"})

        assert response.text == COMPLETION_FALLBACK_TEXT

    @pytest.mark.asyncio
    async def test_embeddings_fallback(self, degradation, mock_client):
        mock_client.generate_embeddings.side_effect = refused()

        response = await degradation.generate_embeddings_with_fallback({"model": "e", "input": "x"})

        assert response.data == []
        assert response.embeddings == []


# ============================================================================
# Lifecycle Tests
# ============================================================================


class TestLifecycle:
    """Test background retries, status and disposal."""

    @pytest.mark.asyncio
    async def test_schedule_retry_marks_available(self, degradation):
        """Test a successful scheduled retry marks the feature available."""
        operation = AsyncMock(return_value="ok")

        key = degradation.schedule_retry(Feature.MODELS, operation, max_attempts=1)
        await degradation.scheduler.wait_idle()

        assert key == "models_retry"
        operation.assert_awaited_once()
        assert degradation.get_feature_state(Feature.MODELS) == FeatureState.AVAILABLE

    @pytest.mark.asyncio
    async def test_get_status(self, degradation):
        await degradation.record_success(Feature.CHAT)
        status = degradation.get_status()

        assert status["enabled"] is True
        assert status["features"]["chat"] == "available"
        assert status["connection"] is None
        assert status["retry_queue"] == []

    @pytest.mark.asyncio
    async def test_dispose(self, mock_client, guidance, notifier, instant_scheduler):
        """Test dispose stops the monitor and drops listeners."""
        monitor = ConnectionMonitor(mock_client, interval=60.0)
        service = GracefulDegradationService(
            mock_client, guidance, notifier, monitor=monitor, scheduler=instant_scheduler
        )
        await service.start()
        assert monitor.is_running is True

        await service.dispose()

        assert monitor.is_running is False
        mock_client.check_health.return_value = False
        await monitor.check_now()
        assert service.get_feature_state(Feature.CONNECTION) == FeatureState.AVAILABLE
