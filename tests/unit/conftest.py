"""Unit test fixtures (mocks and stubs).

Provides mock objects for testing without a running inference server.
"""

from unittest.mock import AsyncMock

import pytest

from local_llm.guidance.notifier import NotificationCenter
from local_llm.guidance.user_guidance import UserGuidanceSystem
from local_llm.llm.base_client import BaseLLMClient
from local_llm.resilience.degradation import GracefulDegradationService
from local_llm.resilience.scheduler import RetryScheduler


@pytest.fixture
def mock_client(sample_models):
    """Mock inference client whose model listing succeeds."""
    client = AsyncMock(spec=BaseLLMClient)
    client.check_health = AsyncMock(return_value=True)
    client.list_models = AsyncMock(return_value=sample_models)
    client.chat_completion = AsyncMock()
    client.text_completion = AsyncMock()
    client.generate_embeddings = AsyncMock()
    return client


@pytest.fixture
def notifier() -> NotificationCenter:
    """Notification center without an action resolver."""
    return NotificationCenter(history_size=20)


@pytest.fixture
def guidance(notifier: NotificationCenter) -> UserGuidanceSystem:
    return UserGuidanceSystem(notifier, cooldown_seconds=60.0)


@pytest.fixture
def instant_scheduler() -> RetryScheduler:
    """Retry scheduler that never actually waits."""
    return RetryScheduler(delay=1.0, max_attempts=3, sleep=AsyncMock())


@pytest.fixture
def degradation(mock_client, guidance, notifier, instant_scheduler) -> GracefulDegradationService:
    """Degradation service without a connection monitor."""
    return GracefulDegradationService(
        mock_client,
        guidance,
        notifier,
        scheduler=instant_scheduler,
    )
