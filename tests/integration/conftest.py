"""Integration test fixtures (service checks and app wiring).

Provides a FastAPI TestClient whose dependencies are real services built
around a mocked inference client, plus checks for a running local
inference server. Tests needing the server are skipped if it is not
reachable.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from local_llm.api.dependencies import (
    get_chat_service,
    get_connection_monitor,
    get_degradation_service,
    get_error_handler,
    get_llm_client,
    get_notifier,
    get_session_store,
    get_settings,
    get_user_guidance,
    register_default_actions,
)
from local_llm.chat.service import ChatService
from local_llm.chat.session import ChatSessionStore
from local_llm.guidance.error_handler import ErrorHandler
from local_llm.guidance.notifier import NotificationCenter
from local_llm.guidance.user_guidance import UserGuidanceSystem
from local_llm.llm.openai_client import LocalLLMClient
from local_llm.llm.prompt_builder import PromptBuilder
from local_llm.main import app
from local_llm.resilience.degradation import GracefulDegradationService
from local_llm.resilience.monitor import ConnectionMonitor
from local_llm.resilience.scheduler import RetryScheduler

LOCAL_SERVER_URL = "http://localhost:1234"


@pytest.fixture(scope="session")
def check_local_server():
    """Check if an OpenAI-compatible server is available at localhost:1234.

    Skips tests if the server is not reachable.
    """
    try:
        response = httpx.get(f"{LOCAL_SERVER_URL}/v1/models", timeout=5)
        if response.status_code != 200:
            pytest.skip("Local inference server not available (non-200 status)")
    except Exception as e:
        pytest.skip(f"Local inference server not available: {e}")


@pytest.fixture
def integration_settings(test_settings):
    """Settings for integration tests against the local server."""
    test_settings.SERVER_URL = LOCAL_SERVER_URL
    test_settings.REQUEST_TIMEOUT = 60.0
    test_settings.PROMETHEUS_ENABLED = False

    return test_settings


@pytest_asyncio.fixture
async def real_llm_client(check_local_server, integration_settings):
    """Real LocalLLMClient for integration tests.

    Requires the local server (checked by check_local_server fixture).
    """
    client = LocalLLMClient(
        base_url=integration_settings.SERVER_URL,
        timeout=integration_settings.REQUEST_TIMEOUT,
        retry_attempts=integration_settings.RETRY_ATTEMPTS,
        retry_base_delay=integration_settings.RETRY_BASE_DELAY,
        retry_max_delay=integration_settings.RETRY_MAX_DELAY,
    )
    yield client
    await client.close()


@pytest.fixture
def llm_client_mock(sample_models):
    """Mock inference client: healthy, listing the sample models."""
    client = AsyncMock(spec=LocalLLMClient)
    client.base_url = LOCAL_SERVER_URL
    client.check_health = AsyncMock(return_value=True)
    client.list_models = AsyncMock(return_value=sample_models)
    client.get_status = Mock(
        return_value={"base_url": LOCAL_SERVER_URL, "timeout": 5.0, "retry_attempts": 2, "is_healthy": True}
    )
    client.chat_completion = AsyncMock()
    client.iter_chat_completion_stream = Mock()
    client.text_completion = AsyncMock()
    client.generate_embeddings = AsyncMock()
    return client


@pytest.fixture
def services(llm_client_mock, test_settings):
    """Real service graph around the mocked client, as the app wires it."""
    notifier = NotificationCenter(history_size=20)
    guidance = UserGuidanceSystem(notifier, cooldown_seconds=60.0)
    scheduler = RetryScheduler(delay=0.01, max_attempts=2, sleep=AsyncMock())
    monitor = ConnectionMonitor(llm_client_mock, interval=60.0)
    degradation = GracefulDegradationService(
        llm_client_mock, guidance, notifier, monitor=monitor, scheduler=scheduler
    )
    error_handler = ErrorHandler(notifier, scheduler=scheduler, degradation=degradation)
    register_default_actions(error_handler, degradation, monitor)
    store = ChatSessionStore()
    chat_service = ChatService(
        llm_client_mock,
        degradation,
        PromptBuilder(history_limit=test_settings.CHAT_HISTORY_LIMIT),
        store,
        default_model=test_settings.DEFAULT_MODEL,
    )

    return SimpleNamespace(
        settings=test_settings,
        client=llm_client_mock,
        notifier=notifier,
        guidance=guidance,
        monitor=monitor,
        degradation=degradation,
        error_handler=error_handler,
        store=store,
        chat_service=chat_service,
    )


@pytest.fixture
def api(services):
    """TestClient with dependency overrides; lifespan is not run."""
    app.dependency_overrides = {
        get_settings: lambda: services.settings,
        get_llm_client: lambda: services.client,
        get_notifier: lambda: services.notifier,
        get_user_guidance: lambda: services.guidance,
        get_connection_monitor: lambda: services.monitor,
        get_degradation_service: lambda: services.degradation,
        get_error_handler: lambda: services.error_handler,
        get_session_store: lambda: services.store,
        get_chat_service: lambda: services.chat_service,
    }

    yield TestClient(app, raise_server_exceptions=False)

    app.dependency_overrides = {}
