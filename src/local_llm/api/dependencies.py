"""
FastAPI dependency injection for Local LLM Companion.

Provides process-wide singletons: the inference client (one connection
pool), the notification/guidance/degradation stack wired together, and
the chat session store. Tests replace them through
`app.dependency_overrides`.
"""

from functools import lru_cache

from local_llm.chat.service import ChatService
from local_llm.chat.session import ChatSessionStore
from local_llm.config import Settings, settings
from local_llm.guidance.error_handler import ErrorHandler
from local_llm.guidance.notifier import NotificationCenter
from local_llm.guidance.user_guidance import UserGuidanceSystem
from local_llm.llm.openai_client import LocalLLMClient
from local_llm.llm.prompt_builder import PromptBuilder
from local_llm.resilience.degradation import GracefulDegradationService
from local_llm.resilience.monitor import ConnectionMonitor
from local_llm.resilience.scheduler import RetryScheduler


@lru_cache()
def get_settings() -> Settings:
    """
    Get settings singleton.

    Returns:
        Settings instance
    """
    return settings


@lru_cache()
def get_llm_client() -> LocalLLMClient:
    """
    Get singleton inference client with connection pooling.

    Returns:
        LocalLLMClient instance
    """
    config = get_settings()
    return LocalLLMClient(
        base_url=config.SERVER_URL,
        timeout=config.REQUEST_TIMEOUT,
        retry_attempts=config.RETRY_ATTEMPTS,
        retry_base_delay=config.RETRY_BASE_DELAY,
        retry_max_delay=config.RETRY_MAX_DELAY,
        retry_jitter_ratio=config.RETRY_JITTER_RATIO,
    )


@lru_cache()
def get_prompt_builder() -> PromptBuilder:
    """
    Get singleton prompt builder.

    Loads Jinja2 templates once and reuses them across requests.
    """
    config = get_settings()
    return PromptBuilder(
        templates_dir=config.PROMPT_TEMPLATES_DIR,
        system_prompt=config.CHAT_SYSTEM_PROMPT,
        history_limit=config.CHAT_HISTORY_LIMIT,
    )


@lru_cache()
def get_notifier() -> NotificationCenter:
    return NotificationCenter(history_size=get_settings().NOTIFICATION_HISTORY)


@lru_cache()
def get_user_guidance() -> UserGuidanceSystem:
    config = get_settings()
    return UserGuidanceSystem(
        get_notifier(),
        cooldown_seconds=config.GUIDANCE_COOLDOWN_SECONDS,
        enabled=config.GUIDANCE_ENABLED,
    )


@lru_cache()
def get_retry_scheduler() -> RetryScheduler:
    config = get_settings()
    return RetryScheduler(
        delay=config.RETRY_SCHEDULER_DELAY,
        max_attempts=config.RETRY_SCHEDULER_MAX_ATTEMPTS,
        backoff_multiplier=config.RETRY_SCHEDULER_BACKOFF,
    )


@lru_cache()
def get_connection_monitor() -> ConnectionMonitor:
    return ConnectionMonitor(get_llm_client(), interval=get_settings().HEALTH_CHECK_INTERVAL)


@lru_cache()
def get_degradation_service() -> GracefulDegradationService:
    """
    Get singleton degradation service.

    Shares the client, monitor and scheduler singletons so feature state
    follows the health poller.
    """
    return GracefulDegradationService(
        get_llm_client(),
        get_user_guidance(),
        get_notifier(),
        monitor=get_connection_monitor(),
        scheduler=get_retry_scheduler(),
        enabled=get_settings().DEGRADATION_ENABLED,
    )


@lru_cache()
def get_error_handler() -> ErrorHandler:
    """
    Get singleton error handler with the standard recovery actions registered.
    """
    handler = ErrorHandler(
        get_notifier(),
        scheduler=get_retry_scheduler(),
        degradation=get_degradation_service(),
    )
    register_default_actions(handler, get_degradation_service(), get_connection_monitor())
    return handler


def register_default_actions(
    handler: ErrorHandler,
    degradation: GracefulDegradationService,
    monitor: ConnectionMonitor,
) -> None:
    """Bind the action labels offered in notifications to what they do."""

    async def refresh_models(error, context) -> bool:
        models = await degradation.get_models_with_fallback()
        return bool(models)

    async def check_connection(error, context) -> bool:
        return await monitor.check_now()

    handler.register_action("Refresh Models", refresh_models)
    handler.register_action("Retry", check_connection)
    handler.register_action("Retry Connection", check_connection)
    handler.register_action("Test Connection", check_connection)
    handler.register_action("Try Again", check_connection)


@lru_cache()
def get_session_store() -> ChatSessionStore:
    return ChatSessionStore()


@lru_cache()
def get_chat_service() -> ChatService:
    """
    Get singleton chat service.

    Returns:
        ChatService bound to the shared client, degradation layer and store
    """
    config = get_settings()
    return ChatService(
        client=get_llm_client(),
        degradation=get_degradation_service(),
        prompt_builder=get_prompt_builder(),
        store=get_session_store(),
        default_model=config.DEFAULT_MODEL,
        temperature=config.CHAT_TEMPERATURE,
        max_tokens=config.CHAT_MAX_TOKENS,
        completion_temperature=config.COMPLETION_TEMPERATURE,
        completion_max_tokens=config.COMPLETION_MAX_TOKENS,
        completion_stop=config.COMPLETION_STOP_SEQUENCES,
    )
