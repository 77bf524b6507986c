"""
Configuration settings for Local LLM Companion.

All settings are loaded from environment variables with sensible defaults.
Use .env file for local development.
"""

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )
    
    # === Application ===
    APP_NAME: str = "Local LLM Companion"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    
    # === Inference Server ===
    SERVER_URL: str = "http://localhost:1234"
    DEFAULT_MODEL: Optional[str] = None  # Falls back to the first loaded chat model
    REQUEST_TIMEOUT: float = 120.0  # seconds
    
    # === Client Retry ===
    RETRY_ATTEMPTS: int = 3  # Retries after the first try
    RETRY_BASE_DELAY: float = 1.0  # seconds, doubled per attempt
    RETRY_MAX_DELAY: float = 10.0  # seconds
    RETRY_JITTER_RATIO: float = 0.1
    
    # === Health Monitoring ===
    HEALTH_CHECK_ENABLED: bool = True
    HEALTH_CHECK_INTERVAL: float = 30.0  # seconds
    
    # === Chat ===
    CHAT_TEMPERATURE: float = 0.7
    CHAT_MAX_TOKENS: int = 1000
    CHAT_SYSTEM_PROMPT: str = "You are a helpful AI assistant for software development."
    CHAT_HISTORY_LIMIT: int = 10  # Previous messages sent with each request
    
    # === Completion ===
    COMPLETION_TEMPERATURE: float = 0.7
    COMPLETION_MAX_TOKENS: int = 500
    COMPLETION_STOP_SEQUENCES: list[str] = ["\n\n", "```"]
    
    # === Degradation & Recovery ===
    DEGRADATION_ENABLED: bool = True
    GUIDANCE_ENABLED: bool = True
    GUIDANCE_COOLDOWN_SECONDS: float = 300.0  # Same guidance is not repeated within this window
    RETRY_SCHEDULER_DELAY: float = 5.0  # seconds
    RETRY_SCHEDULER_MAX_ATTEMPTS: int = 3
    RETRY_SCHEDULER_BACKOFF: float = 2.0
    NOTIFICATION_HISTORY: int = 50
    
    # === Prompts ===
    PROMPT_TEMPLATES_DIR: Optional[str] = None  # None = packaged templates
    
    # === Monitoring ===
    PROMETHEUS_ENABLED: bool = True
    
    @field_validator("SERVER_URL")
    @classmethod
    def _check_server_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("SERVER_URL must use http or https")
        return value.rstrip("/")
    
    @field_validator("CHAT_TEMPERATURE", "COMPLETION_TEMPERATURE")
    @classmethod
    def _check_temperature(cls, value: float) -> float:
        if not 0 <= value <= 2:
            raise ValueError("temperature must be between 0 and 2")
        return value
    
    @field_validator("CHAT_MAX_TOKENS", "COMPLETION_MAX_TOKENS", "CHAT_HISTORY_LIMIT")
    @classmethod
    def _check_positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value
    
    @field_validator("RETRY_ATTEMPTS", "RETRY_SCHEDULER_MAX_ATTEMPTS")
    @classmethod
    def _check_attempts(cls, value: int) -> int:
        if value < 0:
            raise ValueError("attempt counts cannot be negative")
        return value
    
    @field_validator(
        "REQUEST_TIMEOUT",
        "HEALTH_CHECK_INTERVAL",
        "RETRY_BASE_DELAY",
        "RETRY_MAX_DELAY",
        "RETRY_SCHEDULER_DELAY",
    )
    @classmethod
    def _check_positive_float(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value


# Global settings instance
settings = Settings()
