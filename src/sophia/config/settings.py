"""Application settings using Pydantic."""

import os
from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Brain configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = Field(
        default=os.getenv("ENVIRONMENT", "development"),
        description="Deployment environment (development|production|test)",
    )
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=True, description="Render logs as JSON lines (false = console renderer)")

    # Llama Stack Configuration (text generation)
    llama_stack_url: str = "http://localhost:5001"
    llama_stack_model: str = "openai/gpt-5-nano"
    classifier_model: str = Field(
        default="",
        description="Model used for signal extraction (empty = llama_stack_model).",
    )
    llama_stack_provider: Literal["real", "fake", "off"] = Field(
        default="real",
        description="Text generation mode: real=call Llama Stack, fake=local stubs, off=disable.",
    )
    use_fake_providers: bool = Field(
        default=False,
        description="Treat the text generation provider as fake (never overrides off).",
    )
    memory_vector_store_id: str = Field(
        default="",
        description="Llama Stack vector store holding user memories (empty = no vector context).",
    )

    # Database Configuration
    database_url: str = "sqlite+aiosqlite:///./sophia.db"
    db_pool_size: int = Field(default=5, description="Database connection pool size")
    db_max_overflow: int = Field(default=10, description="Database connection pool max overflow")

    # API Configuration
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    api_key: str = "dev-api-key"  # Override in production
    fail_fast_on_startup: bool = Field(
        default=False,
        description="Abort API startup when the database cannot be initialized.",
    )

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Ensure default API key is not used in production."""
        if os.getenv("ENVIRONMENT") == "production" and v == "dev-api-key":
            raise ValueError("Cannot use default API key in production. Set API_KEY env var.")
        return v

    # Circuit breaker around text generation
    circuit_breaker_enabled: bool = True
    circuit_breaker_failure_threshold: int = Field(
        default=5, description="Consecutive failures before the circuit opens"
    )
    circuit_breaker_recovery_timeout: float = Field(
        default=60.0, description="Seconds before an open circuit lets a probe through"
    )

    # Routing thresholds
    sentry_confidence_threshold: float = 0.75
    firefighter_confidence_threshold: float = 0.75
    need_support_confidence_threshold: float = 0.6
    need_support_risk_threshold: int = 4
    explicit_stop_confidence_threshold: float = 0.6
    bored_confidence_threshold: float = 0.65
    machine_signal_threshold: float = Field(
        default=0.6,
        description="Minimum confidence for an action/topic signal to start or defer a flow",
    )

    # Deferred topics
    deferred_max_topics: int = 5
    deferred_max_summaries: int = 3
    deferred_ttl_hours: float = 48.0
    deferred_pause_hours: float = 2.0
    deferred_summary_max_chars: int = 100
    deferred_target_max_chars: int = 80

    # Relaunch consent (product-tuning values, not structural)
    consent_confidence_threshold: float = Field(
        default=0.55,
        description="Classifier confidence above which pending_resolution is trusted over phrase matching",
    )
    consent_accept_pattern: str = (
        r"^(oui|ok|d'accord|vas-y|go|on y va|allez|c'est bon|carrément|avec plaisir|volontiers)\b"
    )
    consent_accept_short_words: list[str] = Field(
        default_factory=lambda: ["oui", "ok", "d'accord"]
    )
    consent_accept_short_max_chars: int = 30
    consent_decline_pattern: str = (
        r"^(non|nan|nope|pas maintenant|plus tard|laisse|pas envie|une autre fois)\b"
    )
    consent_decline_short_words: list[str] = Field(
        default_factory=lambda: ["non", "pas maintenant", "plus tard"]
    )
    consent_decline_short_max_chars: int = 40
    consent_later_words: list[str] = Field(
        default_factory=lambda: ["plus tard", "pas maintenant", "une autre fois"],
        description="Decline wording that also pauses every deferred topic",
    )

    # Supervised topic sessions
    topic_light_max_turns: int = Field(
        default=4, description="Turns after which a light topic session closes as completed"
    )
    topic_serious_max_turns: int = Field(
        default=8, description="Turns after which a serious topic session closes as completed"
    )

    # Short-term context (rolling summary of the conversation)
    short_term_refresh_every: int = Field(
        default=15, description="Unprocessed messages that trigger a short-term summary refresh"
    )
    short_term_max_chars: int = 900
    short_term_timeout_seconds: float = 20.0

    # Context loading
    history_turn_max_chars: int = 420
    history_load_limit: int = Field(
        default=20, description="Stored messages loaded when the caller sends no history"
    )

    # User-facing copy
    outage_message: str = "Je te réponds dès que je peux, je dois gérer une urgence pour le moment."
    stop_acknowledgment: str = (
        "Ok, on s'arrête là pour le bilan. On le reprendra quand tu voudras."
    )
    magic_reset_message: str = "C'est fait, j'ai tout remis à zéro. On repart sur de bonnes bases."

    @model_validator(mode="after")
    def validate_thresholds(self) -> "Settings":
        for name in (
            "sentry_confidence_threshold",
            "firefighter_confidence_threshold",
            "need_support_confidence_threshold",
            "explicit_stop_confidence_threshold",
            "bored_confidence_threshold",
            "machine_signal_threshold",
            "consent_confidence_threshold",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1 (got {value})")
        if self.deferred_max_topics < 1 or self.deferred_max_summaries < 1:
            raise ValueError("Deferred topic limits must be positive")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Lazily construct Settings so tests and CLIs can set env vars before first access.
    return Settings()


def reset_settings_cache() -> None:
    get_settings.cache_clear()


class _SettingsProxy:
    """Lazy proxy for Settings.

    This avoids eager settings instantiation at import time, which can make tests
    order-dependent when env vars are changed during `pytest_configure()`.
    """

    def __getattr__(self, name: str) -> Any:
        return getattr(get_settings(), name)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<SettingsProxy {get_settings()!r}>"


settings = _SettingsProxy()
