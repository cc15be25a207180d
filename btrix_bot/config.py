"""
Centralized configuration with environment variable overrides.

Model settings, retrieval thresholds, session TTLs, language policy and
outbound webhook settings are all configurable here. Nothing is hardcoded
in the conversation, retrieval or guardrail logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from btrix_bot.logging_context import LOG_FORMAT, install_session_logging

load_dotenv()

logger = logging.getLogger(__name__)

LANGUAGE_MODES = ("single", "auto", "allowed")
SUPPORTED_LANGUAGE_CODES = ("en", "pt-BR", "es")


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _csv(env_var: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(env_var, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class ModelConfig:
    """Language-model and embedding settings."""

    llm_model: str = os.getenv("LLM_MODEL", "gpt-4.1-mini")
    llm_temperature: float = _safe_float("LLM_TEMPERATURE", "0.7")
    llm_max_tokens: int = _safe_int("LLM_MAX_TOKENS", "2000")
    embedding_model: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")


@dataclass(frozen=True)
class RetrievalConfig:
    """Knowledge retrieval and anti-hallucination gate settings."""

    top_k: int = _safe_int("RAG_TOP_K", "8")
    similarity_threshold: float = _safe_float("RAG_SIMILARITY_THRESHOLD", "0.55")
    max_context_chars: int = _safe_int("RAG_MAX_CONTEXT_CHARS", "12000")
    brain_id: str = os.getenv("KNOWLEDGE_BRAIN_ID", "btrix-core")
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_service_key: str = os.getenv(
        "SUPABASE_SERVICE_KEY", os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    )


@dataclass(frozen=True)
class SessionConfig:
    """Session state persistence settings."""

    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    ttl_seconds: int = _safe_int("SESSION_STATE_TTL_SECONDS", "3600")
    key_prefix: str = os.getenv("SESSION_STATE_PREFIX", "state:")
    history_limit: int = _safe_int("SESSION_HISTORY_LIMIT", "20")


@dataclass(frozen=True)
class LanguageConfig:
    """Reply language policy."""

    mode: str = os.getenv("LANGUAGE_MODE", "allowed")
    default_language: str = os.getenv("DEFAULT_LANGUAGE", "en")
    allowed_languages: tuple[str, ...] = _csv("ALLOWED_LANGUAGES", "en,pt-BR,es")


@dataclass(frozen=True)
class BookingConfig:
    """Demo booking flow settings."""

    booking_link: str = os.getenv("BOOKING_LINK", "https://calendly.com/btrix-demo")
    default_timezone: str = os.getenv("DEFAULT_TIMEZONE", "UTC")


@dataclass(frozen=True)
class WebhookConfig:
    """Outbound automation webhook (n8n) settings."""

    url: str = os.getenv("N8N_WEBHOOK_URL", "")
    timeout_sec: float = _safe_float("N8N_WEBHOOK_TIMEOUT", "5.0")
    retries: int = _safe_int("N8N_WEBHOOK_RETRIES", "3")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    model: ModelConfig = field(default_factory=ModelConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    language: LanguageConfig = field(default_factory=LanguageConfig)
    booking: BookingConfig = field(default_factory=BookingConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    bot_name: str = os.getenv("BOT_NAME", "BTRIX")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if not 0.0 <= config.model.llm_temperature <= 2.0:
        raise ValueError(
            f"LLM_TEMPERATURE must be between 0.0 and 2.0, got {config.model.llm_temperature}"
        )
    if config.model.llm_max_tokens < 1:
        raise ValueError(f"LLM_MAX_TOKENS must be >= 1, got {config.model.llm_max_tokens}")
    if not 0.0 <= config.retrieval.similarity_threshold <= 1.0:
        raise ValueError(
            "RAG_SIMILARITY_THRESHOLD must be between 0.0 and 1.0, "
            f"got {config.retrieval.similarity_threshold}"
        )
    if config.retrieval.top_k < 1:
        raise ValueError(f"RAG_TOP_K must be >= 1, got {config.retrieval.top_k}")
    if config.retrieval.max_context_chars < 1:
        raise ValueError(
            f"RAG_MAX_CONTEXT_CHARS must be >= 1, got {config.retrieval.max_context_chars}"
        )
    if config.session.ttl_seconds < 1:
        raise ValueError(
            f"SESSION_STATE_TTL_SECONDS must be >= 1, got {config.session.ttl_seconds}"
        )
    if config.session.history_limit < 1:
        raise ValueError(
            f"SESSION_HISTORY_LIMIT must be >= 1, got {config.session.history_limit}"
        )
    if config.webhook.retries < 0:
        raise ValueError(f"N8N_WEBHOOK_RETRIES must be >= 0, got {config.webhook.retries}")
    if config.webhook.timeout_sec <= 0:
        raise ValueError(
            f"N8N_WEBHOOK_TIMEOUT must be > 0, got {config.webhook.timeout_sec}"
        )

    lang = config.language
    if lang.mode not in LANGUAGE_MODES:
        raise ValueError(f"LANGUAGE_MODE must be one of {LANGUAGE_MODES}, got {lang.mode!r}")
    for code in (lang.default_language, *lang.allowed_languages):
        if code not in SUPPORTED_LANGUAGE_CODES:
            raise ValueError(
                f"Unsupported language {code!r}; supported: {SUPPORTED_LANGUAGE_CODES}"
            )
    if lang.mode == "allowed" and lang.default_language not in lang.allowed_languages:
        raise ValueError(
            f"DEFAULT_LANGUAGE {lang.default_language!r} must be in ALLOWED_LANGUAGES"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    install_session_logging()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Configuration loaded for '%s'", config.bot_name)
    return config


# Singleton instance
settings = load_config()
