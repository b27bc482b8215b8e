"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from db.config import load_env_files


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


@dataclass(frozen=True)
class PipelineSettings:
    """
    Queue and worker behaviour shared by all pipeline stages.
    """

    worker_concurrency: int = 5
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    backoff_jitter_ratio: float = 0.1
    poll_interval_seconds: float = 0.5
    queue_backend: str = "database"
    default_priority: int = 5
    lease_seconds: int = 900
    lease_reaper_interval_seconds: float = 60.0


@dataclass(frozen=True)
class CrawlerSettings:
    """
    Website crawler limits and identity.
    """

    max_depth: int = 3
    rate_limit_ms: int = 1000
    timeout_seconds: float = 30.0
    user_agent: str = "POIAuditBot/1.0 (+https://poi-audit.example/bot)"
    max_body_chars: int = 500_000
    max_pages: int = 50
    allow_when_robots_unreachable: bool = True


@dataclass(frozen=True)
class PlacesSettings:
    """
    Places/geocoding API settings.
    """

    api_key: str | None = None
    base_url: str = "https://maps.googleapis.com/maps/api/place"
    timeout_seconds: float = 15.0
    max_retries: int = 3
    backoff_initial_seconds: float = 1.0
    language: str = "de"


@dataclass(frozen=True)
class LLMSettings:
    """
    Comparator LLM adapter settings.
    """

    adapter: str = "openai"
    model: str = "gpt-4o"
    api_key: str | None = None
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.0
    max_call_retries: int = 3
    call_backoff_seconds: float = 1.0
    max_format_retries: int = 2


@dataclass(frozen=True)
class AuditSettings:
    """
    Score thresholds applied after a comparison.
    """

    pass_threshold: int = 80
    notification_threshold: int = 80


@dataclass(frozen=True)
class MailSettings:
    """
    SMTP delivery and spam-protection settings.
    """

    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    from_address: str = "audit@poi-audit.example"
    spam_protection_days: int = 30
    max_attempts: int = 3
    default_locale: str = "de"
    app_url: str = "http://localhost:3000"


@dataclass(frozen=True)
class BudgetSettings:
    monthly_budget: float = 500.0


@dataclass(frozen=True)
class AutoScalerSettings:
    """
    Worker-count recommendation bounds.
    """

    min_workers: int = 1
    max_workers: int = 10
    scale_up_threshold: int = 100
    scale_down_threshold: int = 10
    check_interval_seconds: int = 30


@dataclass(frozen=True)
class SchedulerSettings:
    """
    Cron scheduler settings.
    """

    enabled: bool = True
    timezone: str = "Europe/Berlin"
    reload_interval_seconds: int = 300
    max_pois_per_run: int = 1000
    skip_when_over_budget: bool = False


@dataclass(frozen=True)
class CacheSettings:
    ttl_seconds: float = 60.0


@lru_cache(maxsize=1)
def get_pipeline_settings() -> PipelineSettings:
    """
    Return cached pipeline settings from environment variables.
    """

    return PipelineSettings(
        worker_concurrency=max(1, _get_int_env("PIPELINE_WORKER_CONCURRENCY", 5)),
        max_attempts=max(1, _get_int_env("PIPELINE_MAX_ATTEMPTS", 3)),
        backoff_base_seconds=max(0.0, _get_float_env("PIPELINE_BACKOFF_BASE_SECONDS", 1.0)),
        backoff_jitter_ratio=min(1.0, max(0.0, _get_float_env("PIPELINE_BACKOFF_JITTER_RATIO", 0.1))),
        poll_interval_seconds=max(0.05, _get_float_env("PIPELINE_POLL_INTERVAL_SECONDS", 0.5)),
        queue_backend=_get_str_env("PIPELINE_QUEUE_BACKEND", "database").lower(),
        default_priority=_get_int_env("PIPELINE_DEFAULT_PRIORITY", 5),
        lease_seconds=max(30, _get_int_env("PIPELINE_LEASE_SECONDS", 900)),
        lease_reaper_interval_seconds=max(1.0, _get_float_env("PIPELINE_LEASE_REAPER_INTERVAL_SECONDS", 60.0)),
    )


@lru_cache(maxsize=1)
def get_crawler_settings() -> CrawlerSettings:
    """
    Return cached crawler settings from environment variables.
    """

    return CrawlerSettings(
        max_depth=max(0, _get_int_env("CRAWLER_MAX_DEPTH", 3)),
        rate_limit_ms=max(0, _get_int_env("CRAWLER_RATE_LIMIT_MS", 1000)),
        timeout_seconds=max(1.0, _get_float_env("CRAWLER_TIMEOUT_SECONDS", 30.0)),
        user_agent=_get_str_env(
            "CRAWLER_USER_AGENT",
            "POIAuditBot/1.0 (+https://poi-audit.example/bot)",
        ),
        max_body_chars=max(1, _get_int_env("CRAWLER_MAX_BODY_CHARS", 500_000)),
        max_pages=max(1, _get_int_env("CRAWLER_MAX_PAGES", 50)),
        allow_when_robots_unreachable=_get_bool_env("CRAWLER_ALLOW_WHEN_ROBOTS_UNREACHABLE", True),
    )


@lru_cache(maxsize=1)
def get_places_settings() -> PlacesSettings:
    """
    Return cached places API settings from environment variables.
    """

    return PlacesSettings(
        api_key=_get_optional_str_env("GOOGLE_PLACES_API_KEY"),
        base_url=_get_str_env("GOOGLE_PLACES_BASE_URL", "https://maps.googleapis.com/maps/api/place"),
        timeout_seconds=max(1.0, _get_float_env("GOOGLE_PLACES_TIMEOUT_SECONDS", 15.0)),
        max_retries=max(1, _get_int_env("GOOGLE_PLACES_MAX_RETRIES", 3)),
        backoff_initial_seconds=max(0.0, _get_float_env("GOOGLE_PLACES_BACKOFF_SECONDS", 1.0)),
        language=_get_str_env("GOOGLE_PLACES_LANGUAGE", "de"),
    )


@lru_cache(maxsize=1)
def get_llm_settings() -> LLMSettings:
    """
    Return cached LLM adapter settings.

    LLM_API_KEY takes precedence over OPENAI_API_KEY.
    """

    return LLMSettings(
        adapter=_get_str_env("LLM_ADAPTER", "openai").lower(),
        model=_get_str_env("OPENAI_MODEL", "gpt-4o"),
        api_key=_get_optional_str_env("LLM_API_KEY") or _get_optional_str_env("OPENAI_API_KEY"),
        base_url=_get_optional_str_env("OPENAI_BASE_URL"),
        max_tokens=max(256, _get_int_env("OPENAI_MAX_TOKENS", 4096)),
        temperature=max(0.0, _get_float_env("OPENAI_TEMPERATURE", 0.0)),
        max_call_retries=max(1, _get_int_env("LLM_MAX_CALL_RETRIES", 3)),
        call_backoff_seconds=max(0.0, _get_float_env("LLM_CALL_BACKOFF_SECONDS", 1.0)),
        max_format_retries=max(0, _get_int_env("LLM_MAX_FORMAT_RETRIES", 2)),
    )


@lru_cache(maxsize=1)
def get_audit_settings() -> AuditSettings:
    return AuditSettings(
        pass_threshold=min(100, max(0, _get_int_env("AUDIT_PASS_THRESHOLD", 80))),
        notification_threshold=min(
            100,
            max(0, _get_int_env("NOTIFICATION_SCORE_THRESHOLD", 80)),
        ),
    )


@lru_cache(maxsize=1)
def get_mail_settings() -> MailSettings:
    """
    Return cached SMTP and outbox settings from environment variables.
    """

    return MailSettings(
        smtp_host=_get_str_env("SMTP_HOST", "localhost"),
        smtp_port=max(1, _get_int_env("SMTP_PORT", 587)),
        smtp_user=_get_optional_str_env("SMTP_USER"),
        smtp_password=_get_optional_str_env("SMTP_PASSWORD"),
        smtp_use_tls=_get_bool_env("SMTP_USE_TLS", True),
        from_address=_get_str_env("MAIL_FROM", "audit@poi-audit.example"),
        spam_protection_days=max(0, _get_int_env("MAIL_SPAM_PROTECTION_DAYS", 30)),
        max_attempts=max(1, _get_int_env("MAIL_MAX_ATTEMPTS", 3)),
        default_locale=_get_str_env("MAIL_DEFAULT_LOCALE", "de").lower(),
        app_url=_get_str_env("APP_URL", "http://localhost:3000").rstrip("/"),
    )


@lru_cache(maxsize=1)
def get_budget_settings() -> BudgetSettings:
    return BudgetSettings(
        monthly_budget=max(0.0, _get_float_env("MONTHLY_BUDGET", 500.0)),
    )


@lru_cache(maxsize=1)
def get_autoscaler_settings() -> AutoScalerSettings:
    """
    Return cached auto-scaler settings. max_workers is clamped to >= min_workers.
    """

    min_workers = max(1, _get_int_env("AUTOSCALER_MIN_WORKERS", 1))
    return AutoScalerSettings(
        min_workers=min_workers,
        max_workers=max(min_workers, _get_int_env("AUTOSCALER_MAX_WORKERS", 10)),
        scale_up_threshold=max(0, _get_int_env("AUTOSCALER_SCALE_UP_THRESHOLD", 100)),
        scale_down_threshold=max(0, _get_int_env("AUTOSCALER_SCALE_DOWN_THRESHOLD", 10)),
        check_interval_seconds=max(1, _get_int_env("AUTOSCALER_CHECK_INTERVAL_SECONDS", 30)),
    )


@lru_cache(maxsize=1)
def get_scheduler_settings() -> SchedulerSettings:
    return SchedulerSettings(
        enabled=_get_bool_env("SCHEDULER_ENABLED", True),
        timezone=_get_str_env("SCHEDULER_TIMEZONE", "Europe/Berlin"),
        reload_interval_seconds=max(10, _get_int_env("SCHEDULER_RELOAD_SECONDS", 300)),
        max_pois_per_run=max(1, _get_int_env("SCHEDULER_MAX_POIS", 1000)),
        skip_when_over_budget=_get_bool_env("SCHEDULER_SKIP_WHEN_OVER_BUDGET", False),
    )


@lru_cache(maxsize=1)
def get_cache_settings() -> CacheSettings:
    return CacheSettings(ttl_seconds=max(0.0, _get_float_env("CACHE_TTL_SECONDS", 60.0)))


@dataclass(frozen=True)
class CircuitBreakerSettings:
    """
    Shared thresholds for the places and LLM circuit breakers.
    """

    failure_threshold: int = 5
    reset_timeout_seconds: float = 30.0


@lru_cache(maxsize=1)
def get_circuit_breaker_settings() -> CircuitBreakerSettings:
    return CircuitBreakerSettings(
        failure_threshold=max(1, _get_int_env("CIRCUIT_BREAKER_FAILURE_THRESHOLD", 5)),
        reset_timeout_seconds=max(0.0, _get_float_env("CIRCUIT_BREAKER_RESET_SECONDS", 30.0)),
    )
