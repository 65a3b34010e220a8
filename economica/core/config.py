"""Configuration settings for the query orchestration service."""

from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

HOUR = 3600
DAY = 24 * HOUR


class ProviderSettings(BaseModel):
    """Limits and pricing for one metered premium provider."""

    display_name: str
    enabled: bool = True
    priority: int = 5  # Higher comes first among fallback candidates
    cost_per_query: float = 0.0
    hourly_limit: int = 100
    daily_limit: int = 1000
    monthly_limit: int = 25000
    timeout_seconds: float = 30.0
    endpoint: Optional[str] = None  # Used by the HTTP provider client


class QueryTypeSettings(BaseModel):
    """Per query type routing and caching behaviour."""

    cache_enabled: bool = True
    cache_ttl: int = DAY
    preferred_providers: List[str] = Field(default_factory=list)
    max_response_time: float = 30.0
    retry_attempts: int = 2


def default_providers() -> Dict[str, ProviderSettings]:
    return {
        "gemini_pro": ProviderSettings(
            display_name="Gemini Pro", priority=9, cost_per_query=0.002,
            hourly_limit=100, daily_limit=1000, monthly_limit=25000, timeout_seconds=30.0,
        ),
        "chatgpt_plus": ProviderSettings(
            display_name="ChatGPT Plus", priority=8, cost_per_query=0.003,
            hourly_limit=80, daily_limit=800, monthly_limit=20000, timeout_seconds=45.0,
        ),
        "claude_pro": ProviderSettings(
            display_name="Claude Pro", priority=7, cost_per_query=0.004,
            hourly_limit=60, daily_limit=600, monthly_limit=15000, timeout_seconds=35.0,
        ),
        "perplexity_pro": ProviderSettings(
            display_name="Perplexity Pro", priority=6, cost_per_query=0.005,
            hourly_limit=50, daily_limit=500, monthly_limit=12000, timeout_seconds=40.0,
        ),
        "mars_ai_pro": ProviderSettings(
            display_name="Mars AI Pro", enabled=False, priority=5, cost_per_query=0.006,
            hourly_limit=30, daily_limit=300, monthly_limit=8000, timeout_seconds=50.0,
        ),
    }


def default_query_types() -> Dict[str, QueryTypeSettings]:
    return {
        "emergency": QueryTypeSettings(
            cache_enabled=False, cache_ttl=0,
            preferred_providers=["gemini_pro", "chatgpt_plus"],
            max_response_time=10.0, retry_attempts=1,
        ),
        "protocol": QueryTypeSettings(
            cache_ttl=7 * DAY,  # Protocols change rarely
            preferred_providers=["claude_pro", "gemini_pro"],
            max_response_time=30.0,
        ),
        "diagnosis": QueryTypeSettings(
            cache_ttl=30 * DAY,
            preferred_providers=["gemini_pro", "claude_pro"],
            max_response_time=45.0,
        ),
        "exercise": QueryTypeSettings(
            cache_ttl=14 * DAY,
            preferred_providers=["chatgpt_plus", "gemini_pro"],
            max_response_time=25.0,
        ),
        "research": QueryTypeSettings(
            cache_ttl=HOUR,  # Research moves fast
            preferred_providers=["perplexity_pro", "gemini_pro"],
            max_response_time=60.0, retry_attempts=3,
        ),
        "general": QueryTypeSettings(
            cache_ttl=DAY,
            preferred_providers=["gemini_pro", "chatgpt_plus"],
            max_response_time=20.0,
        ),
    }


class CacheSettings(BaseModel):
    """Multi-tier response cache settings."""

    enabled: bool = True
    max_size_bytes: int = 250 * 1024 * 1024  # 250MB across tiers
    max_entries: int = 10000
    l1_max_entries: int = 100
    l1_max_entry_size: int = 10 * 1024  # 10KB
    l2_max_entry_size: int = 100 * 1024  # 100KB
    l3_max_entry_size: int = 5 * 1024 * 1024  # 5MB
    l1_quota_bytes: int = 5 * 1024 * 1024
    l2_quota_bytes: int = 50 * 1024 * 1024
    l3_quota_bytes: int = 200 * 1024 * 1024
    eviction_fraction: float = 0.1
    quota_cleanup_fraction: float = 0.25
    cleanup_interval_seconds: int = 30 * 60  # 30 minutes
    compression_enabled: bool = True
    compression_min_size: int = 1024  # Don't bother below 1KB
    compression_level: int = 6
    health_hit_rate_threshold: float = 0.7
    health_min_requests: int = 10

    # Storage backends
    l2_db_path: str = "./data/cache_l2.db"
    l3_backend: str = "sqlite"  # sqlite or redis
    l3_db_path: str = "./data/cache_l3.db"
    l3_key_prefix: str = "economica:cache:"


class KnowledgeSettings(BaseModel):
    """Knowledge base search thresholds."""

    confidence_threshold: int = 70
    relaxed_confidence_threshold: int = 30
    result_limit: int = 5
    min_content_length: int = 50  # Shorter answers are not worth serving
    min_title_length: int = 10
    min_entry_content_length: int = 100
    seed_path: Optional[str] = None  # JSON file loaded at startup
    load_bundled_seed: bool = True  # Used only when seed_path is unset


class Settings(BaseSettings):
    """Application settings."""

    # API Configuration
    app_name: str = "Economica Query Orchestration Service"
    app_version: str = "1.0.0"
    api_prefix: str = "/api/v1"
    debug: bool = False

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000
    slow_request_ms: float = 30000.0  # Requests slower than this are logged

    # CORS
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Orchestration
    max_concurrent_queries: int = 10
    global_timeout_seconds: float = 60.0
    premium_reference_cost: float = 0.003  # Average premium call, counted as saved per free answer

    # Provider rotation
    rotation_strategy: str = "preference"  # preference, cost_optimized, least_used, best_performance, round_robin
    default_provider: Optional[str] = "gemini_pro"
    warning_threshold: float = 85.0  # % of the tightest window
    blocking_threshold: float = 100.0
    alert_warning_threshold: float = 80.0
    alert_critical_threshold: float = 95.0
    max_consecutive_failures: int = 3
    cooldown_seconds: int = 10 * 60  # 10 minutes
    provider_api_key: Optional[str] = None

    providers: Dict[str, ProviderSettings] = Field(default_factory=default_providers)
    query_types: Dict[str, QueryTypeSettings] = Field(default_factory=default_query_types)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    knowledge: KnowledgeSettings = Field(default_factory=KnowledgeSettings)

    # Redis (L3 when cache.l3_backend == "redis")
    redis_url: Optional[str] = "redis://localhost:6379"

    # Monitoring
    slow_operation_threshold_ms: float = 30000.0
    metrics_window_size: int = 1000

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    class Config:
        env_file = ".env"
        env_prefix = "ECONOMICA_"
        env_nested_delimiter = "__"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields in .env file

    def query_type_settings(self, query_type: str) -> QueryTypeSettings:
        """Settings for a query type, falling back to ``general``."""
        return self.query_types.get(query_type) or self.query_types.get("general") or QueryTypeSettings()

    def validate_runtime(self) -> List[str]:
        """Return a list of configuration problems; empty when usable."""
        problems: List[str] = []

        active = [name for name, provider in self.providers.items() if provider.enabled]
        if not active:
            problems.append("At least one premium provider must be enabled")

        if self.default_provider and self.default_provider not in self.providers:
            problems.append(f"Default provider '{self.default_provider}' is not configured")

        for type_name, type_settings in self.query_types.items():
            for provider in type_settings.preferred_providers:
                if provider not in self.providers:
                    problems.append(f"Query type '{type_name}' prefers unknown provider '{provider}'")

        if not 0 <= self.knowledge.confidence_threshold <= 100:
            problems.append("Knowledge confidence threshold must be between 0 and 100")
        if self.knowledge.relaxed_confidence_threshold > self.knowledge.confidence_threshold:
            problems.append("Relaxed knowledge threshold must not exceed the main threshold")

        if self.warning_threshold >= self.blocking_threshold:
            problems.append("Warning threshold must be below the blocking threshold")

        if self.cache.max_size_bytes <= 0:
            problems.append("Cache max size must be positive")
        if not 0 < self.cache.eviction_fraction <= 0.5:
            problems.append("Cache eviction fraction must be in (0, 0.5]")

        if self.max_concurrent_queries < 1:
            problems.append("max_concurrent_queries must be at least 1")

        return problems


@lru_cache()
def get_settings() -> Settings:
    """Load settings once per process."""
    return Settings()
