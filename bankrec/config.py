"""
Configuration management using Pydantic Settings.
All parameters are loaded from environment variables with sensible defaults.
"""

from functools import lru_cache
from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BANKREC_",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: str = Field(default="development")
    app_debug: bool = Field(default=False)
    app_log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)

    # Statement import
    import_batch_size: int = Field(default=100, ge=1)

    # Cache
    cache_max_size: int = Field(default=1000, ge=1)
    cache_eviction_margin: int = Field(default=100, ge=0)
    cache_default_ttl_seconds: float = Field(default=5 * 60)
    cache_ttl_bank_account_seconds: float = Field(default=5 * 60)
    cache_ttl_statement_seconds: float = Field(default=10 * 60)
    cache_ttl_transaction_seconds: float = Field(default=2 * 60)
    cache_ttl_rule_seconds: float = Field(default=15 * 60)
    cache_ttl_match_seconds: float = Field(default=30 * 60)
    cache_ttl_session_seconds: float = Field(default=60 * 60)
    cache_ttl_analytics_seconds: float = Field(default=2 * 60 * 60)

    # Performance monitor
    metrics_max_entries: int = Field(default=10000, ge=1)

    # Reporting
    high_priority_amount: float = Field(default=1000.0)
    stale_item_days: int = Field(default=30)
    low_reconciliation_rate: float = Field(default=50.0)

    # Pagination
    default_page_size: int = Field(default=50, ge=1)
    max_page_size: int = Field(default=100, ge=1)

    # Analytics cost model
    minutes_saved_per_match: float = Field(default=3.0)
    cost_per_hour: float = Field(default=45.0)

    @property
    def cache_ttls(self) -> Dict[str, float]:
        """TTL tiers by cached entity type, in seconds."""
        return {
            "bank_account": self.cache_ttl_bank_account_seconds,
            "statement": self.cache_ttl_statement_seconds,
            "transaction": self.cache_ttl_transaction_seconds,
            "rule": self.cache_ttl_rule_seconds,
            "match": self.cache_ttl_match_seconds,
            "session": self.cache_ttl_session_seconds,
            "analytics": self.cache_ttl_analytics_seconds,
        }

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
