"""Application configuration via environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service-wide configuration options."""

    api_v1_prefix: str = "/v1"
    service_base_url: str = "http://localhost:8000"
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "package_changes"
    log_level: str = "INFO"
    recent_changes_limit: int = 20
    run_stale_after_seconds: int = 3600
    suppress_repeat_transitions: bool = False
    rank_resolver_module_paths: list[str] = Field(default_factory=list)
    package_tier_ladders: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Ordered package ladders keyed by product code (or product code prefix).",
    )
    default_tier_ladder: list[str] = Field(
        default_factory=lambda: ["lite", "starter", "basic", "base", "standard", "plus", "professional", "advanced", "premium", "enterprise"]
    )
    record_source_backend: str = "file"
    record_source_path: str = "data/provisioning_records.jsonl"
    timeseries_backend: str = "file"
    timeseries_path: str = "data/package_change_events.jsonl"
    timeseries_table: str | None = None
    timeseries_batch_size: int = 25
    clickhouse_url: str | None = None
    clickhouse_database: str | None = None
    clickhouse_user: str | None = None
    clickhouse_password: str | None = None
    otel_enabled: bool = False
    otel_exporter: str = "console"
    otel_otlp_endpoint: str | None = None

    model_config = SettingsConfigDict(env_prefix="package_changes_", env_file=".env", extra="ignore")


settings = Settings()
