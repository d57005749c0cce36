"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── TiDB (MySQL-protocol compatible) ───────────────────────────────────
    tidb_host: str = "tidb"
    tidb_port: int = 4000
    tidb_user: str = "root"
    tidb_password: str = ""
    tidb_database: str = "contract_feed"
    # Full SQLAlchemy URL; takes precedence over the tidb_* pieces when set
    database_url: Optional[str] = None

    @property
    def tidb_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"mysql+aiomysql://{self.tidb_user}:{self.tidb_password}"
            f"@{self.tidb_host}:{self.tidb_port}/{self.tidb_database}"
        )

    # ── Redis ──────────────────────────────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379

    # ── Interest profile cache ─────────────────────────────────────────────
    interest_store_backend: str = "memory"    # 'memory' | 'redis'
    interest_batch_size: int = 500            # users per build batch
    interest_topic_limit: int = 100           # topics kept per user
    interest_contract_limit: int = 50         # recent contracts scored per user
    interest_active_window_days: int = 30     # "recently active" for cold builds
    interest_warm_on_startup: bool = True

    # ── Feed ───────────────────────────────────────────────────────────────
    feed_default_limit: int = 20
    feed_max_limit: int = 100
    ad_slate_size: int = 50
    repost_window_days: int = 7

    # ── View ingestion ─────────────────────────────────────────────────────
    view_rate_limit_seconds: int = 60

    # ── Observability ──────────────────────────────────────────────────────
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "contract-feed"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
