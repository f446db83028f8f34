"""Sync pipeline configuration via pydantic-settings."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


class SyncSettings(BaseSettings):
    environment: str = "development"
    database_url: str = "sqlite+aiosqlite:///chatsync.db"
    echo_sql: bool = False
    app_title: str = "B2Chat Sync"

    # B2Chat API
    b2chat_api_url: str = "https://api.b2chat.io"
    b2chat_username: str = ""
    b2chat_password: str = ""
    b2chat_timeout_seconds: float = 30.0
    b2chat_retry_attempts: int = 3
    b2chat_retry_backoff_seconds: float = 1.0
    b2chat_rate_limit_per_second: int = 5
    b2chat_rate_limit_per_day: int = 10000
    b2chat_token_refresh_margin_seconds: int = 60

    # Extract / transform
    extract_batch_size: int = 100
    extract_max_pages_filtered: int = 100
    transform_batch_size: int = 100
    max_processing_attempts: int = 3
    upsert_retry_attempts: int = 3
    upsert_retry_delay_seconds: float = 0.05
    disconnect_poll_seconds: float = 0.5

    # Observability
    event_history_size: int = 1000

    # Caller identity header set by the upstream auth proxy
    user_id_header: str = "X-User-Id"

    model_config = {"env_prefix": "CHATSYNC_", "env_file": ".env", "extra": "ignore"}

    @property
    def base_dir(self) -> Path:
        return Path(__file__).resolve().parent

    @property
    def alembic_ini(self) -> Path:
        return self.base_dir / "alembic.ini"

    @property
    def has_b2chat_credentials(self) -> bool:
        return bool(self.b2chat_username and self.b2chat_password)

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}


settings = SyncSettings()
