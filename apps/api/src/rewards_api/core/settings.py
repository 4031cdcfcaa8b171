from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    database_url: str = "sqlite+aiosqlite:///./rewards.db"
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    celery_default_queue: str = "rewards-default"

    # Reward request processing
    reward_processing_mode: Literal["inline", "deferred"] = "inline"
    reward_request_key_max_length: int = 128

    # Workflow dispatch
    reward_dispatch_worker_enabled: bool = False
    reward_workflow_task_queue: str = "reward-workflows"
    reward_dispatch_poll_interval_seconds: int = 5
    reward_dispatch_batch_size: int = 25
    reward_workflow_max_attempts: int = 5
    reward_workflow_step_max_tries: int = 3
    reward_workflow_backoff_factor_seconds: float = 2.0
    reward_workflow_backoff_max_seconds: float = 300.0
    reward_workflow_stale_after_seconds: int = 900

    # Bounded waits for infrastructure calls
    condition_log_read_timeout_seconds: float = 5.0
    inventory_timeout_seconds: float = 5.0

    # Condition evaluation
    condition_daily_login_max_day_gap: int = Field(default=1, ge=1)

    # Internal API security
    internal_api_key: str = ""

    # Listing defaults
    default_page_size: int = 10
    max_page_size: int = 100


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
