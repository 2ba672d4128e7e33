from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"

    database_url: str = "sqlite:///./receipt_ledger.db"

    queue_backend: Literal["local", "sqs"] = "local"
    queue_name: str = "expense-processing-queue"

    aws_region: str | None = None
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    sqs_endpoint_url: str | None = None
    textract_endpoint_url: str | None = None

    worker_batch_size: int = 10
    worker_wait_seconds: int = 2
    worker_visibility_timeout_seconds: int = 300
    worker_poll_interval_seconds: float = 5.0
    worker_error_backoff_seconds: float = 10.0
    worker_concurrency: int = 1

    webhook_timeout_seconds: float = 10.0

    default_currency: str = "USD"

    voice_ai_enabled: bool = False
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    voice_ai_timeout_seconds: float = 20.0


settings = Settings()
