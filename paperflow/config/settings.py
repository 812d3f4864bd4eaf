from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    db_host: str = "localhost"
    db_port: int = 5432
    db_database: str = "paperflow"
    db_username: str = "paperflow"
    db_password: str = "secret"
    db_pool_max_size: int = 5

    paperless_host: str = "http://localhost:8000"
    paperless_api_key: str = ""
    paperless_timeout_seconds: int = 30
    paperless_page_size: int = 100

    extraction_provider: str = "openai_compatible"
    extraction_api_key: str = ""
    extraction_base_url: str = ""
    extraction_model_name: str = ""
    extraction_timeout_seconds: int = 120
    extraction_temperature: float = 0.0

    scan_interval_seconds: int = 60
    max_retries: int = 3
    retry_strategy: Literal["partial", "full"] = "partial"
    receipt_label: str = "receipt"
    processed_label: str = "receipt-processed"
    failed_label: str = "receipt-failed"
    skipped_label: str = "receipt-skipped"
    update_content: bool = True
    auto_tag: bool = True
    seed_default_workflows: bool = True
    pdf_engine: str = "pymupdf"

    label_cache_ttl_seconds: int = 30
    field_cache_ttl_seconds: int = 600

    pause_poll_interval_seconds: int = 5
    scan_request_poll_interval_seconds: int = 5
    error_backoff_seconds: int = 60
    run_lock_stale_seconds: int = 3600

    event_webhook_url: str = ""
    event_timeout_seconds: int = 5
