"""Service configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Job queue
    max_concurrency: int = 2  # read live on every scheduling decision
    default_max_retries: int = 2

    # Status polling
    poll_interval_seconds: float = 3.0
    poll_timeout_seconds: float = 600.0
    poll_max_timeout_seconds: float = 1800.0

    # Batch dispatch
    batch_max_concurrent: int = 3
    batch_stagger_ms: int = 5000

    # Rate-limit backoff inside handlers
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 2.0

    # Settled job snapshots
    job_history_ttl_seconds: int = 7200

    # Provider
    provider_mode: str = "simulated"  # only "simulated" ships with the core
    simulated_task_polls: int = 3

    # Service
    log_level: str = "INFO"
    service_port: int = 8001
    shutdown_timeout_seconds: float = 30.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
