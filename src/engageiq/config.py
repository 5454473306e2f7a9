from __future__ import annotations

from uuid import uuid4

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ENGAGEIQ_", env_file=".env", extra="ignore", populate_by_name=True
    )

    app_name: str = "engageiq"
    env: str = "dev"
    host: str = "0.0.0.0"  # nosec B104 - intentional for container deployments
    port: int = 8080
    log_level: str = "INFO"

    # Instance ID for distributed deployments
    instance_id: str = Field(default_factory=lambda: str(uuid4())[:8])

    # Redis (shared cache tier and job queue backend)
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")
    redis_max_retries: int = Field(default=3, validation_alias="REDIS_MAX_RETRIES")
    redis_socket_timeout: float = Field(default=5.0, validation_alias="REDIS_SOCKET_TIMEOUT")

    # Two-tier cache
    cache_key_prefix: str = Field(default="engageiq:cache:", validation_alias="CACHE_KEY_PREFIX")
    cache_default_ttl: int = Field(default=3600, validation_alias="CACHE_DEFAULT_TTL")
    cache_local_max_size: int = Field(default=1000, validation_alias="CACHE_LOCAL_MAX_SIZE")
    cache_local_max_ttl: int = Field(default=60, validation_alias="CACHE_LOCAL_MAX_TTL")
    cache_sweep_interval: float = Field(default=60.0, validation_alias="CACHE_SWEEP_INTERVAL")

    # Job queues
    queue_key_prefix: str = Field(default="engageiq:queue:", validation_alias="QUEUE_KEY_PREFIX")
    queue_poll_interval: float = Field(default=1.0, validation_alias="QUEUE_POLL_INTERVAL")
    queue_shutdown_timeout: float = Field(default=30.0, validation_alias="QUEUE_SHUTDOWN_TIMEOUT")
    queue_job_ttl: int = Field(default=86400 * 7, validation_alias="QUEUE_JOB_TTL")
    queue_job_timeout: float | None = Field(default=None, validation_alias="QUEUE_JOB_TIMEOUT")
    # Live workers refresh their claims this often; stalled recovery needs a longer cutoff
    queue_heartbeat_interval: float = Field(
        default=30.0, validation_alias="QUEUE_HEARTBEAT_INTERVAL"
    )
    # Run queue workers inside the API process (otherwise use `engageiq worker`)
    api_run_workers: bool = Field(default=False, validation_alias="API_RUN_WORKERS")

    # Recurring jobs
    enable_scheduler: bool = Field(default=True, validation_alias="ENABLE_SCHEDULER")
    scheduler_check_interval: float = Field(
        default=60.0, validation_alias="SCHEDULER_CHECK_INTERVAL"
    )
    scheduler_leader_election: bool = Field(
        default=True, validation_alias="SCHEDULER_LEADER_ELECTION"
    )

    # Observability
    enable_metrics: bool = Field(default=True, validation_alias="ENABLE_METRICS")


settings = Settings()
