"""
Configuration management for the customer duplicate-detection worker.

Uses pydantic-settings for type-safe configuration with environment variable support.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    user: str = "customers"
    password: str = ""  # Required: Set POSTGRES_PASSWORD in .env
    host: str = "localhost"
    port: int = 5432
    db: str = "customers"

    @property
    def url(self) -> str:
        """Construct database URL."""
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.db}"


class RabbitMQSettings(BaseSettings):
    """Broker connection and queue settings."""

    model_config = SettingsConfigDict(
        env_prefix="RABBITMQ_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 5672
    vhost: str = "/"
    username: str = "guest"
    password: str = "guest"
    heartbeat: int = 60  # seconds
    blocked_connection_timeout: float = 300.0  # seconds

    # Initial connection budget
    connect_attempts: int = 10
    connect_retry_delay: float = 5.0  # seconds, fixed between attempts

    # Queues
    inbound_queue: str = "EventosCliente"
    outbound_queue: str = "SuspeitosDuplicidadeCliente"
    dead_letter_queue: str = "EventosCliente.dead-letter"

    prefetch_count: int = 1
    max_redeliveries: int = 0  # 0 = requeue forever

    @field_validator("prefetch_count")
    @classmethod
    def single_in_flight(cls, v):
        """Only one unacknowledged message per consumer is supported."""
        if v != 1:
            raise ValueError("prefetch_count must be 1")
        return v


class ElasticsearchSettings(BaseSettings):
    """Search backend settings."""

    model_config = SettingsConfigDict(
        env_prefix="ELASTICSEARCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    url: str = "http://localhost:9200"
    index: str = "customers"
    username: Optional[str] = None
    password: Optional[str] = None
    verify_certs: bool = True
    request_timeout: Optional[float] = None  # None = transport default


class WorkerSettings(BaseSettings):
    """Duplicate analysis settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    # Hits must score strictly above this to become suspicions
    score_threshold: float = 4.0

    # Publish downstream events only after the suspicions are committed
    publish_after_commit: bool = False

    # Skip (original, suspect) pairs that are already persisted
    skip_existing_suspicions: bool = False


class Settings(BaseSettings):
    """Main settings class that combines all settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    elasticsearch: ElasticsearchSettings = Field(default_factory=ElasticsearchSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


# Convenience function for quick access
settings = get_settings()
