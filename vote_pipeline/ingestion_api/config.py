"""Configuration management for the Ingestion API service."""
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..shared.models import RABBITMQ_CONFIG, get_queue_name, get_redis_key, get_routing_key


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Service configuration
    SERVICE_NAME: str = "ingestion-api"
    API_VERSION: str = "v1"
    DEBUG: bool = False

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # "queue" publishes votes to RabbitMQ, "direct" records them synchronously
    INGESTION_MODE: Literal["queue", "direct"] = "queue"

    # RabbitMQ configuration
    RABBITMQ_HOST: str = "rabbitmq"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_EXCHANGE: str = RABBITMQ_CONFIG["exchange"]
    RABBITMQ_ROUTING_KEY: str = get_routing_key("ingestion")
    RABBITMQ_QUEUE: str = get_queue_name("ingestion")
    RABBITMQ_DEAD_LETTER_EXCHANGE: str = RABBITMQ_CONFIG["dead_letter_exchange"]
    RABBITMQ_DEAD_LETTER_QUEUE: str = get_queue_name("dead_letter")
    RABBITMQ_POOL_SIZE: int = 10

    # Storage (direct mode and candidate lookups)
    STORAGE_BACKEND: str = "redis"
    SHARD_COUNT: int = 10
    STORAGE_TIMEOUT_SECONDS: float = 5.0

    # PostgreSQL configuration
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "election_db"
    POSTGRES_USER: str = "election_user"
    POSTGRES_PASSWORD: str = "election_pass"
    POSTGRES_MIN_POOL_SIZE: int = 2
    POSTGRES_MAX_POOL_SIZE: int = 10

    # Redis configuration
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    REDIS_MAX_CONNECTIONS: int = 50

    # Snapshot read path
    SNAPSHOT_TARGET: str = "redis"
    SNAPSHOT_REDIS_KEY: str = get_redis_key("snapshot")
    SNAPSHOT_BUCKET: str = ""
    SNAPSHOT_KEY: str = "candidates.json"
    RESULTS_CACHE_TTL_SECONDS: float = 5.0

    # Rate limiting
    RATE_LIMIT: str = "100000/second"

    # CORS settings
    CORS_ORIGINS: list = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list = ["*"]
    CORS_ALLOW_HEADERS: list = ["*"]

    @property
    def rabbitmq_url(self) -> str:
        """Generate RabbitMQ connection URL."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}/"
        )

    def get_postgres_dsn(self) -> str:
        """Generate PostgreSQL connection DSN."""
        return (
            f"host={self.POSTGRES_HOST} port={self.POSTGRES_PORT} dbname={self.POSTGRES_DB} "
            f"user={self.POSTGRES_USER} password={self.POSTGRES_PASSWORD}"
        )


settings = Settings()
