"""Configuration management for the vote consumer service."""

import os
from dotenv import load_dotenv

from ..shared.models import RABBITMQ_CONFIG, get_queue_name, get_routing_key

load_dotenv()


class Config:
    """Configuration class for the vote consumer."""

    # RabbitMQ Configuration
    RABBITMQ_HOST = os.getenv('RABBITMQ_HOST', 'localhost')
    RABBITMQ_PORT = int(os.getenv('RABBITMQ_PORT', '5672'))
    RABBITMQ_USER = os.getenv('RABBITMQ_USER', 'guest')
    RABBITMQ_PASSWORD = os.getenv('RABBITMQ_PASSWORD', 'guest')
    RABBITMQ_VHOST = os.getenv('RABBITMQ_VHOST', '/')
    RABBITMQ_PREFETCH_COUNT = int(os.getenv('RABBITMQ_PREFETCH_COUNT', '100'))

    # Queue names
    INGESTION_EXCHANGE = os.getenv('INGESTION_EXCHANGE', RABBITMQ_CONFIG['exchange'])
    INGESTION_QUEUE = os.getenv('INGESTION_QUEUE', get_queue_name('ingestion'))
    INGESTION_ROUTING_KEY = os.getenv('INGESTION_ROUTING_KEY', get_routing_key('ingestion'))
    DEAD_LETTER_EXCHANGE = os.getenv('DEAD_LETTER_EXCHANGE', RABBITMQ_CONFIG['dead_letter_exchange'])
    DEAD_LETTER_QUEUE = os.getenv('DEAD_LETTER_QUEUE', get_queue_name('dead_letter'))

    # Storage backend: memory, redis or postgres
    STORAGE_BACKEND = os.getenv('STORAGE_BACKEND', 'redis')
    SHARD_COUNT = int(os.getenv('SHARD_COUNT', '10'))
    STORAGE_TIMEOUT_SECONDS = float(os.getenv('STORAGE_TIMEOUT_SECONDS', '5.0'))

    # Redis Configuration
    REDIS_HOST = os.getenv('REDIS_HOST', 'localhost')
    REDIS_PORT = int(os.getenv('REDIS_PORT', '6379'))
    REDIS_DB = int(os.getenv('REDIS_DB', '0'))
    REDIS_PASSWORD = os.getenv('REDIS_PASSWORD', None)
    REDIS_MAX_CONNECTIONS = int(os.getenv('REDIS_MAX_CONNECTIONS', '50'))

    # PostgreSQL Configuration
    POSTGRES_HOST = os.getenv('POSTGRES_HOST', 'localhost')
    POSTGRES_PORT = int(os.getenv('POSTGRES_PORT', '5432'))
    POSTGRES_DB = os.getenv('POSTGRES_DB', 'election_db')
    POSTGRES_USER = os.getenv('POSTGRES_USER', 'postgres')
    POSTGRES_PASSWORD = os.getenv('POSTGRES_PASSWORD', 'postgres')
    POSTGRES_MIN_POOL_SIZE = int(os.getenv('POSTGRES_MIN_POOL_SIZE', '2'))
    POSTGRES_MAX_POOL_SIZE = int(os.getenv('POSTGRES_MAX_POOL_SIZE', '10'))

    # Prometheus Metrics
    METRICS_PORT = int(os.getenv('METRICS_PORT', '8001'))

    # Batching Configuration
    BATCH_SIZE = int(os.getenv('BATCH_SIZE', '25'))
    BATCH_TIMEOUT_SECONDS = float(os.getenv('BATCH_TIMEOUT_SECONDS', '1.0'))
    MAX_CONCURRENCY = int(os.getenv('MAX_CONCURRENCY', '25'))
    WORKER_ID = os.getenv('WORKER_ID', 'consumer-1')

    # Retry Configuration
    MAX_RETRIES = int(os.getenv('MAX_RETRIES', '5'))

    # Logging Configuration
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    @classmethod
    def get_rabbitmq_url(cls):
        """Get RabbitMQ connection URL."""
        return f"amqp://{cls.RABBITMQ_USER}:{cls.RABBITMQ_PASSWORD}@{cls.RABBITMQ_HOST}:{cls.RABBITMQ_PORT}/{cls.RABBITMQ_VHOST.lstrip('/')}"

    @classmethod
    def get_postgres_dsn(cls):
        """Get PostgreSQL connection DSN."""
        return f"host={cls.POSTGRES_HOST} port={cls.POSTGRES_PORT} dbname={cls.POSTGRES_DB} user={cls.POSTGRES_USER} password={cls.POSTGRES_PASSWORD}"


config = Config()
