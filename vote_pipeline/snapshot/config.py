"""
Configuration module for the snapshot builder service.
"""
import os
from dotenv import load_dotenv

from ..shared.models import get_redis_key

load_dotenv()


class Config:
    """Application configuration."""

    # Storage backend: memory, redis or postgres
    STORAGE_BACKEND = os.getenv('STORAGE_BACKEND', 'redis')
    SHARD_COUNT = int(os.getenv('SHARD_COUNT', '10'))

    # Redis Configuration
    REDIS_HOST = os.getenv('REDIS_HOST', 'localhost')
    REDIS_PORT = int(os.getenv('REDIS_PORT', '6379'))
    REDIS_DB = int(os.getenv('REDIS_DB', '0'))
    REDIS_PASSWORD = os.getenv('REDIS_PASSWORD', None)
    REDIS_MAX_CONNECTIONS = int(os.getenv('REDIS_MAX_CONNECTIONS', '10'))

    # PostgreSQL Configuration
    POSTGRES_HOST = os.getenv('POSTGRES_HOST', 'localhost')
    POSTGRES_PORT = int(os.getenv('POSTGRES_PORT', '5432'))
    POSTGRES_DB = os.getenv('POSTGRES_DB', 'election_db')
    POSTGRES_USER = os.getenv('POSTGRES_USER', 'postgres')
    POSTGRES_PASSWORD = os.getenv('POSTGRES_PASSWORD', 'postgres')
    POSTGRES_MIN_POOL_SIZE = int(os.getenv('POSTGRES_MIN_POOL_SIZE', '1'))
    POSTGRES_MAX_POOL_SIZE = int(os.getenv('POSTGRES_MAX_POOL_SIZE', '4'))

    # Snapshot schedule, between 5 and 60 seconds
    SNAPSHOT_INTERVAL_SECONDS = float(os.getenv('SNAPSHOT_INTERVAL_SECONDS', '10'))

    # Publish target: memory, redis or s3
    SNAPSHOT_TARGET = os.getenv('SNAPSHOT_TARGET', 'redis')
    SNAPSHOT_REDIS_KEY = os.getenv('SNAPSHOT_REDIS_KEY', get_redis_key('snapshot'))
    SNAPSHOT_BUCKET = os.getenv('SNAPSHOT_BUCKET', '')
    SNAPSHOT_KEY = os.getenv('SNAPSHOT_KEY', 'candidates.json')

    # Prometheus Configuration
    PROMETHEUS_PORT = int(os.getenv('PROMETHEUS_PORT', '8002'))

    # Logging Configuration
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    @classmethod
    def get_postgres_dsn(cls):
        """Get PostgreSQL connection DSN."""
        return f"host={cls.POSTGRES_HOST} port={cls.POSTGRES_PORT} dbname={cls.POSTGRES_DB} user={cls.POSTGRES_USER} password={cls.POSTGRES_PASSWORD}"


config = Config()
