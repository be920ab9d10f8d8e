"""
Pluggable storage backends for the vote pipeline.

Backends are selected by ``STORAGE_BACKEND`` (memory, redis or postgres) on
the service's config object.
"""

import logging
from typing import Tuple

from .base import (
    CandidateRepository,
    CounterStore,
    IdempotencyLedger,
    StorageError,
    StorageUnavailable,
    VoteStore,
)
from .memory import InMemoryCandidateRepository, InMemoryVoteStore

logger = logging.getLogger(__name__)

BACKENDS = ('memory', 'redis', 'postgres')


def create_storage(config) -> Tuple[VoteStore, CandidateRepository]:
    """
    Build the vote store and candidate repository named by the config.

    Args:
        config: Object exposing STORAGE_BACKEND, SHARD_COUNT and the
            connection settings of the chosen backend

    Returns:
        tuple: (vote_store, candidate_repository) sharing one connection pool
    """
    backend = config.STORAGE_BACKEND.lower()

    if backend == 'memory':
        logger.warning("Using in-memory storage; votes are lost on restart")
        return InMemoryVoteStore(config.SHARD_COUNT), InMemoryCandidateRepository()

    if backend == 'redis':
        from .redis_store import RedisCandidateRepository, RedisVoteStore, create_redis_client

        client = create_redis_client(config)
        logger.info(f"Using Redis storage at {config.REDIS_HOST}:{config.REDIS_PORT}")
        return RedisVoteStore(client, config.SHARD_COUNT), RedisCandidateRepository(client)

    if backend == 'postgres':
        from .postgres_store import (
            PostgresCandidateRepository,
            PostgresDatabase,
            PostgresVoteStore,
        )

        database = PostgresDatabase(
            config.get_postgres_dsn(),
            config.POSTGRES_MIN_POOL_SIZE,
            config.POSTGRES_MAX_POOL_SIZE
        )
        database.ensure_schema()
        logger.info(f"Using PostgreSQL storage at {config.POSTGRES_HOST}:{config.POSTGRES_PORT}")
        return PostgresVoteStore(database, config.SHARD_COUNT), PostgresCandidateRepository(database)

    raise ValueError(f"Unknown STORAGE_BACKEND {config.STORAGE_BACKEND!r}; expected one of {BACKENDS}")


__all__ = [
    'CandidateRepository',
    'CounterStore',
    'IdempotencyLedger',
    'StorageError',
    'StorageUnavailable',
    'VoteStore',
    'InMemoryCandidateRepository',
    'InMemoryVoteStore',
    'create_storage',
    'BACKENDS',
]
