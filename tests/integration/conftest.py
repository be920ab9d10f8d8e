"""Pytest fixtures for integration tests.

These fixtures connect to live Redis and PostgreSQL instances (for example
the ones started by ``docker-compose up redis postgres``) and skip the test
when a service is not reachable. Redis tests run against a dedicated
database index which is flushed around every test.
"""

import os
from types import SimpleNamespace

import psycopg2
import pytest
import pytest_asyncio
import redis

from vote_pipeline.storage.postgres_store import (
    PostgresCandidateRepository,
    PostgresDatabase,
    PostgresVoteStore,
)
from vote_pipeline.storage.redis_store import RedisCandidateRepository, RedisVoteStore, create_redis_client

REDIS_TEST_DB = int(os.getenv("REDIS_TEST_DB", "15"))


@pytest.fixture(scope="session")
def redis_settings() -> SimpleNamespace:
    """Connection settings shaped like the services' config objects."""
    return SimpleNamespace(
        REDIS_HOST=os.getenv("REDIS_HOST", "localhost"),
        REDIS_PORT=int(os.getenv("REDIS_PORT", "6379")),
        REDIS_DB=REDIS_TEST_DB,
        REDIS_PASSWORD=os.getenv("REDIS_PASSWORD"),
        REDIS_MAX_CONNECTIONS=20,
    )


@pytest.fixture
def redis_sync(redis_settings):
    """Blocking Redis client for setup and assertions; skips if Redis is down."""
    client = redis.Redis(
        host=redis_settings.REDIS_HOST,
        port=redis_settings.REDIS_PORT,
        db=redis_settings.REDIS_DB,
        password=redis_settings.REDIS_PASSWORD,
        decode_responses=True,
        socket_connect_timeout=2
    )

    try:
        client.ping()
    except redis.ConnectionError:
        pytest.skip("Redis not available")

    client.flushdb()
    yield client
    client.flushdb()
    client.close()


@pytest_asyncio.fixture
async def redis_store(redis_sync, redis_settings):
    client = create_redis_client(redis_settings)
    store = RedisVoteStore(client)
    yield store, RedisCandidateRepository(client)
    await store.close()


@pytest.fixture(scope="session")
def postgres_dsn() -> str:
    return (
        f"host={os.getenv('POSTGRES_HOST', 'localhost')} "
        f"port={os.getenv('POSTGRES_PORT', '5432')} "
        f"dbname={os.getenv('POSTGRES_DB', 'election_db')} "
        f"user={os.getenv('POSTGRES_USER', 'election_user')} "
        f"password={os.getenv('POSTGRES_PASSWORD', 'election_pass')}"
    )


@pytest.fixture
def postgres_database(postgres_dsn):
    """Pooled database with a fresh schema; skips if PostgreSQL is down."""
    try:
        database = PostgresDatabase(postgres_dsn, min_connections=1, max_connections=20)
    except Exception as e:
        pytest.skip(f"PostgreSQL not available: {e}")

    database.ensure_schema()
    with database.get_connection() as conn:
        with conn.cursor() as cursor:
            cursor.execute("TRUNCATE voter_records, vote_shards, candidates")
        conn.commit()

    yield database
    database.close()


@pytest.fixture
def postgres_store(postgres_database):
    return PostgresVoteStore(postgres_database), PostgresCandidateRepository(postgres_database)


@pytest.fixture
def postgres_client(postgres_dsn):
    """Raw psycopg2 cursor for assertions."""
    conn = psycopg2.connect(postgres_dsn)
    conn.autocommit = True
    cursor = conn.cursor()
    yield cursor
    cursor.close()
    conn.close()
