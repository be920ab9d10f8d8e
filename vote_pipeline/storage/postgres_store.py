"""
PostgreSQL storage backend for the vote ledger, shard counters and candidates.

psycopg2 is blocking, so every call runs in a thread pool executor and the
event loop stays free while PostgreSQL works.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import AsyncIterator, Callable, List, Optional, Tuple

import psycopg2
from psycopg2 import pool

from ..shared.models import (
    Candidate,
    ClaimResult,
    DEFAULT_SHARD_COUNT,
    ShardKey,
    ShardRecord,
)
from .base import CandidateRepository, StorageUnavailable, VoteStore

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS voter_records (
    voter_id    TEXT PRIMARY KEY,
    voted_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS vote_shards (
    shard_key     TEXT PRIMARY KEY,
    candidate_id  TEXT NOT NULL,
    shard_index   INTEGER NOT NULL,
    votes         BIGINT NOT NULL DEFAULT 0 CHECK (votes >= 0)
);

CREATE TABLE IF NOT EXISTS candidates (
    candidate_id  TEXT PRIMARY KEY,
    name          TEXT NOT NULL,
    description   TEXT NOT NULL DEFAULT '',
    image_url     TEXT NOT NULL DEFAULT '',
    created_at    TEXT,
    updated_at    TEXT
);
"""

CLAIM_VOTER_SQL = """
INSERT INTO voter_records (voter_id)
VALUES (%s)
ON CONFLICT (voter_id) DO NOTHING
RETURNING voter_id
"""

INCREMENT_SHARD_SQL = """
INSERT INTO vote_shards (shard_key, candidate_id, shard_index, votes)
VALUES (%s, %s, %s, %s)
ON CONFLICT (shard_key)
DO UPDATE SET votes = vote_shards.votes + EXCLUDED.votes
RETURNING votes
"""

# Errors where the transaction may or may not have applied and a retry is safe
TRANSIENT_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError, pool.PoolError)


def _transient(operation: str, e: Exception) -> StorageUnavailable:
    logger.error(f"Database error during {operation}: {e}")
    return StorageUnavailable(f"{operation} failed: {e}")


class PostgresDatabase:
    """Threaded psycopg2 connection pool shared by the repositories."""

    def __init__(self, dsn: str, min_connections: int = 2, max_connections: int = 10,
                 executor: Optional[ThreadPoolExecutor] = None):
        """
        Create the connection pool.

        Args:
            dsn: libpq connection string
            min_connections: Connections opened up front
            max_connections: Upper bound on pooled connections
            executor: Thread pool running blocking calls (one is created if omitted)
        """
        try:
            self.connection_pool = pool.ThreadedConnectionPool(
                min_connections,
                max_connections,
                dsn,
                connect_timeout=10
            )
        except psycopg2.Error as e:
            raise _transient("connection pool creation", e) from e

        self.executor = executor or ThreadPoolExecutor(max_workers=max_connections)
        logger.info("PostgreSQL connection pool created successfully")

    @contextmanager
    def get_connection(self):
        """
        Context manager for pooled connections.

        Yields:
            Connection object from the pool.
        """
        connection = self.connection_pool.getconn()
        try:
            yield connection
        finally:
            self.connection_pool.putconn(connection)

    async def run(self, func: Callable, *args):
        """Run a blocking function in the executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, func, *args)

    def ensure_schema(self) -> None:
        """Create tables if they do not exist."""
        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(SCHEMA_SQL)
            conn.commit()
        logger.info("Database schema ensured")

    def close(self) -> None:
        """Close all connections in the pool."""
        if self.connection_pool:
            self.connection_pool.closeall()
            logger.info("Database connection pool closed")
        self.executor.shutdown(wait=True)


class PostgresVoteStore(VoteStore):
    """
    Vote store backed by PostgreSQL.

    The ledger insert and the shard upsert share one transaction. Two claims
    for the same voter serialize on the primary key; the loser's insert
    returns no row and its transaction is rolled back before any increment.
    """

    def __init__(self, database: PostgresDatabase, shard_count: int = DEFAULT_SHARD_COUNT,
                 scan_page_size: int = 1000):
        super().__init__(shard_count)
        self.database = database
        self.scan_page_size = scan_page_size

    def _try_claim_sync(self, voter_id: str, shard: ShardKey) -> ClaimResult:
        with self.database.get_connection() as conn:
            try:
                with conn.cursor() as cursor:
                    cursor.execute(CLAIM_VOTER_SQL, (voter_id,))
                    if cursor.fetchone() is None:
                        conn.rollback()
                        return ClaimResult.ALREADY_CLAIMED

                    cursor.execute(
                        INCREMENT_SHARD_SQL,
                        (shard.key, shard.candidate_id, shard.shard_index, 1)
                    )
                conn.commit()
                return ClaimResult.CLAIMED
            except Exception:
                if not conn.closed:
                    conn.rollback()
                raise

    async def try_claim(self, voter_id: str, shard: ShardKey) -> ClaimResult:
        try:
            result = await self.database.run(self._try_claim_sync, voter_id, shard)
        except TRANSIENT_ERRORS as e:
            raise _transient(f"claim for voter {voter_id}", e) from e

        if result is ClaimResult.CLAIMED:
            logger.debug(f"Voter {voter_id} claimed, incremented {shard.key}")
        return result

    def _increment_sync(self, shard: ShardKey, by: int) -> int:
        with self.database.get_connection() as conn:
            try:
                with conn.cursor() as cursor:
                    cursor.execute(
                        INCREMENT_SHARD_SQL,
                        (shard.key, shard.candidate_id, shard.shard_index, by)
                    )
                    count = cursor.fetchone()[0]
                conn.commit()
                return count
            except Exception:
                if not conn.closed:
                    conn.rollback()
                raise

    async def increment(self, candidate_id: str, shard_index: int, by: int = 1) -> int:
        if by < 1:
            raise ValueError("increment must be positive")
        shard = self.shard_key(candidate_id, shard_index)
        try:
            return await self.database.run(self._increment_sync, shard, by)
        except TRANSIENT_ERRORS as e:
            raise _transient(f"increment of {shard.key}", e) from e

    def _read_shard_sync(self, shard_key: str) -> int:
        with self.database.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute("SELECT votes FROM vote_shards WHERE shard_key = %s", (shard_key,))
                row = cursor.fetchone()
            conn.rollback()
        return row[0] if row else 0

    async def read_shard(self, candidate_id: str, shard_index: int) -> int:
        shard = self.shard_key(candidate_id, shard_index)
        try:
            return await self.database.run(self._read_shard_sync, shard.key)
        except TRANSIENT_ERRORS as e:
            raise _transient(f"read of {shard.key}", e) from e

    def _scan_page_sync(self, after: str) -> List[Tuple[str, int, str]]:
        with self.database.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    """
                    SELECT shard_key, votes, candidate_id
                    FROM vote_shards
                    WHERE shard_key > %s
                    ORDER BY shard_key
                    LIMIT %s
                    """,
                    (after, self.scan_page_size)
                )
                rows = cursor.fetchall()
            conn.rollback()
        return rows

    async def scan_all(self) -> AsyncIterator[ShardRecord]:
        after = ''
        while True:
            try:
                rows = await self.database.run(self._scan_page_sync, after)
            except TRANSIENT_ERRORS as e:
                raise _transient("shard scan", e) from e

            for shard_key, votes, candidate_id in rows:
                yield ShardRecord(shard_key=shard_key, count=votes, candidate_id=candidate_id)

            if len(rows) < self.scan_page_size:
                return
            after = rows[-1][0]

    async def close(self) -> None:
        self.database.close()


class PostgresCandidateRepository(CandidateRepository):
    """Candidates stored in the ``candidates`` table."""

    COLUMNS = "candidate_id, name, description, image_url, created_at, updated_at"

    def __init__(self, database: PostgresDatabase):
        self.database = database

    @staticmethod
    def _row_to_candidate(row) -> Candidate:
        candidate_id, name, description, image_url, created_at, updated_at = row
        return Candidate(
            candidate_id=candidate_id,
            name=name,
            description=description,
            image_url=image_url,
            created_at=created_at,
            updated_at=updated_at,
        )

    def _fetch_sync(self, query: str, params: tuple) -> list:
        with self.database.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query, params)
                rows = cursor.fetchall()
            conn.rollback()
        return rows

    async def list_candidates(self) -> List[Candidate]:
        try:
            rows = await self.database.run(
                self._fetch_sync, f"SELECT {self.COLUMNS} FROM candidates", ()
            )
        except TRANSIENT_ERRORS as e:
            raise _transient("candidate listing", e) from e
        return [self._row_to_candidate(row) for row in rows]

    async def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        try:
            rows = await self.database.run(
                self._fetch_sync,
                f"SELECT {self.COLUMNS} FROM candidates WHERE candidate_id = %s",
                (candidate_id,)
            )
        except TRANSIENT_ERRORS as e:
            raise _transient(f"read of candidate {candidate_id}", e) from e
        return self._row_to_candidate(rows[0]) if rows else None

    def _put_sync(self, candidate: Candidate) -> None:
        with self.database.get_connection() as conn:
            try:
                with conn.cursor() as cursor:
                    cursor.execute(
                        f"""
                        INSERT INTO candidates ({self.COLUMNS})
                        VALUES (%s, %s, %s, %s, %s, %s)
                        ON CONFLICT (candidate_id) DO UPDATE SET
                            name = EXCLUDED.name,
                            description = EXCLUDED.description,
                            image_url = EXCLUDED.image_url,
                            updated_at = EXCLUDED.updated_at
                        """,
                        (
                            candidate.candidate_id,
                            candidate.name,
                            candidate.description,
                            candidate.image_url,
                            candidate.created_at,
                            candidate.updated_at,
                        )
                    )
                conn.commit()
            except Exception:
                if not conn.closed:
                    conn.rollback()
                raise

    async def put_candidate(self, candidate: Candidate) -> None:
        try:
            await self.database.run(self._put_sync, candidate)
        except TRANSIENT_ERRORS as e:
            raise _transient(f"store of candidate {candidate.candidate_id}", e) from e
        logger.info(f"Stored candidate {candidate.candidate_id}")
