"""Redis storage backend for the vote ledger, shard counters and candidates."""

import json
import logging
from typing import AsyncIterator, Dict, List, Optional, Set

import redis.asyncio as redis
from redis.exceptions import BusyLoadingError, OutOfMemoryError, ReadOnlyError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..shared.models import (
    Candidate,
    ClaimResult,
    DEFAULT_SHARD_COUNT,
    ShardKey,
    ShardRecord,
    get_current_timestamp,
    get_redis_key,
)
from .base import CandidateRepository, StorageUnavailable, VoteStore

logger = logging.getLogger(__name__)

# KEYS[1] voter key, KEYS[2] shard hash, KEYS[3] shard registry set
# ARGV[1] candidate id, ARGV[2] shard key, ARGV[3] claim timestamp
CLAIM_AND_INCREMENT_SCRIPT = """
if not redis.call('SET', KEYS[1], ARGV[3], 'NX') then
    return 0
end
redis.call('HINCRBY', KEYS[2], 'votes', 1)
redis.call('HSET', KEYS[2], 'candidate_id', ARGV[1])
redis.call('SADD', KEYS[3], ARGV[2])
return 1
"""

# Errors a later retry can outlive
TRANSIENT_ERRORS = (
    RedisConnectionError,
    RedisTimeoutError,
    OutOfMemoryError,
    ReadOnlyError,
    BusyLoadingError,
)


class RedisVoteStore(VoteStore):
    """
    Vote store backed by Redis.

    The claim and the shard increment run inside one Lua script, which Redis
    executes atomically. All keys touched by a vote must live on the same
    node, so this backend targets a single primary (optionally behind
    Sentinel), not Redis Cluster.
    """

    def __init__(
        self,
        client: redis.Redis,
        shard_count: int = DEFAULT_SHARD_COUNT,
        scan_batch_size: int = 500
    ):
        """
        Initialize the store.

        Args:
            client: Async Redis client created with ``decode_responses=True``
            shard_count: Number of shards per candidate
            scan_batch_size: Shard keys fetched per pipeline during a scan
        """
        super().__init__(shard_count)
        self.client = client
        self.scan_batch_size = scan_batch_size
        self._claim_script = client.register_script(CLAIM_AND_INCREMENT_SCRIPT)

    async def try_claim(self, voter_id: str, shard: ShardKey) -> ClaimResult:
        try:
            claimed = await self._claim_script(
                keys=[
                    get_redis_key('voter', voter_id),
                    get_redis_key('vote_shard', shard.key),
                    get_redis_key('shard_registry'),
                ],
                args=[shard.candidate_id, shard.key, get_current_timestamp()],
            )
        except TRANSIENT_ERRORS as e:
            logger.error(f"Redis error claiming voter {voter_id}: {e}")
            raise StorageUnavailable(f"Redis unavailable: {e}") from e

        if int(claimed) == 1:
            logger.debug(f"Voter {voter_id} claimed, incremented {shard.key}")
            return ClaimResult.CLAIMED
        return ClaimResult.ALREADY_CLAIMED

    async def increment(self, candidate_id: str, shard_index: int, by: int = 1) -> int:
        if by < 1:
            raise ValueError("increment must be positive")
        shard = self.shard_key(candidate_id, shard_index)
        shard_hash = get_redis_key('vote_shard', shard.key)

        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hincrby(shard_hash, 'votes', by)
                pipe.hset(shard_hash, 'candidate_id', candidate_id)
                pipe.sadd(get_redis_key('shard_registry'), shard.key)
                count, _, _ = await pipe.execute()
        except TRANSIENT_ERRORS as e:
            logger.error(f"Redis error incrementing {shard.key}: {e}")
            raise StorageUnavailable(f"Redis unavailable: {e}") from e

        return int(count)

    async def read_shard(self, candidate_id: str, shard_index: int) -> int:
        shard = self.shard_key(candidate_id, shard_index)
        try:
            count = await self.client.hget(get_redis_key('vote_shard', shard.key), 'votes')
        except TRANSIENT_ERRORS as e:
            logger.error(f"Redis error reading {shard.key}: {e}")
            raise StorageUnavailable(f"Redis unavailable: {e}") from e
        return int(count) if count else 0

    async def scan_all(self) -> AsyncIterator[ShardRecord]:
        registry = get_redis_key('shard_registry')
        # SSCAN may return a member more than once
        seen: Set[str] = set()
        batch: List[str] = []

        try:
            async for shard_key in self.client.sscan_iter(registry, count=self.scan_batch_size):
                if shard_key in seen:
                    continue
                seen.add(shard_key)
                batch.append(shard_key)

                if len(batch) >= self.scan_batch_size:
                    for record in await self._load_shards(batch):
                        yield record
                    batch = []

            if batch:
                for record in await self._load_shards(batch):
                    yield record
        except TRANSIENT_ERRORS as e:
            logger.error(f"Redis error scanning shards: {e}")
            raise StorageUnavailable(f"Redis unavailable: {e}") from e

    async def _load_shards(self, shard_keys: List[str]) -> List[ShardRecord]:
        """Fetch a batch of shard hashes in one pipeline round trip."""
        async with self.client.pipeline(transaction=False) as pipe:
            for shard_key in shard_keys:
                pipe.hgetall(get_redis_key('vote_shard', shard_key))
            results = await pipe.execute()

        records = []
        for shard_key, data in zip(shard_keys, results):
            if not data:
                continue
            candidate_id = data.get('candidate_id') or ShardKey.parse(shard_key).candidate_id
            records.append(ShardRecord(
                shard_key=shard_key,
                count=int(data.get('votes', 0)),
                candidate_id=candidate_id,
            ))
        return records

    async def close(self) -> None:
        try:
            await self.client.aclose()
            logger.info("Redis connection pool closed")
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")


class RedisCandidateRepository(CandidateRepository):
    """Candidates stored as JSON values in one Redis hash."""

    def __init__(self, client: redis.Redis):
        self.client = client

    async def list_candidates(self) -> List[Candidate]:
        try:
            raw: Dict[str, str] = await self.client.hgetall(get_redis_key('candidates'))
        except TRANSIENT_ERRORS as e:
            logger.error(f"Redis error listing candidates: {e}")
            raise StorageUnavailable(f"Redis unavailable: {e}") from e
        return [Candidate.from_dict(json.loads(value)) for value in raw.values()]

    async def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        try:
            value = await self.client.hget(get_redis_key('candidates'), candidate_id)
        except TRANSIENT_ERRORS as e:
            logger.error(f"Redis error reading candidate {candidate_id}: {e}")
            raise StorageUnavailable(f"Redis unavailable: {e}") from e
        return Candidate.from_dict(json.loads(value)) if value else None

    async def put_candidate(self, candidate: Candidate) -> None:
        try:
            await self.client.hset(
                get_redis_key('candidates'),
                candidate.candidate_id,
                json.dumps(candidate.to_dict())
            )
        except TRANSIENT_ERRORS as e:
            logger.error(f"Redis error storing candidate {candidate.candidate_id}: {e}")
            raise StorageUnavailable(f"Redis unavailable: {e}") from e
        logger.info(f"Stored candidate {candidate.candidate_id}")


def create_redis_client(config) -> redis.Redis:
    """
    Create an async Redis client from a config object.

    Args:
        config: Object exposing REDIS_HOST, REDIS_PORT, REDIS_DB,
            REDIS_PASSWORD and REDIS_MAX_CONNECTIONS

    Returns:
        redis.Redis: Client with a pooled connection
    """
    pool = redis.ConnectionPool(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        db=config.REDIS_DB,
        password=config.REDIS_PASSWORD,
        max_connections=config.REDIS_MAX_CONNECTIONS,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_keepalive=True,
        health_check_interval=30
    )
    return redis.Redis(connection_pool=pool)
