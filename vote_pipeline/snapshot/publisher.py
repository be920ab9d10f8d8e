"""
Distribution tier for aggregation snapshots.

Every store publishes a snapshot as a single-object replace, so readers see
either the previous generation or the new one, never a mix. Nothing expires
the published object: when a build fails, the last good snapshot keeps
serving reads.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as redis
from botocore.exceptions import BotoCoreError, ClientError
from redis.exceptions import RedisError

from ..shared.models import AggregationSnapshot, SNAPSHOT_CACHE_CONTROL, get_redis_key

logger = logging.getLogger(__name__)


class SnapshotPublishError(Exception):
    """Raised when a snapshot could not be published or loaded."""
    pass


class SnapshotStore(ABC):
    """Where snapshots are published and where readers fetch them from."""

    cache_control = SNAPSHOT_CACHE_CONTROL

    @abstractmethod
    async def publish(self, snapshot: AggregationSnapshot) -> None:
        """Replace the published snapshot."""

    @abstractmethod
    async def load(self) -> Optional[AggregationSnapshot]:
        """Fetch the latest published snapshot, or None if none exists."""


class InMemorySnapshotStore(SnapshotStore):
    """Process-local snapshot store for tests and single-process runs."""

    def __init__(self):
        self.snapshot: Optional[AggregationSnapshot] = None
        self.publish_count = 0

    async def publish(self, snapshot: AggregationSnapshot) -> None:
        self.snapshot = snapshot
        self.publish_count += 1

    async def load(self) -> Optional[AggregationSnapshot]:
        return self.snapshot


class RedisSnapshotStore(SnapshotStore):
    """Snapshot stored as one JSON string under a fixed Redis key."""

    def __init__(self, client: redis.Redis, key: Optional[str] = None):
        self.client = client
        self.key = key or get_redis_key('snapshot')

    async def publish(self, snapshot: AggregationSnapshot) -> None:
        try:
            await self.client.set(self.key, snapshot.to_json())
        except RedisError as e:
            raise SnapshotPublishError(f"Redis publish failed: {e}") from e

    async def load(self) -> Optional[AggregationSnapshot]:
        try:
            raw = await self.client.get(self.key)
        except RedisError as e:
            raise SnapshotPublishError(f"Redis load failed: {e}") from e
        return AggregationSnapshot.from_json(raw) if raw else None


class S3SnapshotStore(SnapshotStore):
    """
    Snapshot stored as one S3 object, typically fronted by a CDN.

    The object carries a short ``Cache-Control`` max-age so CDN and browser
    staleness is bounded without any invalidation calls.
    """

    def __init__(self, s3_client, bucket: str, key: str = 'candidates.json'):
        """
        Initialize the store.

        Args:
            s3_client: boto3 S3 client
            bucket: Destination bucket
            key: Object key holding the snapshot
        """
        self.s3_client = s3_client
        self.bucket = bucket
        self.key = key

    async def _run(self, func, **kwargs):
        # boto3 is blocking
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(**kwargs))

    async def publish(self, snapshot: AggregationSnapshot) -> None:
        try:
            await self._run(
                self.s3_client.put_object,
                Bucket=self.bucket,
                Key=self.key,
                Body=snapshot.to_json().encode('utf-8'),
                ContentType='application/json',
                CacheControl=self.cache_control,
            )
        except (BotoCoreError, ClientError) as e:
            raise SnapshotPublishError(f"S3 publish failed: {e}") from e
        logger.debug(f"Snapshot written to s3://{self.bucket}/{self.key}")

    async def load(self) -> Optional[AggregationSnapshot]:
        try:
            response = await self._run(self.s3_client.get_object, Bucket=self.bucket, Key=self.key)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('NoSuchKey', '404'):
                return None
            raise SnapshotPublishError(f"S3 load failed: {e}") from e
        except BotoCoreError as e:
            raise SnapshotPublishError(f"S3 load failed: {e}") from e

        body = await self._run(response['Body'].read)
        return AggregationSnapshot.from_json(body.decode('utf-8'))


def create_snapshot_store(config, redis_client: Optional[redis.Redis] = None) -> SnapshotStore:
    """
    Build the snapshot store named by ``SNAPSHOT_TARGET`` (memory, redis or s3).

    Args:
        config: Service config object
        redis_client: Client to reuse for the redis target
    """
    target = config.SNAPSHOT_TARGET.lower()

    if target == 'memory':
        return InMemorySnapshotStore()

    if target == 'redis':
        if redis_client is None:
            from ..storage.redis_store import create_redis_client
            redis_client = create_redis_client(config)
        return RedisSnapshotStore(redis_client, config.SNAPSHOT_REDIS_KEY)

    if target == 's3':
        import boto3
        return S3SnapshotStore(boto3.client('s3'), config.SNAPSHOT_BUCKET, config.SNAPSHOT_KEY)

    raise ValueError(f"Unknown SNAPSHOT_TARGET {config.SNAPSHOT_TARGET!r}")
