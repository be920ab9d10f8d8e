"""Periodic aggregation of vote shards into published snapshots."""

from .builder import SnapshotBuilder
from .publisher import (
    InMemorySnapshotStore,
    RedisSnapshotStore,
    S3SnapshotStore,
    SnapshotPublishError,
    SnapshotStore,
    create_snapshot_store,
)

__all__ = [
    'SnapshotBuilder',
    'InMemorySnapshotStore',
    'RedisSnapshotStore',
    'S3SnapshotStore',
    'SnapshotPublishError',
    'SnapshotStore',
    'create_snapshot_store',
]
