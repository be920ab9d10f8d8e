"""
Shared utilities and models for the vote pipeline.

This package contains common code used across all services:
- Data models (VoteMessage, shard keys, snapshots, enums)
- Validation functions
- Redis and RabbitMQ naming constants
"""

from .models import (
    VoteMessage,
    VoteOutcome,
    ClaimResult,
    InvalidVoteError,
    ShardKey,
    ShardRecord,
    Candidate,
    CandidateTally,
    AggregationSnapshot,
    validate_id,
    get_current_timestamp,
    get_redis_key,
    get_queue_name,
    get_routing_key,
    DEFAULT_SHARD_COUNT,
    MAX_ID_LENGTH,
    SNAPSHOT_CACHE_CONTROL,
    REDIS_KEYS,
    RABBITMQ_CONFIG,
)

__all__ = [
    'VoteMessage',
    'VoteOutcome',
    'ClaimResult',
    'InvalidVoteError',
    'ShardKey',
    'ShardRecord',
    'Candidate',
    'CandidateTally',
    'AggregationSnapshot',
    'validate_id',
    'get_current_timestamp',
    'get_redis_key',
    'get_queue_name',
    'get_routing_key',
    'DEFAULT_SHARD_COUNT',
    'MAX_ID_LENGTH',
    'SNAPSHOT_CACHE_CONTROL',
    'REDIS_KEYS',
    'RABBITMQ_CONFIG',
]
