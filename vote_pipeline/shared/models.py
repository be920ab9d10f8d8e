"""
Shared data models and utilities for the vote pipeline.

This module contains:
- VoteMessage: Data structure for messages passed through RabbitMQ
- Shard keys and shard records for the sharded vote counters
- Candidate and snapshot models for the read path
- Common data validation functions
"""

import json
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Tuple
from enum import Enum

# Number of counters each candidate's votes are spread across
DEFAULT_SHARD_COUNT = 10

# Longest voter or candidate id accepted anywhere in the pipeline
MAX_ID_LENGTH = 128

# Cache-Control directive attached to every published snapshot
SNAPSHOT_CACHE_CONTROL = 'public, max-age=5'


class InvalidVoteError(ValueError):
    """Raised when a vote is missing or has a malformed voter/candidate id."""


class VoteOutcome(str, Enum):
    """Result of submitting a vote to the coordinator."""
    ACCEPTED = "accepted"
    ALREADY_VOTED = "already_voted"
    TRANSIENT_FAILURE = "transient_failure"


class ClaimResult(str, Enum):
    """Result of an idempotency ledger claim."""
    CLAIMED = "claimed"
    ALREADY_CLAIMED = "already_claimed"


@dataclass
class VoteMessage:
    """
    Data structure for vote messages passed through RabbitMQ.

    Attributes:
        voter_id: Authenticated voter identity (opaque string)
        candidate_id: Candidate the vote is cast for
        submitted_at: ISO format timestamp when the vote was received
    """
    voter_id: str
    candidate_id: str
    submitted_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire format."""
        data = {'voterId': self.voter_id, 'candidateId': self.candidate_id}
        if self.submitted_at:
            data['submittedAt'] = self.submitted_at
        return data

    def to_json(self) -> str:
        """Convert to JSON string for message queue."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VoteMessage':
        """
        Create VoteMessage from a decoded message body.

        Raises:
            InvalidVoteError: If the body is not an object or an id is missing
        """
        if not isinstance(data, dict):
            raise InvalidVoteError("Message body must be a JSON object")

        voter_id = validate_id(data.get('voterId'), 'voterId')
        candidate_id = validate_id(data.get('candidateId'), 'candidateId')
        return cls(
            voter_id=voter_id,
            candidate_id=candidate_id,
            submitted_at=data.get('submittedAt')
        )

    @classmethod
    def from_json(cls, json_str: str) -> 'VoteMessage':
        """Create VoteMessage from JSON string."""
        return cls.from_dict(json.loads(json_str))


def validate_id(value: Any, name: str) -> str:
    """
    Validate a voter or candidate id.

    Args:
        value: Raw value to validate
        name: Field name used in the error message

    Returns:
        str: The id with surrounding whitespace removed

    Raises:
        InvalidVoteError: If the value is not a non-empty string of sane length
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidVoteError(f"{name} is required")

    value = value.strip()
    if len(value) > MAX_ID_LENGTH:
        raise InvalidVoteError(f"{name} must be at most {MAX_ID_LENGTH} characters")
    return value


@dataclass(frozen=True)
class ShardKey:
    """Address of one vote counter: a candidate and one of its shard indexes."""
    candidate_id: str
    shard_index: int

    @property
    def key(self) -> str:
        """Storage key, e.g. ``candA#SHARD_3``."""
        return f"{self.candidate_id}#SHARD_{self.shard_index}"

    @classmethod
    def parse(cls, shard_key: str) -> 'ShardKey':
        """Parse a ``{candidate_id}#SHARD_{index}`` storage key."""
        candidate_id, sep, index = shard_key.rpartition('#SHARD_')
        if not sep or not index.isdigit():
            raise ValueError(f"Not a shard key: {shard_key!r}")
        return cls(candidate_id=candidate_id, shard_index=int(index))


@dataclass(frozen=True)
class ShardRecord:
    """One row yielded by a full shard scan."""
    shard_key: str
    count: int
    candidate_id: str


@dataclass(frozen=True)
class Candidate:
    """Candidate metadata, maintained by the admin path."""
    candidate_id: str
    name: str
    description: str = ''
    image_url: str = ''
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Candidate':
        return cls(
            candidate_id=data['candidate_id'],
            name=data.get('name', ''),
            description=data.get('description') or '',
            image_url=data.get('image_url') or '',
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at'),
        )


@dataclass(frozen=True)
class CandidateTally:
    """A candidate joined with its summed vote count."""
    candidate_id: str
    name: str
    description: str
    image_url: str
    votes: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'candidateId': self.candidate_id,
            'name': self.name,
            'description': self.description,
            'imageUrl': self.image_url,
            'votes': self.votes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CandidateTally':
        return cls(
            candidate_id=data['candidateId'],
            name=data.get('name', ''),
            description=data.get('description', ''),
            image_url=data.get('imageUrl', ''),
            votes=int(data.get('votes', 0)),
        )


@dataclass(frozen=True)
class AggregationSnapshot:
    """
    Immutable, fully aggregated view of all candidate totals.

    A snapshot is never patched: the next generation replaces it wholesale.
    """
    candidates: Tuple[CandidateTally, ...]
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_votes(self) -> int:
        return sum(tally.votes for tally in self.candidates)

    def find(self, candidate_id: str) -> Optional[CandidateTally]:
        """Return the tally for one candidate, or None."""
        for tally in self.candidates:
            if tally.candidate_id == candidate_id:
                return tally
        return None

    def totals(self) -> Dict[str, int]:
        """Map of candidate id to vote count."""
        return {tally.candidate_id: tally.votes for tally in self.candidates}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the published wire format."""
        return {
            'candidates': [tally.to_dict() for tally in self.candidates],
            'lastUpdated': self.generated_at.isoformat(),
            'timestamp': int(self.generated_at.timestamp() * 1000),
            'totalVotes': self.total_votes,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AggregationSnapshot':
        return cls(
            candidates=tuple(CandidateTally.from_dict(item) for item in data.get('candidates', [])),
            generated_at=datetime.fromisoformat(data['lastUpdated']),
        )

    @classmethod
    def from_json(cls, json_str: str) -> 'AggregationSnapshot':
        return cls.from_dict(json.loads(json_str))


def get_current_timestamp() -> str:
    """
    Get current UTC timestamp in ISO format.

    Returns:
        str: ISO format timestamp
    """
    return datetime.now(timezone.utc).isoformat()


# Redis key layout for the redis storage backend
REDIS_KEYS = {
    'voter': 'voter:{}',                # STRING marking a voter who has voted
    'vote_shard': 'vote_shard:{}',      # HASH {votes, candidate_id} per shard key
    'shard_registry': 'vote_shards',    # SET of every shard key ever incremented
    'candidates': 'candidates',         # HASH candidate_id -> candidate JSON
    'snapshot': 'results:snapshot',     # STRING latest published snapshot JSON
}


def get_redis_key(key_type: str, *args) -> str:
    """
    Get formatted Redis key.

    Args:
        key_type: Type of key from REDIS_KEYS
        *args: Arguments to format into key

    Returns:
        str: Formatted Redis key
    """
    key_template = REDIS_KEYS.get(key_type)
    if key_template and '{}' in key_template:
        return key_template.format(*args)
    return key_template


# RabbitMQ exchange and queue names
RABBITMQ_CONFIG = {
    'exchange': 'votes.exchange',
    'dead_letter_exchange': 'votes.dlx',
    'queues': {
        'ingestion': 'votes.ingestion',
        'dead_letter': 'votes.dead_letter',
    },
    'routing_keys': {
        'ingestion': 'vote.submitted',
    },
    'ingestion_max_length': 1000000,
}


def get_queue_name(queue_type: str) -> str:
    """
    Get RabbitMQ queue name.

    Args:
        queue_type: Type of queue (ingestion, dead_letter)

    Returns:
        str: Queue name
    """
    return RABBITMQ_CONFIG['queues'].get(queue_type, '')


def get_routing_key(queue_type: str) -> str:
    """
    Get RabbitMQ routing key.

    Args:
        queue_type: Type of queue (ingestion)

    Returns:
        str: Routing key
    """
    return RABBITMQ_CONFIG['routing_keys'].get(queue_type, '')


def get_ingestion_queue_arguments(dead_letter_exchange: str) -> Dict[str, Any]:
    """
    Arguments for declaring the ingestion queue.

    Publishers and consumers both declare the queue, and RabbitMQ refuses a
    redeclaration whose arguments differ, so both sides build them here.

    Args:
        dead_letter_exchange: Exchange receiving rejected messages

    Returns:
        dict: Queue arguments
    """
    return {
        'x-dead-letter-exchange': dead_letter_exchange,
        'x-max-length': RABBITMQ_CONFIG['ingestion_max_length'],
    }
