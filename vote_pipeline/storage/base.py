"""
Storage interfaces for the vote write path.

A backend implements both halves of the write path:

- CounterStore: per-candidate vote counters split across shard keys
- IdempotencyLedger: the set of voters who have already voted

The ledger claim and the shard increment must commit together, so the only
write a vote performs is ``try_claim(voter_id, shard)``.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional

from ..shared.models import (
    Candidate,
    ClaimResult,
    DEFAULT_SHARD_COUNT,
    ShardKey,
    ShardRecord,
)


class StorageError(Exception):
    """Base exception for storage backend errors."""
    pass


class StorageUnavailable(StorageError):
    """Storage could not be reached or timed out; the operation may be retried."""
    pass


class CounterStore(ABC):
    """Sharded vote counters."""

    def __init__(self, shard_count: int = DEFAULT_SHARD_COUNT):
        if shard_count < 1:
            raise ValueError("shard_count must be at least 1")
        self.shard_count = shard_count

    def shard_key(self, candidate_id: str, shard_index: int) -> ShardKey:
        """Build a shard key, rejecting indexes outside [0, shard_count)."""
        if not 0 <= shard_index < self.shard_count:
            raise ValueError(
                f"shard_index {shard_index} out of range [0, {self.shard_count})"
            )
        return ShardKey(candidate_id, shard_index)

    @abstractmethod
    async def increment(self, candidate_id: str, shard_index: int, by: int = 1) -> int:
        """
        Atomically add ``by`` to one shard.

        Returns:
            int: The shard count after the increment
        """

    @abstractmethod
    async def read_shard(self, candidate_id: str, shard_index: int) -> int:
        """Read one shard's count (0 if the shard was never written)."""

    @abstractmethod
    def scan_all(self) -> AsyncIterator[ShardRecord]:
        """
        Stream every shard record.

        Only the snapshot builder calls this; it is a full scan.
        """

    async def read_total(self, candidate_id: str) -> int:
        """Sum every shard of one candidate."""
        total = 0
        for shard_index in range(self.shard_count):
            total += await self.read_shard(candidate_id, shard_index)
        return total


class IdempotencyLedger(ABC):
    """Durable set of voters who have already voted."""

    @abstractmethod
    async def try_claim(self, voter_id: str, shard: ShardKey) -> ClaimResult:
        """
        Claim ``voter_id`` and increment ``shard`` by one in a single commit.

        If the voter was already claimed nothing is written at all.
        """


class VoteStore(CounterStore, IdempotencyLedger):
    """A backend providing the ledger and the counters in one transaction domain."""

    async def close(self) -> None:
        """Release connections held by the backend."""


class CandidateRepository(ABC):
    """Read access to candidate metadata, plus a put used for seeding."""

    @abstractmethod
    async def list_candidates(self) -> List[Candidate]:
        """Return every candidate."""

    @abstractmethod
    async def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        """Return one candidate, or None."""

    @abstractmethod
    async def put_candidate(self, candidate: Candidate) -> None:
        """Create or replace a candidate."""
