"""In-memory storage backend for tests and local runs."""

import asyncio
import logging
from typing import AsyncIterator, Dict, List, Optional

from ..shared.models import (
    Candidate,
    ClaimResult,
    DEFAULT_SHARD_COUNT,
    ShardKey,
    ShardRecord,
    get_current_timestamp,
)
from .base import CandidateRepository, VoteStore

logger = logging.getLogger(__name__)


class InMemoryVoteStore(VoteStore):
    """
    Dict-backed vote store.

    Every mutation runs without yielding to the event loop, so each claim
    commits atomically with respect to other coroutines in the process.
    """

    def __init__(self, shard_count: int = DEFAULT_SHARD_COUNT):
        super().__init__(shard_count)
        self.voters: Dict[str, str] = {}
        self.shards: Dict[str, ShardRecord] = {}

    def _add(self, shard: ShardKey, by: int) -> int:
        current = self.shards.get(shard.key)
        count = (current.count if current else 0) + by
        self.shards[shard.key] = ShardRecord(
            shard_key=shard.key,
            count=count,
            candidate_id=shard.candidate_id,
        )
        return count

    async def try_claim(self, voter_id: str, shard: ShardKey) -> ClaimResult:
        # Storage round trip
        await asyncio.sleep(0)

        if voter_id in self.voters:
            return ClaimResult.ALREADY_CLAIMED

        self.voters[voter_id] = get_current_timestamp()
        self._add(shard, 1)
        return ClaimResult.CLAIMED

    async def increment(self, candidate_id: str, shard_index: int, by: int = 1) -> int:
        if by < 1:
            raise ValueError("increment must be positive")
        shard = self.shard_key(candidate_id, shard_index)
        await asyncio.sleep(0)
        return self._add(shard, by)

    async def read_shard(self, candidate_id: str, shard_index: int) -> int:
        shard = self.shard_key(candidate_id, shard_index)
        record = self.shards.get(shard.key)
        return record.count if record else 0

    async def scan_all(self) -> AsyncIterator[ShardRecord]:
        # Copy so concurrent claims do not disturb iteration
        for record in list(self.shards.values()):
            yield record


class InMemoryCandidateRepository(CandidateRepository):
    """Dict-backed candidate repository."""

    def __init__(self, candidates: Optional[List[Candidate]] = None):
        self.candidates: Dict[str, Candidate] = {}
        for candidate in candidates or []:
            self.candidates[candidate.candidate_id] = candidate

    async def list_candidates(self) -> List[Candidate]:
        return list(self.candidates.values())

    async def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        return self.candidates.get(candidate_id)

    async def put_candidate(self, candidate: Candidate) -> None:
        self.candidates[candidate.candidate_id] = candidate
        logger.debug(f"Stored candidate {candidate.candidate_id}")
