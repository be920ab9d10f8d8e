"""
Vote transaction coordinator.

Turns a (voter, candidate) pair into exactly one of three outcomes:

- ACCEPTED: the voter was claimed and one shard of the candidate incremented
- ALREADY_VOTED: the voter had been claimed before; nothing was written
- TRANSIENT_FAILURE: storage was unreachable or timed out; the caller retries

The shard is picked uniformly at random so that concurrent votes for a
popular candidate land on different counters. Uniqueness comes from the
ledger claim, never from the shard choice.
"""

import asyncio
import logging
import random
from typing import Optional

from prometheus_client import Counter, Histogram

from .shared.models import ClaimResult, DEFAULT_SHARD_COUNT, VoteOutcome, validate_id
from .storage.base import StorageUnavailable, VoteStore

logger = logging.getLogger(__name__)

# Prometheus metrics
vote_outcomes = Counter(
    'coordinator_vote_outcomes_total',
    'Votes submitted to the coordinator by outcome',
    ['outcome']
)

claim_latency = Histogram(
    'coordinator_claim_latency_seconds',
    'Time spent in the atomic claim-and-increment',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)


class VoteCoordinator:
    """Records votes with an atomic ledger claim plus shard increment."""

    def __init__(
        self,
        store: VoteStore,
        shard_count: Optional[int] = None,
        timeout: Optional[float] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize the coordinator.

        Args:
            store: Backend providing the ledger and the shard counters
            shard_count: Shards per candidate (defaults to the store's)
            timeout: Seconds before a storage call counts as a transient failure
            rng: Random source for shard selection
        """
        self.store = store
        self.shard_count = shard_count or store.shard_count or DEFAULT_SHARD_COUNT
        if self.shard_count > store.shard_count:
            raise ValueError(
                f"shard_count {self.shard_count} exceeds the store's {store.shard_count}"
            )
        self.timeout = timeout
        self._rng = rng or random.SystemRandom()

    def pick_shard(self) -> int:
        """Pick a shard index uniformly at random in [0, shard_count)."""
        return self._rng.randrange(self.shard_count)

    async def submit_vote(self, voter_id: str, candidate_id: str) -> VoteOutcome:
        """
        Record one vote.

        Args:
            voter_id: Authenticated voter identity
            candidate_id: Candidate being voted for

        Returns:
            VoteOutcome: ACCEPTED, ALREADY_VOTED or TRANSIENT_FAILURE

        Raises:
            InvalidVoteError: If either id is missing or malformed; storage
                is not touched
        """
        voter_id = validate_id(voter_id, 'voterId')
        candidate_id = validate_id(candidate_id, 'candidateId')

        shard = self.store.shard_key(candidate_id, self.pick_shard())

        try:
            with claim_latency.time():
                claim = self.store.try_claim(voter_id, shard)
                if self.timeout is not None:
                    result = await asyncio.wait_for(claim, timeout=self.timeout)
                else:
                    result = await claim
        except StorageUnavailable as e:
            logger.warning(f"Transient storage failure for voter {voter_id}: {e}")
            vote_outcomes.labels(outcome=VoteOutcome.TRANSIENT_FAILURE.value).inc()
            return VoteOutcome.TRANSIENT_FAILURE
        except asyncio.TimeoutError:
            # The claim may still have applied; a retry resolves to ALREADY_VOTED
            logger.warning(f"Storage timeout after {self.timeout}s for voter {voter_id}")
            vote_outcomes.labels(outcome=VoteOutcome.TRANSIENT_FAILURE.value).inc()
            return VoteOutcome.TRANSIENT_FAILURE

        if result is ClaimResult.ALREADY_CLAIMED:
            logger.info(f"Voter {voter_id} already voted; vote for {candidate_id} rejected")
            vote_outcomes.labels(outcome=VoteOutcome.ALREADY_VOTED.value).inc()
            return VoteOutcome.ALREADY_VOTED

        logger.info(f"Vote accepted: voter={voter_id}, candidate={candidate_id}, shard={shard.key}")
        vote_outcomes.labels(outcome=VoteOutcome.ACCEPTED.value).inc()
        return VoteOutcome.ACCEPTED
