"""Tests for the vote transaction coordinator."""

import asyncio
import random
from collections import Counter

import pytest

from vote_pipeline.coordinator import VoteCoordinator
from vote_pipeline.shared.models import ClaimResult, InvalidVoteError, VoteOutcome
from vote_pipeline.snapshot.builder import SnapshotBuilder
from vote_pipeline.storage import InMemoryVoteStore, StorageUnavailable


class FlakyVoteStore(InMemoryVoteStore):
    """In-memory store whose first ``failures`` claims raise StorageUnavailable."""

    def __init__(self, failures: int = 1):
        super().__init__()
        self.failures = failures
        self.claim_calls = 0

    async def try_claim(self, voter_id, shard):
        self.claim_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise StorageUnavailable("connection refused")
        return await super().try_claim(voter_id, shard)


class SlowVoteStore(InMemoryVoteStore):
    """Store whose claims never finish in time."""

    async def try_claim(self, voter_id, shard):
        await asyncio.sleep(10)
        return ClaimResult.CLAIMED


class BrokenVoteStore(InMemoryVoteStore):
    async def try_claim(self, voter_id, shard):
        raise RuntimeError("bug")


@pytest.mark.asyncio
class TestSubmitVote:
    """Outcomes of submit_vote."""

    async def test_first_vote_accepted_second_rejected(self, coordinator, vote_store):
        assert await coordinator.submit_vote("u1", "candA") is VoteOutcome.ACCEPTED
        assert await coordinator.submit_vote("u1", "candB") is VoteOutcome.ALREADY_VOTED

        assert await vote_store.read_total("candA") == 1
        assert await vote_store.read_total("candB") == 0

    async def test_same_candidate_twice_counts_once(self, coordinator, vote_store):
        await coordinator.submit_vote("u1", "candA")
        outcome = await coordinator.submit_vote("u1", "candA")

        assert outcome is VoteOutcome.ALREADY_VOTED
        assert await vote_store.read_total("candA") == 1

    async def test_concurrent_submissions_by_one_voter(self, coordinator, vote_store):
        outcomes = await asyncio.gather(*(
            coordinator.submit_vote("u1", "candA" if i % 2 else "candB")
            for i in range(50)
        ))

        counts = Counter(outcomes)
        assert counts[VoteOutcome.ACCEPTED] == 1
        assert counts[VoteOutcome.ALREADY_VOTED] == 49
        total = await vote_store.read_total("candA") + await vote_store.read_total("candB")
        assert total == 1

    async def test_concurrent_distinct_voters_all_counted(self, coordinator, vote_store):
        outcomes = await asyncio.gather(*(
            coordinator.submit_vote(f"voter-{i}", "candA") for i in range(25)
        ))

        assert all(outcome is VoteOutcome.ACCEPTED for outcome in outcomes)
        assert await vote_store.read_total("candA") == 25

    async def test_concurrent_voters_visible_in_scan_and_snapshot(
        self, coordinator, vote_store, candidate_repository, snapshot_store
    ):
        await asyncio.gather(*(
            coordinator.submit_vote(f"voter-{i}", "candA") for i in range(25)
        ))

        scanned = [record async for record in vote_store.scan_all()]
        assert sum(record.count for record in scanned if record.candidate_id == "candA") == 25

        snapshot = await SnapshotBuilder(vote_store, candidate_repository, snapshot_store).refresh()
        assert snapshot.find("candA").votes == 25
        assert snapshot.find("candB").votes == 0
        assert await snapshot_store.load() == snapshot

    async def test_votes_spread_across_shards(self, vote_store):
        coordinator = VoteCoordinator(vote_store, rng=random.Random(7))

        for i in range(200):
            await coordinator.submit_vote(f"voter-{i}", "candA")

        used = [await vote_store.read_shard("candA", idx) for idx in range(vote_store.shard_count)]
        assert sum(used) == 200
        assert sum(1 for count in used if count > 0) > 1

    async def test_ids_are_trimmed(self, coordinator, vote_store):
        await coordinator.submit_vote(" u1 ", " candA ")

        assert await coordinator.submit_vote("u1", "candB") is VoteOutcome.ALREADY_VOTED
        assert await vote_store.read_total("candA") == 1


@pytest.mark.asyncio
class TestValidation:

    @pytest.mark.parametrize("voter_id,candidate_id", [
        ("", "candA"),
        ("u1", ""),
        (None, "candA"),
        ("u1", "x" * 200),
    ])
    async def test_invalid_input_raises_without_writes(self, coordinator, vote_store, voter_id, candidate_id):
        with pytest.raises(InvalidVoteError):
            await coordinator.submit_vote(voter_id, candidate_id)

        assert vote_store.voters == {}
        assert vote_store.shards == {}


@pytest.mark.asyncio
class TestTransientFailures:

    async def test_storage_unavailable_is_transient_and_retry_succeeds(self):
        store = FlakyVoteStore(failures=1)
        coordinator = VoteCoordinator(store)

        assert await coordinator.submit_vote("u1", "candA") is VoteOutcome.TRANSIENT_FAILURE
        assert store.voters == {}

        assert await coordinator.submit_vote("u1", "candA") is VoteOutcome.ACCEPTED
        assert await store.read_total("candA") == 1

    async def test_timeout_is_transient(self):
        coordinator = VoteCoordinator(SlowVoteStore(), timeout=0.01)

        assert await coordinator.submit_vote("u1", "candA") is VoteOutcome.TRANSIENT_FAILURE

    async def test_unexpected_errors_propagate(self):
        coordinator = VoteCoordinator(BrokenVoteStore())

        with pytest.raises(RuntimeError):
            await coordinator.submit_vote("u1", "candA")


class TestShardSelection:

    def test_pick_shard_in_range(self, coordinator):
        picks = {coordinator.pick_shard() for _ in range(500)}

        assert picks <= set(range(10))
        assert len(picks) == 10

    def test_shard_count_cannot_exceed_store(self):
        with pytest.raises(ValueError):
            VoteCoordinator(InMemoryVoteStore(shard_count=4), shard_count=8)

    def test_smaller_shard_count_allowed(self):
        coordinator = VoteCoordinator(InMemoryVoteStore(), shard_count=1)

        assert {coordinator.pick_shard() for _ in range(20)} == {0}
