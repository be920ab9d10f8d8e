"""Pytest fixtures shared by the unit tests.

Unit tests run against the in-memory backends and need no external
services. Tests marked ``docker`` expect live Redis/PostgreSQL/RabbitMQ and
skip when those are not reachable.
"""

import random
from typing import List

import pytest

from vote_pipeline.coordinator import VoteCoordinator
from vote_pipeline.shared.models import AggregationSnapshot, Candidate, CandidateTally
from vote_pipeline.snapshot.publisher import InMemorySnapshotStore
from vote_pipeline.storage import InMemoryCandidateRepository, InMemoryVoteStore


@pytest.fixture
def sample_candidates() -> List[Candidate]:
    """Two candidates used across most tests."""
    return [
        Candidate(candidate_id="candA", name="Candidate A", description="First", image_url="https://img/a.png"),
        Candidate(candidate_id="candB", name="Candidate B"),
    ]


@pytest.fixture
def vote_store() -> InMemoryVoteStore:
    """Fresh in-memory vote store with the default 10 shards."""
    return InMemoryVoteStore()


@pytest.fixture
def candidate_repository(sample_candidates) -> InMemoryCandidateRepository:
    return InMemoryCandidateRepository(sample_candidates)


@pytest.fixture
def coordinator(vote_store) -> VoteCoordinator:
    """Coordinator with a seeded random source so shard choice is repeatable."""
    return VoteCoordinator(vote_store, rng=random.Random(42))


@pytest.fixture
def snapshot_store() -> InMemorySnapshotStore:
    return InMemorySnapshotStore()


@pytest.fixture
def sample_snapshot() -> AggregationSnapshot:
    """A published-looking snapshot with 5 votes in total."""
    return AggregationSnapshot(candidates=(
        CandidateTally("candA", "Candidate A", "First", "https://img/a.png", 3),
        CandidateTally("candB", "Candidate B", "", "", 2),
    ))


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "docker: mark test as requiring live Redis/PostgreSQL/RabbitMQ"
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow running"
    )
