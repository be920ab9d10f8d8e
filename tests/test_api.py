"""Tests for the ingestion and results HTTP API.

The app runs in-process through httpx's ASGI transport. Its dependencies are
swapped for in-memory stores and a mocked publisher, so no broker or
database is needed.
"""

import json
import random
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

from vote_pipeline.coordinator import VoteCoordinator
from vote_pipeline.ingestion_api.config import settings
from vote_pipeline.ingestion_api.main import app, get_coordinator, get_publisher, get_results_cache
from vote_pipeline.ingestion_api.publisher import RabbitMQPublisher
from vote_pipeline.ingestion_api.results_cache import ResultsCache
from vote_pipeline.shared.models import VoteMessage
from vote_pipeline.snapshot.builder import SnapshotBuilder
from vote_pipeline.snapshot.publisher import InMemorySnapshotStore
from vote_pipeline.storage import InMemoryVoteStore, StorageUnavailable

VOTE_URL = "/api/v1/vote"


@pytest.fixture
def publisher():
    mock = AsyncMock(spec=RabbitMQPublisher)
    mock.publish_vote.return_value = True
    mock.check_health.return_value = True
    return mock


@pytest.fixture
def results_cache(snapshot_store):
    return ResultsCache(snapshot_store, ttl=0)


@pytest_asyncio.fixture
async def client(publisher, coordinator, results_cache):
    app.dependency_overrides[get_publisher] = lambda: publisher
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    app.dependency_overrides[get_results_cache] = lambda: results_cache

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()


@pytest.fixture
def direct_mode(monkeypatch):
    monkeypatch.setattr(settings, "INGESTION_MODE", "direct")


@pytest.mark.asyncio
class TestSubmitVoteQueued:
    """Queue mode: votes are published for the consumer workers."""

    async def test_vote_is_queued(self, client, publisher):
        response = await client.post(VOTE_URL, json={"voterId": "u1", "candidateId": "candA"})

        assert response.status_code == 202
        assert response.json()["status"] == "queued"
        message = publisher.publish_vote.await_args.args[0]
        assert isinstance(message, VoteMessage)
        assert (message.voter_id, message.candidate_id) == ("u1", "candA")
        assert message.submitted_at is not None

    async def test_ids_are_trimmed_before_publishing(self, client, publisher):
        await client.post(VOTE_URL, json={"voterId": "  u1 ", "candidateId": "candA "})

        message = publisher.publish_vote.await_args.args[0]
        assert json.loads(message.to_json())["voterId"] == "u1"
        assert message.candidate_id == "candA"

    async def test_publish_failure_is_503(self, client, publisher):
        publisher.publish_vote.return_value = False

        response = await client.post(VOTE_URL, json={"voterId": "u1", "candidateId": "candA"})

        assert response.status_code == 503

    @pytest.mark.parametrize("payload", [
        {"candidateId": "candA"},
        {"voterId": "u1"},
        {"voterId": "", "candidateId": "candA"},
        {"voterId": "u1", "candidateId": "   "},
        {"voterId": "u1", "candidateId": "x" * 129},
        {"voterId": 5, "candidateId": "candA"},
    ])
    async def test_invalid_payload_is_400(self, client, publisher, payload):
        response = await client.post(VOTE_URL, json=payload)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"
        publisher.publish_vote.assert_not_awaited()

    async def test_non_json_body_is_400(self, client):
        response = await client.post(VOTE_URL, content=b"nope", headers={"Content-Type": "application/json"})

        assert response.status_code == 400


@pytest.mark.asyncio
@pytest.mark.usefixtures("direct_mode")
class TestSubmitVoteDirect:
    """Direct mode: votes are recorded before the response is sent."""

    async def test_accepted_then_already_voted(self, client, vote_store):
        first = await client.post(VOTE_URL, json={"voterId": "u1", "candidateId": "candA"})
        second = await client.post(VOTE_URL, json={"voterId": "u1", "candidateId": "candB"})

        assert first.status_code == 200
        assert first.json()["status"] == "accepted"
        assert second.status_code == 409
        assert await vote_store.read_total("candA") == 1
        assert await vote_store.read_total("candB") == 0

    async def test_storage_outage_is_503(self, client):
        store = InMemoryVoteStore()
        store.try_claim = AsyncMock(side_effect=StorageUnavailable("down"))
        app.dependency_overrides[get_coordinator] = lambda: VoteCoordinator(store, rng=random.Random(1))

        response = await client.post(VOTE_URL, json={"voterId": "u1", "candidateId": "candA"})

        assert response.status_code == 503


@pytest.mark.asyncio
class TestResults:

    async def test_no_snapshot_is_503(self, client):
        response = await client.get("/api/v1/results")

        assert response.status_code == 503

    async def test_results_served_from_snapshot(self, client, snapshot_store, sample_snapshot):
        await snapshot_store.publish(sample_snapshot)

        response = await client.get("/api/v1/results")

        assert response.status_code == 200
        assert response.headers["cache-control"] == "public, max-age=5"
        body = response.json()
        assert body["totalVotes"] == 5
        assert [c["candidateId"] for c in body["candidates"]] == ["candA", "candB"]
        assert body["timestamp"] == int(sample_snapshot.generated_at.timestamp() * 1000)

    async def test_candidate_lookup(self, client, snapshot_store, sample_snapshot):
        await snapshot_store.publish(sample_snapshot)

        found = await client.get("/api/v1/candidates/candA")
        missing = await client.get("/api/v1/candidates/nobody")

        assert found.status_code == 200
        assert found.json() == sample_snapshot.find("candA").to_dict()
        assert missing.status_code == 404

    @pytest.mark.usefixtures("direct_mode")
    async def test_direct_votes_appear_after_snapshot_refresh(
        self, client, vote_store, candidate_repository, snapshot_store
    ):
        builder = SnapshotBuilder(vote_store, candidate_repository, snapshot_store)
        await builder.refresh()

        for i in range(3):
            await client.post(VOTE_URL, json={"voterId": f"u{i}", "candidateId": "candB"})
        await builder.refresh()

        body = (await client.get("/api/v1/results")).json()
        assert {c["candidateId"]: c["votes"] for c in body["candidates"]} == {"candA": 0, "candB": 3}


@pytest.mark.asyncio
class TestOperationalEndpoints:

    async def test_health_without_snapshot_is_unhealthy(self, client):
        response = await client.get("/api/v1/health")

        assert response.status_code == 503
        assert response.json()["services"] == {"rabbitmq": "connected", "snapshot": "disconnected"}

    async def test_health_ok(self, client, snapshot_store, sample_snapshot):
        await snapshot_store.publish(sample_snapshot)

        response = await client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_metrics(self, client):
        await client.get("/")
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "http_request_duration_seconds" in response.text

    async def test_root(self, client):
        body = (await client.get("/")).json()

        assert body["endpoints"]["submit_vote"] == VOTE_URL
        assert body["mode"] == "queue"
