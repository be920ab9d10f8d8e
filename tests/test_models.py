"""Tests for the shared data models."""

import json
from datetime import datetime, timezone

import pytest

from vote_pipeline.shared.models import (
    AggregationSnapshot,
    CandidateTally,
    InvalidVoteError,
    ShardKey,
    VoteMessage,
    get_redis_key,
    validate_id,
)


class TestVoteMessage:
    """VoteMessage parsing and validation."""

    def test_from_json_camel_case(self):
        vote = VoteMessage.from_json('{"voterId": "u1", "candidateId": "candA", "submittedAt": "t"}')

        assert vote.voter_id == "u1"
        assert vote.candidate_id == "candA"
        assert vote.submitted_at == "t"

    def test_to_dict_uses_wire_names(self):
        vote = VoteMessage(voter_id="u1", candidate_id="candA")

        assert vote.to_dict() == {"voterId": "u1", "candidateId": "candA"}
        assert json.loads(vote.to_json())["candidateId"] == "candA"

    @pytest.mark.parametrize("body", [
        {"candidateId": "candA"},
        {"voterId": "u1"},
        {"voterId": "", "candidateId": "candA"},
        {"voterId": "u1", "candidateId": "   "},
        {"voterId": 12, "candidateId": "candA"},
        ["u1", "candA"],
    ])
    def test_rejects_malformed_bodies(self, body):
        with pytest.raises(InvalidVoteError):
            VoteMessage.from_dict(body)


class TestValidateId:

    def test_strips_whitespace(self):
        assert validate_id("  u1 ", "voterId") == "u1"

    def test_rejects_overlong(self):
        with pytest.raises(InvalidVoteError, match="at most 128"):
            validate_id("x" * 129, "voterId")

    def test_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            validate_id(None, "candidateId")


class TestShardKey:

    def test_key_format(self):
        assert ShardKey("candA", 3).key == "candA#SHARD_3"

    def test_parse_round_trip_with_hash_in_candidate(self):
        shard = ShardKey.parse("team#1#SHARD_7")

        assert shard.candidate_id == "team#1"
        assert shard.shard_index == 7

    @pytest.mark.parametrize("key", ["candA", "candA#SHARD_", "candA#SHARD_x"])
    def test_parse_rejects_non_shard_keys(self, key):
        with pytest.raises(ValueError):
            ShardKey.parse(key)


class TestAggregationSnapshot:

    def test_wire_format(self, sample_snapshot):
        data = sample_snapshot.to_dict()

        assert data["totalVotes"] == 5
        assert data["candidates"][0] == {
            "candidateId": "candA",
            "name": "Candidate A",
            "description": "First",
            "imageUrl": "https://img/a.png",
            "votes": 3,
        }
        assert data["timestamp"] == int(sample_snapshot.generated_at.timestamp() * 1000)
        assert set(data) == {"candidates", "lastUpdated", "timestamp", "totalVotes"}

    def test_from_json_restores_snapshot(self, sample_snapshot):
        restored = AggregationSnapshot.from_json(sample_snapshot.to_json())

        assert restored == sample_snapshot

    def test_find_and_totals(self, sample_snapshot):
        assert sample_snapshot.find("candB").votes == 2
        assert sample_snapshot.find("missing") is None
        assert sample_snapshot.totals() == {"candA": 3, "candB": 2}

    def test_empty_snapshot(self):
        snapshot = AggregationSnapshot(
            candidates=(),
            generated_at=datetime(2025, 1, 1, tzinfo=timezone.utc)
        )

        assert snapshot.total_votes == 0
        assert snapshot.to_dict()["lastUpdated"] == "2025-01-01T00:00:00+00:00"

    def test_snapshot_is_immutable(self, sample_snapshot):
        with pytest.raises(AttributeError):
            sample_snapshot.candidates = ()


def test_redis_keys():
    assert get_redis_key("voter", "u1") == "voter:u1"
    assert get_redis_key("vote_shard", "candA#SHARD_0") == "vote_shard:candA#SHARD_0"
    assert get_redis_key("shard_registry") == "vote_shards"
    assert get_redis_key("snapshot") == "results:snapshot"


def test_tally_round_trip():
    tally = CandidateTally("candA", "A", "", "", 4)

    assert CandidateTally.from_dict(tally.to_dict()) == tally
