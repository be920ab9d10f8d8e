#!/usr/bin/env python3
"""
Load candidates into the configured storage backend.

Reads a JSON array of candidates and upserts each one through the candidate
repository, so the snapshot builder starts listing them on its next tick.

Usage:
    python scripts/load_candidates.py [--file candidates.json] [--backend redis]

File format:
    [{"candidate_id": "candA", "name": "Candidate A", "description": "...", "image_url": "..."}]

Environment Variables:
    STORAGE_BACKEND, REDIS_*, POSTGRES_*: same as the consumer worker
"""

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import List

from vote_pipeline.consumer.config import Config
from vote_pipeline.shared.models import Candidate, validate_id
from vote_pipeline.storage import BACKENDS, CandidateRepository, create_storage

DEFAULT_CANDIDATES = [
    Candidate(candidate_id='candA', name='Candidate A'),
    Candidate(candidate_id='candB', name='Candidate B'),
    Candidate(candidate_id='candC', name='Candidate C'),
]


def read_candidates(path: Path) -> List[Candidate]:
    """
    Read candidates from a JSON file.

    Args:
        path: File holding a JSON array of candidate objects

    Returns:
        List[Candidate]: Parsed candidates
    """
    with open(path, 'r') as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON array")

    candidates = []
    for item in data:
        candidate = Candidate.from_dict(item)
        candidates.append(replace(candidate, candidate_id=validate_id(candidate.candidate_id, 'candidate_id')))
    return candidates


async def load(repository: CandidateRepository, candidates: List[Candidate]) -> int:
    """Upsert every candidate, returning how many were written."""
    for candidate in candidates:
        await repository.put_candidate(candidate)
        print(f"✓ {candidate.candidate_id}: {candidate.name}")
    return len(candidates)


async def main_async(args) -> int:
    config = Config()
    if args.backend:
        config.STORAGE_BACKEND = args.backend

    candidates = read_candidates(Path(args.file)) if args.file else DEFAULT_CANDIDATES

    store, repository = create_storage(config)
    try:
        count = await load(repository, candidates)
    finally:
        await store.close()

    print(f"\nLoaded {count} candidates into {config.STORAGE_BACKEND}")
    return 0


def main():
    parser = argparse.ArgumentParser(description='Load candidates into vote storage')
    parser.add_argument('--file', help='JSON file of candidates (defaults to three sample candidates)')
    parser.add_argument('--backend', choices=BACKENDS, help='Override STORAGE_BACKEND')
    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(main_async(args)))
    except (OSError, KeyError, ValueError) as e:
        print(f"✗ Failed to load candidates: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
