"""
Aggregation snapshot builder.

On every tick: list candidates, scan all vote shards, sum the shards per
candidate, left-join the sums onto the candidates and publish the result as
one immutable snapshot. A failed tick leaves the previous snapshot live and
is retried on the next tick.
"""
import asyncio
import logging
import signal
import sys
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Optional

from prometheus_client import Counter, Gauge, start_http_server

from ..shared.models import AggregationSnapshot, CandidateTally
from ..storage import CandidateRepository, CounterStore, create_storage
from .config import config
from .publisher import SnapshotStore, create_snapshot_store

logger = logging.getLogger(__name__)

MIN_INTERVAL_SECONDS = 5.0
MAX_INTERVAL_SECONDS = 60.0

# Prometheus metrics
snapshot_builds = Counter(
    'snapshot_builds_total',
    'Snapshot build attempts by status',
    ['status']
)

snapshot_build_duration = Gauge(
    'snapshot_build_duration_seconds',
    'Time taken by the last successful build and publish'
)

snapshot_total_votes = Gauge(
    'snapshot_total_votes',
    'Total votes in the last published snapshot'
)

snapshot_last_success = Gauge(
    'snapshot_last_success_timestamp_seconds',
    'Unix time of the last successful publish'
)


class SnapshotBuilder:
    """Builds and publishes aggregation snapshots."""

    def __init__(
        self,
        counters: CounterStore,
        candidates: CandidateRepository,
        snapshot_store: SnapshotStore
    ):
        self.counters = counters
        self.candidates = candidates
        self.snapshot_store = snapshot_store
        self.last_snapshot: Optional[AggregationSnapshot] = None
        self.running = True

    async def sum_shards(self) -> Dict[str, int]:
        """Scan every shard and sum the counts per candidate."""
        totals: Dict[str, int] = defaultdict(int)
        async for record in self.counters.scan_all():
            totals[record.candidate_id] += record.count
        return dict(totals)

    async def build_snapshot(self) -> AggregationSnapshot:
        """
        Build a snapshot from the current shard counts.

        Candidates with no shards get 0 votes. Shards whose candidate no
        longer exists are left out.
        """
        generated_at = datetime.now(timezone.utc)
        candidates, totals = await asyncio.gather(
            self.candidates.list_candidates(),
            self.sum_shards()
        )

        known = {candidate.candidate_id for candidate in candidates}
        orphaned = sorted(set(totals) - known)
        if orphaned:
            logger.warning(f"Votes for unknown candidates left out of snapshot: {orphaned}")

        tallies = tuple(
            CandidateTally(
                candidate_id=candidate.candidate_id,
                name=candidate.name,
                description=candidate.description,
                image_url=candidate.image_url,
                votes=totals.get(candidate.candidate_id, 0),
            )
            for candidate in sorted(candidates, key=lambda c: c.candidate_id)
        )
        return AggregationSnapshot(candidates=tallies, generated_at=generated_at)

    async def refresh(self) -> Optional[AggregationSnapshot]:
        """
        Build and publish one generation.

        Returns:
            The published snapshot, or None if the tick failed.
        """
        start_time = time.time()
        try:
            snapshot = await self.build_snapshot()
            await self.snapshot_store.publish(snapshot)
        except Exception as e:
            logger.error(f"Snapshot refresh failed, previous snapshot stays live: {e}", exc_info=True)
            snapshot_builds.labels(status='failure').inc()
            return None

        duration = time.time() - start_time
        self.last_snapshot = snapshot
        snapshot_builds.labels(status='success').inc()
        snapshot_build_duration.set(duration)
        snapshot_total_votes.set(snapshot.total_votes)
        snapshot_last_success.set(time.time())

        logger.info(
            f"Snapshot published: {len(snapshot.candidates)} candidates, "
            f"{snapshot.total_votes} votes, duration: {duration:.3f}s"
        )
        return snapshot

    async def run_forever(self, interval: float):
        """Refresh on a fixed schedule until stopped."""
        if not MIN_INTERVAL_SECONDS <= interval <= MAX_INTERVAL_SECONDS:
            clamped = min(max(interval, MIN_INTERVAL_SECONDS), MAX_INTERVAL_SECONDS)
            logger.warning(f"Snapshot interval {interval}s out of range, using {clamped}s")
            interval = clamped

        while self.running:
            tick_start = time.monotonic()
            await self.refresh()
            elapsed = time.monotonic() - tick_start
            await asyncio.sleep(max(0.0, interval - elapsed))

    def stop(self):
        """Stop after the current tick."""
        logger.info("Stop requested, finishing current tick...")
        self.running = False


async def main():
    """Main entry point."""
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    logger.info("=" * 60)
    logger.info("Starting Snapshot Builder Service")
    logger.info(f"Storage: {config.STORAGE_BACKEND}")
    logger.info(f"Publish target: {config.SNAPSHOT_TARGET}")
    logger.info(f"Interval: {config.SNAPSHOT_INTERVAL_SECONDS}s")
    logger.info("=" * 60)

    store, candidates = create_storage(config)
    redis_client = getattr(store, 'client', None)
    builder = SnapshotBuilder(store, candidates, create_snapshot_store(config, redis_client))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, builder.stop)

    logger.info(f"Starting Prometheus metrics server on port {config.PROMETHEUS_PORT}")
    start_http_server(config.PROMETHEUS_PORT)

    try:
        await builder.run_forever(config.SNAPSHOT_INTERVAL_SECONDS)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        await store.close()
        logger.info("Snapshot builder shutdown complete")


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
