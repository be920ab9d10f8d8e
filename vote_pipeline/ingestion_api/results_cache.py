"""
Read path for aggregated results.

Readers are served from a process-local reference to the last snapshot
fetched from the distribution tier. The reference is refreshed at most once
per TTL and never triggers a shard scan.
"""
import asyncio
import logging
import time
from typing import Callable, Optional

from prometheus_client import Counter

from ..shared.models import AggregationSnapshot, CandidateTally
from ..snapshot.publisher import SnapshotStore

logger = logging.getLogger(__name__)

cache_refreshes = Counter(
    'results_cache_refreshes_total',
    'Snapshot fetches performed by the results cache',
    ['status']
)


class SnapshotUnavailable(Exception):
    """Raised when no snapshot has ever been published."""
    pass


class ResultsCache:
    """Short-TTL cache over the published snapshot."""

    def __init__(
        self,
        snapshot_store: SnapshotStore,
        ttl: float = 5.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the cache.

        Args:
            snapshot_store: Where the snapshot builder publishes
            ttl: Seconds a fetched snapshot is served before refetching
            clock: Monotonic time source
        """
        self.snapshot_store = snapshot_store
        self.ttl = ttl
        self._clock = clock
        self._snapshot: Optional[AggregationSnapshot] = None
        self._fetched_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def cache_control(self) -> str:
        return self.snapshot_store.cache_control

    def _is_fresh(self) -> bool:
        return self._fetched_at is not None and self._clock() - self._fetched_at < self.ttl

    async def _refresh(self):
        async with self._lock:
            # Another reader may have refreshed while we waited
            if self._is_fresh():
                return

            try:
                snapshot = await self.snapshot_store.load()
            except Exception as e:
                cache_refreshes.labels(status='failure').inc()
                # Back off for one TTL whether or not there is anything to serve
                self._fetched_at = self._clock()
                if self._snapshot is None:
                    raise SnapshotUnavailable(f"Snapshot fetch failed: {e}") from e
                logger.warning(f"Snapshot fetch failed, serving stale results: {e}")
                return

            cache_refreshes.labels(status='success').inc()
            self._fetched_at = self._clock()
            if snapshot is not None:
                self._snapshot = snapshot

    async def get_results(self) -> AggregationSnapshot:
        """
        Return the current snapshot.

        Raises:
            SnapshotUnavailable: If no snapshot has been published yet
        """
        if not self._is_fresh():
            await self._refresh()

        snapshot = self._snapshot
        if snapshot is None:
            raise SnapshotUnavailable("No results snapshot has been published yet")
        return snapshot

    async def get_candidate(self, candidate_id: str) -> Optional[CandidateTally]:
        """Return one candidate's tally from the current snapshot, or None."""
        snapshot = await self.get_results()
        return snapshot.find(candidate_id)
