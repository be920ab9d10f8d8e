"""
Batch consumer for vote messages.

Each message in a batch is classified on its own:

1. Poison (oversized, not JSON, missing ids): DROPPED, never redelivered
2. ACCEPTED: done
3. ALREADY_VOTED: done silently; redelivering would repeat the rejection
4. TRANSIENT_FAILURE or an unexpected error: reported back for redelivery

The queue delivers at least once. Redelivering a message whose vote already
applied is safe because the ledger claim turns it into ALREADY_VOTED.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from prometheus_client import Counter, Histogram

from ..coordinator import VoteCoordinator
from ..shared.models import InvalidVoteError, VoteMessage, VoteOutcome

logger = logging.getLogger(__name__)

# Reject payloads larger than 1KB before parsing
MAX_PAYLOAD_SIZE = 1024

# Prometheus metrics
messages_processed = Counter(
    'consumer_messages_processed_total',
    'Total number of queue messages processed',
    ['disposition']
)

batch_latency = Histogram(
    'consumer_batch_processing_seconds',
    'Time spent processing one batch',
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

batch_sizes = Histogram(
    'consumer_batch_size',
    'Number of messages per batch',
    buckets=[1, 5, 10, 25, 50, 100, 250]
)


class Disposition(str, Enum):
    """What happened to one message."""
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    POISON = "poison"
    RETRY = "retry"


@dataclass(frozen=True)
class QueueMessage:
    """A message as handed over by the queue."""
    message_id: str
    body: bytes


class BatchConsumer:
    """Runs the coordinator over a batch and reports partial batch failure."""

    def __init__(self, coordinator: VoteCoordinator, max_concurrency: Optional[int] = None):
        """
        Initialize the consumer.

        Args:
            coordinator: Coordinator that records each vote
            max_concurrency: Upper bound on messages in flight (unbounded if None)
        """
        self.coordinator = coordinator
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    def parse(self, message: QueueMessage) -> VoteMessage:
        """
        Decode a message body.

        Raises:
            InvalidVoteError: If the message is poison
        """
        if len(message.body) > MAX_PAYLOAD_SIZE:
            raise InvalidVoteError(
                f"Oversized payload: {len(message.body)} bytes (max {MAX_PAYLOAD_SIZE})"
            )

        try:
            data = json.loads(message.body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidVoteError(f"Invalid JSON: {e}") from e

        return VoteMessage.from_dict(data)

    async def process_message(self, message: QueueMessage) -> Disposition:
        """Process one message and classify the result."""
        try:
            vote = self.parse(message)
        except InvalidVoteError as e:
            logger.warning(f"Dropping poison message {message.message_id}: {e}")
            return Disposition.POISON

        try:
            if self._semaphore:
                async with self._semaphore:
                    outcome = await self.coordinator.submit_vote(vote.voter_id, vote.candidate_id)
            else:
                outcome = await self.coordinator.submit_vote(vote.voter_id, vote.candidate_id)
        except Exception as e:
            logger.error(f"Unexpected error for message {message.message_id}: {e}", exc_info=True)
            return Disposition.RETRY

        if outcome is VoteOutcome.ACCEPTED:
            return Disposition.ACCEPTED
        if outcome is VoteOutcome.ALREADY_VOTED:
            logger.debug(f"Duplicate vote ignored for voter {vote.voter_id}")
            return Disposition.DUPLICATE

        logger.warning(f"Message {message.message_id} marked for redelivery")
        return Disposition.RETRY

    async def process_batch(self, messages: List[QueueMessage]) -> List[str]:
        """
        Process a batch concurrently.

        Args:
            messages: Messages from one queue delivery

        Returns:
            list: Ids of the messages that must be redelivered
        """
        if not messages:
            return []

        start_time = time.time()
        batch_sizes.observe(len(messages))

        dispositions = await asyncio.gather(
            *(self.process_message(message) for message in messages),
            return_exceptions=True
        )

        failures = []
        for message, disposition in zip(messages, dispositions):
            if isinstance(disposition, BaseException):
                logger.error(f"Message {message.message_id} failed: {disposition!r}")
                disposition = Disposition.RETRY

            messages_processed.labels(disposition=disposition.value).inc()
            if disposition is Disposition.RETRY:
                failures.append(message.message_id)

        duration = time.time() - start_time
        batch_latency.observe(duration)
        logger.info(
            f"Batch processed: {len(messages)} messages, "
            f"{len(failures)} for redelivery, duration: {duration:.3f}s"
        )
        return failures
