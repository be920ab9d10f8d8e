"""
Vote consumer service.

Drains the ingestion queue in batches, records each vote through the
coordinator, acknowledges what is done and sends back what must be retried.
"""
import asyncio
import logging
import signal
import sys

from prometheus_client import Gauge, start_http_server

from ..coordinator import VoteCoordinator
from ..storage import create_storage
from .batch_consumer import BatchConsumer, QueueMessage
from .config import config
from .rabbitmq_client import RabbitMQClient

logger = logging.getLogger(__name__)

# Prometheus metrics
messages_dead_lettered = Gauge(
    'consumer_messages_dead_lettered',
    'Messages dead-lettered since the worker started'
)


class VoteConsumerWorker:
    """Main consumer worker class."""

    def __init__(self):
        """Initialize the worker."""
        self.store = None
        self.rabbitmq = RabbitMQClient()
        self.batch_consumer = None
        self.running = True

    def _signal_handler(self):
        """Handle shutdown signals."""
        logger.info("Shutdown signal received, finishing current batch...")
        self.running = False

    def initialize(self):
        """Create the storage backend and the coordinator."""
        self.store, _ = create_storage(config)
        coordinator = VoteCoordinator(
            self.store,
            shard_count=config.SHARD_COUNT,
            timeout=config.STORAGE_TIMEOUT_SECONDS
        )
        self.batch_consumer = BatchConsumer(coordinator, max_concurrency=config.MAX_CONCURRENCY)

    async def handle_batch(self, deliveries):
        """
        Process one batch of deliveries and settle every message.

        A delivery whose settlement fails is nacked for redelivery so it
        does not keep holding a prefetch slot. Settling the rest of the
        batch continues either way.

        Args:
            deliveries: Unacknowledged aio-pika messages
        """
        by_id = {str(delivery.delivery_tag): delivery for delivery in deliveries}
        messages = [QueueMessage(message_id=tag, body=delivery.body) for tag, delivery in by_id.items()]

        failures = set(await self.batch_consumer.process_batch(messages))

        for tag, delivery in by_id.items():
            await self._settle(delivery, retry=tag in failures)

    async def _settle(self, delivery, retry: bool):
        try:
            if retry:
                if not await self.rabbitmq.retry_later(delivery, config.MAX_RETRIES):
                    messages_dead_lettered.inc()
            else:
                await delivery.ack()
        except Exception as e:
            logger.error(f"Failed to settle delivery {delivery.delivery_tag}, requeueing: {e}")
            await self._requeue(delivery)

    async def _requeue(self, delivery):
        try:
            await delivery.nack(requeue=True)
        except Exception as e:
            # Channel is gone; the broker redelivers on reconnect
            logger.error(f"Failed to requeue delivery {delivery.delivery_tag}: {e}")

    async def run(self):
        """Consume until a shutdown signal arrives."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._signal_handler)

        logger.info(f"Starting Prometheus metrics server on port {config.METRICS_PORT}")
        start_http_server(config.METRICS_PORT)

        self.initialize()
        await self.rabbitmq.start_consuming()

        while self.running:
            deliveries = await self.rabbitmq.fetch_batch(config.BATCH_SIZE, config.BATCH_TIMEOUT_SECONDS)
            if not deliveries:
                continue

            try:
                await self.handle_batch(deliveries)
            except Exception as e:
                logger.error(f"Error handling batch of {len(deliveries)}: {e}", exc_info=True)
                for delivery in deliveries:
                    await self._requeue(delivery)

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down consumer...")
        await self.rabbitmq.close()
        if self.store:
            await self.store.close()
        logger.info("Consumer shutdown complete")


async def main():
    """Main entry point."""
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    logger.info("=" * 60)
    logger.info("Starting Vote Consumer Service")
    logger.info(f"Worker ID: {config.WORKER_ID}")
    logger.info(f"RabbitMQ: {config.RABBITMQ_HOST}:{config.RABBITMQ_PORT}")
    logger.info(f"Queue: {config.INGESTION_QUEUE}")
    logger.info(f"Storage: {config.STORAGE_BACKEND}, shards: {config.SHARD_COUNT}")
    logger.info(f"Batch Size: {config.BATCH_SIZE}, Max Retries: {config.MAX_RETRIES}")
    logger.info("=" * 60)

    worker = VoteConsumerWorker()
    try:
        await worker.run()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        await worker.shutdown()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
