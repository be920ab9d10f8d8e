"""
Async RabbitMQ client for the vote consumer using aio-pika.
"""
import asyncio
import logging
import time
from typing import List

from aio_pika import connect_robust, Message, DeliveryMode, ExchangeType
from aio_pika.abc import AbstractIncomingMessage

from ..shared.models import get_ingestion_queue_arguments
from .config import config

logger = logging.getLogger(__name__)

RETRY_HEADER = 'x-retry-count'


def get_retry_count(message: AbstractIncomingMessage) -> int:
    """Number of times a message has already been republished for retry."""
    headers = message.headers or {}
    try:
        return int(headers.get(RETRY_HEADER, 0))
    except (TypeError, ValueError):
        return 0


class RabbitMQClient:
    """Async RabbitMQ consumer with auto-reconnect and batch fetching."""

    def __init__(self, queue_name: str = None):
        """
        Initialize RabbitMQ client.

        Args:
            queue_name: Name of the queue to consume from.
        """
        self.queue_name = queue_name or config.INGESTION_QUEUE
        self.connection = None
        self.channel = None
        self.exchange = None
        self.queue = None
        self.consumer_tag = None
        self._buffer: asyncio.Queue = asyncio.Queue()

    async def connect(self) -> bool:
        """
        Establish connection to RabbitMQ and declare the topology.

        Returns:
            True if connection successful, False otherwise.
        """
        try:
            # Connect with robust connection (auto-reconnect)
            self.connection = await connect_robust(
                config.get_rabbitmq_url(),
                heartbeat=600,
                client_properties={
                    'connection_name': f'vote-consumer-{config.WORKER_ID}'
                }
            )

            self.channel = await self.connection.channel()
            await self.channel.set_qos(prefetch_count=config.RABBITMQ_PREFETCH_COUNT)

            # Dead-letter path for messages that exhausted their retries
            dead_letter_exchange = await self.channel.declare_exchange(
                config.DEAD_LETTER_EXCHANGE,
                ExchangeType.FANOUT,
                durable=True
            )
            dead_letter_queue = await self.channel.declare_queue(
                config.DEAD_LETTER_QUEUE,
                durable=True
            )
            await dead_letter_queue.bind(dead_letter_exchange)

            self.exchange = await self.channel.declare_exchange(
                config.INGESTION_EXCHANGE,
                ExchangeType.TOPIC,
                durable=True
            )

            # Declare queue (idempotent)
            self.queue = await self.channel.declare_queue(
                self.queue_name,
                durable=True,
                arguments=get_ingestion_queue_arguments(config.DEAD_LETTER_EXCHANGE)
            )
            await self.queue.bind(self.exchange, routing_key=config.INGESTION_ROUTING_KEY)

            logger.info(
                f"Connected to RabbitMQ: {config.RABBITMQ_HOST}:{config.RABBITMQ_PORT}, "
                f"Queue: {self.queue_name}, Prefetch: {config.RABBITMQ_PREFETCH_COUNT}"
            )
            return True

        except Exception as e:
            logger.error(f"Failed to connect to RabbitMQ: {e}")
            return False

    async def start_consuming(self):
        """Start buffering deliveries from the queue."""
        if not self.connection or not self.queue:
            if not await self.connect():
                raise RuntimeError("Failed to connect to RabbitMQ")

        logger.info(f"Starting to consume from queue: {self.queue_name}")
        self.consumer_tag = await self.queue.consume(self._buffer.put, no_ack=False)

    async def fetch_batch(self, batch_size: int, timeout: float) -> List[AbstractIncomingMessage]:
        """
        Wait for at least one message, then collect up to ``batch_size``.

        Args:
            batch_size: Maximum messages returned
            timeout: Seconds to keep filling the batch after the first message

        Returns:
            list: Unacknowledged messages (empty if none arrived within timeout)
        """
        try:
            first = await asyncio.wait_for(self._buffer.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return []

        batch = [first]
        deadline = time.monotonic() + timeout
        while len(batch) < batch_size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                batch.append(await asyncio.wait_for(self._buffer.get(), timeout=remaining))
            except asyncio.TimeoutError:
                break
        return batch

    async def retry_later(self, message: AbstractIncomingMessage, max_retries: int) -> bool:
        """
        Send a failed message back for another attempt.

        The message is republished with an incremented retry header and the
        original acknowledged. Once ``max_retries`` is reached it is rejected
        without requeue and lands on the dead-letter queue.

        Returns:
            True if requeued, False if dead-lettered.
        """
        retry_count = get_retry_count(message)
        if retry_count >= max_retries:
            logger.error(
                f"Message {message.message_id or message.delivery_tag} exhausted "
                f"{max_retries} retries, dead-lettering"
            )
            await message.reject(requeue=False)
            return False

        headers = dict(message.headers or {})
        headers[RETRY_HEADER] = retry_count + 1
        retry_message = Message(
            body=message.body,
            headers=headers,
            content_type=message.content_type,
            message_id=message.message_id,
            delivery_mode=DeliveryMode.PERSISTENT
        )

        try:
            await self.exchange.publish(retry_message, routing_key=config.INGESTION_ROUTING_KEY)
        except Exception as e:
            logger.error(f"Failed to republish message, requeueing instead: {e}")
            await message.nack(requeue=True)
            return True

        await message.ack()
        return True

    async def close(self):
        """Close RabbitMQ connection."""
        try:
            if self.queue and self.consumer_tag:
                await self.queue.cancel(self.consumer_tag)

            if self.channel and not self.channel.is_closed:
                await self.channel.close()
                logger.debug("Channel closed")

            if self.connection and not self.connection.is_closed:
                await self.connection.close()
                logger.info("RabbitMQ connection closed")

        except Exception as e:
            logger.error(f"Error closing RabbitMQ connection: {e}")

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
