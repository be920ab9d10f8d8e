"""RabbitMQ publisher for vote messages."""
import logging
from datetime import datetime, timezone
from typing import Optional

import aio_pika
from aio_pika import DeliveryMode, Message, connect_robust
from aio_pika.pool import Pool

from ..shared.models import VoteMessage, get_ingestion_queue_arguments
from .config import settings

logger = logging.getLogger(__name__)


class RabbitMQPublisher:
    """Async RabbitMQ publisher with connection pooling."""

    def __init__(self):
        self.connection_pool: Optional[Pool] = None
        self.channel_pool: Optional[Pool] = None

    async def get_connection(self) -> aio_pika.abc.AbstractRobustConnection:
        """Open a robust connection for the pool."""
        return await connect_robust(settings.rabbitmq_url)

    async def get_channel(self) -> aio_pika.abc.AbstractChannel:
        """Open a channel on a pooled connection; unroutable publishes raise."""
        async with self.connection_pool.acquire() as connection:
            return await connection.channel(on_return_raises=True)

    async def declare_topology(self, channel: aio_pika.abc.AbstractChannel):
        """
        Declare the exchange, the ingestion queue and its dead-letter path.

        Votes accepted before any consumer has started are buffered in the
        queue instead of being dropped as unroutable.
        """
        dead_letter_exchange = await channel.declare_exchange(
            settings.RABBITMQ_DEAD_LETTER_EXCHANGE,
            aio_pika.ExchangeType.FANOUT,
            durable=True
        )
        dead_letter_queue = await channel.declare_queue(settings.RABBITMQ_DEAD_LETTER_QUEUE, durable=True)
        await dead_letter_queue.bind(dead_letter_exchange)

        exchange = await channel.declare_exchange(
            settings.RABBITMQ_EXCHANGE,
            aio_pika.ExchangeType.TOPIC,
            durable=True
        )
        queue = await channel.declare_queue(
            settings.RABBITMQ_QUEUE,
            durable=True,
            arguments=get_ingestion_queue_arguments(settings.RABBITMQ_DEAD_LETTER_EXCHANGE)
        )
        await queue.bind(exchange, routing_key=settings.RABBITMQ_ROUTING_KEY)

    async def initialize(self):
        """Initialize connection and channel pools and declare the topology."""
        try:
            self.connection_pool = Pool(
                self.get_connection,
                max_size=settings.RABBITMQ_POOL_SIZE
            )
            self.channel_pool = Pool(
                self.get_channel,
                max_size=settings.RABBITMQ_POOL_SIZE
            )

            async with self.channel_pool.acquire() as channel:
                await self.declare_topology(channel)

            logger.info("RabbitMQ publisher initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize RabbitMQ publisher: {e}")
            raise

    async def publish_vote(self, vote: VoteMessage) -> bool:
        """
        Publish a vote message to the ingestion exchange.

        Args:
            vote: Validated vote message

        Returns:
            bool: True if the broker routed and confirmed the message, False otherwise
        """
        if self.channel_pool is None:
            logger.error("Publisher used before initialize()")
            return False

        try:
            async with self.channel_pool.acquire() as channel:
                exchange = await channel.get_exchange(settings.RABBITMQ_EXCHANGE)

                message = Message(
                    body=vote.to_json().encode(),
                    delivery_mode=DeliveryMode.PERSISTENT,
                    content_type="application/json",
                    timestamp=datetime.now(timezone.utc)
                )

                await exchange.publish(
                    message,
                    routing_key=settings.RABBITMQ_ROUTING_KEY,
                    mandatory=True
                )

                logger.debug(f"Published vote to RabbitMQ: voter={vote.voter_id}, candidate={vote.candidate_id}")
                return True

        except Exception as e:
            logger.error(f"Failed to publish vote to RabbitMQ: {e}")
            return False

    async def check_health(self) -> bool:
        """
        Check RabbitMQ connection health.

        Returns:
            bool: True if healthy, False otherwise
        """
        if self.channel_pool is None:
            return False
        try:
            async with self.channel_pool.acquire() as channel:
                await channel.get_exchange(settings.RABBITMQ_EXCHANGE)
                return True
        except Exception as e:
            logger.error(f"RabbitMQ health check failed: {e}")
            return False

    async def close(self):
        """Close all connections and channels."""
        try:
            if self.channel_pool:
                await self.channel_pool.close()
            if self.connection_pool:
                await self.connection_pool.close()
            logger.info("RabbitMQ publisher closed successfully")
        except Exception as e:
            logger.error(f"Error closing RabbitMQ publisher: {e}")
