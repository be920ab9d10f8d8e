"""Tests for the API's RabbitMQ publisher against mocked channels."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from aio_pika import ExchangeType
from aio_pika.exceptions import DeliveryError
from pamqp.commands import Basic

from vote_pipeline.ingestion_api.config import settings
from vote_pipeline.ingestion_api.publisher import RabbitMQPublisher
from vote_pipeline.shared.models import VoteMessage, get_ingestion_queue_arguments


class FakePool:
    """Stands in for aio_pika.pool.Pool, always handing out the same channel."""

    def __init__(self, channel):
        self.channel = channel

    @asynccontextmanager
    async def acquire(self):
        yield self.channel


def make_channel():
    channel = MagicMock()
    channel.declare_exchange = AsyncMock(side_effect=lambda name, *args, **kwargs: MagicMock(name=name))
    channel.declare_queue = AsyncMock(side_effect=lambda name, **kwargs: MagicMock(bind=AsyncMock()))
    exchange = MagicMock()
    exchange.publish = AsyncMock()
    channel.get_exchange = AsyncMock(return_value=exchange)
    return channel, exchange


@pytest.mark.asyncio
class TestDeclareTopology:

    async def test_ingestion_queue_declared_and_bound(self):
        channel, _ = make_channel()

        await RabbitMQPublisher().declare_topology(channel)

        queues = {call.args[0]: call for call in channel.declare_queue.await_args_list}
        assert set(queues) == {settings.RABBITMQ_QUEUE, settings.RABBITMQ_DEAD_LETTER_QUEUE}

        ingestion = queues[settings.RABBITMQ_QUEUE]
        assert ingestion.kwargs["durable"] is True
        assert ingestion.kwargs["arguments"] == get_ingestion_queue_arguments(settings.RABBITMQ_DEAD_LETTER_EXCHANGE)

        exchange_types = {call.args[0]: call.args[1] for call in channel.declare_exchange.await_args_list}
        assert exchange_types == {
            settings.RABBITMQ_EXCHANGE: ExchangeType.TOPIC,
            settings.RABBITMQ_DEAD_LETTER_EXCHANGE: ExchangeType.FANOUT,
        }

    async def test_ingestion_queue_bound_with_routing_key(self):
        channel, _ = make_channel()
        queue = MagicMock(bind=AsyncMock())
        channel.declare_queue = AsyncMock(return_value=queue)

        await RabbitMQPublisher().declare_topology(channel)

        routing_keys = [call.kwargs.get("routing_key") for call in queue.bind.await_args_list]
        assert settings.RABBITMQ_ROUTING_KEY in routing_keys


@pytest.mark.asyncio
class TestPublishVote:

    async def test_publish_is_mandatory(self):
        channel, exchange = make_channel()
        publisher = RabbitMQPublisher()
        publisher.channel_pool = FakePool(channel)

        assert await publisher.publish_vote(VoteMessage("u1", "candA")) is True

        assert exchange.publish.await_args.kwargs["mandatory"] is True
        assert exchange.publish.await_args.kwargs["routing_key"] == settings.RABBITMQ_ROUTING_KEY

    async def test_unroutable_vote_reports_failure(self):
        channel, exchange = make_channel()
        exchange.publish.side_effect = DeliveryError(None, Basic.Return(
            reply_code=312,
            reply_text="NO_ROUTE",
            exchange=settings.RABBITMQ_EXCHANGE,
            routing_key=settings.RABBITMQ_ROUTING_KEY
        ))
        publisher = RabbitMQPublisher()
        publisher.channel_pool = FakePool(channel)

        assert await publisher.publish_vote(VoteMessage("u1", "candA")) is False

    async def test_uninitialized_publisher_reports_failure(self):
        assert await RabbitMQPublisher().publish_vote(VoteMessage("u1", "candA")) is False
