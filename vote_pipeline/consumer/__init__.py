"""Queue consumer: batch processing of vote messages with partial failure reporting."""

from .batch_consumer import BatchConsumer, Disposition, QueueMessage

__all__ = ['BatchConsumer', 'Disposition', 'QueueMessage']
