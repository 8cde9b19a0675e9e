"""RabbitMQ connection, consumer and publisher."""

from dedup_worker.messaging.connection import ConnectionManager
from dedup_worker.messaging.consumer import EventConsumer
from dedup_worker.messaging.publisher import DuplicateEventPublisher

__all__ = [
    "ConnectionManager",
    "EventConsumer",
    "DuplicateEventPublisher",
]
