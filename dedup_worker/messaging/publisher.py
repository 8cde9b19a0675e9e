"""Downstream publication of suspected-duplicate events."""

import uuid
from datetime import datetime, timezone

import pika
from loguru import logger
from pika.exceptions import AMQPError

from dedup_worker.config import RabbitMQSettings
from dedup_worker.exceptions import PublishError
from dedup_worker.messaging.connection import ConnectionManager
from dedup_worker.models import CandidateHit, CustomerType, DuplicateEvent, SourceRecord


EVENT_TYPE = "DuplicataSuspeita"


class DuplicateEventPublisher:
    """Builds one DuplicateEvent per accepted candidate and sends it to the outbound queue."""

    def __init__(
        self,
        connections: ConnectionManager,
        rabbitmq_settings: RabbitMQSettings | None = None,
    ):
        self.connections = connections
        self.settings = rabbitmq_settings or connections.settings

    def build_event(self, hit: CandidateHit) -> DuplicateEvent:
        """
        Build the downstream event for a candidate.

        Name and document are only filled for known customer types. Unknown
        types still produce an event, with those fields left out.
        """
        fields = {
            "customer_id": hit.candidate_id,
            "phone": hit.phone,
            "email": hit.email,
        }

        if hit.customer_type in (CustomerType.INDIVIDUAL, CustomerType.ORGANIZATION):
            fields["customer_type"] = hit.customer_type
            fields["full_name"] = hit.full_name
            fields["document_number"] = hit.document_number
        else:
            logger.warning(
                f"Unknown customer type {hit.customer_type.value!r} for candidate {hit.candidate_id}; "
                "publishing without name/document"
            )

        return DuplicateEvent(
            event_id=uuid.uuid4(),
            event_type=EVENT_TYPE,
            timestamp=datetime.now(timezone.utc),
            data=SourceRecord(**fields),
        )

    def publish(self, hit: CandidateHit) -> DuplicateEvent:
        """Build and send the event for `hit`."""
        event = self.build_event(hit)
        self.send(event)
        return event

    def send(self, event: DuplicateEvent, queue: str | None = None) -> None:
        """
        Send an event with persistent delivery mode.

        Raises:
            PublishError: When the broker rejects or drops the publish
            ConnectionFatalError: When no connection can be established
        """
        queue = queue or self.settings.outbound_queue
        body = event.to_json().encode("utf-8")

        try:
            channel = self.connections.channel()
            channel.basic_publish(
                exchange="",
                routing_key=queue,
                body=body,
                properties=pika.BasicProperties(
                    content_type="application/json",
                    delivery_mode=pika.DeliveryMode.Persistent,
                    message_id=str(event.event_id),
                ),
            )
        except AMQPError as exc:
            raise PublishError(f"Could not publish event {event.event_id} to {queue}: {exc!r}", queue=queue) from exc

        logger.info(f"Published {event.event_type} {event.event_id} to {queue}")
