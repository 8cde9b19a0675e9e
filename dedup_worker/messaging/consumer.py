"""
Inbound event consumer.

Subscribes to the inbound queue with manual acknowledgement and prefetch 1,
so a consumer instance processes exactly one message at a time.
"""

import functools
import threading
from collections.abc import Callable

import pika
from loguru import logger
from pika.exceptions import AMQPChannelError, AMQPConnectionError
from pydantic import ValidationError

from dedup_worker.config import RabbitMQSettings
from dedup_worker.exceptions import ConnectionFatalError, MalformedMessageError
from dedup_worker.messaging.connection import ConnectionManager
from dedup_worker.models import InboundEvent


EventHandler = Callable[[InboundEvent], object]


class EventConsumer:
    """
    Drives a handler from the inbound queue.

    Outcomes per delivery:
    - handler returns: ack
    - handler raises: nack with requeue (at-least-once)
    - body cannot be decoded: copy to the dead-letter queue, then ack
    - handler failed more than `max_redeliveries` times for the same event
      (when the cap is enabled): copy to the dead-letter queue, then ack
    - handler raises ConnectionFatalError: consuming stops and the error propagates
    """

    def __init__(
        self,
        connections: ConnectionManager,
        rabbitmq_settings: RabbitMQSettings | None = None,
    ):
        self.connections = connections
        self.settings = rabbitmq_settings or connections.settings
        self._stopping = threading.Event()
        self._channel = None
        self._consumer_tag = None

        # event id -> consecutive handler failures, only kept when capped
        self._failures: dict[str, int] = {}

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    @staticmethod
    def decode(body: bytes) -> InboundEvent:
        """Decode a delivery body, raising MalformedMessageError when it is not an event."""
        try:
            return InboundEvent.from_json(body)
        except (ValidationError, UnicodeDecodeError, ValueError) as exc:
            raise MalformedMessageError(f"Undecodable event payload: {exc}", body=body) from exc

    def start_consuming(self, handler: EventHandler) -> None:
        """
        Block consuming the inbound queue until stop() is called.

        If the channel or connection is lost mid-session a fresh channel is
        derived and consuming resumes; reconnecting is bounded by the
        connection manager's retry budget.
        """
        self._stopping.clear()

        while not self._stopping.is_set():
            channel = self.connections.channel()
            self._channel = channel
            self._consumer_tag = channel.basic_consume(
                queue=self.settings.inbound_queue,
                on_message_callback=functools.partial(self._on_message, handler=handler),
                auto_ack=False,
            )
            logger.info(f"Consuming from {self.settings.inbound_queue} (prefetch={self.settings.prefetch_count})")

            try:
                channel.start_consuming()
            except (AMQPConnectionError, AMQPChannelError) as exc:
                if self._stopping.is_set():
                    break
                logger.warning(f"Lost broker channel while consuming: {exc!r}; re-deriving")
                self.connections.reset()
                continue

            break

        logger.info("Consumer stopped")

    def stop(self) -> None:
        """
        Stop taking new messages.

        An in-flight handler call is not interrupted; deliveries that arrive
        after this point are requeued untouched.
        """
        self._stopping.set()
        channel = self._channel
        if channel is not None and channel.is_open:
            channel.connection.add_callback_threadsafe(channel.stop_consuming)

    def _on_message(self, channel, method, properties, body: bytes, handler: EventHandler) -> None:
        delivery_tag = method.delivery_tag

        if self._stopping.is_set():
            channel.basic_nack(delivery_tag=delivery_tag, requeue=True)
            return

        try:
            event = self.decode(body)
        except MalformedMessageError as exc:
            logger.error(f"Dead-lettering malformed message (tag={delivery_tag}): {exc}")
            self._dead_letter(channel, body, reason=str(exc))
            channel.basic_ack(delivery_tag=delivery_tag)
            return

        key = str(event.event_id)
        logger.debug(f"Received event {key} ({event.event_type}), redelivered={method.redelivered}")

        try:
            handler(event)
        except ConnectionFatalError:
            raise
        except Exception as exc:
            if self._exceeded_redeliveries(key):
                logger.error(
                    f"Event {key} failed more than {self.settings.max_redeliveries} redeliveries; dead-lettering"
                )
                self._dead_letter(channel, body, reason=f"{type(exc).__name__}: {exc}")
                channel.basic_ack(delivery_tag=delivery_tag)
                return

            logger.opt(exception=exc).error(f"Failed to process event {key}; requeueing")
            channel.basic_nack(delivery_tag=delivery_tag, requeue=True)
            return

        self._failures.pop(key, None)
        channel.basic_ack(delivery_tag=delivery_tag)

    def _exceeded_redeliveries(self, key: str) -> bool:
        cap = self.settings.max_redeliveries
        if cap <= 0:
            return False

        failures = self._failures.get(key, 0) + 1
        if failures > cap:
            self._failures.pop(key, None)
            return True

        self._failures[key] = failures
        return False

    def _dead_letter(self, channel, body: bytes, reason: str) -> None:
        channel.basic_publish(
            exchange="",
            routing_key=self.settings.dead_letter_queue,
            body=body,
            properties=pika.BasicProperties(
                delivery_mode=pika.DeliveryMode.Persistent,
                headers={"x-dead-letter-reason": reason[:500]},
            ),
        )
