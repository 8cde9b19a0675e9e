"""
Broker connection lifecycle.

ConnectionManager owns the single pika connection and channel used by the
consumer and the publisher. It is the only place that synchronizes access to
them: every caller goes through connection() / channel(), which lazily
(re)create the handles under one lock.
"""

import threading

import pika
from loguru import logger
from pika.exceptions import AMQPConnectionError, AMQPError
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from dedup_worker.config import RabbitMQSettings, settings
from dedup_worker.exceptions import ConnectionFatalError


class ConnectionManager:
    """
    Lazily connects to RabbitMQ and hands out a ready-to-use channel.

    The first connection (and any reconnection after the broker went away) is
    attempted a bounded number of times with a fixed delay. When the budget is
    spent a ConnectionFatalError is raised and nothing above this layer
    retries again.
    """

    def __init__(
        self,
        rabbitmq_settings: RabbitMQSettings | None = None,
        connection_factory=None,
    ):
        """
        Args:
            rabbitmq_settings: Broker settings (defaults to the global settings)
            connection_factory: Callable taking pika parameters and returning a
                connection; pika.BlockingConnection when not given
        """
        self.settings = rabbitmq_settings or settings.rabbitmq
        self._connection_factory = connection_factory or pika.BlockingConnection
        self._lock = threading.Lock()
        self._connection = None
        self._channel = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def queues(self) -> tuple[str, ...]:
        return (
            self.settings.inbound_queue,
            self.settings.outbound_queue,
            self.settings.dead_letter_queue,
        )

    def parameters(self) -> pika.ConnectionParameters:
        """Build pika connection parameters from settings."""
        return pika.ConnectionParameters(
            host=self.settings.host,
            port=self.settings.port,
            virtual_host=self.settings.vhost,
            credentials=pika.PlainCredentials(self.settings.username, self.settings.password),
            heartbeat=self.settings.heartbeat,
            blocked_connection_timeout=self.settings.blocked_connection_timeout,
        )

    def _log_retry(self, retry_state) -> None:
        exc = retry_state.outcome.exception()
        logger.warning(
            f"RabbitMQ connection attempt {retry_state.attempt_number}/{self.settings.connect_attempts} "
            f"failed ({exc!r}); retrying in {self.settings.connect_retry_delay}s"
        )

    def _connect(self):
        params = self.parameters()
        retrying = Retrying(
            stop=stop_after_attempt(self.settings.connect_attempts),
            wait=wait_fixed(self.settings.connect_retry_delay),
            retry=retry_if_exception_type(AMQPConnectionError),
            before_sleep=self._log_retry,
        )

        try:
            connection = retrying(self._connection_factory, params)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            logger.critical(
                f"Could not connect to RabbitMQ at {self.settings.host}:{self.settings.port} "
                f"after {self.settings.connect_attempts} attempts"
            )
            raise ConnectionFatalError(
                f"RabbitMQ unreachable after {self.settings.connect_attempts} attempts: {last!r}",
                attempts=self.settings.connect_attempts,
            ) from last

        logger.info(f"Connected to RabbitMQ at {self.settings.host}:{self.settings.port}")
        return connection

    def connection(self):
        """Return a live connection, connecting first if there is none or it closed."""
        connection = self._connection
        if connection is not None and connection.is_open:
            return connection

        with self._lock:
            if self._connection is None or not self._connection.is_open:
                if self._connection is not None:
                    logger.warning("RabbitMQ connection was closed; reconnecting")
                self._connection = self._connect()
                # Channels never outlive their connection
                self._channel = None
            return self._connection

    def channel(self):
        """
        Return an open channel with prefetch 1 and all queues declared.

        A stale channel (closed by the broker or by a lost connection) is
        replaced rather than reused.
        """
        channel = self._channel
        if channel is not None and channel.is_open:
            return channel

        connection = self.connection()

        with self._lock:
            if self._channel is None or not self._channel.is_open:
                channel = connection.channel()
                channel.basic_qos(prefetch_count=self.settings.prefetch_count)
                for queue in self.queues:
                    channel.queue_declare(
                        queue=queue,
                        durable=True,
                        exclusive=False,
                        auto_delete=False,
                    )
                self._channel = channel
                logger.debug(f"Opened channel, declared queues: {', '.join(self.queues)}")
            return self._channel

    def reset(self) -> None:
        """Drop cached handles so the next call re-derives them."""
        with self._lock:
            self._channel = None
            if self._connection is not None and not self._connection.is_open:
                self._connection = None

    def close(self) -> None:
        """Close channel and connection, ignoring handles that are already gone."""
        with self._lock:
            for handle in (self._channel, self._connection):
                if handle is None or not handle.is_open:
                    continue
                try:
                    handle.close()
                except AMQPError as exc:
                    logger.debug(f"Ignoring error while closing {handle!r}: {exc}")
            self._channel = None
            self._connection = None
