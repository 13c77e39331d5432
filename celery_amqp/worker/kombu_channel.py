from __future__ import annotations

import contextlib
import logging
import socket
from collections import deque
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from kombu import Connection, Consumer, Producer, Queue

from celery_amqp.config import Settings
from celery_amqp.errors import BrokerError
from celery_amqp.ports import Delivery, OutgoingMessage

if TYPE_CHECKING:
    from celery import Celery

logger = logging.getLogger(__name__)


class KombuChannel:
    """BrokerChannel on top of a kombu connection.

    Notes:
    - Everything goes through ``connection.default_channel``; like any AMQP
      channel it must not be shared across threads without external locking.
    - The delivery stream ends when kombu reports the connection/channel as
      gone, or after ``idle_timeout`` seconds without a delivery.
    """

    def __init__(self, connection: Connection, *, idle_timeout: float | None = None) -> None:
        self._connection = connection
        self.idle_timeout = idle_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "KombuChannel":
        return cls(Connection(settings.broker_url), idle_timeout=settings.idle_timeout)

    @classmethod
    def from_celery_app(cls, app: "Celery", *, idle_timeout: float | None = None) -> "KombuChannel":
        """Reuse the broker configuration of an existing Celery app."""

        return cls(app.connection_for_write(), idle_timeout=idle_timeout)

    @property
    def connection(self) -> Connection:
        return self._connection

    def close(self) -> None:
        self._connection.release()

    def __enter__(self) -> "KombuChannel":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _broker_errors(self) -> tuple[type[BaseException], ...]:
        return tuple(self._connection.connection_errors) + tuple(self._connection.channel_errors)

    def publish(self, exchange: str, routing_key: str, message: OutgoingMessage) -> None:
        try:
            producer = Producer(self._connection.default_channel, auto_declare=False)
            producer.publish(
                message.body,
                exchange=exchange,
                routing_key=routing_key,
                delivery_mode=message.delivery_mode,
                content_type=message.content_type,
                content_encoding=message.content_encoding,
                timestamp=message.timestamp,
            )
        except self._broker_errors() as e:
            raise BrokerError(f"publish to exchange={exchange!r} routing_key={routing_key!r} failed: {e}") from e

    def queue_bind(self, queue: str, routing_key: str, exchange: str) -> None:
        try:
            self._connection.default_channel.queue_bind(
                queue=queue,
                exchange=exchange,
                routing_key=routing_key,
            )
        except self._broker_errors() as e:
            raise BrokerError(f"binding queue={queue!r} to exchange={exchange!r} failed: {e}") from e

    def open_delivery_stream(
        self,
        queue: str,
        *,
        manual_ack: bool = True,
        exclusive: bool = False,
    ) -> Iterator[Delivery]:
        if exclusive:
            raise ValueError("exclusive consumers are not supported")

        pending: deque = deque()

        try:
            consumer = Consumer(
                self._connection.default_channel,
                queues=[Queue(queue, no_declare=True)],
                no_ack=not manual_ack,
                auto_declare=False,
                on_message=pending.append,
            )
            consumer.consume()
        except self._broker_errors() as e:
            raise BrokerError(f"consuming from queue={queue!r} failed: {e}") from e

        return self._drain(consumer, pending)

    def _drain(self, consumer: Consumer, pending: deque) -> Iterator[Delivery]:
        errors = self._broker_errors()
        try:
            while True:
                while pending:
                    message = pending.popleft()
                    body = message.body
                    if isinstance(body, str):
                        body = body.encode(message.content_encoding or "utf-8")
                    yield Delivery(
                        body=body,
                        delivery_tag=message.delivery_tag,
                        content_type=message.content_type,
                        content_encoding=message.content_encoding,
                    )

                try:
                    self._connection.drain_events(timeout=self.idle_timeout)
                except socket.timeout:
                    logger.info("no delivery for %ss; ending delivery stream", self.idle_timeout)
                    return
                except errors as e:
                    logger.info("delivery stream closed by broker: %s", e)
                    return
        finally:
            with contextlib.suppress(*errors):
                consumer.cancel()

    def ack(self, delivery_tag: Any) -> None:
        self._connection.default_channel.basic_ack(delivery_tag)

    def reject(self, delivery_tag: Any, requeue: bool = False) -> None:
        self._connection.default_channel.basic_reject(delivery_tag, requeue=requeue)
