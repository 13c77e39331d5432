from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from datetime import datetime, timezone
from enum import Enum

from celery_amqp.codec import decode_task, encode_task
from celery_amqp.errors import DecodeError
from celery_amqp.models.task import Task
from celery_amqp.ports import (
    JSON_CONTENT_TYPE,
    PERSISTENT,
    UTF8,
    BrokerChannel,
    Delivery,
    OutgoingMessage,
    TaskSink,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def publish_task(
    channel: BrokerChannel,
    exchange: str,
    routing_key: str,
    task: Task,
    *,
    clock: Clock = utcnow,
) -> None:
    """Publish ``task`` as a persistent JSON message.

    Encoding happens first, so an EncodingError means nothing was sent.
    Whatever ``channel.publish`` raises is left untouched for the caller.
    No publisher confirm is awaited.
    """

    body = encode_task(task)
    message = OutgoingMessage(
        body=body,
        timestamp=clock(),
        delivery_mode=PERSISTENT,
        content_type=JSON_CONTENT_TYPE,
        content_encoding=UTF8,
    )
    channel.publish(exchange, routing_key, message)
    logger.debug(
        "published task=%s id=%s exchange=%r routing_key=%r bytes=%s",
        task.task,
        task.id,
        exchange,
        routing_key,
        len(body),
    )


class ConsumerState(str, Enum):
    UNBOUND = "unbound"
    BOUND = "bound"
    STREAMING = "streaming"
    CLOSED = "closed"


class DecodeErrorPolicy(str, Enum):
    """What the consume loop does with a delivery it cannot decode.

    - SKIP: log, ack, emit nothing.
    - REJECT: log, reject without requeue (lets the broker dead-letter it).
    - REPORT: put the DecodeError on the error sink, then ack.
    """

    SKIP = "skip"
    REJECT = "reject"
    REPORT = "report"


class TaskConsumer:
    """Drains one queue into a task sink.

    Lifecycle: UNBOUND -> BOUND -> STREAMING -> CLOSED. A bind or stream-open
    failure moves straight to CLOSED and re-raises. The streaming loop only
    ends when the channel's delivery stream ends; there is no cancel method,
    closing the underlying channel/connection is how a caller stops it.
    """

    def __init__(
        self,
        channel: BrokerChannel,
        queue: str,
        exchange: str,
        routing_key: str,
        *,
        on_decode_error: DecodeErrorPolicy = DecodeErrorPolicy.SKIP,
        errors: TaskSink | None = None,
        require_times: bool = False,
    ) -> None:
        if on_decode_error is DecodeErrorPolicy.REPORT and errors is None:
            raise ValueError("DecodeErrorPolicy.REPORT needs an errors sink")

        self._channel = channel
        self.queue = queue
        self.exchange = exchange
        self.routing_key = routing_key
        self._policy = on_decode_error
        self._errors = errors
        self._require_times = require_times

        self.state = ConsumerState.UNBOUND
        self.emitted = 0

    def run(self, output: TaskSink) -> int:
        """Consume until the delivery stream closes; return how many tasks were emitted."""

        if self.state is not ConsumerState.UNBOUND:
            raise RuntimeError(f"consumer already ran (state={self.state.value})")

        try:
            self._channel.queue_bind(self.queue, self.routing_key, self.exchange)
        except Exception:
            self.state = ConsumerState.CLOSED
            logger.exception(
                "queue_bind failed queue=%r exchange=%r routing_key=%r",
                self.queue,
                self.exchange,
                self.routing_key,
            )
            raise
        self.state = ConsumerState.BOUND

        try:
            deliveries = self._channel.open_delivery_stream(
                self.queue, manual_ack=True, exclusive=False
            )
        except Exception:
            self.state = ConsumerState.CLOSED
            logger.exception("opening delivery stream failed queue=%r", self.queue)
            raise
        self.state = ConsumerState.STREAMING
        logger.info(
            "consuming queue=%r exchange=%r routing_key=%r",
            self.queue,
            self.exchange,
            self.routing_key,
        )

        try:
            for delivery in deliveries:
                self._handle(delivery, output)
        finally:
            self.state = ConsumerState.CLOSED

        logger.info("delivery stream closed queue=%r emitted=%s", self.queue, self.emitted)
        return self.emitted

    def _handle(self, delivery: Delivery, output: TaskSink) -> None:
        try:
            task = decode_task(delivery.body, require_times=self._require_times)
        except DecodeError as e:
            self._handle_decode_error(delivery, e)
            return

        # put() may block on a bounded sink; the ack waits until hand-off.
        output.put(task)
        self.emitted += 1
        self._channel.ack(delivery.delivery_tag)

    def _handle_decode_error(self, delivery: Delivery, error: DecodeError) -> None:
        logger.warning(
            "undecodable delivery queue=%r delivery_tag=%s policy=%s error=%s",
            self.queue,
            delivery.delivery_tag,
            self._policy.value,
            error,
        )

        if self._policy is DecodeErrorPolicy.REJECT:
            self._channel.reject(delivery.delivery_tag, requeue=False)
            return

        if self._policy is DecodeErrorPolicy.REPORT:
            self._errors.put(error)

        self._channel.ack(delivery.delivery_tag)


def consume_tasks(
    channel: BrokerChannel,
    queue: str,
    exchange: str,
    routing_key: str,
    output: TaskSink,
    *,
    on_decode_error: DecodeErrorPolicy = DecodeErrorPolicy.SKIP,
    errors: TaskSink | None = None,
    require_times: bool = False,
) -> int:
    consumer = TaskConsumer(
        channel,
        queue,
        exchange,
        routing_key,
        on_decode_error=on_decode_error,
        errors=errors,
        require_times=require_times,
    )
    return consumer.run(output)


def start_consumer(
    channel: BrokerChannel,
    queue: str,
    exchange: str,
    routing_key: str,
    output: TaskSink,
    **kwargs,
) -> Future:
    """Run ``consume_tasks`` on a daemon thread.

    The returned future resolves to the emitted-task count when the delivery
    stream closes, or carries whatever the consumer raised (bind and
    stream-open failures included).
    """

    future: Future = Future()

    def _run() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            emitted = consume_tasks(channel, queue, exchange, routing_key, output, **kwargs)
        except Exception as e:
            future.set_exception(e)
        else:
            future.set_result(emitted)

    thread = threading.Thread(target=_run, name=f"celery-amqp-consumer:{queue}", daemon=True)
    thread.start()
    return future
