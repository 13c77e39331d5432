from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from celery_amqp.config import Settings
from celery_amqp.config import settings as default_settings
from celery_amqp.ids import IdGenerator, uuid4_id
from celery_amqp.models.task import Task, new_task
from celery_amqp.ports import BrokerChannel, TaskSink
from celery_amqp.services.transport import (
    Clock,
    DecodeErrorPolicy,
    consume_tasks,
    publish_task,
    utcnow,
)

logger = logging.getLogger(__name__)


class TaskClient:
    """Celery-flavoured front door over a BrokerChannel.

    ``send_task`` mirrors ``Celery.send_task`` for the subset of options the
    v1 message body can carry: positional/keyword args, ``countdown``/``eta``
    and ``expires``. Exchange, routing key and queue fall back to Settings.
    """

    def __init__(
        self,
        channel: BrokerChannel,
        settings: Settings | None = None,
        *,
        id_generator: IdGenerator = uuid4_id,
        clock: Clock = utcnow,
    ) -> None:
        self._channel = channel
        self._settings = settings or default_settings
        self._id_generator = id_generator
        self._clock = clock

    def send_task(
        self,
        name: str,
        args: list[str] | None = None,
        kwargs: dict[str, Any] | None = None,
        *,
        countdown: float | None = None,
        eta: datetime | None = None,
        expires: datetime | float | None = None,
        exchange: str | None = None,
        routing_key: str | None = None,
    ) -> Task:
        if countdown is not None and eta is not None:
            raise ValueError("countdown and eta are mutually exclusive")

        now = self._clock()
        if countdown is not None:
            eta = now + timedelta(seconds=countdown)
        if expires is not None and not isinstance(expires, datetime):
            expires = now + timedelta(seconds=float(expires))

        task = new_task(
            name,
            args,
            kwargs,
            id_generator=self._id_generator,
            eta=eta,
            expires=expires,
        )

        exchange = self._settings.default_exchange if exchange is None else exchange
        routing_key = self._settings.default_routing_key if routing_key is None else routing_key

        publish_task(self._channel, exchange, routing_key, task, clock=self._clock)
        logger.info(
            "sent task %s id=%s exchange=%r routing_key=%r",
            task.task,
            task.id,
            exchange,
            routing_key,
        )
        return task

    def consume(
        self,
        output: TaskSink,
        *,
        queue: str | None = None,
        exchange: str | None = None,
        routing_key: str | None = None,
        on_decode_error: DecodeErrorPolicy = DecodeErrorPolicy.SKIP,
        errors: TaskSink | None = None,
        require_times: bool = False,
    ) -> int:
        """Block until the delivery stream closes; return the number of tasks emitted."""

        return consume_tasks(
            self._channel,
            self._settings.default_queue if queue is None else queue,
            self._settings.default_exchange if exchange is None else exchange,
            self._settings.default_routing_key if routing_key is None else routing_key,
            output,
            on_decode_error=on_decode_error,
            errors=errors,
            require_times=require_times,
        )
