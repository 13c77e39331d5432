"""Celery task-message client over AMQP channels.

Produces and consumes Celery protocol v1 task messages on a broker channel
supplied by the caller; no worker, no result backend.
"""
from __future__ import annotations

from celery_amqp.client import TaskClient
from celery_amqp.codec import decode_task, encode_task
from celery_amqp.errors import (
    BrokerError,
    CeleryAmqpError,
    DecodeError,
    EncodingError,
    IdGenerationError,
    MalformedMessageError,
    TimeFormatError,
)
from celery_amqp.models.task import Task, new_task
from celery_amqp.services.transport import (
    ConsumerState,
    DecodeErrorPolicy,
    TaskConsumer,
    consume_tasks,
    publish_task,
    start_consumer,
)

__all__ = [
    "BrokerError",
    "CeleryAmqpError",
    "ConsumerState",
    "DecodeError",
    "DecodeErrorPolicy",
    "EncodingError",
    "IdGenerationError",
    "MalformedMessageError",
    "Task",
    "TaskClient",
    "TaskConsumer",
    "TimeFormatError",
    "consume_tasks",
    "decode_task",
    "encode_task",
    "new_task",
    "publish_task",
    "start_consumer",
]
