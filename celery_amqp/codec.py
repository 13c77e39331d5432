"""Task <-> wire bytes.

The JSON body follows Celery's task message protocol v1: ``task`` and ``id``
are always present, everything else is omitted when empty so that a worker
can tell "not provided" apart from "provided but empty".
"""
from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from celery_amqp.errors import EncodingError, MalformedMessageError, TimeFormatError
from celery_amqp.models.task import Task
from celery_amqp.schemas.task import TaskMessage

TIME_FIELDS = ("eta", "expires")


def encode_task(task: Task) -> bytes:
    try:
        payload = TaskMessage.from_task(task).to_wire()
    except ValidationError as e:
        raise EncodingError(f"task {task.id} does not fit the message schema: {e}") from e

    try:
        return json.dumps(payload, ensure_ascii=False, allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncodingError(f"task {task.id} is not JSON-representable: {e}") from e


def decode_task(body: bytes | str, *, require_times: bool = False) -> Task:
    """Rebuild a Task from a message body.

    With ``require_times`` both ``eta`` and ``expires`` must be present; by
    default a missing time field simply decodes to ``None``.
    """

    raw = body.encode("utf-8") if isinstance(body, str) else body

    try:
        data: Any = json.loads(raw)
    except (ValueError, RecursionError) as e:
        raise MalformedMessageError(f"message body is not valid JSON: {e}", body=raw) from e

    if not isinstance(data, dict):
        raise MalformedMessageError(
            f"message body must be a JSON object, got {type(data).__name__}", body=raw
        )

    if require_times:
        for name in TIME_FIELDS:
            if data.get(name) is None:
                raise TimeFormatError(f"{name} is required", field=name, body=raw)

    try:
        message = TaskMessage.model_validate(data)
    except TimeFormatError as e:
        e.body = raw
        raise
    except ValidationError as e:
        raise MalformedMessageError(f"message does not match the task schema: {e}", body=raw) from e
    except RecursionError as e:
        raise MalformedMessageError("message is nested too deeply", body=raw) from e

    return message.to_task()
