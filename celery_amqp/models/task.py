from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from celery_amqp.errors import IdGenerationError
from celery_amqp.ids import IdGenerator, uuid4_id


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime.

    Naive datetimes are taken to already be in UTC (Celery's ``enable_utc``
    convention) rather than in the host's local time.
    """

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Task:
    """A single Celery task invocation.

    Frozen so that ``id`` can never change after construction; use
    ``dataclasses.replace`` to derive a modified copy (the copy keeps the id).
    """

    task: str
    id: str
    args: list[str] = field(default_factory=list)
    kwargs: dict[str, Any] = field(default_factory=dict)
    retries: int = 0
    eta: datetime | None = None
    expires: datetime | None = None

    def __post_init__(self) -> None:
        if not self.task:
            raise ValueError("task name is required")
        if not self.id:
            raise ValueError("task id is required")
        if self.retries < 0:
            raise ValueError("retries must be >= 0")

        # Normalise optional collections so encoders never see None.
        if self.args is None:
            object.__setattr__(self, "args", [])
        if self.kwargs is None:
            object.__setattr__(self, "kwargs", {})
        if self.eta is not None:
            object.__setattr__(self, "eta", as_utc(self.eta))
        if self.expires is not None:
            object.__setattr__(self, "expires", as_utc(self.expires))

    def is_due(self, now: datetime) -> bool:
        return self.eta is None or as_utc(now) >= self.eta

    def is_expired(self, now: datetime) -> bool:
        return self.expires is not None and as_utc(now) > self.expires


def new_task(
    name: str,
    args: list[str] | None = None,
    kwargs: dict[str, Any] | None = None,
    *,
    id_generator: IdGenerator = uuid4_id,
    eta: datetime | None = None,
    expires: datetime | None = None,
) -> Task:
    """Create a task with a freshly generated id and ``retries=0``.

    Raises IdGenerationError if ``id_generator`` fails or hands back something
    that is not a non-empty string.
    """

    try:
        task_id = id_generator()
    except Exception as e:
        raise IdGenerationError(f"failed to generate task id: {e}") from e

    if not isinstance(task_id, str) or not task_id:
        raise IdGenerationError(f"id generator returned an invalid id: {task_id!r}")

    return Task(
        task=name,
        id=task_id,
        args=list(args or []),
        kwargs=dict(kwargs or {}),
        eta=eta,
        expires=expires,
    )
