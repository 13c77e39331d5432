from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_serializer, field_validator

from celery_amqp.errors import TimeFormatError
from celery_amqp.models.task import Task, as_utc

# Celery v1 message timestamps: UTC, microseconds, no offset suffix.
TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"
_TIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{6}$")


def format_timestamp(value: datetime) -> str:
    return as_utc(value).strftime(TIME_FORMAT)


def parse_timestamp(raw: Any, *, field: str = "timestamp") -> datetime:
    """Parse a wire timestamp into an aware UTC datetime.

    Only the canonical ``YYYY-MM-DDTHH:MM:SS.ffffff`` form is accepted; a
    timezone suffix or a shorter fraction is a TimeFormatError.
    """

    if not isinstance(raw, str) or not _TIME_RE.match(raw):
        raise TimeFormatError(f"{field} is not in {TIME_FORMAT} form: {raw!r}", field=field)
    try:
        parsed = datetime.strptime(raw, TIME_FORMAT)
    except ValueError as e:
        # Matches the pattern but is not a real date (e.g. month 13).
        raise TimeFormatError(f"{field} is not a valid timestamp: {raw!r}", field=field) from e
    return parsed.replace(tzinfo=timezone.utc)


class TaskMessage(BaseModel):
    """Celery task message body (protocol v1 layout)."""

    model_config = ConfigDict(extra="ignore")

    task: str = Field(min_length=1)
    id: str = Field(min_length=1)

    args: list[str] | None = None
    kwargs: dict[str, Any] | None = None
    retries: int | None = Field(default=None, ge=0)

    eta: datetime | None = None
    expires: datetime | None = None

    @field_validator("eta", "expires", mode="before")
    @classmethod
    def _parse_wire_time(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None or isinstance(value, datetime):
            return value
        return parse_timestamp(value, field=info.field_name)

    @field_serializer("eta", "expires")
    def _format_wire_time(self, value: datetime | None) -> str | None:
        return format_timestamp(value) if value is not None else None

    @classmethod
    def from_task(cls, task: Task) -> "TaskMessage":
        # Empty/zero values become None so they are omitted from the wire form.
        return cls(
            task=task.task,
            id=task.id,
            args=list(task.args) or None,
            kwargs=dict(task.kwargs) or None,
            retries=task.retries or None,
            eta=task.eta,
            expires=task.expires,
        )

    def to_task(self) -> Task:
        return Task(
            task=self.task,
            id=self.id,
            args=list(self.args or []),
            kwargs=dict(self.kwargs or {}),
            retries=self.retries or 0,
            eta=self.eta,
            expires=self.expires,
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)
