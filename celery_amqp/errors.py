from __future__ import annotations


class CeleryAmqpError(Exception):
    """Base class for every error raised by this package."""


class IdGenerationError(CeleryAmqpError):
    """The task identifier source failed."""


class EncodingError(CeleryAmqpError):
    """A task could not be marshaled to its wire form."""


class DecodeError(CeleryAmqpError):
    """A message body could not be turned back into a task."""

    def __init__(self, message: str, *, body: bytes | None = None) -> None:
        super().__init__(message)
        self.body = body


class MalformedMessageError(DecodeError):
    """The body is not JSON, or the JSON does not have the task message shape."""


class TimeFormatError(DecodeError):
    """An ``eta``/``expires`` field is missing (strict mode) or unparseable."""

    def __init__(self, message: str, *, field: str, body: bytes | None = None) -> None:
        super().__init__(message, body=body)
        self.field = field


class BrokerError(CeleryAmqpError):
    """Raised by channel implementations when the broker refuses an operation."""
