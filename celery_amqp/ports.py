"""Broker ports.

The transport code only needs four things from an open AMQP channel: publish,
bind a queue, open a delivery stream, and acknowledge. Connection setup,
credentials and reconnection stay with whoever hands us the channel.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

PERSISTENT = 2

JSON_CONTENT_TYPE = "application/json"
UTF8 = "utf-8"


@dataclass(frozen=True)
class OutgoingMessage:
    body: bytes
    timestamp: datetime
    delivery_mode: int = PERSISTENT
    content_type: str = JSON_CONTENT_TYPE
    content_encoding: str = UTF8


@dataclass(frozen=True)
class Delivery:
    """One message received from a queue, awaiting acknowledgment."""

    body: bytes
    delivery_tag: Any
    content_type: str | None = None
    content_encoding: str | None = None


class BrokerChannel(Protocol):
    def publish(self, exchange: str, routing_key: str, message: OutgoingMessage) -> None: ...

    def queue_bind(self, queue: str, routing_key: str, exchange: str) -> None: ...

    def open_delivery_stream(
        self,
        queue: str,
        *,
        manual_ack: bool = True,
        exclusive: bool = False,
    ) -> Iterable[Delivery]: ...

    def ack(self, delivery_tag: Any) -> None: ...

    def reject(self, delivery_tag: Any, requeue: bool = False) -> None: ...


class TaskSink(Protocol):
    """Where decoded tasks (or decode errors) go; ``queue.Queue`` fits."""

    def put(self, item: Any) -> None: ...
