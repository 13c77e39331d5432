import queue

import pytest

from celery_amqp.codec import encode_task
from celery_amqp.errors import BrokerError, MalformedMessageError
from celery_amqp.models.task import new_task
from celery_amqp.ports import Delivery
from celery_amqp.services.transport import (
    ConsumerState,
    DecodeErrorPolicy,
    TaskConsumer,
    consume_tasks,
    start_consumer,
)
from tests._channel import RecordingSink, StubChannel


def _deliveries(*tasks):
    return [Delivery(body=encode_task(t), delivery_tag=i + 1) for i, t in enumerate(tasks)]


def test_consume_emits_in_order_and_acks_each_delivery():
    tasks = [new_task("tasks.add", [str(i)]) for i in range(3)]
    channel = StubChannel(_deliveries(*tasks))
    out: queue.Queue = queue.Queue()

    emitted = consume_tasks(channel, "celery", "tasks", "celery", out)

    assert emitted == 3
    received = [out.get_nowait() for _ in range(3)]
    assert [t.id for t in received] == [t.id for t in tasks]
    assert received == tasks
    assert channel.acks == [1, 2, 3]
    assert channel.calls[0] == ("queue_bind", "celery", "celery", "tasks")
    assert channel.calls[1] == ("open_delivery_stream", "celery", True, False)


def test_consume_acks_only_after_hand_off():
    task = new_task("tasks.noop")
    channel = StubChannel(_deliveries(task))

    consume_tasks(channel, "celery", "", "celery", RecordingSink(channel))

    assert channel.calls[-3:] == [("deliver", 1), ("put", task.id), ("ack", 1)]


def test_consume_bind_failure_short_circuits():
    error = BrokerError("no such exchange")
    channel = StubChannel(_deliveries(new_task("tasks.noop")), bind_error=error)
    consumer = TaskConsumer(channel, "celery", "missing", "celery")

    with pytest.raises(BrokerError) as exc_info:
        consumer.run(RecordingSink())

    assert exc_info.value is error
    assert channel.open_attempts == 0
    assert channel.acks == []
    assert consumer.state is ConsumerState.CLOSED


def test_consume_stream_open_failure_propagates():
    error = BrokerError("access refused")
    channel = StubChannel(_deliveries(new_task("tasks.noop")), open_error=error)
    consumer = TaskConsumer(channel, "celery", "", "celery")

    with pytest.raises(BrokerError) as exc_info:
        consumer.run(RecordingSink())

    assert exc_info.value is error
    assert channel.open_attempts == 1
    assert channel.acks == []
    assert consumer.state is ConsumerState.CLOSED


def test_consumer_walks_the_state_machine():
    seen = []

    class StateProbe(StubChannel):
        def queue_bind(self, queue, routing_key, exchange):
            seen.append(consumer.state)
            super().queue_bind(queue, routing_key, exchange)

        def open_delivery_stream(self, queue, *, manual_ack=True, exclusive=False):
            seen.append(consumer.state)
            return super().open_delivery_stream(queue, manual_ack=manual_ack, exclusive=exclusive)

        def ack(self, delivery_tag):
            seen.append(consumer.state)
            super().ack(delivery_tag)

    channel = StateProbe(_deliveries(new_task("tasks.noop")))
    consumer = TaskConsumer(channel, "celery", "", "celery")

    consumer.run(RecordingSink())

    assert seen == [ConsumerState.UNBOUND, ConsumerState.BOUND, ConsumerState.STREAMING]
    assert consumer.state is ConsumerState.CLOSED

    with pytest.raises(RuntimeError):
        consumer.run(RecordingSink())


def test_consume_empty_stream_returns_cleanly():
    channel = StubChannel()
    assert consume_tasks(channel, "celery", "", "celery", RecordingSink()) == 0


def _with_garbage():
    good = new_task("tasks.noop")
    return good, [
        Delivery(body=b"{not json", delivery_tag=1),
        Delivery(body=encode_task(good), delivery_tag=2),
    ]


def test_decode_failure_skip_acks_and_emits_nothing():
    good, deliveries = _with_garbage()
    channel = StubChannel(deliveries)
    sink = RecordingSink()

    consume_tasks(channel, "celery", "", "celery", sink)

    assert sink.items == [good]
    assert channel.acks == [1, 2]
    assert channel.rejects == []


def test_decode_failure_reject_does_not_requeue():
    good, deliveries = _with_garbage()
    channel = StubChannel(deliveries)
    sink = RecordingSink()

    consume_tasks(channel, "celery", "", "celery", sink, on_decode_error=DecodeErrorPolicy.REJECT)

    assert sink.items == [good]
    assert channel.rejects == [(1, False)]
    assert channel.acks == [2]


def test_decode_failure_report_routes_error_to_sink():
    good, deliveries = _with_garbage()
    channel = StubChannel(deliveries)
    sink = RecordingSink()
    errors = RecordingSink()

    consume_tasks(
        channel,
        "celery",
        "",
        "celery",
        sink,
        on_decode_error=DecodeErrorPolicy.REPORT,
        errors=errors,
    )

    assert sink.items == [good]
    assert len(errors.items) == 1
    assert isinstance(errors.items[0], MalformedMessageError)
    assert errors.items[0].body == b"{not json"
    assert channel.acks == [1, 2]


def test_report_policy_requires_error_sink():
    channel = StubChannel()

    with pytest.raises(ValueError):
        consume_tasks(
            channel,
            "celery",
            "",
            "celery",
            RecordingSink(),
            on_decode_error=DecodeErrorPolicy.REPORT,
        )

    assert channel.calls == []


def test_strict_time_mode_treats_missing_eta_as_decode_failure():
    task = new_task("tasks.noop")
    channel = StubChannel(_deliveries(task))
    sink = RecordingSink()

    consume_tasks(channel, "celery", "", "celery", sink, require_times=True)

    assert sink.items == []
    assert channel.acks == [1]


def test_start_consumer_runs_on_a_thread():
    tasks = [new_task("tasks.add", [str(i)]) for i in range(2)]
    channel = StubChannel(_deliveries(*tasks))
    out: queue.Queue = queue.Queue(maxsize=1)

    future = start_consumer(channel, "celery", "", "celery", out)

    received = [out.get(timeout=5) for _ in range(2)]
    assert future.result(timeout=5) == 2
    assert received == tasks
    assert channel.acks == [1, 2]


def test_start_consumer_surfaces_bind_failure():
    error = BrokerError("no such exchange")
    channel = StubChannel(_deliveries(new_task("tasks.noop")), bind_error=error)

    future = start_consumer(channel, "celery", "missing", "celery", RecordingSink())

    assert future.exception(timeout=5) is error
    with pytest.raises(BrokerError):
        future.result()
    assert channel.open_attempts == 0


def test_deeply_nested_delivery_falls_under_decode_policy():
    good = new_task("tasks.noop")
    channel = StubChannel(
        [
            Delivery(body=b'{"kwargs":' * 100000, delivery_tag=1),
            Delivery(body=encode_task(good), delivery_tag=2),
        ]
    )
    sink = RecordingSink()

    consume_tasks(channel, "celery", "", "celery", sink)

    assert sink.items == [good]
    assert channel.acks == [1, 2]
