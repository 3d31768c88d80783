from __future__ import annotations

import json
import queue
import threading
import time
from typing import Any, Callable

import pytest
from google.cloud import pubsub_v1
from google.cloud.pubsub_v1.subscriber.exceptions import AcknowledgeStatus

from pubsub_edge import (
    MIN_EXTENSION_PERIOD_S,
    AckRejectedError,
    AckResultError,
    ConvertFromError,
    Edge,
    InMemoryMessage,
    InMemorySubscription,
    InMemoryTopic,
    ReceiveError,
    error_from_status,
    json_message_converters,
)


class _ScriptedSubscription:
    """Runs the callback synchronously for each scripted message, then ends."""

    def __init__(self, *messages: Any, error: BaseException | None = None) -> None:
        self.path = "projects/p/subscriptions/s"
        self.receive_settings = pubsub_v1.types.FlowControl(max_messages=7)
        self.messages = list(messages)
        self.error = error
        self.settings_seen: pubsub_v1.types.FlowControl | None = None

    def receive(self, stop: threading.Event, callback: Callable[[Any], None]) -> None:
        self.settings_seen = self.receive_settings
        for m in self.messages:
            callback(m)
        if self.error is not None:
            raise self.error


class _UnusedTopic:
    def publish(self, message: Any) -> Any:  # pragma: no cover
        raise AssertionError("publish should not be called")


def _edge(sub: Any, convert_from: Callable[[Any], Any], errors: list[BaseException]) -> Edge[Any]:
    return Edge(threading.Event(), _UnusedTopic(), sub, lambda v: v, convert_from, errors.append)


def test_happy_receive_delivers_value_without_errors() -> None:
    errors: list[BaseException] = []
    channel: queue.Queue[int] = queue.Queue()
    msg = InMemoryMessage(b"{}", message_id="m1")

    _edge(_ScriptedSubscription(msg), lambda m: 42, errors).receive_on(threading.Event(), channel)

    assert channel.get_nowait() == 42
    assert channel.empty()
    assert errors == []
    assert msg.ack_calls == 1


def test_permission_denied_ack_reports_exact_message_and_skips_delivery() -> None:
    errors: list[BaseException] = []
    channel: queue.Queue[int] = queue.Queue()
    converted: list[Any] = []
    msg = InMemoryMessage(b"{}", message_id="m2", ack_status=AcknowledgeStatus.PERMISSION_DENIED)

    _edge(_ScriptedSubscription(msg), lambda m: converted.append(m) or 1, errors).receive_on(
        threading.Event(), channel
    )

    assert channel.empty()
    assert converted == []
    assert len(errors) == 1
    assert isinstance(errors[0], AckRejectedError)
    assert str(errors[0]) == "message failed to ack with response of Permission Denied. ID: m2"
    assert errors[0].message_id == "m2"
    assert errors[0].status is AcknowledgeStatus.PERMISSION_DENIED


def test_inbound_conversion_error_after_success_ack() -> None:
    errors: list[BaseException] = []
    channel: queue.Queue[int] = queue.Queue()

    def _bad(_m: Any) -> int:
        raise ValueError("bad json")

    msg = InMemoryMessage(b"not json", message_id="m3")
    _edge(_ScriptedSubscription(msg), _bad, errors).receive_on(threading.Event(), channel)

    assert channel.empty()
    assert len(errors) == 1
    assert isinstance(errors[0], ConvertFromError)
    assert "got err from e.convert: " in str(errors[0])
    assert "bad json" in str(errors[0])
    assert isinstance(errors[0].__cause__, ValueError)
    # Ack happens before conversion.
    assert msg.ack_calls == 1


def test_unknown_ack_status_uses_raw_code() -> None:
    errors: list[BaseException] = []
    channel: queue.Queue[int] = queue.Queue()
    msg = InMemoryMessage(b"{}", message_id="m6", ack_status=99)

    _edge(_ScriptedSubscription(msg), lambda m: 1, errors).receive_on(threading.Event(), channel)

    assert channel.empty()
    assert [str(e) for e in errors] == ["message failed to ack with unknown status. ID: m6, status: 99"]


@pytest.mark.parametrize(
    "status,label",
    [
        (AcknowledgeStatus.INVALID_ACK_ID, "Invalid"),
        (AcknowledgeStatus.PERMISSION_DENIED, "Permission Denied"),
        (AcknowledgeStatus.FAILED_PRECONDITION, "Failed Precondition"),
        (AcknowledgeStatus.OTHER, "Other"),
    ],
)
def test_error_from_status_templates(status: AcknowledgeStatus, label: str) -> None:
    err = error_from_status("abc", status)
    assert str(err) == f"message failed to ack with response of {label}. ID: abc"


def test_ack_retrieval_error_is_reported_then_outcome_classified() -> None:
    errors: list[BaseException] = []
    channel: queue.Queue[int] = queue.Queue()
    msg = InMemoryMessage(b"{}", message_id="m7", ack_exception=RuntimeError("deadline exceeded"))

    _edge(_ScriptedSubscription(msg), lambda m: 1, errors).receive_on(threading.Event(), channel)

    assert channel.empty()
    assert len(errors) == 2
    assert isinstance(errors[0], AckResultError)
    assert str(errors[0]) == "got err from r.Get: deadline exceeded"
    assert str(errors[1]) == "message failed to ack with unknown status. ID: m7, status: None"


class _ErrWithStatus(Exception):
    def __init__(self, msg: str, error_code: Any) -> None:
        super().__init__(msg)
        self.error_code = error_code


def test_ack_retrieval_error_with_success_outcome_still_delivers() -> None:
    errors: list[BaseException] = []
    channel: queue.Queue[int] = queue.Queue()
    msg = InMemoryMessage(
        b"{}", message_id="m8", ack_exception=_ErrWithStatus("flaky", AcknowledgeStatus.SUCCESS)
    )

    _edge(_ScriptedSubscription(msg), lambda m: 5, errors).receive_on(threading.Event(), channel)

    assert channel.get_nowait() == 5
    assert [str(e) for e in errors] == ["got err from r.Get: flaky"]


def test_receive_sets_lease_extension_floor_and_keeps_other_settings() -> None:
    sub = _ScriptedSubscription()
    _edge(sub, lambda m: 1, []).receive_on(threading.Event(), queue.Queue())

    assert sub.settings_seen is not None
    assert sub.settings_seen.min_duration_per_lease_extension == MIN_EXTENSION_PERIOD_S == 20
    assert sub.settings_seen.max_messages == 7


def test_terminal_receive_error_reported_once() -> None:
    errors: list[BaseException] = []
    channel: queue.Queue[int] = queue.Queue()
    sub = _ScriptedSubscription(InMemoryMessage(b"{}", message_id="m9"), error=RuntimeError("stream broke"))

    _edge(sub, lambda m: 3, errors).receive_on(threading.Event(), channel)

    assert channel.get_nowait() == 3
    assert len(errors) == 1
    assert isinstance(errors[0], ReceiveError)
    assert str(errors[0]) == "got err from sub.Receive: stream broke"


def test_failing_error_handler_does_not_break_receive() -> None:
    calls: list[BaseException] = []

    def _handler(err: BaseException) -> None:
        calls.append(err)
        raise RuntimeError("handler exploded")

    channel: queue.Queue[int] = queue.Queue()
    sub = _ScriptedSubscription(
        InMemoryMessage(b"{}", message_id="a", ack_status=AcknowledgeStatus.OTHER),
        InMemoryMessage(b"{}", message_id="b"),
    )
    Edge(threading.Event(), _UnusedTopic(), sub, lambda v: v, lambda m: m.message_id, _handler).receive_on(
        threading.Event(), channel
    )

    assert len(calls) == 1
    assert channel.get_nowait() == "b"


def test_every_message_gets_exactly_one_terminal_action() -> None:
    errors: list[BaseException] = []
    channel: queue.Queue[str] = queue.Queue()

    def _convert(m: Any) -> str:
        if m.message_id == "bad":
            raise ValueError("nope")
        return m.message_id

    sub = _ScriptedSubscription(
        InMemoryMessage(b"", message_id="ok1"),
        InMemoryMessage(b"", message_id="bad"),
        InMemoryMessage(b"", message_id="rej", ack_status=AcknowledgeStatus.FAILED_PRECONDITION),
        InMemoryMessage(b"", message_id="ok2"),
    )
    _edge(sub, _convert, errors).receive_on(threading.Event(), channel)

    delivered = sorted([channel.get_nowait(), channel.get_nowait()])
    assert delivered == ["ok1", "ok2"]
    assert channel.empty()
    assert len(errors) == 2
    assert {type(e) for e in errors} == {ConvertFromError, AckRejectedError}


def test_local_bus_round_trip_with_json_converters() -> None:
    errors: list[BaseException] = []
    sub = InMemorySubscription(poll_s=0.01)
    topic = InMemoryTopic(sub)
    convert_to, convert_from = json_message_converters(attributes={"event_type": "order.created"})
    edge: Edge[dict] = Edge(threading.Event(), topic, sub, convert_to, convert_from, errors.append)

    stop = threading.Event()
    channel: queue.Queue[dict] = queue.Queue()
    t = threading.Thread(target=edge.receive_on, args=(stop, channel), daemon=True)
    t.start()
    try:
        edge.send({"order_id": 7, "qty": 2})
        got = channel.get(timeout=5.0)
    finally:
        stop.set()
        t.join(timeout=5.0)

    assert got == {"order_id": 7, "qty": 2}
    assert not t.is_alive()
    assert topic.published[0].attributes == {"event_type": "order.created"}
    assert json.loads(topic.published[0].data.decode("utf-8")) == {"order_id": 7, "qty": 2}
    # Publish-wait thread may still be settling; it must not report anything.
    time.sleep(0.05)
    assert errors == []


def test_local_subscription_failure_ends_receive_with_error() -> None:
    errors: list[BaseException] = []
    sub = InMemorySubscription(poll_s=0.01)
    sub.fail(RuntimeError("subscription deleted"))

    _edge(sub, lambda m: 1, errors).receive_on(threading.Event(), queue.Queue())

    assert [str(e) for e in errors] == ["got err from sub.Receive: subscription deleted"]


def test_mixed_batch_on_worker_pool_keeps_one_terminal_action_per_message() -> None:
    lock = threading.Lock()
    errors: list[BaseException] = []

    def _sink(err: BaseException) -> None:
        with lock:
            errors.append(err)

    def _convert(m: Any) -> str:
        if m.data == b"bad":
            raise ValueError(f"undecodable {m.message_id}")
        return m.message_id

    sub = InMemorySubscription(receive_settings=pubsub_v1.types.FlowControl(max_messages=8), poll_s=0.01)
    ok_ids = {f"ok-{i}" for i in range(40)}
    bad_ids = {f"bad-{i}" for i in range(40)}
    rejected_ids = {f"rej-{i}" for i in range(40)}
    for i in range(40):
        sub.deliver(InMemoryMessage(b"{}", message_id=f"ok-{i}"))
        sub.deliver(InMemoryMessage(b"bad", message_id=f"bad-{i}"))
        sub.deliver(InMemoryMessage(b"{}", message_id=f"rej-{i}", ack_status=AcknowledgeStatus.OTHER))

    edge: Edge[str] = Edge(threading.Event(), InMemoryTopic(), sub, lambda v: v, _convert, _sink)
    stop = threading.Event()
    channel: queue.Queue[str] = queue.Queue()
    t = threading.Thread(target=edge.receive_on, args=(stop, channel), daemon=True)
    t.start()
    try:
        delivered = [channel.get(timeout=5.0) for _ in range(len(ok_ids))]
        deadline = time.monotonic() + 5.0
        while time.monotonic() < deadline:
            with lock:
                if len(errors) >= len(bad_ids) + len(rejected_ids):
                    break
            time.sleep(0.01)
    finally:
        stop.set()
        t.join(timeout=5.0)

    time.sleep(0.05)
    assert channel.empty()
    assert sorted(delivered) == sorted(ok_ids)

    convert_errors = [e for e in errors if isinstance(e, ConvertFromError)]
    rejections = [e for e in errors if isinstance(e, AckRejectedError)]
    assert len(errors) == len(convert_errors) + len(rejections)
    assert {str(e).rsplit(" ", 1)[-1] for e in convert_errors} == bad_ids
    assert len(convert_errors) == len(bad_ids)
    assert {e.message_id for e in rejections} == rejected_ids
    assert len(rejections) == len(rejected_ids)
