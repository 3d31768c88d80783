from __future__ import annotations

import concurrent.futures
import itertools
import threading
from collections import deque
from typing import Any, Callable, Deque, Mapping, Optional

from google.cloud import pubsub_v1
from google.cloud.pubsub_v1.subscriber.exceptions import AcknowledgeError, AcknowledgeStatus

from pubsub_edge.handles import MessageCallback, OutboundMessage

_ids = itertools.count(1)


def _next_message_id() -> str:
    return f"local-{next(_ids)}"


class InMemoryMessage:
    """
    Stand-in for a received Pub/Sub message.

    `ack_status` decides how the ack future resolves: SUCCESS resolves normally,
    other `AcknowledgeStatus` members raise `AcknowledgeError` (as the real
    client does), and any other value is returned as-is. `ack_exception`, when
    set, fails the ack future with that exception instead.
    """

    def __init__(
        self,
        data: bytes,
        attributes: Optional[Mapping[str, str]] = None,
        *,
        message_id: Optional[str] = None,
        ack_status: Any = AcknowledgeStatus.SUCCESS,
        ack_exception: Optional[BaseException] = None,
    ) -> None:
        self.data = data
        self.attributes = dict(attributes or {})
        self.message_id = message_id or _next_message_id()
        self.ack_status = ack_status
        self.ack_exception = ack_exception
        self.ack_calls = 0

    def ack_with_response(self) -> concurrent.futures.Future:
        self.ack_calls += 1
        fut: concurrent.futures.Future = concurrent.futures.Future()
        if self.ack_exception is not None:
            fut.set_exception(self.ack_exception)
        elif isinstance(self.ack_status, AcknowledgeStatus) and self.ack_status is not AcknowledgeStatus.SUCCESS:
            fut.set_exception(AcknowledgeError(self.ack_status, None))
        else:
            fut.set_result(self.ack_status)
        return fut


class InMemorySubscription:
    """
    Minimal in-memory subscription for local testing/examples.

    This is NOT a production transport; callbacks run on a small thread pool
    like the real streaming pull, until the stop event is set.
    """

    def __init__(self, *, receive_settings: pubsub_v1.types.FlowControl | None = None, poll_s: float = 0.05) -> None:
        self.path = "local"
        self.receive_settings = receive_settings or pubsub_v1.types.FlowControl(max_messages=10)
        self.poll_s = poll_s
        self._cond = threading.Condition()
        self._pending: Deque[InMemoryMessage] = deque()
        self._error: Optional[BaseException] = None

    def deliver(self, message: InMemoryMessage) -> InMemoryMessage:
        with self._cond:
            self._pending.append(message)
            self._cond.notify_all()
        return message

    def fail(self, error: BaseException) -> None:
        """Make the running (or next) `receive` end with `error`."""
        with self._cond:
            self._error = error
            self._cond.notify_all()

    def receive(self, stop: threading.Event, callback: MessageCallback) -> None:
        workers = max(1, min(32, int(self.receive_settings.max_messages or 1)))
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="local-sub")
        try:
            while not stop.is_set():
                with self._cond:
                    if not self._pending and self._error is None:
                        self._cond.wait(self.poll_s)
                    batch = list(self._pending)
                    self._pending.clear()
                    error, self._error = self._error, None
                for msg in batch:
                    pool.submit(callback, msg)
                if error is not None:
                    raise error
        finally:
            pool.shutdown(wait=False)


class InMemoryTopic:
    """
    In-memory topic: records what was published and fans out to attached
    subscriptions. `fail_with` makes publish futures fail with that exception.

    Futures resolve on a timer thread after `batch_latency_s`, never on the
    publishing thread, like the batching PublisherClient.
    """

    def __init__(
        self,
        *subscriptions: InMemorySubscription,
        fail_with: Optional[BaseException] = None,
        batch_latency_s: float = 0.01,
    ) -> None:
        self._lock = threading.Lock()
        self._subscriptions = list(subscriptions)
        self.fail_with = fail_with
        self.batch_latency_s = max(0.0, float(batch_latency_s))
        self.published: list[OutboundMessage] = []

    def attach(self, subscription: InMemorySubscription) -> None:
        with self._lock:
            self._subscriptions.append(subscription)

    def publish(self, message: OutboundMessage) -> concurrent.futures.Future:
        fut: concurrent.futures.Future = concurrent.futures.Future()
        if self.fail_with is not None:
            self._resolve_later(fut.set_exception, self.fail_with)
            return fut

        message_id = _next_message_id()
        with self._lock:
            self.published.append(message)
            subs = list(self._subscriptions)
        for sub in subs:
            sub.deliver(InMemoryMessage(message.data, message.attributes, message_id=message_id))
        self._resolve_later(fut.set_result, message_id)
        return fut

    def _resolve_later(self, resolve: Callable[[Any], None], value: Any) -> None:
        timer = threading.Timer(self.batch_latency_s, resolve, args=(value,))
        timer.daemon = True
        timer.start()
