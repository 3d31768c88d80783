"""
Typed adapter between a stream of domain values and a Pub/Sub topic/subscription.

Publishing converts a value and enqueues it without waiting on the network;
receiving acks each message *before* converting it and only then writes the
converted value to the caller's queue (at-most-once delivery). Every anomaly is
reported through a single error handler.
"""

from __future__ import annotations

import concurrent.futures
import logging
import queue
import threading
from typing import Any, Callable, Generic, TypeVar

from pubsub_edge.ack import ack_and_wait, error_from_status, is_success
from pubsub_edge.errors import ConvertFromError, ConvertToError, PublishError, ReceiveError
from pubsub_edge.handles import OutboundMessage, SubscriptionHandle, TopicHandle
from pubsub_edge.logging import log_event

logger = logging.getLogger(__name__)

T = TypeVar("T")

ErrorHandler = Callable[[BaseException], None]

# Floor for lease extensions while a callback may be blocked on a slow reader.
MIN_EXTENSION_PERIOD_S = 20

_PUBLISH_POLL_S = 0.25


class Edge(Generic[T]):
    def __init__(
        self,
        stop: threading.Event,
        topic: TopicHandle,
        subscription: SubscriptionHandle,
        convert_to: Callable[[T], OutboundMessage],
        convert_from: Callable[[Any], T],
        error_handler: ErrorHandler,
    ) -> None:
        """
        `stop` bounds publish-result waits started by `send`; it is independent of
        the event passed to `receive_on`.

        `error_handler` is called from subscriber callback threads and publish
        wait threads concurrently, so it must be thread-safe.
        """
        self._stop = stop
        self.topic = topic
        self.subscription = subscription
        self._convert_to = convert_to
        self._convert_from = convert_from
        self._error_handler = error_handler

    @classmethod
    def new(
        cls,
        stop: threading.Event,
        topic: TopicHandle,
        subscription: SubscriptionHandle,
        convert_to: Callable[[T], OutboundMessage],
        convert_from: Callable[[Any], T],
        error_handler: ErrorHandler,
    ) -> "Edge[T]":
        return cls(stop, topic, subscription, convert_to, convert_from, error_handler)

    def _report(self, err: BaseException) -> None:
        try:
            self._error_handler(err)
        except Exception as e:
            log_event(
                logger,
                "pubsub_edge.error_handler_failed",
                severity="ERROR",
                error_type=type(e).__name__,
                error=str(e),
                reported=str(err),
            )

    def send(self, payload: T) -> None:
        """Convert and publish `payload`; publish errors arrive later via the error handler."""
        try:
            message = self._convert_to(payload)
        except Exception as e:
            self._report(ConvertToError(e))
            return

        try:
            future = self.topic.publish(message)
        except Exception as e:
            self._report(PublishError(e))
            return

        threading.Thread(
            target=self._await_publish,
            args=(future,),
            name="pubsub-edge-publish-wait",
            daemon=True,
        ).start()

    def _await_publish(self, future: concurrent.futures.Future) -> None:
        while not future.done():
            if self._stop.wait(_PUBLISH_POLL_S) and not future.done():
                self._report(PublishError(concurrent.futures.CancelledError("context canceled")))
                return
        try:
            future.result()
        except Exception as e:
            self._report(PublishError(e))

    def receive_on(self, stop: threading.Event, channel: "queue.Queue[T]") -> None:
        """
        Deliver converted messages onto `channel` until `stop` is set or the
        subscriber fails. Blocks. The channel is never closed here.
        """
        self.subscription.receive_settings = self.subscription.receive_settings._replace(
            min_duration_per_lease_extension=MIN_EXTENSION_PERIOD_S
        )

        def _callback(message: Any) -> None:
            self._handle(message, channel)

        log_event(logger, "pubsub_edge.receive_started", subscription=getattr(self.subscription, "path", None))
        try:
            self.subscription.receive(stop, _callback)
        except Exception as e:
            self._report(ReceiveError(e))
        finally:
            log_event(logger, "pubsub_edge.receive_stopped", subscription=getattr(self.subscription, "path", None))

    def _handle(self, message: Any, channel: "queue.Queue[T]") -> None:
        message_id = str(getattr(message, "message_id", "") or "")

        status, retrieval_err = ack_and_wait(message)
        if retrieval_err is not None:
            self._report(retrieval_err)

        if not is_success(status):
            self._report(error_from_status(message_id, status))
            return

        try:
            payload = self._convert_from(message)
        except Exception as e:
            self._report(ConvertFromError(e))
            return

        channel.put(payload)
