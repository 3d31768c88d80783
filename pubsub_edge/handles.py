"""
Thin handles over the google-cloud-pubsub clients.

The Python client has no topic/subscription objects; these pair a client with
a resource path (and, for subscriptions, the receive settings) so an `Edge`
can hold one of each.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Protocol

from google.cloud import pubsub_v1

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Any], None]


@dataclass(frozen=True, slots=True)
class OutboundMessage:
    data: bytes
    attributes: Mapping[str, str] = field(default_factory=dict)


class TopicHandle(Protocol):
    def publish(self, message: OutboundMessage) -> concurrent.futures.Future: ...


class SubscriptionHandle(Protocol):
    receive_settings: pubsub_v1.types.FlowControl

    def receive(self, stop: threading.Event, callback: MessageCallback) -> None: ...


class Topic:
    def __init__(self, client: Any, topic_path: str) -> None:
        self._client = client
        self.path = str(topic_path)

    def publish(self, message: OutboundMessage) -> concurrent.futures.Future:
        """Enqueue a message; the returned future resolves to the message id."""
        return self._client.publish(self.path, message.data, **dict(message.attributes or {}))


class Subscription:
    """
    Streaming-pull receiver for one subscription.

    `receive_settings` is read each time `receive` starts, so callers may adjust
    it between runs.
    """

    def __init__(
        self,
        client: Any,
        subscription_path: str,
        *,
        receive_settings: pubsub_v1.types.FlowControl | None = None,
        poll_s: float = 0.25,
        shutdown_timeout_s: float = 10.0,
    ) -> None:
        self._client = client
        self.path = str(subscription_path)
        self.receive_settings = receive_settings or pubsub_v1.types.FlowControl()
        self.poll_s = max(0.01, float(poll_s))
        self.shutdown_timeout_s = max(0.0, float(shutdown_timeout_s))

    def receive(self, stop: threading.Event, callback: MessageCallback) -> None:
        """
        Run `callback` for every message until `stop` is set or the stream fails.

        Raises whatever the streaming pull future failed with. Stopping is a
        clean return.
        """
        future = self._client.subscribe(self.path, callback=callback, flow_control=self.receive_settings)

        while not stop.is_set() and not future.done():
            stop.wait(self.poll_s)

        if future.done():
            # Stream ended on its own; surface its error, if any.
            future.result()
            return

        future.cancel()
        try:
            future.result(timeout=self.shutdown_timeout_s)
        except concurrent.futures.CancelledError:
            pass
        except concurrent.futures.TimeoutError:
            logger.warning(
                "streaming pull did not stop within %.1fs",
                self.shutdown_timeout_s,
                extra={"event_type": "pubsub_edge.shutdown_timeout", "subscription": self.path},
            )
