"""
Typed Pub/Sub edge.

This package provides:
- `Edge[T]`: publish domain values to a topic and deliver a subscription's
  messages, converted to `T`, onto a `queue.Queue`
- Handles over the google-cloud-pubsub clients (`Topic`, `Subscription`)
- JSON converters and a logging error handler
- A minimal in-memory topic/subscription for local testing/examples
"""

from .ack import error_from_status
from .config import EdgeConfig, new_subscription, new_topic
from .converters import json_message_converters
from .edge import MIN_EXTENSION_PERIOD_S, Edge
from .errors import (
    AckRejectedError,
    AckResultError,
    ConvertFromError,
    ConvertToError,
    EdgeError,
    PublishError,
    ReceiveError,
)
from .handles import OutboundMessage, Subscription, Topic
from .local import InMemoryMessage, InMemorySubscription, InMemoryTopic
from .logging import init_structured_logging, log_event, logging_error_handler

__all__ = [
    "Edge",
    "MIN_EXTENSION_PERIOD_S",
    "EdgeConfig",
    "new_topic",
    "new_subscription",
    "Topic",
    "Subscription",
    "OutboundMessage",
    "error_from_status",
    "json_message_converters",
    "EdgeError",
    "ConvertToError",
    "PublishError",
    "AckResultError",
    "AckRejectedError",
    "ConvertFromError",
    "ReceiveError",
    "InMemoryMessage",
    "InMemorySubscription",
    "InMemoryTopic",
    "init_structured_logging",
    "log_event",
    "logging_error_handler",
]
