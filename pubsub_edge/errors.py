"""
Error kinds reported by an `Edge` through its error handler.

Every error's text is a stable prefix followed by the underlying error's text.
Downstream log matchers depend on these prefixes; do not change them.
"""

from __future__ import annotations

from typing import Any, Optional


class EdgeError(Exception):
    """Base class for everything an `Edge` hands to its error handler."""

    prefix: str = ""

    def __init__(self, err: Any = None, *, text: Optional[str] = None) -> None:
        self.err = err
        super().__init__(text if text is not None else f"{self.prefix}{err}")
        if isinstance(err, BaseException):
            self.__cause__ = err


class ConvertToError(EdgeError):
    prefix = "got err from e.convertTo: "


class PublishError(EdgeError):
    prefix = "got err publishing: "


class AckResultError(EdgeError):
    prefix = "got err from r.Get: "


class ConvertFromError(EdgeError):
    prefix = "got err from e.convert: "


class ReceiveError(EdgeError):
    prefix = "got err from sub.Receive: "


class AckRejectedError(EdgeError):
    """
    An ack completed with a non-SUCCESS outcome.

    The message has already been handed to the ack path, so the subscription's
    redelivery is not relied upon; the message is dropped.
    """

    def __init__(self, text: str, *, message_id: str, status: Optional[Any]) -> None:
        self.message_id = message_id
        self.status = status
        super().__init__(text=text)
