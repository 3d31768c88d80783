from __future__ import annotations

from typing import Any, Optional

from google.cloud.pubsub_v1.subscriber.exceptions import AcknowledgeError, AcknowledgeStatus

from pubsub_edge.errors import AckRejectedError, AckResultError

# Stable, matched by downstream log filters.
_REJECTION_LABELS: dict[AcknowledgeStatus, str] = {
    AcknowledgeStatus.INVALID_ACK_ID: "Invalid",
    AcknowledgeStatus.PERMISSION_DENIED: "Permission Denied",
    AcknowledgeStatus.FAILED_PRECONDITION: "Failed Precondition",
    AcknowledgeStatus.OTHER: "Other",
}


def _raw_status(status: Any) -> str:
    # Enum members print their raw code; anything else prints as-is.
    value = getattr(status, "value", status)
    return str(value)


def error_from_status(message_id: str, status: Any) -> AckRejectedError:
    """
    Map a non-SUCCESS ack outcome to the error reported for it.

    Unknown outcomes (raw codes outside `AcknowledgeStatus`, or `None` when the
    ack future failed without a status) use the "unknown status" form.
    """
    label = _REJECTION_LABELS.get(status) if isinstance(status, AcknowledgeStatus) else None
    if label is not None:
        text = f"message failed to ack with response of {label}. ID: {message_id}"
    else:
        text = f"message failed to ack with unknown status. ID: {message_id}, status: {_raw_status(status)}"
    return AckRejectedError(text, message_id=message_id, status=status)


def ack_and_wait(message: Any) -> tuple[Optional[Any], Optional[AckResultError]]:
    """
    Ack `message`, block on the ack future and return `(outcome, retrieval_error)`.

    google-cloud-pubsub resolves a rejected ack by raising `AcknowledgeError`;
    its `error_code` is the outcome, not a retrieval failure. Any other
    exception is a retrieval failure and the outcome is whatever status it
    carries (usually none, which classifies as unknown).
    """
    try:
        return message.ack_with_response().result(), None
    except AcknowledgeError as e:
        return e.error_code, None
    except Exception as e:
        return getattr(e, "error_code", None), AckResultError(e)


def is_success(status: Any) -> bool:
    return status is AcknowledgeStatus.SUCCESS
