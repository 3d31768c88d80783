"""
JSON converters for `Edge`.

The payload body is compact UTF-8 JSON; attributes are plain strings and never
carry payload fields.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Mapping, Optional

from pubsub_edge.handles import OutboundMessage


def _clean(v: Any, *, max_len: int = 1024) -> str:
    s = "" if v is None else str(v)
    s = s.replace("\n", " ").replace("\r", " ").strip()
    if len(s) > max_len:
        s = s[:max_len]
    return s


def clean_attributes(attributes: Optional[Mapping[str, Any]]) -> dict[str, str]:
    """Stringify attribute values and drop empty keys/values."""
    out: dict[str, str] = {}
    for k, v in (attributes or {}).items():
        key = _clean(k, max_len=256)
        val = _clean(v)
        if key and val:
            out[key] = val
    return out


def json_message_converters(
    decode: Optional[Callable[[Any], Any]] = None,
    *,
    attributes: Optional[Mapping[str, Any]] = None,
    encode: Optional[Callable[[Any], Any]] = None,
) -> tuple[Callable[[Any], OutboundMessage], Callable[[Any], Any]]:
    """
    Return `(convert_to, convert_from)` for JSON payloads.

    `encode` maps a value to something `json.dumps` accepts (e.g.
    `dataclasses.asdict`); `decode` maps the parsed JSON back to a value.
    Both converters raise on bad input.
    """
    static_attrs = clean_attributes(attributes)

    def convert_to(value: Any) -> OutboundMessage:
        obj = encode(value) if encode is not None else value
        data = json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        return OutboundMessage(data=data, attributes=dict(static_attrs))

    def convert_from(message: Any) -> Any:
        raw: bytes = getattr(message, "data", b"") or b""
        decoded = json.loads(raw.decode("utf-8"))
        return decode(decoded) if decode is not None else decoded

    return convert_to, convert_from
