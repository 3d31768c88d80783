from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Optional

from google.cloud import pubsub_v1

from pubsub_edge.handles import Subscription, Topic


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    v = v.strip()
    return v if v else default


def _env_int(name: str, default: int) -> int:
    try:
        return int(_env(name, str(default)) or default)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(_env(name, str(default)) or default)
    except Exception:
        return default


@dataclass(frozen=True)
class EdgeConfig:
    project_id: str
    topic_id: str
    subscription_id: str
    max_messages: int = 50
    receive_poll_s: float = 0.25
    shutdown_timeout_s: float = 10.0

    @staticmethod
    def from_env() -> "EdgeConfig":
        project_id = _env("PUBSUB_PROJECT_ID") or _env("GOOGLE_CLOUD_PROJECT") or _env("GCP_PROJECT") or ""
        return EdgeConfig(
            project_id=str(project_id),
            topic_id=str(_env("PUBSUB_TOPIC_ID") or ""),
            subscription_id=str(_env("PUBSUB_SUBSCRIPTION_ID") or ""),
            max_messages=max(1, min(1000, _env_int("PUBSUB_MAX_IN_FLIGHT", 50))),
            receive_poll_s=max(0.01, _env_float("PUBSUB_RECEIVE_POLL_S", 0.25)),
            shutdown_timeout_s=max(0.0, _env_float("PUBSUB_SHUTDOWN_TIMEOUT_S", 10.0)),
        )

    def validate(self) -> "EdgeConfig":
        if not self.project_id:
            raise RuntimeError("Missing PUBSUB_PROJECT_ID (or GOOGLE_CLOUD_PROJECT).")
        if not self.topic_id:
            raise RuntimeError("Missing PUBSUB_TOPIC_ID.")
        if not self.subscription_id:
            raise RuntimeError("Missing PUBSUB_SUBSCRIPTION_ID.")
        return self


def new_topic(cfg: EdgeConfig, client: Any = None) -> Topic:
    client = client if client is not None else pubsub_v1.PublisherClient()
    return Topic(client, client.topic_path(cfg.project_id, cfg.topic_id))


def new_subscription(cfg: EdgeConfig, client: Any = None) -> Subscription:
    client = client if client is not None else pubsub_v1.SubscriberClient()
    return Subscription(
        client,
        client.subscription_path(cfg.project_id, cfg.subscription_id),
        receive_settings=pubsub_v1.types.FlowControl(max_messages=cfg.max_messages),
        poll_s=cfg.receive_poll_s,
        shutdown_timeout_s=cfg.shutdown_timeout_s,
    )
