"""
Notifier: state-change events published after each committed transition.

Publishing is fire-and-forget. A sink failure is logged and never reaches the caller of the
transition that produced the event.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol

import requests
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    JOB_POSTED = "job_posted"
    JOB_ESCROWED = "job_escrowed"
    JOB_CLAIMED = "job_claimed"
    WORK_SUBMITTED = "work_submitted"
    JOB_COMPLETED = "job_completed"
    JOB_REOPENED = "job_reopened"
    JOB_REJECTED = "job_rejected"
    JOB_DISPUTED = "job_disputed"
    JOB_CANCELLED = "job_cancelled"


class JobEvent(BaseModel):
    type: EventType
    job_id: int
    data: Dict[str, Any] = Field(default_factory=dict)
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_wire(self) -> Dict[str, Any]:
        """Flat JSON shape pushed to live clients: {"type": ..., "jobId": ..., **data}."""
        return {"type": self.type.value, "jobId": self.job_id, **self.data, "at": self.at.isoformat()}


class EventSink(Protocol):
    def publish(self, event: JobEvent) -> None:
        ...


class NullEventSink:
    def publish(self, event: JobEvent) -> None:
        return None


class WebhookEventSink:
    """POST each event as JSON to a fan-out service (e.g. the websocket relay)."""

    def __init__(self, url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def publish(self, event: JobEvent) -> None:
        r = self._session.post(self.url, json=event.to_wire(), timeout=self.timeout)
        r.raise_for_status()


class FanOutEventSink:
    """Deliver to several sinks; one failing sink does not stop the others."""

    def __init__(self, sinks: Iterable[EventSink]):
        self.sinks: List[EventSink] = list(sinks)

    def publish(self, event: JobEvent) -> None:
        for sink in self.sinks:
            publish_safely(sink, event)


def publish_safely(sink: Optional[EventSink], event: JobEvent) -> None:
    if sink is None:
        return
    try:
        sink.publish(event)
    except Exception:
        logger.warning(
            "[BEST-EFFORT] event publish failed type=%s job=%s sink=%s",
            event.type.value,
            event.job_id,
            type(sink).__name__,
            exc_info=True,
        )


def sink_from_urls(urls: Optional[str]) -> EventSink:
    """Comma-separated webhook URLs to a sink. None or blank gives a NullEventSink."""
    targets = [u.strip() for u in (urls or "").split(",") if u.strip()]
    if not targets:
        return NullEventSink()
    if len(targets) == 1:
        return WebhookEventSink(targets[0])
    return FanOutEventSink(WebhookEventSink(u) for u in targets)
