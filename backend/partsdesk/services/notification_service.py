# Overview: Fire-and-forget admin notification fan-out (in-process hub + optional webhook).

"""
Notification sink invariants:

- emit() never raises. Delivery is best-effort and must not affect the
  transaction that triggered it; callers emit only after commit.
- publish() never blocks: each subscriber owns a bounded queue and a full
  queue drops the event for that subscriber only.
- Extra sinks (webhook) are invoked from publish(); a sink that fails is
  logged and skipped.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Iterator, Protocol

import httpx

from partsdesk.time_utils import to_utc_z, utcnow

logger = logging.getLogger(__name__)


EVENT_NEW_RESERVATION = "new_reservation"
EVENT_DEPOSIT_RECEIVED = "deposit_received"
EVENT_RESERVATION_UPDATED = "reservation_updated"
EVENT_RESERVATION_EXPIRED = "reservation_expired"
EVENT_RESERVATION_EXPIRING_SOON = "reservation_expiring_soon"
EVENT_LOW_STOCK = "low_stock"


@dataclass(frozen=True)
class NotificationEvent:
    type: str
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: to_utc_z(utcnow()))

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp,
        }


class NotificationSink(Protocol):
    def publish(self, event: NotificationEvent) -> None:
        ...


class NotificationHub:
    """In-process broadcast channel for connected admin clients."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._lock = threading.Lock()
        self._subscribers: dict[int, queue.Queue] = {}
        self._next_id = 1
        self._sinks: list[NotificationSink] = []

    def configure(self, *, queue_size: int) -> None:
        self.queue_size = queue_size

    def add_sink(self, sink: NotificationSink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def clear_sinks(self) -> None:
        with self._lock:
            self._sinks = []

    def subscribe(self) -> tuple[int, queue.Queue]:
        with self._lock:
            subscription_id = self._next_id
            self._next_id += 1
            q: queue.Queue = queue.Queue(maxsize=self.queue_size)
            self._subscribers[subscription_id] = q
        return subscription_id, q

    def unsubscribe(self, subscription_id: int) -> None:
        with self._lock:
            self._subscribers.pop(subscription_id, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: NotificationEvent) -> int:
        """Deliver to every subscriber and sink; returns the number of queues reached."""
        with self._lock:
            targets = list(self._subscribers.items())
            sinks = list(self._sinks)

        delivered = 0
        for subscription_id, q in targets:
            try:
                q.put_nowait(event)
                delivered += 1
            except queue.Full:
                logger.warning("Dropping %s notification for slow subscriber %s", event.type, subscription_id)

        for sink in sinks:
            try:
                sink.publish(event)
            except Exception:
                logger.exception("Notification sink %r failed", sink)

        return delivered


class WebhookNotificationSink:
    """
    POST each event as JSON to an external URL.

    Requests run on a small worker pool so publish() returns immediately.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
        max_workers: int = 2,
    ):
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify-webhook")

    def publish(self, event: NotificationEvent):
        return self._executor.submit(self._deliver, event)

    def _deliver(self, event: NotificationEvent) -> bool:
        try:
            response = self._client.post(self.url, json=event.to_dict())
            response.raise_for_status()
            return True
        except httpx.HTTPError:
            logger.exception("Webhook delivery of %s notification failed", event.type)
            return False

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self._client.close()

    def __repr__(self) -> str:
        return f"<WebhookNotificationSink url={self.url!r}>"


def emit(
    event_type: str,
    title: str,
    message: str,
    payload: dict[str, Any] | None = None,
    *,
    hub: NotificationHub | None = None,
) -> NotificationEvent | None:
    """Best-effort publish; failures are logged and swallowed."""
    if hub is None:
        from ..extensions import notifications as hub
    try:
        event = NotificationEvent(type=event_type, title=title, message=message, data=payload or {})
        hub.publish(event)
        return event
    except Exception:
        logger.exception("Failed to emit %s notification", event_type)
        return None


def format_sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def event_stream(hub: NotificationHub, *, heartbeat_seconds: float = 30) -> Iterator[str]:
    """
    Server-Sent Events generator for one admin connection.

    Emits a `connected` event first, then every published event, with a
    comment heartbeat whenever the queue stays idle for heartbeat_seconds.
    """
    subscription_id, q = hub.subscribe()
    try:
        yield format_sse({
            "type": "connected",
            "message": "Connected to notifications",
            "timestamp": to_utc_z(utcnow()),
        })
        while True:
            try:
                event = q.get(timeout=heartbeat_seconds)
            except queue.Empty:
                yield ": heartbeat\n\n"
                continue
            yield format_sse(event.to_dict())
    finally:
        hub.unsubscribe(subscription_id)
