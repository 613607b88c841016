"""In-process event broker for automation lifecycle events."""

from __future__ import annotations

import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Literal


logger = logging.getLogger(__name__)

EventType = Literal[
    "run_started",
    "action_proposed",
    "action_auto_approved",
    "action_approved",
    "action_rejected",
    "action_executed",
    "action_failed",
    "run_completed",
    "run_failed",
    "config_updated",
]

DEFAULT_MAX_PENDING = 500


@dataclass(frozen=True)
class AutomationEvent:
    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "timestamp": self.timestamp, "data": self.data}


_CLOSED = object()


class Subscription:
    """Disposable handle for one subscriber; ``close`` is safe to call repeatedly."""

    def __init__(
        self,
        bus: EventBus,
        max_pending: int,
        callback: Callable[[AutomationEvent], None] | None = None,
    ) -> None:
        self._bus = bus
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=max_pending)
        self._callback = callback
        self._closed = threading.Event()
        self.dropped = 0
        self._thread: threading.Thread | None = None
        if callback is not None:
            self._thread = threading.Thread(target=self._drain, daemon=True)
            self._thread.start()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def offer(self, event: AutomationEvent) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            return False
        return True

    def get(self, timeout: float | None = None) -> AutomationEvent | None:
        """Next event, or ``None`` on timeout or once closed."""

        if self.closed and self._queue.empty():
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            return None
        return item

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._bus._remove(self)
        try:
            self._queue.put_nowait(_CLOSED)
        except queue.Full:
            logger.debug("Subscriber queue full at close; drain thread exits on its poll")
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _drain(self) -> None:
        assert self._callback is not None
        while True:
            try:
                item = self._queue.get(timeout=0.2)
            except queue.Empty:
                if self.closed:
                    return
                continue
            if item is _CLOSED:
                return
            try:
                self._callback(item)
            except Exception:
                logger.exception("Event subscriber callback failed for %s", item.type)


class EventBus:
    """Fan-out broker; ``publish`` never blocks on a slow subscriber."""

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self.max_pending = max(1, int(max_pending))
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(
        self,
        callback: Callable[[AutomationEvent], None] | None = None,
        max_pending: int | None = None,
    ) -> Subscription:
        subscription = Subscription(self, max_pending or self.max_pending, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def publish(self, event_type: EventType, data: dict[str, Any] | None = None) -> AutomationEvent:
        event = AutomationEvent(type=event_type, data=dict(data or {}))
        with self._lock:
            snapshot = list(self._subscriptions)
        for subscription in snapshot:
            if not subscription.offer(event):
                logger.debug("Dropped %s event for a full subscriber", event_type)
        return event

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)


def format_sse(event: AutomationEvent) -> str:
    return f"event: {event.type}\ndata: {json.dumps(event.to_dict(), sort_keys=True)}\n\n"


def stream_events(subscription: Subscription, heartbeat_seconds: float = 30.0) -> Iterator[str]:
    """Yield SSE frames for ``subscription`` with a heartbeat comment while idle."""

    while not subscription.closed:
        event = subscription.get(timeout=heartbeat_seconds)
        if event is None:
            if subscription.closed:
                return
            yield ":heartbeat\n\n"
            continue
        yield format_sse(event)
