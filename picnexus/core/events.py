"""
Progress events.

The orchestrator publishes ProgressEvent objects to a ProgressBus; the
queue manager (or any other consumer) subscribes to them. Handlers run
synchronously on the publishing thread, so they must be quick.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

from picnexus.utils.logger import log


@dataclass(frozen=True)
class ProgressEvent:
    """Upload progress of one service for one file (percent 0-100)."""
    item_id: str
    service_id: str
    percent: float
    timestamp: datetime = field(default_factory=datetime.now)


ProgressHandler = Callable[[ProgressEvent], None]


class ProgressBus:
    """Thread-safe publish/subscribe channel for upload progress."""

    def __init__(self):
        self._subscriptions: Dict[str, ProgressHandler] = {}
        self._lock = threading.RLock()
        self._next_id = 0

    def subscribe(self, handler: ProgressHandler) -> str:
        with self._lock:
            subscription_id = f"sub_{self._next_id}"
            self._next_id += 1
            self._subscriptions[subscription_id] = handler
            return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        with self._lock:
            return self._subscriptions.pop(subscription_id, None) is not None

    def publish(self, event: ProgressEvent) -> None:
        """Deliver an event to all subscribers; a failing handler does not stop the others."""
        with self._lock:
            handlers = list(self._subscriptions.items())

        for subscription_id, handler in handlers:
            try:
                handler(event)
            except Exception as e:
                log(f"Error in progress handler {subscription_id}: {e}", level="error", category="queue")

    def reporter(self, item_id: str, service_id: str) -> Callable[[float], None]:
        """Return an on_progress(percent) callback bound to one item/service."""
        def report(percent: float) -> None:
            self.publish(ProgressEvent(item_id=item_id, service_id=service_id,
                                       percent=max(0.0, min(100.0, float(percent)))))
        return report

    @property
    def subscription_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)


_default_bus: Optional[ProgressBus] = None


def get_progress_bus() -> ProgressBus:
    """Process-wide default bus used when none is injected."""
    global _default_bus
    if _default_bus is None:
        _default_bus = ProgressBus()
    return _default_bus
