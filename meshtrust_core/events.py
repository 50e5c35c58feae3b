"""
meshtrust_core.events
---------------------
Trust change notifications.

TrustEventBus delivers each event synchronously to every subscriber, after
the store write has completed, in subscription order. Delivery is
best-effort: a subscriber that raises is logged and skipped, it never
affects the operation that produced the event or the other subscribers.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import threading
import time
import requests
from .logger import get_logger
from .trust.models import TrustRecord, TrustStatus

log = get_logger("MeshTrust.Events")

Handler = Callable[["TrustEvent"], None]


@dataclass(frozen=True)
class TrustEvent:
    peer_id: str
    action: str
    old_status: Optional[TrustStatus]
    new_status: Optional[TrustStatus]     # None when the record was removed
    record: Optional[TrustRecord] = None
    ts: float = field(default_factory=time.time)

    @property
    def forwarding_changed(self) -> bool:
        return (self.old_status is TrustStatus.AUTHORIZED) != (self.new_status is TrustStatus.AUTHORIZED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "peer_id": self.peer_id,
            "action": self.action,
            "old_status": self.old_status.value if self.old_status else None,
            "new_status": self.new_status.value if self.new_status else None,
            "assigned_address": self.record.assigned_address if self.record else None,
            "ts": self.ts,
        }


class TrustEventBus:
    def __init__(self):
        self._handlers: List[Handler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a callable that unsubscribes it."""
        with self._lock:
            self._handlers.append(handler)

        def _unsubscribe():
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return _unsubscribe

    def publish(self, event: TrustEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)
        log.debug(f"[EVENT] {event.action} peer_id={event.peer_id} -> {event.new_status}")
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                log.exception(f"[EVENT] handler {handler!r} failed for {event.action}")


class WebhookNotifier:
    """
    Subscriber that POSTs each event as JSON to an operator endpoint.

    Usage: bus.subscribe(WebhookNotifier(url))
    """

    def __init__(self, url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def __call__(self, event: TrustEvent) -> None:
        try:
            res = self.session.post(self.url, json=event.to_dict(), timeout=self.timeout)
            if not res.ok:
                log.error(f"[WEBHOOK] {res.status_code}: {res.text}")
        except requests.RequestException as e:
            log.error(f"[WEBHOOK] delivery to {self.url} failed: {e}")
