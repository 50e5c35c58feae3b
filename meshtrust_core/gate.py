"""
meshtrust_core.gate
-------------------
The decision point the packet router calls before sending anything toward a
peer. Untrusted destinations are dropped silently: should_forward() returns
allow=False and never raises.
"""

from __future__ import annotations
from typing import Callable, Dict, Optional, Protocol, Tuple
import threading
from .addressing import normalize_address
from .events import TrustEvent, TrustEventBus
from .logger import get_logger
from .trust.provider import TrustStore

log = get_logger("MeshTrust.Gate")


class RoutingTable(Protocol):
    def lookup(self, address: str) -> Optional[str]: ...


class StaticRoutingTable:
    """
    address -> peer_id map.

    Lookups are lock-free; writers swap in a new dict under a lock.
    """

    def __init__(self, routes: Optional[Dict[str, str]] = None):
        self._routes: Dict[str, str] = {}
        self._lock = threading.Lock()
        for address, peer_id in (routes or {}).items():
            self.add_route(address, peer_id)

    def lookup(self, address: str) -> Optional[str]:
        return self._routes.get(address)

    def add_route(self, address: str, peer_id: str) -> None:
        key = normalize_address(address)
        with self._lock:
            routes = dict(self._routes)
            routes[key] = peer_id
            self._routes = routes

    def remove_route(self, address: str) -> Optional[str]:
        key = normalize_address(address)
        with self._lock:
            routes = dict(self._routes)
            peer_id = routes.pop(key, None)
            self._routes = routes
        return peer_id

    def routes(self) -> Dict[str, str]:
        return dict(self._routes)

    def sync_from_store(self, store: TrustStore) -> None:
        """
        Rebuild the table from the addresses recorded in the trust store.

        The snapshot is read under the writer lock, so a rebuild triggered by
        an older change can never overwrite one that already saw a newer one.
        """
        with self._lock:
            routes = {}
            for rec in store.list():
                if not rec.assigned_address:
                    continue
                try:
                    routes[normalize_address(rec.assigned_address)] = rec.peer_id
                except ValueError:
                    log.warning(f"ignoring invalid address {rec.assigned_address!r} for {rec.peer_id}")
            self._routes = routes

    def attach(self, events: TrustEventBus, store: TrustStore) -> Callable[[], None]:
        """Keep the table in step with the store; returns the unsubscribe callable."""
        def _on_event(event: TrustEvent) -> None:
            self.sync_from_store(store)

        self.sync_from_store(store)
        return events.subscribe(_on_event)


class ForwardingGate:
    def __init__(self, engine, routes: RoutingTable):
        self.engine = engine
        self.routes = routes

    def should_forward(self, address: str) -> Tuple[Optional[str], bool]:
        try:
            key = normalize_address(address)
        except ValueError:
            log.debug(f"[DROP] unparseable destination {address!r}")
            return None, False

        peer_id = self.routes.lookup(key)
        if peer_id is None:
            log.debug(f"[DROP] no route to {key}")
            return None, False

        allow = self.engine.is_authorized_to_forward(peer_id)
        if not allow:
            log.debug(f"[DROP] {key} owned by untrusted peer_id={peer_id}")
        return peer_id, allow
