"""
meshtrust_core.trust.provider
-----------------------------
TrustStore: the single owner and writer of TrustRecords.

Writers are serialized per peer id; readers never lock. The store keeps an
insertion-ordered cache of record snapshots that is consulted for every read,
so the packet-forwarding hot path never waits on a write to another peer (or
on the disk). Providers only implement the persistence hooks.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import threading, time
from meshtrust_core.logger import get_logger
from meshtrust_core.trust.models import TrustRecord, TrustStatus

log = get_logger("MeshTrust.TrustStore")

Updater = Callable[[Optional[TrustRecord]], Optional[TrustRecord]]


class TrustStore:
    def __init__(self):
        self._records: Dict[str, TrustRecord] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        for rec in self._load():
            self._records[rec.peer_id] = rec

    # ------------------------------------------------------------------
    # Persistence hooks (provider specific)
    # ------------------------------------------------------------------
    def _load(self) -> Iterable[TrustRecord]:
        raise NotImplementedError

    def _persist(self, rec: TrustRecord) -> None:
        raise NotImplementedError

    def _delete(self, peer_id: str) -> None:
        raise NotImplementedError

    def log_event(self, event_type: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return

    # ------------------------------------------------------------------
    # Reads (lock-free)
    # ------------------------------------------------------------------
    def get(self, peer_id: str) -> Optional[TrustRecord]:
        return self._records.get(peer_id)

    def status_of(self, peer_id: str) -> Optional[TrustStatus]:
        rec = self._records.get(peer_id)
        return rec.status if rec else None

    def list(self) -> List[TrustRecord]:
        return list(self._records.copy().values())

    def find_by_address(self, address: str) -> Optional[TrustRecord]:
        return next((r for r in self.list() if r.assigned_address == address), None)

    def __contains__(self, peer_id: str) -> bool:
        return peer_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # Writes (serialized per peer)
    # ------------------------------------------------------------------
    def _lock_for(self, peer_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(peer_id)
            if lock is None:
                lock = self._locks[peer_id] = threading.Lock()
            return lock

    def update(self, peer_id: str, fn: Updater) -> Tuple[Optional[TrustRecord], Optional[TrustRecord]]:
        """
        Atomic read-modify-write of one record.

        `fn` receives the current record (or None) while the peer's lock is
        held and returns the replacement. Returning the same object leaves the
        store untouched. Returns (before, after).
        """
        with self._lock_for(peer_id):
            before = self._records.get(peer_id)
            after = fn(before)
            if after is None or after is before:
                return before, before
            if after.peer_id != peer_id:
                raise ValueError(f"updater for {peer_id} returned record for {after.peer_id}")
            self._persist(after)
            self._records[peer_id] = after
        if before is None or before.status is not after.status:
            self.log_event("status_change", {
                "peer_id": peer_id,
                "from": before.status.value if before else None,
                "to": after.status.value,
            })
        return before, after

    def upsert(self, record: TrustRecord) -> TrustRecord:
        _, after = self.update(record.peer_id, lambda _cur: record)
        return after

    def set_status(self, peer_id: str, status: TrustStatus) -> Optional[TrustRecord]:
        """Unchecked status write. Returns None if the peer is unknown."""

        def _set(cur):
            if cur is None or cur.status is status:
                return cur
            return replace(cur, status=status, updated_at=time.time())

        _, after = self.update(peer_id, _set)
        return after

    def remove(self, peer_id: str) -> Optional[TrustRecord]:
        with self._lock_for(peer_id):
            rec = self._records.get(peer_id)
            if rec is None:
                return None
            self._delete(peer_id)
            del self._records[peer_id]
        self.log_event("removed", {"peer_id": peer_id})
        log.info(f"removed trust record peer_id={peer_id}")
        return rec
