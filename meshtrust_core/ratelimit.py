from __future__ import annotations
from collections import deque
from typing import Callable, Deque, Dict
import threading
import time
from .logger import get_logger

log = get_logger("MeshTrust.RateLimit")


class FailureLimiter:
    """
    Per-address backoff for repeated handshake failures.

    After `max_failures` counted failures inside `window` seconds an address is
    refused for `cooldown` seconds. Purely local; it never touches trust state.

    State for addresses whose failures have aged out of the window, or whose
    cooldown has ended, is swept at most once per `window`, so the tables only
    hold addresses seen in roughly the last window plus those still cooling
    down.
    """

    def __init__(self, max_failures: int = 5, window: float = 60.0, cooldown: float = 300.0,
                 clock: Callable[[], float] = time.monotonic):
        self.max_failures = max_failures
        self.window = window
        self.cooldown = cooldown
        self._clock = clock
        self._failures: Dict[str, Deque[float]] = {}
        self._blocked_until: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        """Number of addresses currently tracked."""
        with self._lock:
            return len(self._failures.keys() | self._blocked_until.keys())

    def is_limited(self, address: str) -> bool:
        with self._lock:
            until = self._blocked_until.get(address)
            if until is None:
                return False
            if self._clock() >= until:
                del self._blocked_until[address]
                return False
            return True

    def record_failure(self, address: str) -> bool:
        """Count one failure; returns True if the address is now limited."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window:
                self._sweep(now)
            hits = self._failures.setdefault(address, deque())
            hits.append(now)
            while hits and now - hits[0] > self.window:
                hits.popleft()
            if len(hits) < self.max_failures:
                return False
            self._blocked_until[address] = now + self.cooldown
            del self._failures[address]
        log.warning(f"[RATE LIMIT] {address} refused for {self.cooldown:.0f}s after {self.max_failures} failures")
        return True

    def reset(self, address: str) -> None:
        with self._lock:
            self._failures.pop(address, None)
            self._blocked_until.pop(address, None)

    def _sweep(self, now: float) -> None:
        # caller holds self._lock
        stale = [a for a, hits in self._failures.items() if not hits or now - hits[-1] > self.window]
        for address in stale:
            del self._failures[address]
        expired = [a for a, until in self._blocked_until.items() if now >= until]
        for address in expired:
            del self._blocked_until[address]
        self._last_sweep = now
        if stale or expired:
            log.debug(f"[RATE LIMIT] swept {len(stale)} idle and {len(expired)} expired addresses")
