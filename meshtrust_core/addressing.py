from __future__ import annotations
from typing import Iterable, Optional, Set
import ipaddress
import threading
from .errors import AddressPoolExhaustedError


def normalize_address(address: str) -> str:
    """Canonical text form of an IPv4/IPv6 address. Raises ValueError."""
    return str(ipaddress.ip_address(str(address).strip()))


class AddressAllocator:
    """
    Hands out virtual addresses from the VPN network.

    The first host address is reserved for the local node. Addresses already
    held by trust records are passed in by the caller on every allocation.
    """

    def __init__(self, network: str):
        self.network = ipaddress.ip_network(network, strict=False)
        hosts = self.network.hosts()
        self.local_address = str(next(hosts))
        self._claimed: Set[str] = set()
        self._lock = threading.Lock()

    def allocate(self, in_use: Iterable[Optional[str]] = ()) -> str:
        taken = {a for a in in_use if a}
        with self._lock:
            for host in self.network.hosts():
                addr = str(host)
                if addr == self.local_address or addr in taken or addr in self._claimed:
                    continue
                self._claimed.add(addr)
                return addr
        raise AddressPoolExhaustedError(f"no free address in {self.network}")

    def release(self, address: Optional[str]) -> None:
        if address:
            with self._lock:
                self._claimed.discard(address)
