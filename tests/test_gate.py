import threading
import time
import pytest
from meshtrust_core.addressing import AddressAllocator, normalize_address
from meshtrust_core.config import AuthConfig
from meshtrust_core.engine import AuthEngine, AuthReason
from meshtrust_core.errors import AddressPoolExhaustedError
from meshtrust_core.gate import ForwardingGate, StaticRoutingTable
from meshtrust_core.identity import Identity
from meshtrust_core.trust import InMemoryTrustStore, TrustRecord, TrustStatus
from test_engine import _handshake


@pytest.mark.parametrize("status,allowed", [
    (TrustStatus.UNKNOWN, False),
    (TrustStatus.PENDING_INBOUND, False),
    (TrustStatus.PENDING_OUTBOUND, False),
    (TrustStatus.BLOCKED, False),
    (TrustStatus.AUTHORIZED, True),
])
def test_should_forward_by_status(engine, bob, status, allowed):
    engine.store.upsert(TrustRecord(peer_id=bob.id, public_key=bob.public_key, status=status))
    gate = ForwardingGate(engine, StaticRoutingTable({"10.66.0.5": bob.id}))
    assert gate.should_forward("10.66.0.5") == (bob.id, allowed)


def test_unrouted_or_absent_peer_is_dropped(engine, bob):
    gate = ForwardingGate(engine, StaticRoutingTable({"10.66.0.5": bob.id}))
    assert gate.should_forward("10.66.0.5") == (bob.id, False)   # no trust record
    assert gate.should_forward("10.66.0.6") == (None, False)     # no route
    assert gate.should_forward("not-an-ip") == (None, False)


def test_routing_table_normalizes_addresses(bob):
    routes = StaticRoutingTable()
    routes.add_route(" fd00:0:0:0::1 ", bob.id)
    assert routes.lookup(normalize_address("fd00::1")) == bob.id
    assert routes.remove_route("fd00::1") == bob.id
    assert routes.routes() == {}
    with pytest.raises(ValueError):
        routes.add_route("10.66.0.300", bob.id)


def test_routes_follow_trust_events(alice, store, events, bob):
    eng = AuthEngine(alice, store, AuthConfig(store_provider="memory"), events=events,
                     allocator=AddressAllocator("10.66.0.0/24"))
    routes = StaticRoutingTable()
    routes.attach(events, store)
    gate = ForwardingGate(eng, routes)

    eng.add_pending_outbound(bob.id, bob.public_key)
    assert gate.should_forward("10.66.0.2") == (None, False)
    eng.peer_approved(bob.id)
    assert gate.should_forward("10.66.0.2") == (bob.id, True)
    eng.remove(bob.id)
    assert gate.should_forward("10.66.0.2") == (None, False)


def test_allocator_exhaustion():
    alloc = AddressAllocator("10.66.0.0/30")   # hosts .1 (local) and .2
    assert alloc.local_address == "10.66.0.1"
    assert alloc.allocate() == "10.66.0.2"
    with pytest.raises(AddressPoolExhaustedError):
        alloc.allocate()
    alloc.release("10.66.0.2")
    assert alloc.allocate(in_use=["10.66.0.9"]) == "10.66.0.2"


def test_end_to_end_scenario(alice, engine, clock):
    bob = Identity.generate()
    routes = StaticRoutingTable({"10.66.0.2": bob.id})
    gate = ForwardingGate(engine, routes)

    # Response arrives 31s after the challenge was issued.
    outcome, _, _ = _handshake(engine, bob, before_send=lambda: clock.advance(31))
    assert outcome.reason is AuthReason.EXPIRED
    assert engine.store.get(bob.id) is None

    # Same exchange at +5s succeeds; bob is now pending, not trusted.
    outcome, _, _ = _handshake(engine, bob, before_send=lambda: clock.advance(5))
    assert outcome.reason is AuthReason.OK
    assert engine.store.get(bob.id).status is TrustStatus.PENDING_INBOUND
    assert gate.should_forward("10.66.0.2") == (bob.id, False)

    engine.approve(bob.id)
    assert gate.should_forward("10.66.0.2") == (bob.id, True)

    engine.block(bob.id)
    assert gate.should_forward("10.66.0.2") == (bob.id, False)


class _StallingStore(InMemoryTrustStore):
    """The first list() after `stall_on` is authorized takes its snapshot, then parks."""

    def __init__(self):
        super().__init__()
        self.stall_on = None
        self.stalled = threading.Event()
        self.resume = threading.Event()

    def list(self):
        snapshot = super().list()
        if self.stall_on and self.status_of(self.stall_on) is TrustStatus.AUTHORIZED:
            self.stall_on = None
            self.stalled.set()
            self.resume.wait(timeout=5)
        return snapshot


def test_concurrent_approvals_keep_every_route(alice, events, bob):
    carol = Identity.generate()
    store = _StallingStore()
    eng = AuthEngine(alice, store, AuthConfig(store_provider="memory"), events=events,
                     allocator=AddressAllocator("10.66.0.0/24"))
    routes = StaticRoutingTable()
    routes.attach(events, store)
    gate = ForwardingGate(eng, routes)
    for peer in (bob, carol):
        eng.add_pending_outbound(peer.id, peer.public_key)

    # bob's route rebuild stalls holding a snapshot taken before carol exists
    store.stall_on = bob.id
    first = threading.Thread(target=eng.peer_approved, args=(bob.id,))
    first.start()
    assert store.stalled.wait(timeout=5)

    second = threading.Thread(target=eng.peer_approved, args=(carol.id,))
    second.start()
    deadline = time.monotonic() + 5
    while not eng.is_authorized_to_forward(carol.id) and time.monotonic() < deadline:
        time.sleep(0.01)
    time.sleep(0.05)
    store.resume.set()
    first.join(timeout=5)
    second.join(timeout=5)

    assert gate.should_forward(store.get(bob.id).assigned_address) == (bob.id, True)
    assert gate.should_forward(store.get(carol.id).assigned_address) == (carol.id, True)
