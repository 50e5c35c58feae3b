"""
meshtrust_core.engine
---------------------
AuthEngine ties the challenge protocol to the trust store.

Handshakes
    handle_inbound_handshake() proves that the remote side holds the key it
    claims. A verified handshake records the peer (unknown -> pending_inbound)
    and refreshes last_handshake_at; it never authorizes anyone. Every
    failure is folded into an AuthOutcome, the connection is closed and the
    trust store is left untouched.

Operator decisions
    approve / reject / block / unblock / remove / add_pending_outbound /
    peer_approved / rename are synchronous, idempotent, and publish a
    TrustEvent whenever they change a record.

Forwarding
    is_authorized_to_forward() is a lock-free read of the cached status.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional
import asyncio
import time
from .addressing import AddressAllocator
from .challenge import Challenge, ChallengeIssuer, Response, build_response
from .config import AuthConfig
from .connection import Connection
from .constants import FRAME_RESULT
from .crypto import derive_peer_id, public_key_from_peer_id
from .errors import ConnectionClosedError, MalformedMessageError, StorageError, UnknownPeerError
from .events import TrustEvent, TrustEventBus
from .framing import encode_message, decode_message
from .identity import Identity
from .logger import get_logger
from .ratelimit import FailureLimiter
from .trust.models import TrustAction, TrustRecord, TrustStatus, transition
from .trust.provider import TrustStore

log = get_logger("MeshTrust.Engine")


class AuthReason(str, Enum):
    OK = "ok"
    EXPIRED = "expired"
    BAD_SIGNATURE = "bad_signature"
    KEY_MISMATCH = "key_mismatch"
    TIMEOUT = "timeout"
    MALFORMED = "malformed"
    RATE_LIMITED = "rate_limited"
    CLOSED = "closed"
    STORE_ERROR = "store_error"


# Failures that count toward the per-address rate limit.
_PENALIZED = {AuthReason.BAD_SIGNATURE, AuthReason.MALFORMED}


@dataclass(frozen=True)
class AuthOutcome:
    accepted: bool
    peer_id: Optional[str]
    reason: AuthReason

    @classmethod
    def reject(cls, reason: AuthReason, peer_id: Optional[str] = None) -> "AuthOutcome":
        return cls(False, peer_id, reason)


class AuthEngine:
    def __init__(
        self,
        identity: Identity,
        store: TrustStore,
        config: Optional[AuthConfig] = None,
        events: Optional[TrustEventBus] = None,
        limiter: Optional[FailureLimiter] = None,
        allocator: Optional[AddressAllocator] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.identity = identity
        self.store = store
        self.config = config or AuthConfig()
        self.events = events or TrustEventBus()
        self.limiter = limiter or FailureLimiter(
            self.config.max_failures, self.config.failure_window, self.config.failure_cooldown
        )
        self.allocator = allocator
        self._clock = clock
        self.issuer = ChallengeIssuer(max_age=self.config.max_challenge_age, clock=clock)

    @classmethod
    def from_config(cls, config: Optional[AuthConfig] = None) -> "AuthEngine":
        """Build an engine with persisted identity, store and address pool."""
        from .events import WebhookNotifier
        from .trust import load_trust_store

        config = config or AuthConfig.from_env()
        events = TrustEventBus()
        if config.webhook_url:
            events.subscribe(WebhookNotifier(config.webhook_url))
        return cls(
            identity=Identity.load_or_create(config.identity_path),
            store=load_trust_store(config),
            config=config,
            events=events,
            allocator=AddressAllocator(config.vpn_network),
        )

    def close(self) -> None:
        self.store.close()

    # ------------------------------------------------------------------
    # Inbound handshake
    # ------------------------------------------------------------------
    async def handle_inbound_handshake(self, conn: Connection) -> AuthOutcome:
        addr = conn.remote_address
        if self.limiter.is_limited(addr):
            log.warning(f"[HANDSHAKE] rejected {addr}: rate limited")
            await self._close(conn)
            return AuthOutcome.reject(AuthReason.RATE_LIMITED)

        challenge = self.issuer.issue()
        try:
            outcome = await self._run_inbound(conn, challenge)
        finally:
            # Single use: whatever happened, this challenge is spent.
            self.issuer.discard(challenge)

        if outcome.accepted:
            log.info(f"[HANDSHAKE] verified peer_id={outcome.peer_id} addr={addr}")
            await self._send_result(conn, outcome)
            return outcome

        log.warning(f"[HANDSHAKE] rejected {addr}: {outcome.reason.value} peer_id={outcome.peer_id}")
        if outcome.reason in _PENALIZED:
            self.limiter.record_failure(addr)
        if outcome.reason is not AuthReason.CLOSED:
            await self._send_result(conn, outcome)
        await self._close(conn)
        return outcome

    async def _run_inbound(self, conn: Connection, challenge: Challenge) -> AuthOutcome:
        try:
            await conn.send(encode_message(challenge.to_wire()))
            raw = await asyncio.wait_for(conn.receive(), timeout=self.config.handshake_timeout)
        except asyncio.TimeoutError:
            return AuthOutcome.reject(AuthReason.TIMEOUT)
        except ConnectionClosedError:
            return AuthOutcome.reject(AuthReason.CLOSED)
        except MalformedMessageError:
            return AuthOutcome.reject(AuthReason.MALFORMED)

        try:
            response = Response.from_wire(decode_message(raw))
        except MalformedMessageError as exc:
            log.debug(f"[HANDSHAKE] malformed response from {conn.remote_address}: {exc}")
            return AuthOutcome.reject(AuthReason.MALFORMED)

        claimed = conn.remote_public_key
        if claimed is None:
            # No transport-level identity: the declared peer id is the key.
            try:
                claimed = public_key_from_peer_id(response.peer_id)
            except ValueError:
                return AuthOutcome.reject(AuthReason.MALFORMED)

        ok, reason = self.issuer.verify(challenge, response, claimed)
        if not ok:
            return AuthOutcome.reject(AuthReason(reason.value), response.peer_id)

        try:
            self._record_handshake(response.peer_id, claimed)
        except StorageError as exc:
            log.error(f"[HANDSHAKE] could not record peer_id={response.peer_id}: {exc}")
            return AuthOutcome.reject(AuthReason.STORE_ERROR, response.peer_id)
        return AuthOutcome(True, response.peer_id, AuthReason.OK)

    def _record_handshake(self, peer_id: str, public_key: bytes) -> TrustRecord:
        at = self._clock()

        def step(cur: Optional[TrustRecord]) -> TrustRecord:
            base = cur or TrustRecord(peer_id=peer_id, public_key=public_key, updated_at=at)
            status = transition(peer_id, base.status, TrustAction.INBOUND_OBSERVED)
            last = max(at, base.last_handshake_at or at)
            changes = {"last_handshake_at": last}
            if status is not base.status:
                changes.update(status=status, updated_at=max(at, base.updated_at))
            return replace(base, **changes)

        before, after = self.store.update(peer_id, step)
        self._emit(TrustAction.INBOUND_OBSERVED.value, before, after)
        return after

    # ------------------------------------------------------------------
    # Outbound handshake: answer the remote verifier's challenge
    # ------------------------------------------------------------------
    async def handle_outbound_handshake(self, conn: Connection) -> AuthOutcome:
        peer_id = None
        if conn.remote_public_key is not None:
            try:
                peer_id = derive_peer_id(conn.remote_public_key)
            except ValueError:
                peer_id = None

        timeout = self.config.handshake_timeout
        try:
            raw = await asyncio.wait_for(conn.receive(), timeout=timeout)
            challenge = Challenge.from_wire(decode_message(raw))
            await conn.send(encode_message(build_response(self.identity, challenge).to_wire()))
            result = decode_message(await asyncio.wait_for(conn.receive(), timeout=timeout))
        except asyncio.TimeoutError:
            outcome = AuthOutcome.reject(AuthReason.TIMEOUT, peer_id)
        except ConnectionClosedError:
            outcome = AuthOutcome.reject(AuthReason.CLOSED, peer_id)
        except MalformedMessageError:
            outcome = AuthOutcome.reject(AuthReason.MALFORMED, peer_id)
        else:
            outcome = self._parse_result(result, peer_id)

        if not outcome.accepted:
            log.warning(f"[HANDSHAKE] {conn.remote_address} did not accept us: {outcome.reason.value}")
            await self._close(conn)
        return outcome

    @staticmethod
    def _parse_result(result: dict, peer_id: Optional[str]) -> AuthOutcome:
        accepted = result.get("accepted")
        try:
            reason = AuthReason(result.get("reason"))
        except ValueError:
            reason = None
        if result.get("type") != FRAME_RESULT or not isinstance(accepted, bool) or reason is None:
            return AuthOutcome.reject(AuthReason.MALFORMED, peer_id)
        return AuthOutcome(accepted, peer_id, reason)

    async def _send_result(self, conn: Connection, outcome: AuthOutcome) -> None:
        frame = {"type": FRAME_RESULT, "accepted": outcome.accepted, "reason": outcome.reason.value}
        try:
            await conn.send(encode_message(frame))
        except ConnectionClosedError:
            log.debug(f"[HANDSHAKE] could not deliver result to {conn.remote_address}")

    @staticmethod
    async def _close(conn: Connection) -> None:
        try:
            await conn.close()
        except ConnectionClosedError:
            pass

    # ------------------------------------------------------------------
    # Forwarding predicate
    # ------------------------------------------------------------------
    def is_authorized_to_forward(self, peer_id: str) -> bool:
        return self.store.status_of(peer_id) is TrustStatus.AUTHORIZED

    # ------------------------------------------------------------------
    # Operator surface
    # ------------------------------------------------------------------
    def list_peers(self) -> List[TrustRecord]:
        return self.store.list()

    def pending_inbound(self) -> List[TrustRecord]:
        return [r for r in self.store.list() if r.status is TrustStatus.PENDING_INBOUND]

    def approve(self, peer_id: str) -> TrustRecord:
        return self._apply(peer_id, TrustAction.APPROVE)

    def reject(self, peer_id: str) -> TrustRecord:
        return self._apply(peer_id, TrustAction.REJECT)

    def block(self, peer_id: str) -> TrustRecord:
        return self._apply(peer_id, TrustAction.BLOCK)

    def unblock(self, peer_id: str) -> TrustRecord:
        return self._apply(peer_id, TrustAction.UNBLOCK)

    def peer_approved(self, peer_id: str) -> TrustRecord:
        """The remote side accepted our outbound request."""
        return self._apply(peer_id, TrustAction.PEER_APPROVED)

    def rename(self, peer_id: str, display_name: str) -> TrustRecord:
        def step(cur):
            if cur is None:
                raise UnknownPeerError(peer_id)
            if cur.display_name == display_name:
                return cur
            return replace(cur, display_name=display_name, updated_at=self._clock())

        before, after = self.store.update(peer_id, step)
        self._emit("rename", before, after)
        return after

    def remove(self, peer_id: str) -> bool:
        rec = self.store.remove(peer_id)
        if rec is None:
            return False
        if self.allocator:
            self.allocator.release(rec.assigned_address)
        self.events.publish(TrustEvent(peer_id, "remove", rec.status, None, rec))
        return True

    def add_pending_outbound(self, peer_id: str, public_key: bytes, display_name: str = "") -> TrustRecord:
        if derive_peer_id(public_key) != peer_id:
            raise ValueError(f"peer id {peer_id} does not match the supplied public key")
        now = self._clock()

        def step(cur):
            base = cur or TrustRecord(peer_id=peer_id, public_key=public_key,
                                      display_name=display_name, updated_at=now)
            status = transition(peer_id, base.status, TrustAction.OPERATOR_ADD)
            if cur is not None and status is cur.status:
                return cur
            return replace(base, status=status, updated_at=now)

        before, after = self.store.update(peer_id, step)
        self._emit(TrustAction.OPERATOR_ADD.value, before, after)
        return after

    def _apply(self, peer_id: str, action: TrustAction) -> TrustRecord:
        now = self._clock()
        allocated = []

        def step(cur):
            if cur is None:
                raise UnknownPeerError(peer_id)
            status = transition(peer_id, cur.status, action)
            if status is cur.status:
                return cur
            changes = {"status": status, "updated_at": now}
            if status is TrustStatus.AUTHORIZED and not cur.assigned_address and self.allocator:
                changes["assigned_address"] = self.allocator.allocate(
                    r.assigned_address for r in self.store.list()
                )
                allocated.append(changes["assigned_address"])
            return replace(cur, **changes)

        try:
            before, after = self.store.update(peer_id, step)
        except StorageError:
            # the record never reached the store, so neither did its address
            for address in allocated:
                self.allocator.release(address)
            raise
        self._emit(action.value, before, after)
        return after

    def _emit(self, action: str, before: Optional[TrustRecord], after: Optional[TrustRecord]) -> None:
        if after is None or after is before:
            return
        old = before.status if before else None
        if old is not after.status:
            log.info(f"[TRUST] {action} peer_id={after.peer_id} {old.value if old else None} -> {after.status.value}")
        self.events.publish(TrustEvent(after.peer_id, action, old, after.status, after))
