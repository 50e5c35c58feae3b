# meshtrust_core/trust/models.py
from __future__ import annotations
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Dict, Optional
import time
from meshtrust_core.crypto import derive_peer_id
from meshtrust_core.errors import TrustTransitionError
from meshtrust_core.utils import b64e, b64d


class TrustStatus(str, Enum):
    UNKNOWN = "unknown"
    PENDING_INBOUND = "pending_inbound"
    PENDING_OUTBOUND = "pending_outbound"
    AUTHORIZED = "authorized"
    BLOCKED = "blocked"


class TrustAction(str, Enum):
    INBOUND_OBSERVED = "inbound_observed"
    OPERATOR_ADD = "operator_add"
    APPROVE = "approve"
    REJECT = "reject"
    PEER_APPROVED = "peer_approved"
    BLOCK = "block"
    UNBLOCK = "unblock"


# (action, current status) -> next status
_TRANSITIONS = {
    (TrustAction.INBOUND_OBSERVED, TrustStatus.UNKNOWN): TrustStatus.PENDING_INBOUND,
    (TrustAction.OPERATOR_ADD, TrustStatus.UNKNOWN): TrustStatus.PENDING_OUTBOUND,
    (TrustAction.APPROVE, TrustStatus.PENDING_INBOUND): TrustStatus.AUTHORIZED,
    (TrustAction.REJECT, TrustStatus.PENDING_INBOUND): TrustStatus.BLOCKED,
    (TrustAction.PEER_APPROVED, TrustStatus.PENDING_OUTBOUND): TrustStatus.AUTHORIZED,
    (TrustAction.UNBLOCK, TrustStatus.BLOCKED): TrustStatus.PENDING_INBOUND,
}

# Statuses in which repeating an action changes nothing.
_IDEMPOTENT = {
    TrustAction.INBOUND_OBSERVED: {
        TrustStatus.PENDING_INBOUND, TrustStatus.PENDING_OUTBOUND,
        TrustStatus.AUTHORIZED, TrustStatus.BLOCKED,
    },
    TrustAction.OPERATOR_ADD: {
        TrustStatus.PENDING_OUTBOUND, TrustStatus.PENDING_INBOUND,
        TrustStatus.AUTHORIZED, TrustStatus.BLOCKED,
    },
    TrustAction.APPROVE: {TrustStatus.AUTHORIZED},
    TrustAction.REJECT: {TrustStatus.BLOCKED},
    TrustAction.PEER_APPROVED: {TrustStatus.AUTHORIZED},
    TrustAction.UNBLOCK: {
        TrustStatus.UNKNOWN, TrustStatus.PENDING_INBOUND,
        TrustStatus.PENDING_OUTBOUND, TrustStatus.AUTHORIZED,
    },
}


def transition(peer_id: str, current: TrustStatus, action: TrustAction) -> TrustStatus:
    """
    Apply one state-machine step.

    Returns the next status (equal to `current` for idempotent repeats) or
    raises TrustTransitionError. BLOCK is accepted from every status.
    """
    if action is TrustAction.BLOCK:
        return TrustStatus.BLOCKED
    nxt = _TRANSITIONS.get((action, current))
    if nxt is not None:
        return nxt
    if current in _IDEMPOTENT.get(action, ()):
        return current
    raise TrustTransitionError(peer_id, current, action.value)


@dataclass
class TrustRecord:
    """
    Trust state for one peer.

    Records are treated as immutable snapshots once handed to a store; stores
    replace them with dataclasses.replace() rather than mutating in place.
    """
    peer_id: str
    public_key: bytes
    display_name: str = ""
    status: TrustStatus = TrustStatus.UNKNOWN
    assigned_address: Optional[str] = None
    last_handshake_at: Optional[float] = None
    updated_at: float = field(default_factory=time.time)

    def __post_init__(self):
        self.status = TrustStatus(self.status)
        if derive_peer_id(self.public_key) != self.peer_id:
            raise ValueError(f"peer id {self.peer_id} does not match its public key")

    @property
    def authorized(self) -> bool:
        return self.status is TrustStatus.AUTHORIZED

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["public_key"] = b64e(self.public_key)
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrustRecord":
        return cls(
            peer_id=data["peer_id"],
            public_key=b64d(data["public_key"]),
            display_name=data.get("display_name", ""),
            status=TrustStatus(data.get("status", TrustStatus.UNKNOWN.value)),
            assigned_address=data.get("assigned_address"),
            last_handshake_at=data.get("last_handshake_at"),
            updated_at=data.get("updated_at") or time.time(),
        )
