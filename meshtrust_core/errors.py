from __future__ import annotations


class MeshTrustError(Exception):
    pass


class IdentityError(MeshTrustError):
    pass


class MalformedMessageError(MeshTrustError):
    """A frame from the remote side could not be decoded."""


class ConnectionClosedError(MeshTrustError):
    pass


class StorageError(MeshTrustError):
    pass


class UnknownPeerError(MeshTrustError, KeyError):
    def __init__(self, peer_id: str):
        super().__init__(peer_id)
        self.peer_id = peer_id

    def __str__(self) -> str:
        return f"unknown peer: {self.peer_id}"


class TrustTransitionError(MeshTrustError):
    def __init__(self, peer_id: str, current, action: str):
        super().__init__(f"cannot {action} peer {peer_id} in status {current.value}")
        self.peer_id = peer_id
        self.current = current
        self.action = action


class AddressPoolExhaustedError(MeshTrustError):
    pass
