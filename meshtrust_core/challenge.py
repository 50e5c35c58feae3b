"""
meshtrust_core.challenge
------------------------
Single-exchange challenge/response proof of key possession.

The verifier issues a Challenge (32 random bytes, issue time, per-issuer
sequence number), the remote side signs the challenge's canonical bytes with
its identity key, and the verifier checks, in this order:

1. expiry          -> EXPIRED
2. identity match  -> KEY_MISMATCH  (declared peer id vs. presented key)
3. signature       -> BAD_SIGNATURE

Signatures are always checked against the bytes cached on the verifier's own
Challenge instance, never against bytes rebuilt from fields that came back
over the wire.
"""

from __future__ import annotations
import itertools, os, threading, time
from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from typing import Any, Callable, Dict, Optional, Tuple
from .constants import (
    CHALLENGE_DOMAIN, NONCE_SIZE, MAX_SEQUENCE, SIGNATURE_SIZE,
    FRAME_CHALLENGE, FRAME_RESPONSE, DEFAULT_MAX_CHALLENGE_AGE,
)
from .crypto import derive_peer_id, ed25519_verify
from .errors import MalformedMessageError
from .identity import Identity
from .utils import b64e, b64d, canonical_json


class VerifyReason(str, Enum):
    OK = "ok"
    EXPIRED = "expired"
    BAD_SIGNATURE = "bad_signature"
    KEY_MISMATCH = "key_mismatch"


@dataclass(frozen=True)
class Challenge:
    nonce: bytes
    issued_at_us: int     # wall-clock microseconds since the epoch
    sequence: int

    def __post_init__(self):
        if not isinstance(self.nonce, bytes) or len(self.nonce) != NONCE_SIZE:
            raise ValueError(f"nonce must be {NONCE_SIZE} bytes")
        if not 0 <= self.sequence <= MAX_SEQUENCE:
            raise ValueError("sequence out of range")

    @property
    def issued_at(self) -> float:
        return self.issued_at_us / 1_000_000

    @cached_property
    def signing_bytes(self) -> bytes:
        return canonical_json({
            "domain": CHALLENGE_DOMAIN,
            "issued_at_us": self.issued_at_us,
            "nonce": b64e(self.nonce),
            "sequence": self.sequence,
        })

    def to_wire(self) -> Dict[str, Any]:
        return {
            "type": FRAME_CHALLENGE,
            "nonce": b64e(self.nonce),
            "issued_at_us": self.issued_at_us,
            "sequence": self.sequence,
        }

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "Challenge":
        if not isinstance(data, dict) or data.get("type") != FRAME_CHALLENGE:
            raise MalformedMessageError("expected an auth_challenge frame")
        issued_at_us, sequence = data.get("issued_at_us"), data.get("sequence")
        if type(issued_at_us) is not int or type(sequence) is not int:
            raise MalformedMessageError("challenge timestamp and sequence must be integers")
        try:
            return cls(nonce=b64d(data["nonce"]), issued_at_us=issued_at_us, sequence=sequence)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedMessageError(f"bad challenge: {exc}") from exc


@dataclass(frozen=True)
class Response:
    peer_id: str
    signature: bytes

    def to_wire(self) -> Dict[str, Any]:
        return {
            "type": FRAME_RESPONSE,
            "peer_id": self.peer_id,
            "signature": b64e(self.signature),
        }

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "Response":
        if not isinstance(data, dict) or data.get("type") != FRAME_RESPONSE:
            raise MalformedMessageError("expected an auth_response frame")
        peer_id, sig_b64 = data.get("peer_id"), data.get("signature")
        if not isinstance(peer_id, str) or not isinstance(sig_b64, str):
            raise MalformedMessageError("response peer_id and signature must be strings")
        try:
            signature = b64d(sig_b64)
        except ValueError as exc:
            raise MalformedMessageError(f"bad response signature encoding: {exc}") from exc
        if len(signature) != SIGNATURE_SIZE:
            raise MalformedMessageError(f"signature must be {SIGNATURE_SIZE} bytes")
        return cls(peer_id=peer_id, signature=signature)


def build_response(identity: Identity, challenge: Challenge) -> Response:
    return Response(peer_id=identity.id, signature=identity.sign(challenge.signing_bytes))


def verify_response(
    challenge: Challenge,
    response: Response,
    claimed_public_key: bytes,
    max_age: float = DEFAULT_MAX_CHALLENGE_AGE,
    now: Optional[float] = None,
) -> Tuple[bool, VerifyReason]:
    """
    Stateless verification of one response against the verifier's challenge.

    Never raises on remote-controlled input: a malformed key or signature is
    reported through the reason, not an exception.
    """
    now = time.time() if now is None else now
    if now - challenge.issued_at > max_age:
        return False, VerifyReason.EXPIRED

    try:
        expected_id = derive_peer_id(claimed_public_key)
    except (TypeError, ValueError):
        return False, VerifyReason.KEY_MISMATCH
    if response.peer_id != expected_id:
        return False, VerifyReason.KEY_MISMATCH

    if not ed25519_verify(claimed_public_key, response.signature, challenge.signing_bytes):
        return False, VerifyReason.BAD_SIGNATURE
    return True, VerifyReason.OK


class ChallengeIssuer:
    """
    Issues challenges and enforces single use.

    Each issued challenge is held until it is verified once, discarded, or
    ages out. Verifying a sequence that is no longer held reports EXPIRED.
    """

    def __init__(
        self,
        max_age: float = DEFAULT_MAX_CHALLENGE_AGE,
        clock: Callable[[], float] = time.time,
        start_sequence: int = 1,
    ):
        self.max_age = max_age
        self._clock = clock
        self._counter = itertools.count(start_sequence)
        self._lock = threading.Lock()
        self._outstanding: Dict[int, Challenge] = {}

    def issue(self) -> Challenge:
        now = self._clock()
        with self._lock:
            seq = next(self._counter)
            if seq > MAX_SEQUENCE:
                raise OverflowError("challenge sequence exhausted")
            challenge = Challenge(
                nonce=os.urandom(NONCE_SIZE),
                issued_at_us=int(now * 1_000_000),
                sequence=seq,
            )
            self._prune(now)
            self._outstanding[seq] = challenge
        return challenge

    def discard(self, challenge: Challenge) -> bool:
        with self._lock:
            return self._outstanding.pop(challenge.sequence, None) is not None

    def verify(
        self, challenge: Challenge, response: Response, claimed_public_key: bytes
    ) -> Tuple[bool, VerifyReason]:
        with self._lock:
            held = self._outstanding.pop(challenge.sequence, None)
        if held is None:
            return False, VerifyReason.EXPIRED
        return verify_response(held, response, claimed_public_key, self.max_age, self._clock())

    @property
    def outstanding(self) -> int:
        return len(self._outstanding)

    def _prune(self, now: float) -> None:
        stale = [s for s, c in self._outstanding.items() if now - c.issued_at > self.max_age]
        for s in stale:
            del self._outstanding[s]
