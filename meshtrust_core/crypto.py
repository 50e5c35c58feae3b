"""
meshtrust_core.crypto
---------------------
Ed25519 primitives used by node identities and the challenge protocol.

Keys cross this module as raw bytes (32-byte seed, 32-byte public key) so the
rest of the package never touches `cryptography` key objects directly.
"""

from __future__ import annotations
from typing import Tuple
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import ed25519
from .constants import PUBLIC_KEY_SIZE, SIGNATURE_SIZE
from .utils import b64e, b64d


def ed25519_generate() -> Tuple[bytes, bytes]:
    sk = ed25519.Ed25519PrivateKey.generate()
    pk = sk.public_key()
    return sk.private_bytes_raw(), pk.public_bytes_raw()


def ed25519_public_from_private(priv_raw: bytes) -> bytes:
    sk = ed25519.Ed25519PrivateKey.from_private_bytes(priv_raw)
    return sk.public_key().public_bytes_raw()


def ed25519_sign(priv_raw: bytes, data: bytes) -> bytes:
    sk = ed25519.Ed25519PrivateKey.from_private_bytes(priv_raw)
    return sk.sign(data)


def ed25519_verify(pub_raw: bytes, sig: bytes, data: bytes) -> bool:
    if len(pub_raw) != PUBLIC_KEY_SIZE or len(sig) != SIGNATURE_SIZE:
        return False
    try:
        ed25519.Ed25519PublicKey.from_public_bytes(pub_raw).verify(sig, data)
        return True
    except (InvalidSignature, ValueError):
        return False


def derive_peer_id(pub_raw: bytes) -> str:
    """
    Peer IDs are the base64 encoding of the raw Ed25519 public key.

    The encoding is fixed-length (44 chars) and reversible, so a verifier can
    recover the key from a declared ID when the transport does not supply one.
    """
    if len(pub_raw) != PUBLIC_KEY_SIZE:
        raise ValueError(f"public key must be {PUBLIC_KEY_SIZE} bytes, got {len(pub_raw)}")
    return b64e(pub_raw)


def public_key_from_peer_id(peer_id: str) -> bytes:
    raw = b64d(peer_id)
    if len(raw) != PUBLIC_KEY_SIZE or b64e(raw) != peer_id:
        raise ValueError("peer id does not encode a 32-byte public key")
    return raw
