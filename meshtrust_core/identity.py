"""
meshtrust_core.identity
-----------------------
A node's long-term Ed25519 identity.

The identity is created on first run, persisted next to the trust database and
never changes afterwards unless explicitly reset. The private key stays inside
this object: it is excluded from repr() and never written to the wire.
"""

from __future__ import annotations
import json, os, tempfile
from .constants import IDENTITY_SCHEMA_VERSION
from .crypto import ed25519_generate, ed25519_public_from_private, ed25519_sign, derive_peer_id
from .errors import IdentityError
from .logger import get_logger
from .utils import b64e, b64d, now_ts

log = get_logger("MeshTrust.Identity")


class Identity:
    __slots__ = ("_private_key", "_public_key", "_id")

    def __init__(self, private_key: bytes, public_key: bytes):
        self._private_key = private_key
        self._public_key = public_key
        self._id = derive_peer_id(public_key)

    @classmethod
    def generate(cls) -> "Identity":
        priv, pub = ed25519_generate()
        return cls(priv, pub)

    @classmethod
    def from_private_bytes(cls, raw: bytes) -> "Identity":
        # Accept both the 32-byte seed and the 64-byte seed||public form.
        if len(raw) == 64:
            seed, pub = raw[:32], raw[32:]
            if ed25519_public_from_private(seed) != pub:
                raise IdentityError("expanded private key does not match its public half")
            return cls(seed, pub)
        if len(raw) != 32:
            raise IdentityError(f"private key must be 32 or 64 bytes, got {len(raw)}")
        return cls(raw, ed25519_public_from_private(raw))

    @property
    def public_key(self) -> bytes:
        return self._public_key

    @property
    def id(self) -> str:
        return self._id

    def sign(self, message: bytes) -> bytes:
        return ed25519_sign(self._private_key, message)

    def __repr__(self) -> str:
        return f"Identity(id={self._id!r})"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def save(self, path: str) -> None:
        """Write the identity atomically with owner-only permissions."""
        dir_path = os.path.dirname(path) or "."
        os.makedirs(dir_path, exist_ok=True)
        doc = {
            "schema_ver": IDENTITY_SCHEMA_VERSION,
            "created_at": now_ts(),
            "peer_id": self._id,
            "private_key": b64e(self._private_key),
        }
        fd, tmp = tempfile.mkstemp(dir=dir_path, prefix=".identity-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f)
            try:
                os.chmod(tmp, 0o600)
            except OSError:
                log.warning(f"could not restrict permissions on {path}")
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    @classmethod
    def load(cls, path: str) -> "Identity":
        try:
            with open(path, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except json.JSONDecodeError as exc:
            raise IdentityError(f"identity file {path} is not valid JSON") from exc

        if not isinstance(doc, dict):
            raise IdentityError(f"identity file {path} does not hold a JSON object")
        if doc.get("schema_ver") != IDENTITY_SCHEMA_VERSION:
            raise IdentityError(f"unsupported identity schema: {doc.get('schema_ver')!r}")
        try:
            ident = cls.from_private_bytes(b64d(doc["private_key"]))
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            raise IdentityError(f"identity file {path} is corrupt") from exc
        if doc.get("peer_id") not in (None, ident.id):
            raise IdentityError(f"identity file {path} peer_id does not match its key")
        return ident

    @classmethod
    def load_or_create(cls, path: str) -> "Identity":
        if os.path.exists(path):
            ident = cls.load(path)
            log.info(f"loaded identity peer_id={ident.id}")
            return ident
        ident = cls.generate()
        ident.save(path)
        log.info(f"created identity peer_id={ident.id} path={path}")
        return ident

    @staticmethod
    def reset(path: str) -> bool:
        """Destroy the persisted identity. Returns False if none existed."""
        try:
            os.unlink(path)
        except FileNotFoundError:
            return False
        log.warning(f"identity reset path={path}")
        return True
