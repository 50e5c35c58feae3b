"""
meshtrust_core.utils
--------------------
Small helpers for base64, timestamps and canonical JSON.
Everything that gets signed goes through canonical_json() so both sides of a
handshake sign and verify the same bytes.
"""

from __future__ import annotations
import base64, binascii, json, time
from typing import Any, Dict


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def b64d(s: str) -> bytes:
    # validate=True: reject stray characters instead of silently skipping them
    try:
        return base64.b64decode(s.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(f"invalid base64: {exc}") from exc


def now_ts() -> str:
    # RFC3339 / ISO 8601 in UTC, second precision
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def canonical_json(obj: Dict[str, Any]) -> bytes:
    # Deterministic, minimal JSON for signing
    return json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False).encode("utf-8")
