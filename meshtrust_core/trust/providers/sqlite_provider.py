from __future__ import annotations
from typing import Any, Dict, List
import json, sqlite3, os, threading
from meshtrust_core.constants import DEFAULT_DB_PATH, TRUST_SCHEMA_VERSION
from meshtrust_core.errors import StorageError
from meshtrust_core.trust.models import TrustRecord, TrustStatus
from meshtrust_core.trust.provider import TrustStore
from meshtrust_core.utils import b64e, b64d, now_ts

_COLUMNS = "peer_id, public_key, display_name, status, assigned_address, last_handshake_at, updated_at"


class SQLiteTrustStore(TrustStore):
    """
    Write-through SQLite persistence.

    Rows carry an AUTOINCREMENT `seq` so list() order survives restarts: an
    upsert keeps the original position, a removed-then-re-added peer moves to
    the end. The schema version lives in PRAGMA user_version.
    """

    def __init__(self, path=DEFAULT_DB_PATH):
        # If no directory, default to current working directory
        dir_path = os.path.dirname(path) or "."
        os.makedirs(dir_path, exist_ok=True)
        self.path = path
        self.db = sqlite3.connect(path, check_same_thread=False)
        self._db_lock = threading.Lock()
        self._init()
        super().__init__()

    def _init(self) -> None:
        (version,) = self.db.execute("PRAGMA user_version").fetchone()
        if version > TRUST_SCHEMA_VERSION:
            self.db.close()
            raise StorageError(
                f"{self.path} uses trust schema v{version}, this build supports v{TRUST_SCHEMA_VERSION}"
            )

        c = self.db.cursor()
        c.execute("""CREATE TABLE IF NOT EXISTS trust_records(
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            peer_id TEXT NOT NULL UNIQUE,
            public_key TEXT NOT NULL,
            display_name TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL,
            assigned_address TEXT,
            last_handshake_at REAL,
            updated_at REAL NOT NULL
        )""")
        c.execute("""CREATE TABLE IF NOT EXISTS audit(
            ts TEXT,
            event_type TEXT,
            payload TEXT
        )""")
        c.execute(f"PRAGMA user_version = {TRUST_SCHEMA_VERSION}")
        self.db.commit()

    def _load(self) -> List[TrustRecord]:
        cur = self.db.execute(f"SELECT {_COLUMNS} FROM trust_records ORDER BY seq")
        records = []
        for row in cur.fetchall():
            peer_id, public_key, display_name, status, address, last_hs, updated_at = row
            try:
                records.append(TrustRecord(
                    peer_id=peer_id,
                    public_key=b64d(public_key),
                    display_name=display_name,
                    status=TrustStatus(status),
                    assigned_address=address,
                    last_handshake_at=last_hs,
                    updated_at=updated_at,
                ))
            except ValueError as exc:
                raise StorageError(f"corrupt trust record {peer_id!r} in {self.path}: {exc}") from exc
        return records

    def _persist(self, rec: TrustRecord) -> None:
        try:
            with self._db_lock:
                self.db.execute(
                    f"INSERT INTO trust_records({_COLUMNS}) VALUES(?,?,?,?,?,?,?) "
                    "ON CONFLICT(peer_id) DO UPDATE SET public_key=excluded.public_key, "
                    "display_name=excluded.display_name, status=excluded.status, "
                    "assigned_address=excluded.assigned_address, "
                    "last_handshake_at=excluded.last_handshake_at, updated_at=excluded.updated_at",
                    (rec.peer_id, b64e(rec.public_key), rec.display_name, rec.status.value,
                     rec.assigned_address, rec.last_handshake_at, rec.updated_at)
                )
                self.db.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"failed to persist {rec.peer_id}: {exc}") from exc

    def _delete(self, peer_id: str) -> None:
        try:
            with self._db_lock:
                self.db.execute("DELETE FROM trust_records WHERE peer_id=?", (peer_id,))
                self.db.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"failed to delete {peer_id}: {exc}") from exc

    def log_event(self, event_type: str, payload: Dict[str, Any]) -> None:
        with self._db_lock:
            self.db.execute("INSERT INTO audit(ts,event_type,payload) VALUES(?,?,?)",
                            (now_ts(), event_type, json.dumps(payload, separators=(",", ":"), sort_keys=True)))
            self.db.commit()

    def audit_events(self, event_type: str = None) -> List[Dict[str, Any]]:
        sql = "SELECT ts, event_type, payload FROM audit"
        params = ()
        if event_type:
            sql += " WHERE event_type=?"
            params = (event_type,)
        with self._db_lock:
            rows = self.db.execute(sql + " ORDER BY rowid", params).fetchall()
        return [{"ts": ts, "event_type": et, "payload": json.loads(p)} for ts, et, p in rows]

    def close(self):
        with self._db_lock:
            self.db.close()
