"""Replay guards: at-most-once consumption of signed access tokens.

A guard maps a token fingerprint (see `AccessTokenVerifier.fingerprint`) to a
consumed flag. Entries are created lazily and never removed.

Consumption is two-phase so a guarded body that fails leaves no trace:

    reserve(fp)  -> atomic test-and-set; False if used or already reserved
    commit(fp)   -> reservation becomes permanent
    release(fp)  -> reservation dropped (only while still pending)

`mark_used` is reserve + commit in one step.

Implementations:
- InMemoryReplayGuard: process-local, lock protected.
- SQLiteReplayGuard: durable; the PRIMARY KEY insert is the atomic step, so
  several processes sharing one database file still consume at most once.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Protocol, Set, runtime_checkable

from .errors import eat_error, EAT_E_REPLAY_STORAGE

logger = logging.getLogger("eat_gateway.replay")

STATE_PENDING = "pending"
STATE_USED = "used"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@runtime_checkable
class ReplayGuard(Protocol):
    """Protocol implemented by replay-guard backends."""

    def is_used(self, fingerprint: bytes) -> bool: ...

    def reserve(self, fingerprint: bytes) -> bool: ...

    def commit(self, fingerprint: bytes) -> None: ...

    def release(self, fingerprint: bytes) -> None: ...

    def mark_used(self, fingerprint: bytes) -> bool: ...


class InMemoryReplayGuard:
    def __init__(self):
        self._lock = threading.Lock()
        self._used: Set[bytes] = set()
        self._pending: Set[bytes] = set()

    def is_used(self, fingerprint: bytes) -> bool:
        with self._lock:
            return fingerprint in self._used

    def reserve(self, fingerprint: bytes) -> bool:
        with self._lock:
            if fingerprint in self._used or fingerprint in self._pending:
                return False
            self._pending.add(fingerprint)
            return True

    def commit(self, fingerprint: bytes) -> None:
        with self._lock:
            self._pending.discard(fingerprint)
            self._used.add(fingerprint)

    def release(self, fingerprint: bytes) -> None:
        with self._lock:
            self._pending.discard(fingerprint)

    def mark_used(self, fingerprint: bytes) -> bool:
        with self._lock:
            if fingerprint in self._used or fingerprint in self._pending:
                return False
            self._used.add(fingerprint)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._used)


class SQLiteReplayGuard:
    """Durable replay guard backed by a single SQLite table.

    Fingerprints already known to be used are cached in memory so repeats
    deny fast without touching the database. The cache is written only after
    the database confirms the state.
    """

    def __init__(self, db_path: str = "eat_replay.db", *, timeout_seconds: float = 5.0):
        self.db_path = str(db_path)
        self.timeout_seconds = float(timeout_seconds)
        self._known_used: Set[bytes] = set()
        self._cache_lock = threading.Lock()
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _db(self, op_name: str) -> Iterator[sqlite3.Connection]:
        """Connection wrapper: storage errors fail closed as EAT_E_REPLAY_STORAGE."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout_seconds)
            try:
                with conn:
                    yield conn
            finally:
                conn.close()
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            logger.error("replay storage failure op=%s: %s", op_name, e)
            raise eat_error(EAT_E_REPLAY_STORAGE, f"replay storage unavailable ({op_name})", retryable=True) from e

    def _init_db(self) -> None:
        with self._db("init") as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS consumed_tokens (
                    fingerprint TEXT PRIMARY KEY,
                    state TEXT NOT NULL,
                    updated_at_utc TEXT NOT NULL
                )
            """)

    def _cached(self, fingerprint: bytes) -> bool:
        with self._cache_lock:
            return fingerprint in self._known_used

    def _remember(self, fingerprint: bytes) -> None:
        with self._cache_lock:
            self._known_used.add(fingerprint)

    def is_used(self, fingerprint: bytes) -> bool:
        if self._cached(fingerprint):
            return True
        with self._db("is_used") as conn:
            row = conn.execute(
                "SELECT state FROM consumed_tokens WHERE fingerprint = ?", (fingerprint.hex(),)
            ).fetchone()
        used = bool(row and row[0] == STATE_USED)
        if used:
            self._remember(fingerprint)
        return used

    def _insert(self, fingerprint: bytes, state: str) -> bool:
        if self._cached(fingerprint):
            return False
        try:
            with self._db("insert") as conn:
                conn.execute(
                    "INSERT INTO consumed_tokens (fingerprint, state, updated_at_utc) VALUES (?, ?, ?)",
                    (fingerprint.hex(), state, _now_iso()),
                )
        except sqlite3.IntegrityError:
            return False
        if state == STATE_USED:
            self._remember(fingerprint)
        return True

    def reserve(self, fingerprint: bytes) -> bool:
        return self._insert(fingerprint, STATE_PENDING)

    def mark_used(self, fingerprint: bytes) -> bool:
        return self._insert(fingerprint, STATE_USED)

    def commit(self, fingerprint: bytes) -> None:
        with self._db("commit") as conn:
            conn.execute(
                "UPDATE consumed_tokens SET state = ?, updated_at_utc = ? WHERE fingerprint = ?",
                (STATE_USED, _now_iso(), fingerprint.hex()),
            )
        self._remember(fingerprint)

    def release(self, fingerprint: bytes) -> None:
        with self._db("release") as conn:
            conn.execute(
                "DELETE FROM consumed_tokens WHERE fingerprint = ? AND state = ?",
                (fingerprint.hex(), STATE_PENDING),
            )

    def count_used(self) -> int:
        with self._db("count") as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM consumed_tokens WHERE state = ?", (STATE_USED,)
            ).fetchone()
        return int(row[0])
