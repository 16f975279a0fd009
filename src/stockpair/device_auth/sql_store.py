"""SQLite implementation of :class:`~stockpair.device_auth.store.PairingStore`.

Transitions are single conditional ``UPDATE`` statements, e.g.::

    UPDATE pairing_codes SET status = 'approved', ...
     WHERE code = ? AND status = 'pending' AND expires_at > ?

executed inside ``BEGIN IMMEDIATE`` so the follow-up read that classifies a
miss (not found / expired / already resolved) sees the same snapshot the
``UPDATE`` did.  A fresh connection is opened per call; SQLite serialises the
writers.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from stockpair.device_auth.errors import CodeConflictError
from stockpair.device_auth.models import (
    AuthType,
    Identity,
    PairingRecord,
    PairingStatus,
    TransitionOutcome,
    TransitionResult,
)
from stockpair.device_auth.store import PairingStore, _new_record, approve_outcome, consume_outcome

_LOG = logging.getLogger("stockpair.device_auth.sql_store")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS pairing_codes (
    code          TEXT PRIMARY KEY,
    status        TEXT NOT NULL DEFAULT 'pending',
    auth_type     TEXT NOT NULL DEFAULT 'signin',
    owner_id      TEXT,
    owner_email   TEXT,
    owner_name    TEXT,
    created_at    REAL NOT NULL,
    expires_at    REAL NOT NULL,
    consumed_at   REAL
);
CREATE INDEX IF NOT EXISTS idx_pairing_codes_expires_at ON pairing_codes (expires_at);
"""

_COLUMNS = (
    "code, status, auth_type, owner_id, owner_email, owner_name, "
    "created_at, expires_at, consumed_at"
)


def _row_to_record(row: sqlite3.Row | None) -> PairingRecord | None:
    if row is None:
        return None
    owner = (
        Identity(user_id=row["owner_id"], email=row["owner_email"], display_name=row["owner_name"])
        if row["owner_id"] is not None
        else None
    )
    return PairingRecord(
        code=row["code"],
        status=PairingStatus(row["status"]),
        created_at=row["created_at"],
        expires_at=row["expires_at"],
        auth_type=row["auth_type"],
        owner=owner,
        consumed_at=row["consumed_at"],
    )


class SqlitePairingStore(PairingStore):
    """Durable, transactional store backed by a SQLite database file."""

    def __init__(self, path: str | os.PathLike | None = None, *, timeout: float = 10.0) -> None:
        self.path = Path(
            path or os.getenv("PAIRING_STORE_PATH") or Path.home() / ".stockpair" / "pairing.db"
        ).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._timeout = timeout
        # Fail fast: an unreachable database is a startup configuration error.
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
        _LOG.debug("SQLite pairing store ready at %s", self.path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path, timeout=self._timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    @staticmethod
    def _select(conn: sqlite3.Connection, code: str) -> PairingRecord | None:
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM pairing_codes WHERE code = ?", (code,)
        ).fetchone()
        return _row_to_record(row)

    # ---------------- operations ----------------------------------------- #
    def insert(
        self,
        code: str,
        *,
        created_at: float,
        expires_at: float,
        auth_type: AuthType = "signin",
    ) -> PairingRecord:
        rec = _new_record(code, created_at=created_at, expires_at=expires_at, auth_type=auth_type)
        try:
            with self._transaction() as conn:
                conn.execute(
                    "INSERT INTO pairing_codes (code, status, auth_type, created_at, expires_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (code, PairingStatus.PENDING.value, auth_type, created_at, expires_at),
                )
        except sqlite3.IntegrityError:
            raise CodeConflictError(code=code) from None
        return rec

    def get(self, code: str) -> PairingRecord | None:
        with self._connect() as conn:
            return self._select(conn, code)

    def try_approve(self, code: str, owner: Identity, now: float) -> TransitionResult:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE pairing_codes "
                "SET status = ?, owner_id = ?, owner_email = ?, owner_name = ? "
                "WHERE code = ? AND status = ? AND expires_at > ?",
                (
                    PairingStatus.APPROVED.value,
                    owner.user_id,
                    owner.email,
                    owner.display_name,
                    code,
                    PairingStatus.PENDING.value,
                    now,
                ),
            )
            current = self._select(conn, code)
        if cur.rowcount == 1:
            return TransitionResult(TransitionOutcome.APPROVED, current)
        return TransitionResult(approve_outcome(current, now), current)

    def try_consume(self, code: str, now: float) -> TransitionResult:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE pairing_codes SET status = ?, consumed_at = ? "
                "WHERE code = ? AND status = ? AND expires_at > ?",
                (
                    PairingStatus.CONSUMED.value,
                    now,
                    code,
                    PairingStatus.APPROVED.value,
                    now,
                ),
            )
            current = self._select(conn, code)
        if cur.rowcount == 1:
            return TransitionResult(TransitionOutcome.CONSUMED, current)
        return TransitionResult(consume_outcome(current, now), current)

    def mark_expired(self, code: str, now: float) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE pairing_codes SET status = ? "
                "WHERE code = ? AND status = ? AND expires_at <= ?",
                (PairingStatus.EXPIRED.value, code, PairingStatus.PENDING.value, now),
            )
        return cur.rowcount == 1

    def delete_expired(self, now: float) -> int:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM pairing_codes WHERE expires_at < ?", (now,))
        return cur.rowcount
