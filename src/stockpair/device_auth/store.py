"""Concurrency-safe storage for pairing records.

This module introduces a *narrow* persistence interface
(:class:`PairingStore`) plus two implementations:

* :class:`InMemoryPairingStore` – a dict guarded by a mutex (tests, dev).
* :class:`DiskPairingStore` – one JSON file per code.

The relational implementation lives in :mod:`stockpair.device_auth.sql_store`.

Every mutating operation is a single atomic *check-and-set*: the precondition
(status, deadline) is evaluated and the new state written while holding the
record's lock, so two callers racing on one code can never both succeed.

* **Atomicity** – disk writes use *temp-file + os.replace*.
* **Concurrency** – per-code advisory ``O_EXCL`` lock files on disk, one
  process-wide mutex in memory.
* **Filename safety** – codes are hashed before hitting the filesystem.

Environment variables
---------------------
PAIRING_STORE
    ``memory`` (default), ``disk`` or ``sqlite``; see :func:`build_store`.
PAIRING_STORE_PATH
    Base directory (disk) or database file (sqlite).
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from hashlib import sha256
from pathlib import Path
from typing import Iterator, Protocol, runtime_checkable

from stockpair.device_auth.errors import CodeConflictError
from stockpair.device_auth.models import (
    AuthType,
    Identity,
    PairingRecord,
    PairingStatus,
    TransitionOutcome,
    TransitionResult,
)

_LOG = logging.getLogger("stockpair.device_auth.store")

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _hash(text: str, length: int = 16) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + f".{threading.get_ident()}.tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


# A lock file older than this was left behind by a crashed holder.
LOCK_STALE_AFTER = 30.0


def _reclaim_stale_lock(lock_path: Path, stale_after: float) -> bool:
    """Remove *lock_path* if it is older than *stale_after*; *True* means retry now."""
    try:
        age = time.time() - lock_path.stat().st_mtime
    except FileNotFoundError:
        return True  # released in the meantime
    if age < stale_after:
        return False
    _LOG.warning("Removing stale lock %s (%.0fs old)", lock_path.name, age)
    lock_path.unlink(missing_ok=True)
    return True


@contextmanager
def _file_lock(
    lock_path: Path,
    retries: int = 500,
    delay: float = 0.01,
    stale_after: float = LOCK_STALE_AFTER,
) -> Iterator[None]:
    """Advisory file lock using ``os.O_EXCL`` temp-file creation."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    attempt = 0
    while True:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
            os.close(fd)
            break  # acquired!
        except FileExistsError:
            if _reclaim_stale_lock(lock_path, stale_after):
                continue
            if attempt >= retries:
                raise TimeoutError(f"Could not acquire lock {lock_path}") from None
            attempt += 1
            time.sleep(delay)
    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)


def approve_outcome(record: PairingRecord | None, now: float) -> TransitionOutcome:
    """Decide what ``try_approve`` would do to *record* at *now*.

    Shared by every backend that evaluates the precondition in Python.
    """
    if record is None:
        return TransitionOutcome.NOT_FOUND
    if record.status in (PairingStatus.APPROVED, PairingStatus.CONSUMED):
        return TransitionOutcome.ALREADY_RESOLVED
    if record.status is PairingStatus.EXPIRED or record.is_expired(now):
        return TransitionOutcome.EXPIRED
    return TransitionOutcome.APPROVED


def consume_outcome(record: PairingRecord | None, now: float) -> TransitionOutcome:
    """Decide what ``try_consume`` would do to *record* at *now*."""
    if record is None:
        return TransitionOutcome.NOT_FOUND
    if record.status is PairingStatus.EXPIRED:
        return TransitionOutcome.EXPIRED
    if record.status is not PairingStatus.APPROVED:
        return TransitionOutcome.NOT_APPROVED
    if record.is_expired(now):
        return TransitionOutcome.EXPIRED
    return TransitionOutcome.CONSUMED


def _new_record(
    code: str, *, created_at: float, expires_at: float, auth_type: AuthType
) -> PairingRecord:
    if expires_at <= created_at:
        raise ValueError("expires_at must be later than created_at")
    return PairingRecord(
        code=code,
        status=PairingStatus.PENDING,
        created_at=created_at,
        expires_at=expires_at,
        auth_type=auth_type,
    )


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #


@runtime_checkable
class PairingStore(Protocol):
    """Minimal persistence contract for pairing records.

    Each method is atomic with respect to every other call on the same code.
    """

    def insert(
        self,
        code: str,
        *,
        created_at: float,
        expires_at: float,
        auth_type: AuthType = "signin",
    ) -> PairingRecord: ...

    def get(self, code: str) -> PairingRecord | None: ...

    def try_approve(self, code: str, owner: Identity, now: float) -> TransitionResult: ...

    def try_consume(self, code: str, now: float) -> TransitionResult: ...

    def mark_expired(self, code: str, now: float) -> bool: ...

    def delete_expired(self, now: float) -> int: ...


# --------------------------------------------------------------------------- #
# In-memory implementation                                                    #
# --------------------------------------------------------------------------- #


class InMemoryPairingStore(PairingStore):
    """Dict-backed :class:`PairingStore`; one mutex serialises all transitions."""

    def __init__(self) -> None:
        self._records: dict[str, PairingRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def insert(
        self,
        code: str,
        *,
        created_at: float,
        expires_at: float,
        auth_type: AuthType = "signin",
    ) -> PairingRecord:
        rec = _new_record(code, created_at=created_at, expires_at=expires_at, auth_type=auth_type)
        with self._lock:
            # Any row holding the code blocks reuse until the sweeper removes it.
            if code in self._records:
                raise CodeConflictError(code=code)
            self._records[code] = rec
        return rec

    def get(self, code: str) -> PairingRecord | None:
        with self._lock:
            return self._records.get(code)

    def try_approve(self, code: str, owner: Identity, now: float) -> TransitionResult:
        with self._lock:
            current = self._records.get(code)
            outcome = approve_outcome(current, now)
            if outcome is not TransitionOutcome.APPROVED:
                return TransitionResult(outcome, current)
            updated = current.with_status(PairingStatus.APPROVED, owner=owner)  # type: ignore[union-attr]
            self._records[code] = updated
            return TransitionResult(outcome, updated)

    def try_consume(self, code: str, now: float) -> TransitionResult:
        with self._lock:
            current = self._records.get(code)
            outcome = consume_outcome(current, now)
            if outcome is not TransitionOutcome.CONSUMED:
                return TransitionResult(outcome, current)
            updated = current.with_status(PairingStatus.CONSUMED, consumed_at=now)  # type: ignore[union-attr]
            self._records[code] = updated
            return TransitionResult(outcome, updated)

    def mark_expired(self, code: str, now: float) -> bool:
        with self._lock:
            current = self._records.get(code)
            if current is None or current.status is not PairingStatus.PENDING:
                return False
            if not current.is_expired(now):
                return False
            self._records[code] = current.with_status(PairingStatus.EXPIRED)
            return True

    def delete_expired(self, now: float) -> int:
        with self._lock:
            stale = [c for c, r in self._records.items() if r.expires_at < now]
            for c in stale:
                del self._records[c]
        return len(stale)


# --------------------------------------------------------------------------- #
# Disk implementation                                                         #
# --------------------------------------------------------------------------- #


class DiskPairingStore(PairingStore):
    """JSON-file implementation of :class:`PairingStore`.

    Layout::

        <base_dir>/pairings/<sha256(code)[:16]>.json
        <base_dir>/pairings/<sha256(code)[:16]>.lock   (while a transition runs)
    """

    def __init__(self, base_dir: str | os.PathLike | None = None) -> None:
        self.base_dir = Path(
            base_dir
            or os.getenv("PAIRING_STORE_PATH")
            or Path.home() / ".stockpair" / "pairing"
        ).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    # ---------------- paths ---------------------------------------------- #
    def _record_path(self, code: str) -> Path:
        return self.base_dir / "pairings" / f"{_hash(code)}.json"

    def _record_lock(self, code: str) -> Path:
        return self._record_path(code).with_suffix(".lock")

    def _read(self, path: Path) -> PairingRecord | None:
        try:
            with path.open(encoding="utf-8") as fh:
                return PairingRecord.from_dict(json.load(fh))
        except FileNotFoundError:
            return None

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
        path = self._record_path(code)
        with _file_lock(self._record_lock(code)):
            if path.exists():
                raise CodeConflictError(code=code)
            _atomic_write(path, rec.to_dict())
        return rec

    def get(self, code: str) -> PairingRecord | None:
        return self._read(self._record_path(code))

    def try_approve(self, code: str, owner: Identity, now: float) -> TransitionResult:
        path = self._record_path(code)
        with _file_lock(self._record_lock(code)):
            current = self._read(path)
            outcome = approve_outcome(current, now)
            if outcome is not TransitionOutcome.APPROVED:
                return TransitionResult(outcome, current)
            updated = current.with_status(PairingStatus.APPROVED, owner=owner)  # type: ignore[union-attr]
            _atomic_write(path, updated.to_dict())
            return TransitionResult(outcome, updated)

    def try_consume(self, code: str, now: float) -> TransitionResult:
        path = self._record_path(code)
        with _file_lock(self._record_lock(code)):
            current = self._read(path)
            outcome = consume_outcome(current, now)
            if outcome is not TransitionOutcome.CONSUMED:
                return TransitionResult(outcome, current)
            updated = current.with_status(PairingStatus.CONSUMED, consumed_at=now)  # type: ignore[union-attr]
            _atomic_write(path, updated.to_dict())
            return TransitionResult(outcome, updated)

    def mark_expired(self, code: str, now: float) -> bool:
        path = self._record_path(code)
        with _file_lock(self._record_lock(code)):
            current = self._read(path)
            if current is None or current.status is not PairingStatus.PENDING:
                return False
            if not current.is_expired(now):
                return False
            _atomic_write(path, current.with_status(PairingStatus.EXPIRED).to_dict())
            return True

    def delete_expired(self, now: float) -> int:
        pairdir = self.base_dir / "pairings"
        if not pairdir.exists():
            return 0
        removed = 0
        for p in pairdir.glob("*.json"):
            try:
                with p.open(encoding="utf-8") as fh:
                    expires_at = float(json.load(fh)["expires_at"])
                if expires_at >= now:
                    continue
                # Deadlines never move, so a locked record can wait for the next sweep.
                with _file_lock(p.with_suffix(".lock"), retries=0, delay=0):
                    # The code may have been swept and re-issued since the first read.
                    current = self._read(p)
                    if current is None or current.expires_at >= now:
                        continue
                    p.unlink()
                removed += 1
            except TimeoutError:
                _LOG.debug("Skipping locked record %s during sweep", p.stem[:6])
            except (OSError, ValueError, KeyError) as exc:
                _LOG.warning("Unreadable pairing record %s: %s", p.name, exc)
        return removed


# --------------------------------------------------------------------------- #
# Factory                                                                     #
# --------------------------------------------------------------------------- #


def build_store(kind: str = "memory", path: str | os.PathLike | None = None) -> PairingStore:
    """Return the store backend named by *kind* (``memory``, ``disk``, ``sqlite``).

    Raises
    ------
    ValueError
        For unknown backends.
    """
    kind = (kind or "memory").strip().lower()
    if kind == "memory":
        return InMemoryPairingStore()
    if kind == "disk":
        return DiskPairingStore(base_dir=path)
    if kind == "sqlite":
        from stockpair.device_auth.sql_store import SqlitePairingStore  # avoid import cycle

        return SqlitePairingStore(path)
    raise ValueError(f"unsupported pairing store backend: {kind!r}")
