"""
KeyedLockRegistry -- in-process serialization of mutations per entity key.

Responsibility:
    Linearizes every mutation of one job card, one stock item, one rework
    job or one return within this process.  Database row locks
    (``SELECT ... FOR UPDATE``) give the same guarantee across processes on
    PostgreSQL; this registry adds bounded waiting (a timeout becomes a
    ConflictError instead of a hung request) and makes SQLite deployments
    behave the same way.

Architecture position:
    Kernel > Services -- infrastructure used only by ProductionEngine.
    Locks are acquired BEFORE the database transaction opens and released
    after it commits, never the other way round.

Invariants enforced:
    - Multi-key acquisition is in sorted key order, so two operations that
      need overlapping key sets cannot deadlock each other.
    - A key's lock object is dropped once no holder or waiter references it.

Failure modes:
    - LockTimeoutError (a ConflictError) when a key is not acquired within
      the timeout.  Keys already taken by the same call are released.
"""

import threading
from contextlib import contextmanager
from typing import Iterable, Iterator

from production_kernel.exceptions import LockTimeoutError
from production_kernel.logging_config import get_logger

logger = get_logger("services.keyed_lock")


def job_key(job_id) -> str:
    return f"job:{job_id}"


def item_key(item_id) -> str:
    return f"item:{item_id}"


def rework_key(rework_id) -> str:
    return f"rework:{rework_id}"


def qc_key(qc_record_id) -> str:
    return f"qc:{qc_record_id}"


def return_key(return_id) -> str:
    return f"return:{return_id}"


def delivery_note_key(delivery_note_id) -> str:
    return f"dn:{delivery_note_id}"


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.refs = 0


class KeyedLockRegistry:
    """
    A registry of non-reentrant locks addressed by string keys.

    Contract:
        ``hold(*keys)`` blocks until every key is held by the caller, then
        yields; all keys are released on exit, including on exception.
    """

    def __init__(self, timeout_seconds: float = 10.0):
        self._timeout = timeout_seconds
        self._mutex = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def _ref(self, key: str) -> _Entry:
        with self._mutex:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.refs += 1
            return entry

    def _unref(self, key: str, entry: _Entry) -> None:
        with self._mutex:
            entry.refs -= 1
            if entry.refs == 0:
                self._entries.pop(key, None)

    @contextmanager
    def hold(self, *keys: str, timeout: float | None = None) -> Iterator[None]:
        ordered = sorted(set(k for k in keys if k))
        wait = self._timeout if timeout is None else timeout
        acquired: list[tuple[str, _Entry]] = []
        try:
            for key in ordered:
                entry = self._ref(key)
                if not entry.lock.acquire(timeout=wait):
                    self._unref(key, entry)
                    logger.warning(
                        "keyed_lock_timeout",
                        extra={"lock_key": key, "timeout_seconds": wait},
                    )
                    raise LockTimeoutError(key, wait)
                acquired.append((key, entry))
            yield
        finally:
            for key, entry in reversed(acquired):
                entry.lock.release()
                self._unref(key, entry)

    def held_keys(self) -> Iterable[str]:
        """Keys currently referenced by a holder or a waiter (diagnostics)."""
        with self._mutex:
            return tuple(self._entries)
