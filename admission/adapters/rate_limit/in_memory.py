"""In-memory window store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: a store lock guards the key mapping, and each record carries
  its own lock so checks on different keys never wait for each other.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from admission.adapters.rate_limit.base import AbstractWindowStore, QuotaRecord

logger = logging.getLogger(__name__)


class InMemoryWindowStore(AbstractWindowStore):
    """Keyed QuotaRecord store with lazy creation and passive eviction.

    Records are created on first access and live until a sweep finds both of
    their windows expired for longer than ``grace_ms``.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(self, *, grace_ms: int = 60_000) -> None:
        """Initialize an empty store.

        Args:
            grace_ms: How long a record must stay fully expired before a
                sweep may evict it.

        Raises:
            ValueError: If grace_ms is negative.
        """
        if grace_ms < 0:
            raise ValueError("grace_ms must be >= 0")

        self._grace_ms = grace_ms
        self._lock = threading.RLock()
        self._records: dict[str, QuotaRecord] = {}
        self._created = 0
        self._evicted = 0
        self._sweeps = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._records

    def _get_or_create(self, key: str, now: int) -> QuotaRecord:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                record = QuotaRecord.fresh(now)
                self._records[key] = record
                self._created += 1
            return record

    @contextmanager
    def acquire(self, key: str, now: int) -> Iterator[QuotaRecord]:
        """Yield the record for ``key`` with its lock held.

        A record evicted between lookup and locking is discarded and the
        lookup repeated, so callers always mutate the record the store owns.
        """
        while True:
            record = self._get_or_create(key, now)
            with record.lock:
                if record.evicted:
                    continue
                yield record
                return

    def sweep(self, now: int) -> int:
        """Evict records whose primary and burst windows are both long expired.

        Records currently held by a caller are skipped and picked up by a
        later sweep.

        Args:
            now: Current epoch milliseconds.

        Returns:
            Number of evicted records.
        """
        removed = 0
        with self._lock:
            for key, record in list(self._records.items()):
                if not record.lock.acquire(blocking=False):
                    continue
                try:
                    if record.is_stale(now, self._grace_ms):
                        record.evicted = True
                        del self._records[key]
                        removed += 1
                finally:
                    record.lock.release()

            self._sweeps += 1
            self._evicted += removed
            remaining = len(self._records)

        logger.debug(
            "window_store.sweep",
            extra={"evicted": removed, "tracked_keys": remaining},
        )
        return removed

    def reset(self, key: str) -> bool:
        with self._lock:
            record = self._records.pop(key, None)
        if record is None:
            return False
        with record.lock:
            record.evicted = True
        return True

    def clear(self) -> None:
        """Remove all records and reset counters."""
        with self._lock:
            for record in self._records.values():
                record.evicted = True
            self._records.clear()
            self._created = 0
            self._evicted = 0
            self._sweeps = 0

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "tracked_keys": len(self._records),
                "created": self._created,
                "evicted": self._evicted,
                "sweeps": self._sweeps,
                "grace_ms": self._grace_ms,
            }
