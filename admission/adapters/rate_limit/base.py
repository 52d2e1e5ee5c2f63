"""Rate limiter data model and store interface.

The limiter depends on this abstraction (not the concrete store) so the
in-process store can be replaced without touching the admission algorithm.
"""

from __future__ import annotations

import math
import threading
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Literal

DeniedBy = Literal["quota", "burst"]


@dataclass
class QuotaRecord:
    """Mutable counter state for a single scope key.

    Attributes:
        window_start: Epoch milliseconds when the current primary window began.
        count: Requests counted in the primary window, rejected ones included.
        burst_window_start: Epoch milliseconds when the burst sub-window began.
        burst_count: Requests counted in the burst sub-window.
        window_ms: Primary window length applied on the last check.
        burst_window_ms: Burst window length applied on the last check
            (None while burst protection has never been used for this key).
    """

    window_start: int
    count: int = 0
    burst_window_start: int = 0
    burst_count: int = 0
    window_ms: int = 0
    burst_window_ms: int | None = None
    evicted: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @classmethod
    def fresh(cls, now: int) -> "QuotaRecord":
        return cls(window_start=now, burst_window_start=now)

    def is_stale(self, now: int, grace_ms: int) -> bool:
        """Return True when both windows expired more than ``grace_ms`` ago."""
        if now - self.window_start < max(self.window_ms, 0) + grace_ms:
            return False
        if self.burst_window_ms is None:
            return True
        return now - self.burst_window_start >= max(self.burst_window_ms, 0) + grace_ms


@dataclass(frozen=True)
class BurstConfig:
    """Secondary short-window cap layered on a primary quota.

    Attributes:
        limit: Max requests allowed inside one burst window.
        window_ms: Burst window length in milliseconds.
    """

    limit: int
    window_ms: int


@dataclass(frozen=True)
class AdmissionDecision:
    """Result of a single admission check.

    Attributes:
        allowed: Whether the guarded action may proceed.
        limit: Primary limit the request was checked against.
        remaining: Requests left in the current primary window (never negative).
        reset_time: Epoch milliseconds when the primary window resets.
        retry_after_ms: Milliseconds to wait before retrying; set only when denied.
        denied_by: Guard that rejected the request ("quota" or "burst").
    """

    allowed: bool
    limit: int
    remaining: int
    reset_time: int
    retry_after_ms: int | None = None
    denied_by: DeniedBy | None = None

    @property
    def retry_after_seconds(self) -> int | None:
        """Retry delay rounded up to whole seconds, for the Retry-After header."""
        if self.retry_after_ms is None:
            return None
        return max(1, int(math.ceil(self.retry_after_ms / 1000)))

    @property
    def reset_time_seconds(self) -> int:
        return int(math.ceil(self.reset_time / 1000))


class AbstractWindowStore(ABC):
    """Interface for the keyed QuotaRecord store."""

    @abstractmethod
    def acquire(self, key: str, now: int) -> AbstractContextManager[QuotaRecord]:
        """Return a context manager holding the record for ``key`` exclusively.

        The record is created on first access. While the context is open no
        other caller can read or mutate the same record.
        """
        raise NotImplementedError

    @abstractmethod
    def sweep(self, now: int) -> int:
        """Evict stale records and return how many were removed."""
        raise NotImplementedError

    @abstractmethod
    def reset(self, key: str) -> bool:
        """Drop the record for ``key``. Returns True if one existed."""
        raise NotImplementedError

    @abstractmethod
    def stats(self) -> dict[str, int]:
        """Return lightweight store metrics."""
        raise NotImplementedError
