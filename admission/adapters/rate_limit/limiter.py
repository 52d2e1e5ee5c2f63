"""Fixed-window limiter with optional burst protection.

Every check runs one read-modify-write on the key's record while holding
that record's lock:

1. Reset the primary window when ``now - window_start >= window_ms``, then
   count the request.
2. When a burst cap is configured, do the same on the burst sub-window.
3. Admit only if both counters are within their limits.

Rejected requests are counted too. Checks never raise; degenerate inputs
(zero or negative limits, tiny windows, empty identifiers) simply produce a
decision.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from admission.adapters.rate_limit.base import (
    AbstractWindowStore,
    AdmissionDecision,
    BurstConfig,
    DeniedBy,
    QuotaRecord,
)
from admission.adapters.rate_limit.keys import identifier_key, ip_key, user_action_key

DEFAULT_BURST_WINDOW_MS = 1_000
DEFAULT_SWEEP_INTERVAL_MS = 5 * 60 * 1000


def epoch_ms() -> int:
    """Current wall-clock time in whole epoch milliseconds."""
    return time.time_ns() // 1_000_000


def _advance_primary(record: QuotaRecord, now: int, window_ms: int) -> None:
    if now - record.window_start >= window_ms:
        record.window_start = now
        record.count = 0
    record.window_ms = window_ms
    record.count += 1


def _advance_burst(record: QuotaRecord, now: int, burst: BurstConfig) -> bool:
    """Count the request in the burst sub-window. Returns True if within cap."""
    if record.burst_window_ms is None or now - record.burst_window_start >= burst.window_ms:
        record.burst_window_start = now
        record.burst_count = 0
    record.burst_window_ms = burst.window_ms
    record.burst_count += 1
    return record.burst_count <= burst.limit


class FixedWindowLimiter:
    """Admission control over an injected window store.

    Attributes:
        store: Store holding one QuotaRecord per scope key.
        burst_window_ms: Burst window used when a bare integer burst limit is
            passed to :meth:`check_rate_limit`.
    """

    def __init__(
        self,
        store: AbstractWindowStore,
        *,
        burst_window_ms: int = DEFAULT_BURST_WINDOW_MS,
        sweep_interval_ms: int | None = DEFAULT_SWEEP_INTERVAL_MS,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Window store to read and mutate.
            burst_window_ms: Default burst sub-window length in milliseconds.
            sweep_interval_ms: Minimum time between opportunistic sweeps run
                from inside checks; None disables them.
            clock: Time source returning epoch milliseconds.

        Raises:
            ValueError: If burst_window_ms or sweep_interval_ms are invalid.
        """
        if burst_window_ms < 1:
            raise ValueError("burst_window_ms must be >= 1")
        if sweep_interval_ms is not None and sweep_interval_ms < 1:
            raise ValueError("sweep_interval_ms must be >= 1")

        self.store = store
        self.burst_window_ms = burst_window_ms
        self._sweep_interval_ms = sweep_interval_ms
        self._clock = clock
        self._last_sweep = clock()
        self._sweep_lock = threading.Lock()

    def _maybe_sweep(self, now: int) -> None:
        if self._sweep_interval_ms is None:
            return
        if now - self._last_sweep < self._sweep_interval_ms:
            return
        # Only one caller sweeps; the others go straight to their check
        if not self._sweep_lock.acquire(blocking=False):
            return
        try:
            if now - self._last_sweep < self._sweep_interval_ms:
                return
            self._last_sweep = now
            self.store.sweep(now)
        finally:
            self._sweep_lock.release()

    def _resolve_burst(self, burst: BurstConfig | int | None) -> BurstConfig | None:
        if burst is None or isinstance(burst, BurstConfig):
            return burst
        return BurstConfig(limit=burst, window_ms=self.burst_window_ms)

    def check_rate_limit(
        self,
        identifier: str,
        limit: int,
        window_ms: int,
        burst: BurstConfig | int | None = None,
    ) -> AdmissionDecision:
        """Count one request against ``identifier`` and decide admission.

        Args:
            identifier: Scope key (any string, including empty).
            limit: Max requests per primary window; values <= 0 deny everything.
            window_ms: Primary window length in milliseconds.
            burst: Optional burst cap, either a BurstConfig or a bare limit
                that uses the limiter's default burst window.

        Returns:
            AdmissionDecision for this request.
        """
        burst_config = self._resolve_burst(burst)
        now = self._clock()
        self._maybe_sweep(now)

        with self.store.acquire(identifier_key(identifier), now) as record:
            _advance_primary(record, now, window_ms)
            quota_ok = limit > 0 and record.count <= limit
            burst_ok = True
            if burst_config is not None:
                burst_ok = _advance_burst(record, now, burst_config)

            reset_time = record.window_start + window_ms
            remaining = max(limit - record.count, 0)
            burst_reset = record.burst_window_start + (record.burst_window_ms or 0)

        if quota_ok and burst_ok:
            return AdmissionDecision(
                allowed=True,
                limit=limit,
                remaining=remaining,
                reset_time=reset_time,
            )

        # A burst denial takes precedence: its reset is the nearer retry point
        denied_by: DeniedBy
        if not burst_ok:
            denied_by = "burst"
            retry_at = burst_reset
        else:
            denied_by = "quota"
            retry_at = reset_time

        return AdmissionDecision(
            allowed=False,
            limit=limit,
            remaining=remaining,
            reset_time=reset_time,
            retry_after_ms=max(1, retry_at - now),
            denied_by=denied_by,
        )

    def check_user_rate_limit(
        self, user_id: str, action: str, limit: int, window_ms: int
    ) -> AdmissionDecision:
        """Check the quota for one user performing one action."""
        return self.check_rate_limit(user_action_key(user_id, action), limit, window_ms)

    def check_ip_rate_limit(self, ip: str, limit: int, window_ms: int) -> AdmissionDecision:
        """Check the quota for one client IP."""
        return self.check_rate_limit(ip_key(ip), limit, window_ms)
