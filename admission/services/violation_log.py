"""In-memory log of denied admissions.

Keeps a bounded, time-pruned history of rate limit violations for the
security overview. Scope keys are stored hashed; the log never holds raw IPs
or user ids.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable

from admission.adapters.rate_limit.base import AdmissionDecision
from admission.adapters.rate_limit.limiter import epoch_ms
from admission.core.logging import hash_identifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Violation:
    """A single denied admission.

    Attributes:
        id: Opaque identifier used to resolve the entry.
        key_hash: Short hash of the scope key.
        scope: Scope of the key ("ip", "user" or "identifier").
        denied_by: Guard that rejected the request.
        limit: Primary limit in force.
        retry_after_ms: Retry delay returned to the client.
        path: Request path, when the denial came from an HTTP guard.
        occurred_at: Epoch milliseconds of the denial.
        reason: Operator-supplied reason (blocked IPs only).
        resolved: Whether an operator has reviewed the entry.
    """

    id: str
    key_hash: str
    scope: str
    denied_by: str | None
    limit: int
    retry_after_ms: int | None
    path: str | None
    occurred_at: int
    reason: str | None = None
    resolved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ViolationLog:
    """Thread-safe, bounded violation history with retention pruning."""

    def __init__(
        self,
        *,
        retention_ms: int = 24 * 60 * 60 * 1000,
        max_entries: int = 1000,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        if retention_ms < 1:
            raise ValueError("retention_ms must be >= 1")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")

        self._retention_ms = retention_ms
        self._entries: deque[Violation] = deque(maxlen=max_entries)
        self._clock = clock
        self._lock = threading.Lock()
        self._total = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def record(
        self,
        key: str,
        scope: str,
        decision: AdmissionDecision,
        *,
        path: str | None = None,
    ) -> Violation:
        """Store a denied decision for ``key``.

        Args:
            key: Raw scope key; only its hash is kept.
            scope: Scope name of the key.
            decision: The denial returned by the limiter.
            path: Optional request path.

        Returns:
            The stored Violation.
        """

        return self._append(
            key,
            scope,
            denied_by=decision.denied_by,
            limit=decision.limit,
            retry_after_ms=decision.retry_after_ms,
            path=path,
        )

    def record_block(
        self,
        key: str,
        scope: str,
        *,
        reason: str | None = None,
        path: str | None = None,
    ) -> Violation:
        """Store a block event or a request refused because its IP is blocked."""

        return self._append(
            key,
            scope,
            denied_by="blocked",
            limit=0,
            retry_after_ms=None,
            path=path,
            reason=reason,
        )

    def resolve(self, violation_id: str) -> Violation | None:
        """Mark one violation as resolved.

        Returns:
            The updated Violation, or None if it is unknown or already pruned.
        """

        with self._lock:
            self._prune_locked(self._clock())
            for idx, entry in enumerate(self._entries):
                if entry.id == violation_id:
                    updated = replace(entry, resolved=True)
                    self._entries[idx] = updated
                    logger.info("violation_log.resolved", extra={"violation_id": violation_id})
                    return updated
        return None

    def recent(
        self,
        *,
        limit: int = 100,
        scope: str | None = None,
        denied_by: str | None = None,
        resolved: bool | None = None,
    ) -> list[Violation]:
        """Return the newest violations first, optionally filtered."""

        with self._lock:
            self._prune_locked(self._clock())
            entries = list(reversed(self._entries))

        if scope is not None:
            entries = [v for v in entries if v.scope == scope]
        if denied_by is not None:
            entries = [v for v in entries if v.denied_by == denied_by]
        if resolved is not None:
            entries = [v for v in entries if v.resolved is resolved]
        return entries[: max(limit, 0)]

    def summary(self) -> dict[str, Any]:
        """Counts by scope and guard over the retained window."""

        with self._lock:
            self._prune_locked(self._clock())
            entries = list(self._entries)
            total = self._total

        by_scope: dict[str, int] = {}
        by_guard: dict[str, int] = {}
        for v in entries:
            by_scope[v.scope] = by_scope.get(v.scope, 0) + 1
            guard = v.denied_by or "unknown"
            by_guard[guard] = by_guard.get(guard, 0) + 1

        return {
            "retained": len(entries),
            "unresolved": sum(1 for v in entries if not v.resolved),
            "total_recorded": total,
            "by_scope": by_scope,
            "by_denied_by": by_guard,
            "retention_ms": self._retention_ms,
        }

    def _append(
        self,
        key: str,
        scope: str,
        *,
        denied_by: str | None,
        limit: int,
        retry_after_ms: int | None,
        path: str | None,
        reason: str | None = None,
    ) -> Violation:
        violation = Violation(
            id=uuid.uuid4().hex,
            key_hash=hash_identifier(key),
            scope=scope,
            denied_by=denied_by,
            limit=limit,
            retry_after_ms=retry_after_ms,
            path=path,
            occurred_at=self._clock(),
            reason=reason,
        )
        with self._lock:
            self._prune_locked(violation.occurred_at)
            self._entries.append(violation)
            self._total += 1
        return violation

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total = 0

    def _prune_locked(self, now: int) -> None:
        cutoff = now - self._retention_ms
        pruned = 0
        while self._entries and self._entries[0].occurred_at <= cutoff:
            self._entries.popleft()
            pruned += 1
        if pruned:
            logger.debug("violation_log.pruned", extra={"pruned": pruned})
