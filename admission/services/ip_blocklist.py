"""In-memory blocklist of client IPs.

Blocked IPs are refused by the per-IP guard before any quota is counted.
Entries stay until an operator removes them.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable

from admission.adapters.rate_limit.limiter import epoch_ms
from admission.core.logging import hash_identifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockedIP:
    """A blocklist entry.

    Attributes:
        ip_hash: Short hash of the blocked IP.
        reason: Why the IP was blocked.
        blocked_at: Epoch milliseconds when the block was added.
    """

    ip_hash: str
    reason: str
    blocked_at: int


class IPBlocklist:
    """Thread-safe set of blocked client IPs."""

    def __init__(self, *, clock: Callable[[], int] = epoch_ms) -> None:
        self._entries: dict[str, BlockedIP] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, ip: object) -> bool:
        return self.is_blocked(ip) if isinstance(ip, str) else False

    def block(self, ip: str, reason: str) -> BlockedIP:
        """Block ``ip``. Blocking an already blocked IP refreshes its reason."""

        entry = BlockedIP(ip_hash=hash_identifier(ip), reason=reason, blocked_at=self._clock())
        with self._lock:
            self._entries[ip] = entry
        logger.warning("ip_blocklist.blocked", extra={"ip_hash": entry.ip_hash, "reason": reason})
        return entry

    def is_blocked(self, ip: str) -> bool:
        with self._lock:
            return ip in self._entries

    def unblock(self, ip: str) -> bool:
        """Remove ``ip`` from the blocklist. Returns False if it was not blocked."""

        with self._lock:
            entry = self._entries.pop(ip, None)
        if entry is None:
            return False
        logger.info("ip_blocklist.unblocked", extra={"ip_hash": entry.ip_hash})
        return True

    def entries(self) -> list[BlockedIP]:
        """Blocked IPs, most recently blocked first."""

        with self._lock:
            entries = list(self._entries.values())
        return sorted(entries, key=lambda e: e.blocked_at, reverse=True)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
