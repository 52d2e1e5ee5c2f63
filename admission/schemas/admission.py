"""Pydantic schemas for the admission API."""

from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field

from admission.adapters.rate_limit.base import AdmissionDecision

Scope = Literal["identifier", "user", "ip"]


class AdmissionCheckRequest(BaseModel):
    """Ask for an admission decision on behalf of a guarded action.

    Which key fields are required depends on ``scope``:
    ``identifier`` needs ``identifier``, ``user`` needs ``user_id`` and
    ``action``, ``ip`` needs ``ip``.
    """

    scope: Scope = Field(..., description="Quota scope: identifier, user or ip.")
    identifier: str | None = Field(
        default=None, description="Raw scope key (identifier scope). May be empty."
    )
    user_id: str | None = Field(default=None, description="Authenticated user id (user scope).")
    action: str | None = Field(
        default=None, description="Guarded action name, e.g. 'login' (user scope)."
    )
    ip: str | None = Field(default=None, description="Client IP address (ip scope).")
    limit: int | None = Field(
        default=None,
        description="Requests per window. Defaults to the configured limit for the scope.",
    )
    window_ms: int | None = Field(
        default=None,
        description="Window length in milliseconds. Defaults to the configured window.",
    )
    burst_limit: int | None = Field(
        default=None,
        description="Optional burst cap (identifier scope only).",
    )
    burst_window_ms: int | None = Field(
        default=None,
        ge=1,
        description="Burst window in milliseconds; defaults to LIMITER_BURST_WINDOW_MS.",
    )


class AdmissionDecisionResponse(BaseModel):
    """Admission verdict returned to the caller."""

    scope: Scope
    allowed: bool
    limit: int
    remaining: int = Field(..., ge=0)
    reset_time: int = Field(..., description="Epoch milliseconds when the window resets.")
    retry_after_ms: int | None = Field(
        default=None, description="Milliseconds to wait before retrying (denied only)."
    )
    retry_after_seconds: int | None = Field(
        default=None, description="Retry delay rounded up to seconds (denied only)."
    )
    denied_by: Literal["quota", "burst"] | None = None

    @classmethod
    def from_decision(cls, scope: Scope, decision: AdmissionDecision) -> "AdmissionDecisionResponse":
        return cls(
            scope=scope,
            allowed=decision.allowed,
            limit=decision.limit,
            remaining=decision.remaining,
            reset_time=decision.reset_time,
            retry_after_ms=decision.retry_after_ms,
            retry_after_seconds=decision.retry_after_seconds,
            denied_by=decision.denied_by,
        )


class ViolationResponse(BaseModel):
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


class ViolationListResponse(BaseModel):
    violations: List[ViolationResponse] = Field(default_factory=list)
    summary: Dict[str, Any] = Field(default_factory=dict)


class StoreStatsResponse(BaseModel):
    """Window store metrics (no keys are exposed)."""

    tracked_keys: int
    created: int
    evicted: int
    sweeps: int
    grace_ms: int


class KeyResetRequest(BaseModel):
    """Identify one scope key to drop from the store."""

    scope: Scope
    identifier: str | None = None
    user_id: str | None = None
    action: str | None = None
    ip: str | None = None


class KeyResetResponse(BaseModel):
    scope: Scope
    removed: bool


class BlockIPRequest(BaseModel):
    """Add one client IP to the blocklist."""

    ip: str = Field(..., min_length=1, description="Client IP address to block.")
    reason: str = Field(default="manual block", max_length=200)


class UnblockIPRequest(BaseModel):
    ip: str = Field(..., min_length=1)


class BlockedIPResponse(BaseModel):
    """Blocklist entry; the IP itself is never echoed back."""

    ip_hash: str
    reason: str
    blocked_at: int = Field(..., description="Epoch milliseconds when the block was added.")


class BlockedIPListResponse(BaseModel):
    blocked_ips: List[BlockedIPResponse] = Field(default_factory=list)


class UnblockIPResponse(BaseModel):
    removed: bool
