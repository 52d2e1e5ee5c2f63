"""Rate limiting wiring for the HTTP layer.

This module connects the limiter adapter to FastAPI.

Design goals:
- Minimal coupling: routes depend on dependency functions only.
- Swap-friendly: the limiter and violation log are resolved through
  ``get_rate_limiter`` / ``get_violation_log`` so tests can override them.
- Denials are data until this layer turns them into a RateLimitAppError,
  rendered as HTTP 429 by the global exception handlers.

Guards:
- ``enforce_ip_rate_limit``: IP blocklist, then the per-IP quota; applied to
  every guarded route.
- ``enforce_user_rate_limit(action)``: per user and action; the user id comes
  from the upstream auth layer via ``X-User-ID`` (IP scope when missing).
"""

from __future__ import annotations

import logging
from typing import Annotated, Awaitable, Callable

from fastapi import Depends, Header, Request, Response

from admission.adapters.rate_limit.base import AdmissionDecision, BurstConfig
from admission.adapters.rate_limit.in_memory import InMemoryWindowStore
from admission.adapters.rate_limit.keys import ip_action_key, ip_key, user_action_key
from admission.adapters.rate_limit.limiter import FixedWindowLimiter
from admission.core.config import settings
from admission.core.errors import BlockedClientAppError, RateLimitAppError
from admission.core.logging import hash_identifier
from admission.services.ip_blocklist import IPBlocklist
from admission.services.violation_log import ViolationLog

logger = logging.getLogger(__name__)


_limiter: FixedWindowLimiter | None = None
_limiter_config: tuple[int, int, int] | None = None
_violation_log: ViolationLog | None = None
_ip_blocklist: IPBlocklist | None = None


def get_rate_limiter() -> FixedWindowLimiter:
    """Return the process-wide limiter instance.

    The instance is cached in-module to preserve state across requests.
    If the limiter configuration changes (primarily in tests), it is rebuilt
    with an empty store.

    Returns:
        FixedWindowLimiter: Configured limiter instance.
    """

    global _limiter, _limiter_config

    config = (
        settings.limiter.burst_window_ms,
        settings.limiter.sweep_interval_ms,
        settings.limiter.sweep_grace_ms,
    )

    if _limiter is None or _limiter_config != config:
        _limiter = FixedWindowLimiter(
            InMemoryWindowStore(grace_ms=settings.limiter.sweep_grace_ms),
            burst_window_ms=settings.limiter.burst_window_ms,
            sweep_interval_ms=settings.limiter.sweep_interval_ms,
        )
        _limiter_config = config

    return _limiter


def get_violation_log() -> ViolationLog:
    """Return the process-wide violation log."""

    global _violation_log

    if _violation_log is None:
        _violation_log = ViolationLog(
            retention_ms=settings.limiter.violation_retention_ms,
            max_entries=settings.limiter.violation_max_entries,
        )
    return _violation_log


def get_ip_blocklist() -> IPBlocklist:
    """Return the process-wide IP blocklist."""

    global _ip_blocklist

    if _ip_blocklist is None:
        _ip_blocklist = IPBlocklist()
    return _ip_blocklist


def check_rate_limit(
    identifier: str,
    limit: int | None = None,
    window_ms: int | None = None,
    burst_limit: BurstConfig | int | None = None,
) -> AdmissionDecision:
    """Check a raw identifier against the process-wide limiter.

    Omitted limits fall back to ``RATE_LIMIT_DEFAULT_*``.
    """

    return get_rate_limiter().check_rate_limit(
        identifier,
        settings.rate_limit.default_requests if limit is None else limit,
        settings.rate_limit.default_window_ms if window_ms is None else window_ms,
        burst_limit,
    )


def check_user_rate_limit(
    user_id: str,
    action: str,
    limit: int | None = None,
    window_ms: int | None = None,
) -> AdmissionDecision:
    """Check a per-user, per-action quota against the process-wide limiter."""

    return get_rate_limiter().check_user_rate_limit(
        user_id,
        action,
        settings.rate_limit.user_requests if limit is None else limit,
        settings.rate_limit.user_window_ms if window_ms is None else window_ms,
    )


def check_ip_rate_limit(
    ip: str,
    limit: int | None = None,
    window_ms: int | None = None,
) -> AdmissionDecision:
    """Check a per-IP quota against the process-wide limiter."""

    return get_rate_limiter().check_ip_rate_limit(
        ip,
        settings.rate_limit.ip_requests if limit is None else limit,
        settings.rate_limit.ip_window_ms if window_ms is None else window_ms,
    )


def extract_client_ip(request: Request) -> str:
    """Resolve the client IP for the per-IP scope.

    Order: first hop of ``X-Forwarded-For``, then ``X-Real-IP`` (both only
    when forwarded headers are trusted), then the socket peer, else
    ``"unknown"``.
    """

    if settings.rate_limit.trust_forwarded_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip

    return request.client.host if request.client else "unknown"


def build_rate_limit_headers(decision: AdmissionDecision) -> dict[str, str]:
    """Build X-RateLimit-* (and Retry-After when denied) response headers."""

    headers = {
        "X-RateLimit-Limit": str(max(decision.limit, 0)),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_time_seconds),
    }
    if decision.retry_after_seconds is not None:
        headers["Retry-After"] = str(decision.retry_after_seconds)
    return headers


def apply_decision(
    decision: AdmissionDecision,
    *,
    key: str,
    scope: str,
    request: Request,
    response: Response,
    violations: ViolationLog,
) -> None:
    """Honor an admission decision for the current request.

    Admitted requests get rate limit headers on the response (when enabled).
    Denied requests are logged, recorded in the violation log and turned
    into a RateLimitAppError.

    Raises:
        RateLimitAppError: When the decision denies the request.
    """

    key_hash = hash_identifier(key)
    headers = build_rate_limit_headers(decision)

    if decision.allowed:
        logger.info(
            "rate_limit.allowed",
            extra={
                "scope": scope,
                "key_hash": key_hash,
                "limit": decision.limit,
                "remaining": decision.remaining,
            },
        )
        if settings.rate_limit.include_headers:
            response.headers.update(headers)
        return

    violations.record(key, scope, decision, path=request.url.path)
    logger.warning(
        "rate_limit.exceeded",
        extra={
            "scope": scope,
            "key_hash": key_hash,
            "limit": decision.limit,
            "denied_by": decision.denied_by,
            "retry_after_ms": decision.retry_after_ms,
            "path": request.url.path,
        },
    )

    # Retry-After is always sent with a 429; the X-RateLimit-* set is optional
    if not settings.rate_limit.include_headers:
        headers = {"Retry-After": headers["Retry-After"]}

    raise RateLimitAppError(
        code="rate_limit_exceeded",
        message="Rate limit exceeded. Try again later.",
        details={
            "scope": scope,
            "limit": decision.limit,
            "remaining": decision.remaining,
            "reset_time": decision.reset_time,
            "retry_after": decision.retry_after_seconds or 1,
            "denied_by": decision.denied_by or "quota",
        },
        headers=headers,
    )


async def enforce_ip_rate_limit(
    request: Request,
    response: Response,
    limiter: Annotated[FixedWindowLimiter, Depends(get_rate_limiter)],
    violations: Annotated[ViolationLog, Depends(get_violation_log)],
    blocklist: Annotated[IPBlocklist, Depends(get_ip_blocklist)],
) -> None:
    """FastAPI dependency enforcing the IP blocklist and the per-IP quota.

    Blocked IPs are refused even when quotas are disabled, and their requests
    are not counted.

    Raises:
        BlockedClientAppError: 403 Forbidden when the client IP is blocked.
        RateLimitAppError: 429 Too Many Requests when the quota is exceeded.
    """

    ip = extract_client_ip(request)
    key = ip_key(ip)

    if blocklist.is_blocked(ip):
        violations.record_block(key, "ip", path=request.url.path)
        logger.warning(
            "rate_limit.blocked",
            extra={"scope": "ip", "key_hash": hash_identifier(key), "path": request.url.path},
        )
        raise BlockedClientAppError(
            code="ip_blocked",
            message="Requests from this address are blocked.",
            details={"scope": "ip", "denied_by": "blocked"},
        )

    if not settings.rate_limit.enabled:
        return

    cfg = settings.rate_limit
    decision = limiter.check_rate_limit(key, cfg.ip_requests, cfg.ip_window_ms, cfg.ip_burst_limit)
    apply_decision(
        decision, key=key, scope="ip", request=request, response=response, violations=violations
    )


def enforce_user_rate_limit(
    action: str,
    *,
    limit: int | None = None,
    window_ms: int | None = None,
) -> Callable[..., Awaitable[None]]:
    """Build a dependency enforcing a per-user quota for ``action``.

    Usage:
        @router.post("/login", dependencies=[Depends(enforce_user_rate_limit("login"))])

    Args:
        action: Action name that partitions the user's quotas.
        limit: Requests per window; defaults to ``RATE_LIMIT_USER_REQUESTS``.
        window_ms: Window length; defaults to ``RATE_LIMIT_USER_WINDOW_MS``.
    """

    async def _enforce(
        request: Request,
        response: Response,
        limiter: Annotated[FixedWindowLimiter, Depends(get_rate_limiter)],
        violations: Annotated[ViolationLog, Depends(get_violation_log)],
        x_user_id: Annotated[str | None, Header(alias="X-User-ID")] = None,
    ) -> None:
        if not settings.rate_limit.enabled:
            return

        cfg = settings.rate_limit
        effective_limit = cfg.user_requests if limit is None else limit
        effective_window = cfg.user_window_ms if window_ms is None else window_ms

        if x_user_id:
            scope = "user"
            subject = x_user_id
        else:
            scope = "ip"
            subject = extract_client_ip(request)
        key = user_action_key(subject, action) if scope == "user" else ip_action_key(subject, action)

        decision = limiter.check_rate_limit(key, effective_limit, effective_window)
        apply_decision(
            decision, key=key, scope=scope, request=request, response=response, violations=violations
        )

    return _enforce
