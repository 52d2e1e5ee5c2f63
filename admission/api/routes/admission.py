from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status

from admission.adapters.rate_limit.base import BurstConfig
from admission.adapters.rate_limit.keys import identifier_key, ip_key, user_action_key
from admission.adapters.rate_limit.limiter import FixedWindowLimiter
from admission.core.config import settings
from admission.core.errors import NotFoundAppError, ValidationAppError
from admission.core.logging import hash_identifier
from admission.core.rate_limit import (
    enforce_ip_rate_limit,
    enforce_user_rate_limit,
    get_ip_blocklist,
    get_rate_limiter,
    get_violation_log,
)
from admission.schemas.admission import (
    AdmissionCheckRequest,
    AdmissionDecisionResponse,
    BlockedIPListResponse,
    BlockedIPResponse,
    BlockIPRequest,
    KeyResetRequest,
    KeyResetResponse,
    StoreStatsResponse,
    UnblockIPRequest,
    UnblockIPResponse,
    ViolationListResponse,
    ViolationResponse,
)
from admission.services.ip_blocklist import IPBlocklist
from admission.services.violation_log import ViolationLog

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admission", tags=["Admission"])


def _require(value: str | None, field: str, scope: str) -> str:
    if value is None:
        raise ValidationAppError(
            code="missing_scope_field",
            message=f"'{field}' is required for scope '{scope}'",
            details={"scope": scope, "hint": f"Provide '{field}' in the request body"},
        )
    return value


def resolve_scope_key(payload: AdmissionCheckRequest | KeyResetRequest) -> str:
    """Derive the store key for the scope named in ``payload``.

    Raises:
        ValidationAppError: If a field required by the scope is missing.
    """
    if payload.scope == "user":
        user_id = _require(payload.user_id, "user_id", "user")
        action = _require(payload.action, "action", "user")
        return user_action_key(user_id, action)
    if payload.scope == "ip":
        return ip_key(_require(payload.ip, "ip", "ip"))
    return identifier_key(_require(payload.identifier, "identifier", "identifier"))


def _defaults_for(scope: str) -> tuple[int, int]:
    cfg = settings.rate_limit
    if scope == "user":
        return cfg.user_requests, cfg.user_window_ms
    if scope == "ip":
        return cfg.ip_requests, cfg.ip_window_ms
    return cfg.default_requests, cfg.default_window_ms


@router.post("/check", response_model=AdmissionDecisionResponse)
def check_admission(
    payload: AdmissionCheckRequest,
    limiter: Annotated[FixedWindowLimiter, Depends(get_rate_limiter)],
    violations: Annotated[ViolationLog, Depends(get_violation_log)],
) -> AdmissionDecisionResponse:
    """Count one request for a scope key and return the admission verdict.

    The verdict is always returned with HTTP 200; callers map
    ``allowed=false`` to their own 429 response using ``retry_after_seconds``.

    Raises:
        ValidationAppError: 400 when the scope's key fields are missing or a
            burst limit is sent for a non-identifier scope.
    """
    key = resolve_scope_key(payload)
    default_limit, default_window = _defaults_for(payload.scope)
    limit = default_limit if payload.limit is None else payload.limit
    window_ms = default_window if payload.window_ms is None else payload.window_ms

    burst: BurstConfig | None = None
    if payload.burst_limit is not None:
        if payload.scope != "identifier":
            raise ValidationAppError(
                code="burst_not_supported",
                message="burst_limit is only supported for the identifier scope",
                details={"scope": payload.scope},
            )
        burst = BurstConfig(
            limit=payload.burst_limit,
            window_ms=payload.burst_window_ms or limiter.burst_window_ms,
        )

    decision = limiter.check_rate_limit(key, limit, window_ms, burst)
    if not decision.allowed:
        violations.record(key, payload.scope, decision, path="/v1/admission/check")

    logger.info(
        "admission.checked",
        extra={
            "scope": payload.scope,
            "key_hash": hash_identifier(key),
            "allowed": decision.allowed,
            "remaining": decision.remaining,
            "denied_by": decision.denied_by,
        },
    )
    return AdmissionDecisionResponse.from_decision(payload.scope, decision)


@router.get(
    "/violations",
    response_model=ViolationListResponse,
    dependencies=[Depends(enforce_ip_rate_limit)],
)
def list_violations(
    violations: Annotated[ViolationLog, Depends(get_violation_log)],
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    scope: Annotated[str | None, Query()] = None,
    denied_by: Annotated[str | None, Query()] = None,
    resolved: Annotated[bool | None, Query()] = None,
) -> ViolationListResponse:
    """Recent denied admissions, newest first."""
    entries = violations.recent(limit=limit, scope=scope, denied_by=denied_by, resolved=resolved)
    return ViolationListResponse(
        violations=[ViolationResponse(**v.to_dict()) for v in entries],
        summary=violations.summary(),
    )


@router.get(
    "/stats",
    response_model=StoreStatsResponse,
    dependencies=[Depends(enforce_ip_rate_limit)],
)
def store_stats(
    limiter: Annotated[FixedWindowLimiter, Depends(get_rate_limiter)],
) -> StoreStatsResponse:
    return StoreStatsResponse(**limiter.store.stats())


@router.delete(
    "/keys",
    response_model=KeyResetResponse,
    dependencies=[
        Depends(enforce_ip_rate_limit),
        Depends(enforce_user_rate_limit("admission_key_reset", limit=10, window_ms=60_000)),
    ],
)
def reset_key(
    payload: KeyResetRequest,
    limiter: Annotated[FixedWindowLimiter, Depends(get_rate_limiter)],
) -> KeyResetResponse:
    """Drop the stored quota for one scope key."""
    key = resolve_scope_key(payload)
    removed = limiter.store.reset(key)
    logger.info(
        "admission.key_reset",
        extra={"scope": payload.scope, "key_hash": hash_identifier(key), "removed": removed},
    )
    return KeyResetResponse(scope=payload.scope, removed=removed)


@router.post(
    "/violations/{violation_id}/resolve",
    response_model=ViolationResponse,
    dependencies=[Depends(enforce_ip_rate_limit)],
)
def resolve_violation(
    violation_id: str,
    violations: Annotated[ViolationLog, Depends(get_violation_log)],
) -> ViolationResponse:
    """Mark a violation as reviewed.

    Raises:
        NotFoundAppError: 404 when the violation is unknown or already pruned.
    """
    violation = violations.resolve(violation_id)
    if violation is None:
        raise NotFoundAppError(
            code="violation_not_found",
            message=f"Violation '{violation_id}' not found",
        )
    return ViolationResponse(**violation.to_dict())


@router.get(
    "/blocked-ips",
    response_model=BlockedIPListResponse,
    dependencies=[Depends(enforce_ip_rate_limit)],
)
def list_blocked_ips(
    blocklist: Annotated[IPBlocklist, Depends(get_ip_blocklist)],
) -> BlockedIPListResponse:
    return BlockedIPListResponse(
        blocked_ips=[BlockedIPResponse(**asdict(e)) for e in blocklist.entries()]
    )


@router.post(
    "/blocked-ips",
    response_model=BlockedIPResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(enforce_ip_rate_limit)],
)
def block_ip(
    payload: BlockIPRequest,
    request: Request,
    blocklist: Annotated[IPBlocklist, Depends(get_ip_blocklist)],
    violations: Annotated[ViolationLog, Depends(get_violation_log)],
) -> BlockedIPResponse:
    """Block a client IP; the block itself is recorded as a violation."""
    entry = blocklist.block(payload.ip, payload.reason)
    violations.record_block(ip_key(payload.ip), "ip", reason=payload.reason, path=request.url.path)
    return BlockedIPResponse(**asdict(entry))


@router.delete(
    "/blocked-ips",
    response_model=UnblockIPResponse,
    dependencies=[Depends(enforce_ip_rate_limit)],
)
def unblock_ip(
    payload: UnblockIPRequest,
    blocklist: Annotated[IPBlocklist, Depends(get_ip_blocklist)],
) -> UnblockIPResponse:
    return UnblockIPResponse(removed=blocklist.unblock(payload.ip))
