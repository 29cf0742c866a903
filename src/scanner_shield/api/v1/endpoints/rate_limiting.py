# src/scanner_shield/api/v1/endpoints/rate_limiting.py
"""Rate limiting administration endpoints.

Every route operates on the tenant named in the caller's bearer token.
"""

from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import IPvAnyAddress
from sqlalchemy.exc import SQLAlchemyError

from scanner_shield.api.v1.dependencies import PrincipalDep, ProtectionDep
from scanner_shield.models import BlockedIP, RateLimitViolation, WhitelistEntry
from scanner_shield.models.blocking import BLOCK_TYPE_MANUAL
from scanner_shield.schemas import (
    BlockedIPResponse,
    BlockIPRequest,
    DDoSCheckResponse,
    LoginAttemptRequest,
    LoginAttemptResponse,
    OperationResult,
    RateLimitConfigResponse,
    RateLimitConfigUpdate,
    ResetRequest,
    ResetResponse,
    StatsResponse,
    StatusResponse,
    UnblockIPRequest,
    ViolationResponse,
    WhitelistEntryResponse,
    WhitelistRequest,
)
from scanner_shield.services.blocking import BlockResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rate-limiting", tags=["rate-limiting"])

ListLimit = Query(default=100, ge=1, le=1000)


def _operation_result(result: BlockResult) -> OperationResult:
    return OperationResult(
        success=result.success,
        existing=result.existing,
        reason=result.reason,
        error=result.error,
        id=result.block_id,
        expires_at=result.expires_at,
    )


@router.get("/status", response_model=StatusResponse)
async def get_status(principal: PrincipalDep, service: ProtectionDep) -> StatusResponse:
    """Summarise the tenant's limits and which protections are active."""
    policy = service.config.get_policy(principal.tenant_id)
    return StatusResponse(
        enabled=policy.enabled,
        limits={
            "global": f"{policy.global_limit}/{policy.global_window}s",
            "per_ip": f"{policy.per_ip_limit}/{policy.per_ip_window}s",
            "per_user": f"{policy.per_user_limit}/{policy.per_user_window}s",
        },
        protection={
            "ddos": policy.ddos_threshold > 0,
            "brute_force": policy.brute_force_attempts > 0,
            "auto_block": policy.auto_block_enabled,
        },
    )


@router.get("/config", response_model=RateLimitConfigResponse)
async def get_config(principal: PrincipalDep, service: ProtectionDep) -> RateLimitConfigResponse:
    policy = service.config.get_policy(principal.tenant_id)
    return RateLimitConfigResponse(**policy.to_dict())


@router.put("/config", response_model=RateLimitConfigResponse)
async def update_config(
    payload: RateLimitConfigUpdate,
    principal: PrincipalDep,
    service: ProtectionDep,
) -> RateLimitConfigResponse:
    """Apply a partial configuration update for the caller's tenant."""
    try:
        policy = service.config.update_policy(
            principal.tenant_id, payload.model_dump(exclude_none=True)
        )
    except SQLAlchemyError as err:
        logger.error("Failed to update config for tenant %s: %s", principal.tenant_id, err)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update configuration",
        ) from err
    return RateLimitConfigResponse(**policy.to_dict())


@router.get("/violations", response_model=list[ViolationResponse])
async def list_violations(
    principal: PrincipalDep,
    service: ProtectionDep,
    limit: int = ListLimit,
) -> list[RateLimitViolation]:
    return service.violations.list_recent(principal.tenant_id, limit)


@router.get("/blocked-ips", response_model=list[BlockedIPResponse])
async def list_blocked_ips(
    principal: PrincipalDep,
    service: ProtectionDep,
    limit: int = ListLimit,
) -> list[BlockedIP]:
    return await service.blocking.get_blocked_ips(principal.tenant_id, limit)


@router.post("/blocked-ips", response_model=OperationResult)
async def block_ip(
    payload: BlockIPRequest,
    principal: PrincipalDep,
    service: ProtectionDep,
) -> OperationResult:
    """Manually block an IP for the caller's tenant."""
    result = await service.blocking.block_ip(
        principal.tenant_id,
        payload.ip,
        BLOCK_TYPE_MANUAL,
        payload.reason or "Manually blocked",
        payload.duration,
        blocked_by=principal.subject,
    )
    return _operation_result(result)


@router.post("/unblock-ip", response_model=OperationResult)
async def unblock_ip(
    payload: UnblockIPRequest,
    principal: PrincipalDep,
    service: ProtectionDep,
) -> OperationResult:
    result = await service.blocking.unblock_ip(principal.tenant_id, payload.ip)
    return _operation_result(result)


@router.get("/whitelist", response_model=list[WhitelistEntryResponse])
async def list_whitelist(
    principal: PrincipalDep,
    service: ProtectionDep,
    limit: int = ListLimit,
) -> list[WhitelistEntry]:
    return await service.blocking.get_whitelist(principal.tenant_id, limit)


@router.post("/whitelist", response_model=OperationResult)
async def add_to_whitelist(
    payload: WhitelistRequest,
    principal: PrincipalDep,
    service: ProtectionDep,
) -> OperationResult:
    """Whitelist an IP; any existing block on it is lifted."""
    result = await service.blocking.add_to_whitelist(
        principal.tenant_id,
        payload.ip,
        payload.description,
        added_by=principal.subject,
        duration_seconds=payload.duration,
    )
    return _operation_result(result)


@router.delete("/whitelist/{ip}", response_model=OperationResult)
async def remove_from_whitelist(
    ip: IPvAnyAddress,
    principal: PrincipalDep,
    service: ProtectionDep,
) -> OperationResult:
    # Entries are stored in canonical form, so match on the same form.
    result = await service.blocking.remove_from_whitelist(principal.tenant_id, str(ip))
    return _operation_result(result)


@router.get("/stats", response_model=StatsResponse)
async def get_stats(principal: PrincipalDep, service: ProtectionDep) -> StatsResponse:
    """Aggregate limiter, traffic, DDoS and brute-force statistics."""
    tenant_id = principal.tenant_id
    return StatsResponse(
        rate_limits=await service.rate_limiter.get_stats(tenant_id),
        top_ips=[asdict(entry) for entry in service.tracker.get_top_ips(10, 3600)],
        ddos=await service.ddos.get_stats(tenant_id, 24),
        brute_force=asdict(service.brute_force.get_attempt_stats(tenant_id)),
    )


@router.post("/reset", response_model=ResetResponse)
async def reset_limit(
    payload: ResetRequest,
    principal: PrincipalDep,
    service: ProtectionDep,
) -> ResetResponse:
    """Drop the bucket(s) of an identity so it starts over with a full allowance."""
    try:
        removed = await service.rate_limiter.reset_limit(
            principal.tenant_id,
            payload.identifier,
            payload.identifier_type,
            payload.endpoint,
        )
    except SQLAlchemyError as err:
        logger.error("Failed to reset limit for %s: %s", payload.identifier, err)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reset rate limit",
        ) from err
    return ResetResponse(success=True, removed=removed)


@router.post("/login-attempts", response_model=LoginAttemptResponse)
async def record_login_attempt(
    payload: LoginAttemptRequest,
    principal: PrincipalDep,
    service: ProtectionDep,
) -> LoginAttemptResponse:
    """Feed an authentication outcome into brute-force detection."""
    result = await service.brute_force.track_attempt(
        principal.tenant_id,
        payload.identifier,
        payload.ip,
        payload.success,
        payload.endpoint,
    )
    attack = service.brute_force.is_under_attack(
        principal.tenant_id, payload.identifier, payload.ip
    )
    return LoginAttemptResponse(
        blocked=result.blocked,
        attempts=result.attempts,
        threshold=result.threshold,
        under_attack=attack.under_attack,
    )


@router.post("/ddos/check", response_model=DDoSCheckResponse)
async def check_ddos(principal: PrincipalDep, service: ProtectionDep) -> DDoSCheckResponse:
    result = await service.check_for_ddos(principal.tenant_id)
    return DDoSCheckResponse(**asdict(result))
