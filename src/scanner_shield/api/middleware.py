"""HTTP middleware applying IP blocking and rate limiting to every request."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import Request, status
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from scanner_shield.core.security import Principal, decode_access_token
from scanner_shield.core.settings import Settings, settings
from scanner_shield.services.protection import (
    DECISION_BLOCKED,
    DECISION_RATE_LIMITED,
    ProtectionService,
    get_protection_service,
)
from scanner_shield.services.rate_limiter import RateLimitResult

logger = logging.getLogger(__name__)

ServiceProvider = Callable[[], ProtectionService]


def _bearer_principal(request: Request) -> Principal | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    try:
        return decode_access_token(token.strip())
    except JWTError:
        # Authentication is enforced by the routes, not here.
        return None


def resolve_client_ip(request: Request, app_settings: Settings = settings) -> str:
    """Return the client IP, honouring X-Forwarded-For only behind a trusted proxy."""
    if app_settings.trust_proxy_headers:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()
    return request.client.host if request.client else "unknown"


def _rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    if result.limit is None:
        return {}
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining or 0),
    }
    if result.reset is not None:
        headers["X-RateLimit-Reset"] = result.reset.isoformat()
    return headers


class ProtectionMiddleware(BaseHTTPMiddleware):
    """Rejects blocked or over-limit clients before they reach the routes."""

    def __init__(
        self,
        app: ASGIApp,
        service_provider: ServiceProvider = get_protection_service,
        app_settings: Settings | None = None,
    ) -> None:
        super().__init__(app)
        self.service_provider = service_provider
        self.settings = app_settings or settings

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        path = request.url.path
        if path in self.settings.exempt_paths:
            return await call_next(request)

        principal = _bearer_principal(request)
        # Only a verified token may select a tenant; client headers are not trusted.
        tenant_id = principal.tenant_id if principal is not None else self.settings.default_tenant_id
        ip = resolve_client_ip(request, self.settings)

        try:
            decision = await self.service_provider().evaluate_request(
                tenant_id,
                ip,
                path,
                request.method,
                user_agent=request.headers.get("User-Agent"),
                user_id=principal.subject if principal else None,
            )
        except Exception:
            # Without a trustworthy block list the request cannot be admitted.
            logger.exception("Protection check failed for %s (tenant %s)", ip, tenant_id)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "error": "Service Unavailable",
                    "message": "Request protection is temporarily unavailable",
                },
            )

        if decision.action == DECISION_BLOCKED and decision.block is not None:
            block = decision.block
            logger.info("Rejected request from blocked IP %s (tenant %s)", ip, tenant_id)
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={
                    "error": "Forbidden",
                    "message": "Your IP address has been blocked",
                    "reason": block.reason,
                    "unblockAt": block.expires_at.isoformat() if block.expires_at else None,
                },
            )

        if decision.action == DECISION_RATE_LIMITED and decision.limit is not None:
            limit = decision.limit
            headers = _rate_limit_headers(limit)
            headers["X-RateLimit-Remaining"] = "0"
            headers["Retry-After"] = str(limit.retry_after)
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": "Too Many Requests",
                    "message": "Rate limit exceeded",
                    "retryAfter": limit.retry_after,
                },
                headers=headers,
            )

        response = await call_next(request)
        if decision.limit is not None:
            response.headers.update(_rate_limit_headers(decision.limit))
        return response
