"""JWT helpers for admin and tenant-aware requests."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from scanner_shield.core.settings import settings


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as described by the bearer token claims."""

    subject: str
    tenant_id: str


def create_access_token(
    subject: str, tenant_id: str, extra_claims: dict[str, str] | None = None
) -> str:
    """Create a signed access token carrying the caller's tenant."""
    to_encode: dict[str, object] = {"sub": subject, "tenant_id": tenant_id}
    if extra_claims:
        to_encode.update(extra_claims)
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode["exp"] = expire
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_access_token(token: str) -> Principal:
    """Validate a bearer token and return its principal.

    Tokens without a ``tenant_id`` claim belong to the default tenant.

    Raises:
        JWTError: If the token is malformed, expired, badly signed or has no subject.
    """
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    subject = payload.get("sub")
    if not subject:
        raise JWTError("Token has no subject")
    tenant_id = payload.get("tenant_id") or settings.default_tenant_id
    return Principal(subject=str(subject), tenant_id=str(tenant_id))
