"""Shared API dependencies for authentication and service access."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from scanner_shield.core.errors import ServiceNotInitializedError
from scanner_shield.core.security import Principal, decode_access_token
from scanner_shield.services.protection import ProtectionService, get_protection_service

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()


def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> Principal:
    """Resolve the caller and their tenant from the bearer token.

    Raises:
        HTTPException: If the token is invalid or expired
    """
    try:
        return decode_access_token(credentials.credentials)
    except JWTError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err


def get_protection_service_dep() -> ProtectionService:
    """Get the initialized ProtectionService for dependency injection."""
    service = get_protection_service()
    try:
        service.ensure_initialized()
    except ServiceNotInitializedError as err:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(err),
        ) from err
    return service


# Type aliases for dependencies
PrincipalDep = Annotated[Principal, Depends(get_current_principal)]
ProtectionDep = Annotated[ProtectionService, Depends(get_protection_service_dep)]
