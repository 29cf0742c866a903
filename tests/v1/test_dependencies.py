# tests/v1/test_dependencies.py
"""Tests for API dependencies and bearer token handling."""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi import HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError, jwt

from scanner_shield.api.v1.dependencies import get_current_principal, get_protection_service_dep
from scanner_shield.core.security import Principal, create_access_token, decode_access_token
from scanner_shield.core.settings import settings
from scanner_shield.services.protection import ProtectionService, set_protection_service


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestDecodeAccessToken:
    def test_round_trip_keeps_tenant(self):
        token = create_access_token("alice", "tenant-a")
        assert decode_access_token(token) == Principal(subject="alice", tenant_id="tenant-a")

    def test_missing_tenant_claim_uses_default(self):
        token = jwt.encode({"sub": "alice"}, settings.secret_key, algorithm=settings.jwt_algorithm)
        assert decode_access_token(token).tenant_id == settings.default_tenant_id

    def test_missing_subject_is_rejected(self):
        token = jwt.encode(
            {"tenant_id": "tenant-a"}, settings.secret_key, algorithm=settings.jwt_algorithm
        )
        with pytest.raises(JWTError):
            decode_access_token(token)

    def test_expired_token_is_rejected(self):
        token = jwt.encode(
            {"sub": "alice", "exp": datetime.now(UTC) - timedelta(minutes=1)},
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(JWTError):
            decode_access_token(token)

    def test_wrong_signature_is_rejected(self):
        token = jwt.encode({"sub": "alice"}, "another-secret", algorithm=settings.jwt_algorithm)
        with pytest.raises(JWTError):
            decode_access_token(token)


class TestGetCurrentPrincipal:
    def test_valid_token(self):
        principal = get_current_principal(_credentials(create_access_token("bob", "tenant-b")))
        assert principal.subject == "bob"
        assert principal.tenant_id == "tenant-b"

    def test_invalid_token_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            get_current_principal(_credentials("garbage"))
        assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED


class TestGetProtectionService:
    def test_uninitialized_service_is_unavailable(self, session_factory, clock):
        set_protection_service(ProtectionService(session_factory, clock=clock))
        try:
            with pytest.raises(HTTPException) as exc_info:
                get_protection_service_dep()
        finally:
            set_protection_service(None)
        assert exc_info.value.status_code == status.HTTP_503_SERVICE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_initialized_service_is_returned(self, protection_service):
        set_protection_service(protection_service)
        try:
            assert get_protection_service_dep() is protection_service
        finally:
            set_protection_service(None)
