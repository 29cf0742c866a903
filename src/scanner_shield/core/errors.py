"""Exception types raised by the protection core."""

from __future__ import annotations


class ProtectionError(Exception):
    """Base class for abuse-protection errors."""


class InvalidIdentifierTypeError(ProtectionError, ValueError):
    """Raised when a rate limit identity uses an unknown identifier type."""

    def __init__(self, identifier_type: str) -> None:
        super().__init__(f"Unknown identifier type: {identifier_type!r}")
        self.identifier_type = identifier_type


class ServiceNotInitializedError(ProtectionError, RuntimeError):
    """Raised when the protection service is used before ``init()``."""
