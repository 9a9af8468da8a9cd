"""
Storage contract for the identity provider's runtime state.

This package defines the entity models, the error vocabulary, and the
abstract `Storage` interface that backends (see `dynamo`) implement.
"""

from .errors import AlreadyExistsError, NotFoundError, StorageError
from .interface import Storage
from .models import (
    PKCE,
    AuthCode,
    AuthRequest,
    Claims,
    Client,
    Connector,
    GCResult,
    Keys,
    OfflineSessions,
    Password,
    RefreshToken,
    RefreshTokenRef,
    VerificationKey,
)

__all__ = [
    "Storage",
    "StorageError",
    "NotFoundError",
    "AlreadyExistsError",
    "Claims",
    "PKCE",
    "Client",
    "AuthRequest",
    "AuthCode",
    "RefreshToken",
    "RefreshTokenRef",
    "Password",
    "Connector",
    "OfflineSessions",
    "VerificationKey",
    "Keys",
    "GCResult",
]
