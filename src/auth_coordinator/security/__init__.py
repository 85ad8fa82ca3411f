"""Error classification, collaborator protocols and credential storage.

This module provides:
- Error classification into kinds and recovery strategies (classifier.py)
- Collaborator protocols: IdentityProvider, CredentialStore, AuthStateCache
- Credential stores: in-memory and JSON file
- AuthErrorHandler: error journal and recovery planning

Note: Base exceptions are defined in auth_coordinator.exceptions
"""

from auth_coordinator.security.classifier import (
    ClassifiedAuthError,
    ErrorKind,
    RecoveryStrategy,
    classify,
    is_authentication_error,
)
from auth_coordinator.security.credential_store import (
    FileCredentialStore,
    MemoryCredentialStore,
    create_credential_store,
)
from auth_coordinator.security.error_handler import (
    AuthErrorHandler,
    ErrorHandlingResult,
    RecoveryAction,
    RecoveryActionType,
)
from auth_coordinator.security.identity import (
    AuthStateCache,
    CredentialStore,
    IdentityProvider,
    WritableCredentialStore,
)

__all__ = [
    # Classification
    "ClassifiedAuthError",
    "ErrorKind",
    "RecoveryStrategy",
    "classify",
    "is_authentication_error",
    # Protocols
    "AuthStateCache",
    "CredentialStore",
    "IdentityProvider",
    "WritableCredentialStore",
    # Credential storage
    "FileCredentialStore",
    "MemoryCredentialStore",
    "create_credential_store",
    # Error handling
    "AuthErrorHandler",
    "ErrorHandlingResult",
    "RecoveryAction",
    "RecoveryActionType",
]
