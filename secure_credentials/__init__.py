"""Secure Credentials.

Domain credentials kept in a master-password protected vault.
"""
from .version import __version__
from .data import CredentialRecord, CredentialSet
from .exceptions import (
    VaultError,
    AlreadyInitializedError,
    NotInitializedError,
    InvalidPasswordError,
    VaultLockedError,
    SessionExpiredError,
    NotFoundError,
    CorruptVaultError,
    InvalidImportFormatError,
    AuthenticationError,
    StoreError,
    CapacityError,
)
from .vault import CredentialVault, VaultConfig, Settings, MemoryStore, FileStore

__all__ = (
    "__version__",
    "CredentialRecord",
    "CredentialSet",
    "CredentialVault",
    "VaultConfig",
    "Settings",
    "MemoryStore",
    "FileStore",
    "VaultError",
    "AlreadyInitializedError",
    "NotInitializedError",
    "InvalidPasswordError",
    "VaultLockedError",
    "SessionExpiredError",
    "NotFoundError",
    "CorruptVaultError",
    "InvalidImportFormatError",
    "AuthenticationError",
    "StoreError",
    "CapacityError",
)
