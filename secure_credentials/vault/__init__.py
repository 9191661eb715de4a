"""Credential Vault — password-protected, encrypted credential storage.

Security Note (Threat Model):
    The unlocked data-encryption key lives in process memory for the
    session lifetime, and plaintext credentials exist there while a call
    runs. A memory dump of the process could expose both. The host process
    is trusted; only storage-level secrecy is in scope.
"""

from .credential_vault import CredentialVault, VaultState, is_url_allowed
from .key_rotation import rotate_master_key, rewrap_master_key
from .config import VaultConfig, Settings
from .backends import BlobStore, MemoryStore, FileStore
from .crypto import generate_password
from .session import SessionController
from .messages import Response, dispatch, parse_request

__all__ = [
    "CredentialVault",
    "VaultState",
    "is_url_allowed",
    "rotate_master_key",
    "rewrap_master_key",
    "VaultConfig",
    "Settings",
    "BlobStore",
    "MemoryStore",
    "FileStore",
    "generate_password",
    "SessionController",
    "Response",
    "dispatch",
    "parse_request",
]
