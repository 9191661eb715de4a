"""
Vault error taxonomy.

Every error is terminal to the call that raised it: nothing is retried
automatically. Messages never carry passwords, keys or credential fields.
"""


class VaultError(Exception):
    """Base class for all vault errors."""


class AlreadyInitializedError(VaultError):
    """The vault already holds a master key; initialize() was refused."""


class NotInitializedError(VaultError):
    """No master key has been set up yet."""


class InvalidPasswordError(VaultError):
    """Wrong master password (or wrong export passphrase)."""


class VaultLockedError(VaultError):
    """The operation needs an unlocked vault."""


class SessionExpiredError(VaultLockedError):
    """The session idled past its timeout and has been locked."""


class NotFoundError(VaultError):
    """No credential matched the requested identity key."""


class CorruptVaultError(VaultError):
    """Stored material decrypted but could not be parsed, or had a bad shape."""


class InvalidImportFormatError(VaultError):
    """The import document is not a credentials export."""


class StoreError(VaultError):
    """The external key-value store failed to read or write."""


class AuthenticationError(VaultError):
    """AEAD authentication failed: wrong key or tampered ciphertext."""


class CapacityError(VaultError, ValueError):
    """Writing would exceed the configured ``max_credentials`` limit."""
