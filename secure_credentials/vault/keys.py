"""
Key Hierarchy — master key derivation and data-key wrapping.

Two tiers:
- Master key: derived from the master password and a random salt; only its
  SHA-256 digest is stored, for verification.
- Data Encryption Key (DEK): 32 random bytes that encrypt the credential
  blob; stored only wrapped (AEAD-encrypted) under the master key.

Neither the master password nor the master key is ever persisted.
"""
import logging
from typing import Any, NamedTuple, Optional, Union
from collections.abc import Mapping

from ..exceptions import (
    AlreadyInitializedError,
    AuthenticationError,
    CorruptVaultError,
    InvalidPasswordError,
)
from .crypto import (
    KEY_LENGTH,
    PBKDF2_ITERATIONS,
    SALT_SIZE,
    EncryptedPayload,
    b64decode,
    b64encode,
    decrypt,
    derive_key,
    digests_match,
    encrypt,
    hash_key,
    random_bytes,
)

logger = logging.getLogger("secure_credentials.vault")

HASHED_MASTER_KEY = "hashedMasterKey"
MASTER_KEY_SALT = "masterKeySalt"
WRAPPED_DATA_KEY = "encryptedEncryptionKey"

WrappedDataKey = EncryptedPayload


class MasterKeyMaterial(NamedTuple):
    """Salt plus verification digest of the derived master key."""

    salt: bytes
    hashed_master_key: str

    def to_document(self) -> dict[str, str]:
        return {
            HASHED_MASTER_KEY: self.hashed_master_key,
            MASTER_KEY_SALT: b64encode(self.salt),
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> Optional["MasterKeyMaterial"]:
        """Load material from stored values; None when not initialized.

        Raises:
            CorruptVaultError: If the digest exists but the salt is unusable.
        """
        hashed = data.get(HASHED_MASTER_KEY)
        if not hashed:
            return None
        if not isinstance(hashed, str):
            raise CorruptVaultError("hashedMasterKey must be a hex string")
        salt = data.get(MASTER_KEY_SALT)
        if salt is None:
            raise CorruptVaultError("masterKeySalt is missing")
        salt_bytes = b64decode(salt)
        if len(salt_bytes) != SALT_SIZE:
            raise CorruptVaultError(
                f"masterKeySalt must be {SALT_SIZE} bytes, got {len(salt_bytes)}"
            )
        return cls(salt=salt_bytes, hashed_master_key=hashed)


class KeyBundle(NamedTuple):
    """Output of key generation: what to persist, plus the live DEK."""

    material: MasterKeyMaterial
    wrapped_key: WrappedDataKey
    data_key: bytes


class KeyHierarchy:
    """Produces, verifies and unwraps the two-tier key scheme.

    Stateless apart from its parameters, so one instance can serve any
    number of vaults.
    """

    def __init__(
        self,
        cipher_backend: Optional[str] = None,
        iterations: int = PBKDF2_ITERATIONS
    ):
        self._backend = cipher_backend
        self._iterations = iterations

    def _derive(self, password: str, salt: bytes) -> bytes:
        return derive_key(password, salt, self._iterations)

    def _verified_master_key(
        self,
        password: str,
        material: MasterKeyMaterial
    ) -> Optional[bytes]:
        master_key = self._derive(password, material.salt)
        if digests_match(hash_key(master_key), material.hashed_master_key):
            return master_key
        return None

    def _wrap(self, data_key: bytes, master_key: bytes) -> WrappedDataKey:
        return encrypt(data_key, master_key, self._backend)

    def generate(self, password: str, data_key: Optional[bytes] = None) -> KeyBundle:
        """Create fresh salt, master key, digest and wrapped DEK.

        Args:
            password: Master password to derive from.
            data_key: DEK to wrap; a new random one is generated when None.
        """
        salt = random_bytes(SALT_SIZE)
        master_key = self._derive(password, salt)
        if data_key is None:
            data_key = random_bytes(KEY_LENGTH)
        material = MasterKeyMaterial(salt=salt, hashed_master_key=hash_key(master_key))
        return KeyBundle(
            material=material,
            wrapped_key=self._wrap(data_key, master_key),
            data_key=data_key,
        )

    def initialize(
        self,
        password: str,
        existing: Optional[MasterKeyMaterial] = None
    ) -> KeyBundle:
        """Set up a new key hierarchy.

        Raises:
            AlreadyInitializedError: If ``existing`` material is present.
        """
        if existing is not None:
            raise AlreadyInitializedError("Master password is already set")
        return self.generate(password)

    def verify(self, password: str, material: MasterKeyMaterial) -> bool:
        """Re-derive the master key and compare its digest."""
        return self._verified_master_key(password, material) is not None

    def unwrap_data_key(
        self,
        password: str,
        material: MasterKeyMaterial,
        wrapped_key: Union[WrappedDataKey, Mapping[str, Any], None]
    ) -> bytes:
        """Verify the password, then decrypt the wrapped DEK.

        ``wrapped_key`` may be the stored document; it is parsed only once
        the password has verified.

        Raises:
            InvalidPasswordError: If the password does not verify.
            CorruptVaultError: If the password verifies but the wrapped key
                does not decrypt to a valid DEK.
        """
        master_key = self._verified_master_key(password, material)
        if master_key is None:
            raise InvalidPasswordError("Invalid master password")
        if not isinstance(wrapped_key, EncryptedPayload):
            wrapped_key = WrappedDataKey.from_document(wrapped_key)
        try:
            data_key = decrypt(wrapped_key, master_key, self._backend)
        except AuthenticationError as err:
            raise CorruptVaultError(
                "Wrapped data key failed authentication"
            ) from err
        if len(data_key) != KEY_LENGTH:
            raise CorruptVaultError(
                f"Data key must be {KEY_LENGTH} bytes, got {len(data_key)}"
            )
        return data_key

    def rewrap(self, new_password: str, data_key: bytes) -> KeyBundle:
        """Wrap the SAME DEK under a key derived from a new password.

        Cheaper than a full rotation because the credential blob stays
        valid. The default password change rotates the DEK instead.
        """
        return self.generate(new_password, data_key=data_key)
