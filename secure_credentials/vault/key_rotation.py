"""
Vault Key Rotation — master password change with full DEK rotation.

The credential set is decrypted under the old DEK and re-sealed under a
brand-new salt, master key and DEK. Nothing is written until every step has
succeeded, and then the whole triple (master key material, wrapped DEK,
credential blob) is replaced in a single store write. A failure anywhere
before that leaves the old triple intact and valid.

Security Note:
    Plaintext credentials exist in memory only during re-encryption.
    Never log passwords, keys, plaintext or ciphertext values.
"""
import asyncio
import logging
from typing import Any, NamedTuple, Optional

from ..exceptions import NotInitializedError
from .backends import BlobStore
from .codec import ENCRYPTED_CREDENTIALS, open_stored, seal
from .keys import (
    HASHED_MASTER_KEY,
    MASTER_KEY_SALT,
    WRAPPED_DATA_KEY,
    KeyBundle,
    KeyHierarchy,
    MasterKeyMaterial,
)

logger = logging.getLogger("secure_credentials.vault")

_KEY_FIELDS = (HASHED_MASTER_KEY, MASTER_KEY_SALT, WRAPPED_DATA_KEY)


class RotationResult(NamedTuple):
    bundle: KeyBundle
    stats: dict[str, Any]


async def _load_key_state(
    store: BlobStore
) -> tuple[MasterKeyMaterial, dict[str, Any]]:
    values = await store.get(_KEY_FIELDS + (ENCRYPTED_CREDENTIALS,))
    material = MasterKeyMaterial.from_document(values)
    if material is None:
        raise NotInitializedError("Vault has not been initialized")
    return material, values


async def rotate_master_key(
    store: BlobStore,
    keys: KeyHierarchy,
    old_password: str,
    new_password: str,
    cipher_backend: Optional[str] = None,
) -> RotationResult:
    """Change the master password, rotating the DEK and re-sealing all data.

    Args:
        store: Key-value store holding the vault.
        keys: Key hierarchy used for derivation and wrapping.
        old_password: Current master password.
        new_password: Replacement master password.
        cipher_backend: AEAD cipher name.

    Returns:
        RotationResult with the new key bundle (including the new DEK) and
        a stats dict with keys: credentials, rotated.

    Raises:
        NotInitializedError: If the vault has no master key yet.
        InvalidPasswordError: If ``old_password`` does not verify.
        CorruptVaultError: If the stored material cannot be read.
    """
    material, values = await _load_key_state(store)
    old_key = await asyncio.to_thread(
        keys.unwrap_data_key, old_password, material, values.get(WRAPPED_DATA_KEY),
    )
    credentials = open_stored(
        values.get(ENCRYPTED_CREDENTIALS), old_key, cipher_backend,
    )
    stats = {"credentials": len(credentials), "rotated": False}

    logger.info(
        "Starting master key rotation (%d credential(s))", len(credentials),
    )

    bundle = await asyncio.to_thread(keys.generate, new_password)
    blob = seal(credentials, bundle.data_key, cipher_backend)

    update = bundle.material.to_document()
    update[WRAPPED_DATA_KEY] = bundle.wrapped_key.to_document()
    update[ENCRYPTED_CREDENTIALS] = blob.to_document()
    try:
        await store.set(update)
    except Exception as err:
        logger.error("Master key rotation not committed: %s", type(err).__name__)
        raise

    stats["rotated"] = True
    logger.info("Master key rotation complete: %s", stats)
    return RotationResult(bundle=bundle, stats=stats)


async def rewrap_master_key(
    store: BlobStore,
    keys: KeyHierarchy,
    old_password: str,
    new_password: str,
) -> KeyBundle:
    """Change the master password but keep the DEK.

    Only the master key material and the wrapped DEK are rewritten; the
    credential blob stays as it is.
    """
    material, values = await _load_key_state(store)
    data_key = await asyncio.to_thread(
        keys.unwrap_data_key, old_password, material, values.get(WRAPPED_DATA_KEY),
    )
    bundle = await asyncio.to_thread(keys.rewrap, new_password, data_key)
    update = bundle.material.to_document()
    update[WRAPPED_DATA_KEY] = bundle.wrapped_key.to_document()
    await store.set(update)
    logger.info("Master password changed without DEK rotation")
    return bundle
