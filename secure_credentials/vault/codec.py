"""
Encrypted Blob Codec — the whole credential set as one ciphertext.

The set is serialized to a canonical orjson array and sealed under the DEK.
There is no per-record ciphertext: every write replaces the blob whole.
"""
from typing import Any, Optional
from collections.abc import Mapping

import orjson
from pydantic import ValidationError

from ..data import CredentialSet
from ..exceptions import AuthenticationError, CorruptVaultError
from .crypto import EncryptedPayload, decrypt, encrypt

ENCRYPTED_CREDENTIALS = "encryptedCredentials"

EncryptedCredentialBlob = EncryptedPayload


def serialize_credentials(credentials: CredentialSet) -> bytes:
    return orjson.dumps(credentials.to_documents())


def deserialize_credentials(data: bytes) -> CredentialSet:
    """Parse decrypted bytes back into a CredentialSet.

    Raises:
        CorruptVaultError: If the bytes are not a valid credential array.
    """
    try:
        documents = orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise CorruptVaultError("Credential payload is not valid JSON") from err
    if not isinstance(documents, list):
        raise CorruptVaultError("Credential payload must be an array")
    try:
        credentials = CredentialSet.from_documents(documents)
    except (ValidationError, TypeError) as err:
        raise CorruptVaultError(
            f"Credential payload has invalid records ({len(documents)} total)"
        ) from err
    if len(credentials) != len(documents):
        raise CorruptVaultError("Credential payload has duplicate identities")
    return credentials


def seal(
    credentials: CredentialSet,
    data_key: bytes,
    backend: Optional[str] = None
) -> EncryptedCredentialBlob:
    """Serialize and encrypt a complete credential set."""
    return encrypt(serialize_credentials(credentials), data_key, backend)


def open_blob(
    blob: Optional[EncryptedCredentialBlob],
    data_key: bytes,
    backend: Optional[str] = None
) -> CredentialSet:
    """Decrypt and parse a blob; an absent blob is an empty set.

    Raises:
        AuthenticationError: If ``data_key`` is not the key it was sealed with.
        CorruptVaultError: If decryption succeeds but parsing fails.
    """
    if blob is None:
        return CredentialSet()
    return deserialize_credentials(decrypt(blob, data_key, backend))


def load_blob(value: Any) -> Optional[EncryptedCredentialBlob]:
    """Read the stored blob value; None and empty payloads mean no writes yet."""
    if value is None:
        return None
    if isinstance(value, Mapping) and not value.get("ciphertext"):
        return None
    return EncryptedPayload.from_document(value)


def open_stored(
    value: Any,
    data_key: bytes,
    backend: Optional[str] = None
) -> CredentialSet:
    """Open the blob as read from the store.

    The DEK was already verified at unlock, so an authentication failure
    here means the stored blob was damaged or replaced.

    Raises:
        CorruptVaultError: If the blob is malformed, fails authentication,
            or does not parse.
    """
    try:
        return open_blob(load_blob(value), data_key, backend)
    except AuthenticationError as err:
        raise CorruptVaultError(
            "Stored credentials failed authentication"
        ) from err
