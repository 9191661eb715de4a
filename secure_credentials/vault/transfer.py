"""
Export and import documents.

Two document versions share the ``secure-credentials-export`` type tag:

- version 1: ``{type, version, date, data}`` with the plaintext records.
- version 2: ``{type, version, date, encrypted, kdf, ciphertext, nonce}``,
  the records sealed under a key derived from an export passphrase.

Security Note:
    A version 1 document is plaintext once written to disk. Pass an export
    passphrase to get a version 2 document instead.
"""
import logging
from typing import Any, Optional, Union
from datetime import datetime
from collections.abc import Mapping

import orjson
from pydantic import ValidationError

from ..data import CredentialRecord, CredentialSet
from ..exceptions import (
    AuthenticationError,
    CorruptVaultError,
    InvalidImportFormatError,
    InvalidPasswordError,
)
from .codec import open_blob, seal
from .crypto import (
    PBKDF2_ITERATIONS,
    SALT_SIZE,
    EncryptedPayload,
    b64decode,
    b64encode,
    derive_key,
    random_bytes,
)

logger = logging.getLogger("secure_credentials.vault")

EXPORT_TYPE = "secure-credentials-export"
PLAIN_VERSION = 1
ENCRYPTED_VERSION = 2
KDF_NAME = "pbkdf2-sha256"

ImportDocument = Union[str, bytes, Mapping[str, Any]]


def build_export(
    credentials: CredentialSet,
    date: datetime,
    passphrase: Optional[str] = None,
    cipher_backend: Optional[str] = None,
) -> dict[str, Any]:
    """Build an export document, encrypted when a passphrase is given."""
    if passphrase is None:
        return {
            "type": EXPORT_TYPE,
            "version": PLAIN_VERSION,
            "date": date.isoformat(),
            "data": credentials.to_documents(),
        }
    if not passphrase:
        raise ValueError("Export passphrase cannot be empty")
    salt = random_bytes(SALT_SIZE)
    key = derive_key(passphrase, salt, PBKDF2_ITERATIONS)
    sealed = seal(credentials, key, cipher_backend)
    return {
        "type": EXPORT_TYPE,
        "version": ENCRYPTED_VERSION,
        "date": date.isoformat(),
        "encrypted": True,
        "kdf": {
            "name": KDF_NAME,
            "iterations": PBKDF2_ITERATIONS,
            "salt": b64encode(salt),
        },
        **sealed.to_document(),
    }


def dumps_export(document: Mapping[str, Any]) -> str:
    return orjson.dumps(dict(document), option=orjson.OPT_INDENT_2).decode("utf-8")


def _load_document(document: ImportDocument) -> Mapping[str, Any]:
    if isinstance(document, (str, bytes)):
        try:
            document = orjson.loads(document)
        except orjson.JSONDecodeError as err:
            raise InvalidImportFormatError("Import data is not valid JSON") from err
    if not isinstance(document, Mapping):
        raise InvalidImportFormatError("Import data must be a JSON object")
    if document.get("type") != EXPORT_TYPE:
        raise InvalidImportFormatError("Invalid import format")
    return document


def _decrypt_records(
    document: Mapping[str, Any],
    passphrase: Optional[str],
    cipher_backend: Optional[str],
) -> CredentialSet:
    if passphrase is None:
        raise InvalidImportFormatError(
            "Export is encrypted; a passphrase is required to import it"
        )
    kdf = document.get("kdf")
    if not isinstance(kdf, Mapping) or kdf.get("name") != KDF_NAME:
        raise InvalidImportFormatError("Unsupported export key derivation")
    try:
        salt = b64decode(kdf.get("salt"))
        iterations = int(kdf.get("iterations", PBKDF2_ITERATIONS))
        payload = EncryptedPayload.from_document(document)
    except (CorruptVaultError, TypeError, ValueError) as err:
        raise InvalidImportFormatError("Encrypted export is malformed") from err
    key = derive_key(passphrase, salt, iterations)
    try:
        return open_blob(payload, key, cipher_backend)
    except AuthenticationError as err:
        raise InvalidPasswordError("Invalid export passphrase") from err
    except CorruptVaultError as err:
        raise InvalidImportFormatError("Encrypted export has invalid records") from err


def _plain_records(
    document: Mapping[str, Any],
    date: datetime,
) -> list[CredentialRecord]:
    data = document.get("data")
    if not isinstance(data, list):
        raise InvalidImportFormatError("Import data must contain a 'data' array")
    records = []
    for item in data:
        if not isinstance(item, Mapping):
            raise InvalidImportFormatError("Each imported credential must be an object")
        item = dict(item)
        if not item.get("dateAdded") and not item.get("date_added"):
            item["dateAdded"] = date
        try:
            records.append(CredentialRecord.from_document(item))
        except ValidationError as err:
            raise InvalidImportFormatError(
                f"Invalid credential in import: {err.error_count()} error(s)"
            ) from err
    return records


def parse_import(
    document: ImportDocument,
    date: datetime,
    passphrase: Optional[str] = None,
    cipher_backend: Optional[str] = None,
) -> list[CredentialRecord]:
    """Validate an export document and return its records in order.

    Args:
        document: JSON text, bytes, or an already parsed mapping.
        date: Timestamp for records that carry no ``dateAdded``.
        passphrase: Export passphrase, needed for version 2 documents.
        cipher_backend: AEAD cipher name.

    Raises:
        InvalidImportFormatError: Wrong type tag, unknown version, or
            malformed contents.
        InvalidPasswordError: Wrong passphrase for an encrypted export.
    """
    document = _load_document(document)
    version = document.get("version", PLAIN_VERSION)
    if version == PLAIN_VERSION and not document.get("encrypted"):
        records = _plain_records(document, date)
    elif version == ENCRYPTED_VERSION:
        records = _decrypt_records(document, passphrase, cipher_backend).records()
    else:
        raise InvalidImportFormatError(f"Unsupported export version: {version!r}")
    logger.debug("Parsed import document v%s with %d record(s)", version, len(records))
    return records
