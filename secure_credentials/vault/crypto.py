"""
Vault Crypto Core — Key derivation, hashing, AEAD encryption and encoding.

Primitives used by the key hierarchy and the blob codec:
- Master key: PBKDF2-HMAC-SHA256(password, salt, 100000) → 32 bytes
- Verification: SHA-256(master key), hex encoded
- Payloads: AES-256-GCM (or ChaCha20-Poly1305) with a fresh 96-bit nonce

Security Note:
    Never log plaintext, keys or ciphertext values.
    Nonces are random 96-bit and generated on every call, never derived
    from content.
"""
import hmac
import base64
import string
import secrets
import logging
from typing import Any, NamedTuple, Optional
from collections.abc import Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..exceptions import AuthenticationError, CorruptVaultError

logger = logging.getLogger("secure_credentials.vault")

NONCE_SIZE = 12  # 96-bit nonce
KEY_LENGTH = 32  # AES-256
SALT_SIZE = 16
TAG_SIZE = 16
PBKDF2_ITERATIONS = 100_000

_CIPHERS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}
DEFAULT_CIPHER = "aesgcm"


def get_cipher_cls(backend: Optional[str] = None) -> type:
    """Return the AEAD cipher class registered under ``backend``."""
    name = (backend or DEFAULT_CIPHER).lower()
    try:
        return _CIPHERS[name]
    except KeyError:
        raise ValueError(f"Unsupported cipher backend: {backend}") from None


# ---------------------------------------------------------------------------
# Randomness, derivation and hashing
# ---------------------------------------------------------------------------

def random_bytes(n: int) -> bytes:
    """Return ``n`` cryptographically secure random bytes."""
    return secrets.token_bytes(n)


def derive_key(
    password: str,
    salt: bytes,
    iterations: int = PBKDF2_ITERATIONS
) -> bytes:
    """Derive a 32-byte key from a password using PBKDF2-HMAC-SHA256.

    The same password, salt and iteration count always yield the same key,
    which is what lets a later session re-derive and verify it.

    Args:
        password: User-supplied secret.
        salt: Random salt stored next to the vault.
        iterations: PBKDF2 work factor.

    Returns:
        32-byte derived key.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def hash_key(key: bytes) -> str:
    """One-way SHA-256 digest of a derived key, hex encoded."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(key)
    return digest.finalize().hex()


def digests_match(left: str, right: str) -> bool:
    """Compare two digests in constant time."""
    return hmac.compare_digest(left.encode("ascii"), right.encode("ascii"))


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

class EncryptedPayload(NamedTuple):
    """AEAD output: ciphertext (with tag) and the nonce it was sealed with."""

    ciphertext: bytes
    nonce: bytes

    def to_document(self) -> dict[str, str]:
        return {
            "ciphertext": b64encode(self.ciphertext),
            "nonce": b64encode(self.nonce),
        }

    @classmethod
    def from_document(cls, data: Any) -> "EncryptedPayload":
        """Rebuild a payload from its stored form.

        Raises:
            CorruptVaultError: If the value is not a well-formed payload.
        """
        if not isinstance(data, Mapping):
            raise CorruptVaultError("Encrypted payload must be a mapping")
        try:
            ciphertext = b64decode(data["ciphertext"])
            nonce = b64decode(data["nonce"])
        except KeyError as err:
            raise CorruptVaultError(
                f"Encrypted payload is missing {err.args[0]!r}"
            ) from None
        if len(nonce) != NONCE_SIZE:
            raise CorruptVaultError(
                f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}"
            )
        if len(ciphertext) < TAG_SIZE:
            raise CorruptVaultError(
                f"Ciphertext too short: {len(ciphertext)} bytes "
                f"(minimum {TAG_SIZE})"
            )
        return cls(ciphertext=ciphertext, nonce=nonce)


def encrypt(
    plaintext: bytes,
    key: bytes,
    backend: Optional[str] = None
) -> EncryptedPayload:
    """Encrypt plaintext under ``key`` with a fresh random nonce.

    Args:
        plaintext: Data to encrypt.
        key: 32-byte symmetric key.
        backend: Cipher name (``aesgcm`` or ``chacha20``).

    Returns:
        EncryptedPayload with ciphertext and nonce.
    """
    cipher = get_cipher_cls(backend)(key)
    nonce = random_bytes(NONCE_SIZE)
    ct = cipher.encrypt(nonce, plaintext, None)
    return EncryptedPayload(ciphertext=ct, nonce=nonce)


def decrypt(
    payload: EncryptedPayload,
    key: bytes,
    backend: Optional[str] = None
) -> bytes:
    """Decrypt and authenticate a payload.

    Raises:
        AuthenticationError: If the key is wrong or the ciphertext was
            tampered with (including truncation below the tag size).
        ValueError: If the nonce or key has the wrong size.
    """
    if len(payload.ciphertext) < TAG_SIZE:
        raise AuthenticationError(
            f"Decryption failed: ciphertext too short "
            f"({len(payload.ciphertext)} bytes, minimum {TAG_SIZE})"
        )
    cipher = get_cipher_cls(backend)(key)
    try:
        return cipher.decrypt(payload.nonce, payload.ciphertext, None)
    except InvalidTag:
        raise AuthenticationError(
            "Decryption failed: wrong key or tampered ciphertext"
        ) from None


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------

def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(value: Any) -> bytes:
    """Decode stored base64 text, raising CorruptVaultError on bad input."""
    if not isinstance(value, str):
        raise CorruptVaultError(
            f"Expected base64 text, got {type(value).__name__}"
        )
    try:
        return base64.b64decode(value, validate=True)
    except ValueError as err:
        raise CorruptVaultError(f"Invalid base64 value: {err}") from err


# ---------------------------------------------------------------------------
# Password generation
# ---------------------------------------------------------------------------

_SYMBOLS = "!@#$%^&*()_-+={}[]|:;<>,.?/"


def generate_password(
    length: int = 16,
    uppercase: bool = True,
    lowercase: bool = True,
    digits: bool = True,
    symbols: bool = True,
) -> str:
    """Generate a random password from the enabled character classes.

    Every enabled class contributes at least one character when ``length``
    allows it.

    Raises:
        ValueError: If no character class is enabled or length < 1.
    """
    classes = [
        chars for enabled, chars in (
            (uppercase, string.ascii_uppercase),
            (lowercase, string.ascii_lowercase),
            (digits, string.digits),
            (symbols, _SYMBOLS),
        ) if enabled
    ]
    if not classes:
        raise ValueError("At least one character type must be enabled")
    if length < 1:
        raise ValueError("Password length must be at least 1")
    alphabet = "".join(classes)
    chars = [secrets.choice(group) for group in classes][:length]
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)
