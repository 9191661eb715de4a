"""
CredentialVault — password-protected, encrypted credential storage.

Provides the public API for the vault:
- ``initialize(password)`` / ``unlock(password)`` / ``lock()`` — lifecycle
- ``list()`` / ``upsert(record)`` / ``delete(domain, username)`` — CRUD
- ``change_master_password(old, new)`` — full re-key with DEK rotation
- ``export(password)`` / ``import_credentials(document, password)``
- ``get_settings()`` / ``save_settings(changes)`` — readable while locked
- ``open(store)`` — factory that loads settings and reports the vault state

State machine: Uninitialized → (initialize) → Unlocked ⇄ (lock/unlock) Locked.
Idle sessions are locked lazily on the next call.

Security Note:
    Never log passwords, keys, plaintext or ciphertext values. Only log
    domains, counts and operations. The unlocked DEK lives in process memory
    for the session lifetime (see threat model in ``__init__.py``).
"""
import enum
import asyncio
import logging
from typing import Any, Optional, Union
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager

from ..data import CredentialRecord, CredentialSet
from ..exceptions import (
    CapacityError,
    InvalidPasswordError,
    NotFoundError,
    NotInitializedError,
    VaultLockedError,
)
from .backends import BlobStore
from .codec import ENCRYPTED_CREDENTIALS, open_stored, seal
from .config import SETTINGS, Settings, VaultConfig
from .key_rotation import rewrap_master_key, rotate_master_key
from .keys import (
    HASHED_MASTER_KEY,
    MASTER_KEY_SALT,
    WRAPPED_DATA_KEY,
    KeyHierarchy,
    MasterKeyMaterial,
)
from .session import Clock, SessionController
from .transfer import ImportDocument, build_export, parse_import

logger = logging.getLogger("secure_credentials.vault")

RecordLike = Union[CredentialRecord, Mapping[str, Any]]


class VaultState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class ReadWriteLock:
    """asyncio readers-writer lock.

    Any number of readers may hold it together; a writer holds it alone.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writing = False

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writing)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writing and self._readers == 0
            )
            self._writing = True
        try:
            yield
        finally:
            async with self._cond:
                self._writing = False
                self._cond.notify_all()


def is_url_allowed(url: str, settings: Settings) -> bool:
    """HTTPS is always allowed; anything else only with ``allowHttp``."""
    return url.startswith("https://") or settings.allow_http


class CredentialVault:
    """Encrypted credential vault over an external key-value store.

    Credentials are protected by a two-tier key scheme:
    - **Master key**: PBKDF2 from the master password; wraps the DEK.
    - **DEK**: random 32-byte key; seals the whole credential set as one blob.

    Every mutation is a read-modify-write of the whole blob and holds the
    write side of a readers-writer lock, so concurrent writers cannot lose
    each other's updates.
    """

    def __init__(
        self,
        store: BlobStore,
        config: Optional[VaultConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._config = config or VaultConfig()
        self._backend = self._config.cipher_backend
        self._keys = KeyHierarchy(cipher_backend=self._backend)
        self._session = SessionController(
            timeout_minutes=self._config.session_timeout_minutes,
            clock=clock,
        )
        self._lock = ReadWriteLock()

    def __repr__(self) -> str:
        return (
            f'<CredentialVault [unlocked:{self._session.unlocked}] '
            f'cipher={self._backend} store={self._store!r}>'
        )

    @property
    def session(self) -> SessionController:
        return self._session

    @property
    def config(self) -> VaultConfig:
        return self._config

    # ------------------------------------------------------------------
    # Store helpers
    # ------------------------------------------------------------------

    async def _load_material(self) -> Optional[MasterKeyMaterial]:
        values = await self._store.get((HASHED_MASTER_KEY, MASTER_KEY_SALT))
        return MasterKeyMaterial.from_document(values)

    async def _require_material(self) -> MasterKeyMaterial:
        material = await self._load_material()
        if material is None:
            raise NotInitializedError("Vault has not been initialized")
        return material

    async def _require_key(self) -> bytes:
        """Return the session DEK, touching the session.

        Raises:
            NotInitializedError: If the vault was never set up.
            VaultLockedError: If no session is open.
            SessionExpiredError: If the session just timed out.
        """
        if not self._session.unlocked:
            await self._require_material()
            raise VaultLockedError("Vault is locked")
        return self._session.data_key()

    async def _load_credentials(self, data_key: bytes) -> CredentialSet:
        values = await self._store.get((ENCRYPTED_CREDENTIALS,))
        return open_stored(values.get(ENCRYPTED_CREDENTIALS), data_key, self._backend)

    async def _persist(self, credentials: CredentialSet, data_key: bytes) -> None:
        if len(credentials) > self._config.max_credentials:
            raise CapacityError(
                f"Max credentials per vault ({self._config.max_credentials}) exceeded"
            )
        blob = seal(credentials, data_key, self._backend)
        await self._store.set({ENCRYPTED_CREDENTIALS: blob.to_document()})

    def _settings_from(self, value: Any) -> Settings:
        if value is None:
            return Settings(
                session_timeout_minutes=self._config.session_timeout_minutes
            )
        return Settings.from_document(value)

    async def _check_password(self, password: str) -> None:
        material = await self._require_material()
        valid = await asyncio.to_thread(self._keys.verify, password, material)
        if not valid:
            raise InvalidPasswordError("Invalid master password")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def has_master_password(self) -> bool:
        return await self._load_material() is not None

    async def state(self) -> VaultState:
        if self._session.unlocked and not self._session.is_expired():
            return VaultState.UNLOCKED
        if await self.has_master_password():
            return VaultState.LOCKED
        return VaultState.UNINITIALIZED

    def check_session(self) -> bool:
        """Report whether the vault is unlocked, renewing a live session.

        An expired session is locked here instead of raising.
        """
        if not self._session.unlocked:
            return False
        if self._session.is_expired():
            self._session.lock()
            logger.info("Vault locked after session expiry")
            return False
        self._session.touch()
        return True

    async def initialize(self, password: str) -> None:
        """Set up the master password and open a session.

        Raises:
            AlreadyInitializedError: If a master password already exists.
            ValueError: If the password is empty.
        """
        if not password:
            raise ValueError("Master password cannot be empty")
        async with self._lock.write():
            existing = await self._load_material()
            bundle = await asyncio.to_thread(self._keys.initialize, password, existing)
            values = await self._store.get((SETTINGS,))
            settings = self._settings_from(values.get(SETTINGS))
            update = bundle.material.to_document()
            update[WRAPPED_DATA_KEY] = bundle.wrapped_key.to_document()
            update[ENCRYPTED_CREDENTIALS] = None
            update[SETTINGS] = settings.to_document()
            await self._store.set(update)
            self._session.timeout_minutes = settings.session_timeout_minutes
            self._session.unlock(bundle.data_key)
        logger.info("Vault initialized")

    async def unlock(self, password: str) -> None:
        """Verify the master password and open a session.

        Raises:
            NotInitializedError: If the vault was never set up.
            InvalidPasswordError: If the password is wrong.
            CorruptVaultError: If the stored key material is damaged.
        """
        async with self._lock.write():
            values = await self._store.get(
                (HASHED_MASTER_KEY, MASTER_KEY_SALT, WRAPPED_DATA_KEY, SETTINGS)
            )
            material = MasterKeyMaterial.from_document(values)
            if material is None:
                raise NotInitializedError("Vault has not been initialized")
            settings = self._settings_from(values.get(SETTINGS))
            try:
                data_key = await asyncio.to_thread(
                    self._keys.unwrap_data_key,
                    password, material, values.get(WRAPPED_DATA_KEY),
                )
            except InvalidPasswordError:
                logger.info("Vault unlock rejected: invalid master password")
                raise
            self._session.timeout_minutes = settings.session_timeout_minutes
            self._session.unlock(data_key)
        logger.info("Vault unlocked")

    def lock(self) -> None:
        """Discard the DEK. The stored blob is left untouched."""
        self._session.lock()
        logger.info("Vault locked")

    async def verify_password(self, password: str) -> bool:
        material = await self._require_material()
        return await asyncio.to_thread(self._keys.verify, password, material)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def list_credentials(self) -> CredentialSet:
        """Decrypt and return the whole credential set."""
        async with self._lock.read():
            data_key = await self._require_key()
            return await self._load_credentials(data_key)

    async def credentials_for_domain(self, domain: str) -> list[CredentialRecord]:
        """Records for ``domain``, its parent domains, or its subdomains."""
        return (await self.list_credentials()).for_domain(domain)

    async def upsert(self, record: RecordLike) -> bool:
        """Insert a credential or replace the one with the same identity.

        Returns:
            True if an existing record was replaced.
        """
        if not isinstance(record, CredentialRecord):
            record = CredentialRecord.from_document(record)
        async with self._lock.write():
            data_key = await self._require_key()
            credentials = await self._load_credentials(data_key)
            replaced = credentials.upsert(record)
            await self._persist(credentials, data_key)
        logger.debug(
            "Vault upsert: domain=%s (%s)",
            record.domain, "replaced" if replaced else "added",
        )
        return replaced

    async def delete(self, domain: str, username: str) -> CredentialRecord:
        """Remove a credential by identity key.

        Raises:
            NotFoundError: If no record has this ``(domain, username)``.
        """
        async with self._lock.write():
            data_key = await self._require_key()
            credentials = await self._load_credentials(data_key)
            try:
                removed = credentials.remove(domain, username)
            except KeyError:
                raise NotFoundError(
                    f"No credential stored for domain {domain!r}"
                ) from None
            await self._persist(credentials, data_key)
        logger.debug("Vault delete: domain=%s", domain)
        return removed

    # ------------------------------------------------------------------
    # Re-keying
    # ------------------------------------------------------------------

    async def change_master_password(
        self,
        old_password: str,
        new_password: str
    ) -> dict[str, Any]:
        """Change the master password, rotating the DEK.

        All-or-nothing: until the final store write succeeds, the old
        password, DEK and blob stay valid and the session is unchanged.

        Returns:
            Rotation stats (credentials, rotated).
        """
        if not new_password:
            raise ValueError("Master password cannot be empty")
        async with self._lock.write():
            await self._require_key()
            result = await rotate_master_key(
                self._store, self._keys, old_password, new_password, self._backend,
            )
            self._session.unlock(result.bundle.data_key)
        return result.stats

    async def rewrap_master_password(self, old_password: str, new_password: str) -> None:
        """Change the master password but keep the current DEK."""
        if not new_password:
            raise ValueError("Master password cannot be empty")
        async with self._lock.write():
            await self._require_key()
            await rewrap_master_key(self._store, self._keys, old_password, new_password)

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    async def export(
        self,
        password: str,
        passphrase: Optional[str] = None
    ) -> dict[str, Any]:
        """Export all credentials as a versioned document.

        Without ``passphrase`` the document holds plaintext records.
        """
        async with self._lock.read():
            data_key = await self._require_key()
            await self._check_password(password)
            credentials = await self._load_credentials(data_key)
        document = await asyncio.to_thread(
            build_export, credentials, self._session.now(), passphrase, self._backend,
        )
        logger.info(
            "Exported %d credential(s) (%s)",
            len(credentials), "encrypted" if passphrase else "plaintext",
        )
        return document

    async def import_credentials(
        self,
        document: ImportDocument,
        password: str,
        passphrase: Optional[str] = None
    ) -> int:
        """Import records whose identity key is not already present.

        Existing local records always win; nothing is overwritten.

        Returns:
            Number of newly added records.
        """
        await self._require_key()
        await self._check_password(password)
        records = await asyncio.to_thread(
            parse_import, document, self._session.now(), passphrase, self._backend,
        )
        async with self._lock.write():
            data_key = await self._require_key()
            credentials = await self._load_credentials(data_key)
            added = 0
            for record in records:
                if not credentials.has(record.domain, record.username):
                    credentials.upsert(record)
                    added += 1
            if added:
                await self._persist(credentials, data_key)
        logger.info("Imported %d of %d credential(s)", added, len(records))
        return added

    # ------------------------------------------------------------------
    # Settings and form helpers
    # ------------------------------------------------------------------

    async def get_settings(self) -> Settings:
        values = await self._store.get((SETTINGS,))
        return self._settings_from(values.get(SETTINGS))

    async def save_settings(self, changes: Union[Settings, Mapping[str, Any]]) -> Settings:
        """Merge ``changes`` over the stored settings and persist them."""
        if isinstance(changes, Settings):
            changes = changes.to_document()
        settings = (await self.get_settings()).merge(changes)
        await self._store.set({SETTINGS: settings.to_document()})
        self._session.timeout_minutes = settings.session_timeout_minutes
        return settings

    async def autofill_candidates(self, domain: str, url: str) -> list[CredentialRecord]:
        """Credentials to offer for a login form, honoring the settings."""
        settings = await self.get_settings()
        if not settings.auto_fill or not is_url_allowed(url, settings):
            return []
        return await self.credentials_for_domain(domain)

    async def capture(
        self,
        domain: str,
        url: str,
        username: str,
        password: str
    ) -> bool:
        """Save a submitted login unless an identical one is stored.

        Returns:
            True if a record was written.
        """
        settings = await self.get_settings()
        if not settings.auto_save or not is_url_allowed(url, settings):
            return False
        existing = await self.credentials_for_domain(domain)
        if any(c.username == username and c.password == password for c in existing):
            return False
        await self.upsert(CredentialRecord(
            domain=domain,
            url=url,
            username=username,
            password=password,
            date_added=self._session.now(),
        ))
        return True

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    async def open(
        cls,
        store: BlobStore,
        config: Optional[VaultConfig] = None,
        clock: Optional[Clock] = None,
    ) -> "CredentialVault":
        """Build a vault over ``store`` and apply its stored settings.

        The returned vault is always locked (or uninitialized): sessions
        never survive a restart.

        Args:
            store: Key-value store holding the vault.
            config: Runtime configuration; defaults when None.
            clock: Time source for session expiry.

        Returns:
            CredentialVault instance.
        """
        vault = cls(store=store, config=config, clock=clock)
        settings = await vault.get_settings()
        vault._session.timeout_minutes = settings.session_timeout_minutes
        logger.info("Vault opened: state=%s", (await vault.state()).value)
        return vault

    list = list_credentials
    is_initialized = has_master_password
