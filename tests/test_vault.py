"""
Tests for CredentialVault.

Tests cover:
- Uninitialized / Locked / Unlocked transitions
- CRUD over the encrypted credential set
- Session expiry and restart behavior
- Store layout and failure handling
- Settings, domain lookup and form helpers
- Serialization of concurrent mutations
"""
import asyncio
import random

import orjson
import pytest

from secure_credentials.data import CredentialRecord
from secure_credentials.exceptions import (
    AlreadyInitializedError,
    CapacityError,
    CorruptVaultError,
    InvalidPasswordError,
    NotFoundError,
    NotInitializedError,
    SessionExpiredError,
    StoreError,
    VaultLockedError,
)
from secure_credentials.vault import (
    CredentialVault,
    FileStore,
    MemoryStore,
    VaultConfig,
    VaultState,
)
from secure_credentials.vault.credential_vault import ReadWriteLock
from secure_credentials.vault.crypto import b64encode

from conftest import PASSWORD, T0, SlowStore, make_record


# --- Test Lifecycle ---

class TestUninitialized:
    """Tests for a vault with no master password."""

    async def test_state(self, store):
        """Test a fresh store is uninitialized."""
        vault = CredentialVault(store)
        assert await vault.state() is VaultState.UNINITIALIZED
        assert await vault.has_master_password() is False
        assert await vault.is_initialized() is False

    async def test_credential_operations_fail_distinctly(self, store):
        """Test CRUD reports NotInitializedError, not a password error."""
        vault = CredentialVault(store)
        with pytest.raises(NotInitializedError):
            await vault.list()
        with pytest.raises(NotInitializedError):
            await vault.upsert(make_record())
        with pytest.raises(NotInitializedError):
            await vault.delete("example.com", "a@x.com")

    async def test_unlock_fails_distinctly(self, store):
        """Test unlock on an uninitialized vault is not a password error."""
        vault = CredentialVault(store)
        with pytest.raises(NotInitializedError):
            await vault.unlock(PASSWORD)

    async def test_empty_password_rejected(self, store):
        """Test initialize refuses an empty password."""
        vault = CredentialVault(store)
        with pytest.raises(ValueError):
            await vault.initialize("")


class TestInitialize:
    """Tests for first-time setup."""

    async def test_initialize_unlocks(self, vault):
        """Test initialize leaves the vault unlocked and empty."""
        assert await vault.state() is VaultState.UNLOCKED
        assert len(await vault.list()) == 0

    async def test_initialize_twice(self, vault):
        """Test a second initialize is refused."""
        with pytest.raises(AlreadyInitializedError):
            await vault.initialize("another password")

    async def test_store_layout(self, vault, store):
        """Test the persisted keys match the documented layout."""
        snapshot = store.snapshot()
        assert set(snapshot) == {
            "hashedMasterKey",
            "masterKeySalt",
            "encryptedEncryptionKey",
            "encryptedCredentials",
            "settings",
        }
        assert snapshot["encryptedCredentials"] is None
        assert set(snapshot["encryptedEncryptionKey"]) == {"ciphertext", "nonce"}

    async def test_no_secret_material_at_rest(self, vault, store):
        """Test neither the password nor plaintext credentials are stored."""
        await vault.upsert(make_record(password="super-secret-pw", notes="door code is 9876"))
        raw = orjson.dumps(store.snapshot()).decode()
        assert PASSWORD not in raw
        assert "super-secret-pw" not in raw
        assert "door code" not in raw
        assert "example.com" not in raw


class TestLockUnlock:
    """Tests for lock/unlock transitions."""

    async def test_lock_blocks_crud(self, vault):
        """Test a locked vault raises VaultLockedError."""
        vault.lock()
        assert await vault.state() is VaultState.LOCKED
        with pytest.raises(VaultLockedError):
            await vault.list()
        with pytest.raises(VaultLockedError):
            await vault.upsert(make_record())

    async def test_lock_keeps_blob(self, vault, store):
        """Test locking does not touch the stored blob."""
        await vault.upsert(make_record())
        before = store.snapshot()
        vault.lock()
        assert store.snapshot() == before

    async def test_wrong_password_stays_locked(self, vault):
        """Test a wrong password is InvalidPasswordError and stays locked."""
        vault.lock()
        with pytest.raises(InvalidPasswordError):
            await vault.unlock("wrong horse")
        assert await vault.state() is VaultState.LOCKED

    async def test_unlock_restores_access(self, vault):
        """Test the right password reopens the same data."""
        await vault.upsert(make_record())
        vault.lock()
        await vault.unlock(PASSWORD)
        assert len(await vault.list()) == 1

    async def test_verify_password(self, vault):
        """Test password verification without unlocking."""
        assert await vault.verify_password(PASSWORD) is True
        assert await vault.verify_password("nope") is False

    async def test_restart_requires_unlock(self, vault, store, clock):
        """Test a new vault over the same store starts locked."""
        await vault.upsert(make_record())
        restarted = await CredentialVault.open(store, clock=clock)
        assert await restarted.state() is VaultState.LOCKED
        with pytest.raises(VaultLockedError):
            await restarted.list()
        await restarted.unlock(PASSWORD)
        assert len(await restarted.list()) == 1

    async def test_corrupt_key_material(self, vault, store):
        """Test a damaged wrapped key is not reported as a wrong password."""
        await store.set({"encryptedEncryptionKey": {"ciphertext": "???", "nonce": ""}})
        vault.lock()
        with pytest.raises(CorruptVaultError):
            await vault.unlock(PASSWORD)

    async def test_wrong_password_checked_before_key_material(self, vault, store):
        """Test a wrong password wins over a damaged wrapped key."""
        await store.set({"encryptedEncryptionKey": {"ciphertext": "???", "nonce": ""}})
        vault.lock()
        with pytest.raises(InvalidPasswordError):
            await vault.unlock("wrong horse")


# --- Test CRUD ---

class TestCrud:
    """Tests for list/upsert/delete."""

    async def test_scenario(self, vault):
        """Test the save, overwrite, delete walkthrough."""
        await vault.upsert(CredentialRecord(
            domain="example.com", username="a@x.com",
            password="p1", notes="", date_added=T0,
        ))
        credentials = await vault.list()
        assert len(credentials) == 1

        await vault.upsert(CredentialRecord(
            domain="example.com", username="a@x.com",
            password="p2", notes="", date_added=T0,
        ))
        credentials = await vault.list()
        assert len(credentials) == 1
        assert credentials[("example.com", "a@x.com")].password == "p2"

        await vault.delete("example.com", "a@x.com")
        assert len(await vault.list()) == 0

        with pytest.raises(NotFoundError):
            await vault.delete("example.com", "a@x.com")

    async def test_upsert_reports_replacement(self, vault):
        """Test upsert returns whether it replaced a record."""
        assert await vault.upsert(make_record()) is False
        assert await vault.upsert(make_record(password="p2")) is True

    async def test_upsert_accepts_mapping(self, vault):
        """Test records may be passed in their document form."""
        await vault.upsert({
            "domain": "example.com",
            "username": "a@x.com",
            "password": "p1",
            "dateAdded": "2026-01-01T12:00:00+00:00",
        })
        record = (await vault.list())[("example.com", "a@x.com")]
        assert record.date_added == T0

    async def test_delete_returns_record(self, vault):
        """Test delete hands back the removed record."""
        await vault.upsert(make_record(password="gone"))
        removed = await vault.delete("example.com", "a@x.com")
        assert removed.password == "gone"

    async def test_identity_uniqueness_under_random_ops(self, vault):
        """Test no two records ever share (domain, username)."""
        rng = random.Random(1234)
        domains = ["a.com", "b.com", "c.com"]
        users = ["u1", "u2"]
        for step in range(40):
            domain, user = rng.choice(domains), rng.choice(users)
            if rng.random() < 0.7:
                await vault.upsert(make_record(domain, user, f"pw{step}"))
            else:
                try:
                    await vault.delete(domain, user)
                except NotFoundError:
                    pass
            records = (await vault.list()).records()
            identities = [r.identity for r in records]
            assert len(identities) == len(set(identities))

    async def test_failed_write_leaves_state(self, vault, store):
        """Test a failed persist changes nothing and can be retried."""
        await vault.upsert(make_record(password="p1"))
        store.fail_next_set = True
        with pytest.raises(StoreError):
            await vault.upsert(make_record(password="p2"))
        assert (await vault.list())[("example.com", "a@x.com")].password == "p1"
        await vault.upsert(make_record(password="p2"))
        assert (await vault.list())[("example.com", "a@x.com")].password == "p2"

    async def test_corrupt_blob(self, vault, store):
        """Test a blob that is not ours is CorruptVaultError."""
        await store.set({"encryptedCredentials": {
            "ciphertext": b64encode(bytes(48)),
            "nonce": b64encode(bytes(12)),
        }})
        with pytest.raises(CorruptVaultError):
            await vault.list()

    async def test_max_credentials(self, store, clock):
        """Test the configured record limit."""
        vault = CredentialVault(store, VaultConfig(max_credentials=1), clock=clock)
        await vault.initialize(PASSWORD)
        await vault.upsert(make_record("a.com"))
        with pytest.raises(CapacityError):
            await vault.upsert(make_record("b.com"))
        assert len(await vault.list()) == 1
        await vault.upsert(make_record("a.com", password="replaced"))


# --- Test Session Expiry ---

class TestSessionExpiry:
    """Tests for lazy inactivity timeout."""

    async def test_expired_call_fails_then_requires_unlock(self, vault, clock):
        """Test expiry raises once, then the vault is plainly locked."""
        clock.advance(minutes=31)
        with pytest.raises(SessionExpiredError):
            await vault.list()
        with pytest.raises(VaultLockedError) as excinfo:
            await vault.list()
        assert excinfo.type is VaultLockedError
        await vault.unlock(PASSWORD)
        assert len(await vault.list()) == 0

    async def test_activity_keeps_session_alive(self, vault, clock):
        """Test each call renews the session."""
        for _ in range(5):
            clock.advance(minutes=20)
            await vault.list()
        assert await vault.state() is VaultState.UNLOCKED

    async def test_expiry_on_mutation(self, vault, clock):
        """Test mutations also observe the timeout."""
        clock.advance(hours=2)
        with pytest.raises(SessionExpiredError):
            await vault.upsert(make_record())

    async def test_check_session(self, vault, clock):
        """Test check_session locks instead of raising."""
        assert vault.check_session() is True
        clock.advance(minutes=45)
        assert vault.check_session() is False
        assert vault.session.unlocked is False

    async def test_settings_timeout_applies(self, vault, clock):
        """Test the stored timeout governs the session."""
        await vault.save_settings({"sessionTimeoutMinutes": 5})
        clock.advance(minutes=6)
        with pytest.raises(SessionExpiredError):
            await vault.list()

    async def test_config_seeds_default_timeout(self, store, clock):
        """Test the configured timeout becomes the initial setting."""
        vault = CredentialVault(store, VaultConfig(session_timeout_minutes=10), clock=clock)
        await vault.initialize(PASSWORD)
        assert (await vault.get_settings()).session_timeout_minutes == 10
        clock.advance(minutes=11)
        with pytest.raises(SessionExpiredError):
            await vault.list()


# --- Test Settings and Form Helpers ---

class TestSettings:
    """Tests for settings storage."""

    async def test_readable_while_locked(self, vault):
        """Test settings do not need an unlocked vault."""
        vault.lock()
        settings = await vault.get_settings()
        assert settings.auto_fill is True
        assert settings.allow_http is False

    async def test_defaults_before_initialize(self, store):
        """Test an empty store reads default settings."""
        settings = await CredentialVault(store).get_settings()
        assert settings.to_document() == {
            "autoFill": True,
            "autoSave": True,
            "allowHttp": False,
            "sessionTimeoutMinutes": 30,
        }

    async def test_partial_update_merges(self, vault):
        """Test saving a subset keeps the other values."""
        saved = await vault.save_settings({"allowHttp": True})
        assert saved.allow_http is True
        assert saved.auto_save is True
        assert (await vault.get_settings()).allow_http is True


class TestFormHelpers:
    """Tests for domain lookup, autofill and capture."""

    async def test_credentials_for_domain(self, vault):
        """Test subdomains match in both directions."""
        await vault.upsert(make_record("example.com", "alice"))
        await vault.upsert(make_record("login.other.org", "bob"))
        await vault.upsert(make_record("unrelated.net", "carol"))
        assert [r.username for r in await vault.credentials_for_domain("www.example.com")] == ["alice"]
        assert [r.username for r in await vault.credentials_for_domain("other.org")] == ["bob"]

    async def test_autofill_https_only_by_default(self, vault):
        """Test plain HTTP pages get nothing unless allowed."""
        await vault.upsert(make_record())
        assert len(await vault.autofill_candidates("example.com", "https://example.com")) == 1
        assert await vault.autofill_candidates("example.com", "http://example.com") == []
        await vault.save_settings({"allowHttp": True})
        assert len(await vault.autofill_candidates("example.com", "http://example.com")) == 1

    async def test_autofill_disabled(self, vault):
        """Test autoFill off returns no candidates."""
        await vault.upsert(make_record())
        await vault.save_settings({"autoFill": False})
        assert await vault.autofill_candidates("example.com", "https://example.com") == []

    async def test_capture_saves_once(self, vault, clock):
        """Test capture stores new logins and skips exact repeats."""
        assert await vault.capture("example.com", "https://example.com", "a", "pw") is True
        assert await vault.capture("example.com", "https://example.com", "a", "pw") is False
        record = (await vault.list())[("example.com", "a")]
        assert record.url == "https://example.com"
        assert record.date_added == clock()

    async def test_capture_updates_changed_password(self, vault):
        """Test a new password for a known login replaces it."""
        await vault.capture("example.com", "https://example.com", "a", "old")
        assert await vault.capture("example.com", "https://example.com", "a", "new") is True
        assert (await vault.list())[("example.com", "a")].password == "new"

    async def test_capture_respects_settings(self, vault):
        """Test autoSave and allowHttp gate capture."""
        assert await vault.capture("example.com", "http://example.com", "a", "pw") is False
        await vault.save_settings({"autoSave": False})
        assert await vault.capture("example.com", "https://example.com", "a", "pw") is False
        assert len(await vault.list()) == 0


# --- Test Concurrency ---

class LaggyStore(MemoryStore):
    """MemoryStore whose reads return a snapshot and then stall."""

    async def get(self, keys):
        result = await super().get(keys)
        await asyncio.sleep(0.05)
        return result

    async def set(self, values):
        await asyncio.sleep(0.02)
        await super().set(values)


class TestConcurrency:
    """Tests for serialized read-modify-write."""

    async def test_unlock_during_password_change(self, clock):
        """Test an unlock cannot reinstall the old key over a rotation."""
        vault = CredentialVault(LaggyStore(), clock=clock)
        await vault.initialize(PASSWORD)
        await vault.upsert(make_record())

        async def late_unlock():
            await asyncio.sleep(0.01)
            await vault.unlock(PASSWORD)

        rotated, unlocked = await asyncio.gather(
            vault.change_master_password(PASSWORD, "new pass"),
            late_unlock(),
            return_exceptions=True,
        )
        assert rotated == {"credentials": 1, "rotated": True}
        assert isinstance(unlocked, InvalidPasswordError)
        assert len(await vault.list()) == 1
        vault.lock()
        await vault.unlock("new pass")
        assert len(await vault.list()) == 1

    async def test_concurrent_upserts_are_not_lost(self, clock):
        """Test interleaved writers each land their record."""
        vault = CredentialVault(SlowStore(), clock=clock)
        await vault.initialize(PASSWORD)
        await asyncio.gather(*(
            vault.upsert(make_record(f"site{i}.com", "user")) for i in range(20)
        ))
        assert len(await vault.list()) == 20

    async def test_concurrent_deletes_and_reads(self, clock):
        """Test readers and writers interleave without errors."""
        vault = CredentialVault(SlowStore(), clock=clock)
        await vault.initialize(PASSWORD)
        for i in range(10):
            await vault.upsert(make_record(f"site{i}.com"))
        results = await asyncio.gather(
            *(vault.delete(f"site{i}.com", "a@x.com") for i in range(10)),
            *(vault.list() for _ in range(10)),
        )
        assert len(results) == 20
        assert len(await vault.list()) == 0

    async def test_readers_share_the_lock(self):
        """Test two readers hold the lock at the same time."""
        lock = ReadWriteLock()
        events = []

        async def reader(n):
            async with lock.read():
                events.append(f"start{n}")
                await asyncio.sleep(0.01)
                events.append(f"end{n}")

        await asyncio.gather(reader(1), reader(2))
        assert events[:2] == ["start1", "start2"]

    async def test_writer_waits_for_reader(self):
        """Test a writer does not overlap a reader."""
        lock = ReadWriteLock()
        events = []

        async def reader():
            async with lock.read():
                events.append("read-start")
                await asyncio.sleep(0.01)
                events.append("read-end")

        async def writer():
            await asyncio.sleep(0)
            async with lock.write():
                events.append("write")

        await asyncio.gather(reader(), writer())
        assert events == ["read-start", "read-end", "write"]


# --- Test File-backed Persistence ---

class TestFilePersistence:
    """Tests for a vault on disk."""

    async def test_survives_restart(self, tmp_path, clock):
        """Test the last successful write is there after a restart."""
        path = tmp_path / "vault.json"
        vault = CredentialVault(FileStore(path), clock=clock)
        await vault.initialize(PASSWORD)
        await vault.upsert(make_record(password="on-disk"))

        reopened = await CredentialVault.open(FileStore(path), clock=clock)
        assert await reopened.state() is VaultState.LOCKED
        await reopened.unlock(PASSWORD)
        assert (await reopened.list())[("example.com", "a@x.com")].password == "on-disk"
        assert b"on-disk" not in path.read_bytes()

    async def test_memory_store_isolation(self, clock):
        """Test independent vault instances do not share state."""
        a = CredentialVault(MemoryStore(), clock=clock)
        b = CredentialVault(MemoryStore(), clock=clock)
        await a.initialize(PASSWORD)
        await b.initialize("other password")
        await a.upsert(make_record())
        assert len(await b.list()) == 0
