import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from secure_credentials.data import CredentialRecord
from secure_credentials.vault import CredentialVault, MemoryStore

PASSWORD = "correct horse"
T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable time source for session expiry."""

    def __init__(self, start: datetime = T0):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class SlowStore(MemoryStore):
    """MemoryStore that yields to the event loop on every call."""

    async def get(self, keys):
        await asyncio.sleep(0)
        result = await super().get(keys)
        await asyncio.sleep(0)
        return result

    async def set(self, values):
        await asyncio.sleep(0)
        await super().set(values)


def make_record(domain="example.com", username="a@x.com", password="p1", **kwargs):
    return CredentialRecord(
        domain=domain,
        username=username,
        password=password,
        date_added=kwargs.pop("date_added", T0),
        **kwargs,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
async def vault(store, clock):
    """An initialized, unlocked vault over a memory store."""
    vault = CredentialVault(store, clock=clock)
    await vault.initialize(PASSWORD)
    return vault
