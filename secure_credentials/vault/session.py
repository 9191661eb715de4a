"""
Session Controller — holds the unlocked DEK in memory only.

The session is never serialized and does not survive a process restart.
Inactivity is checked lazily on each call; there is no background timer.
"""
import logging
from typing import Optional
from datetime import datetime, timedelta
from collections.abc import Callable

from ..data import utcnow
from ..exceptions import SessionExpiredError, VaultLockedError

logger = logging.getLogger("secure_credentials.vault")

Clock = Callable[[], datetime]


class Session:
    """Transient session state."""

    __slots__ = ("unlocked", "data_key", "last_activity")

    def __init__(self) -> None:
        self.unlocked: bool = False
        self.data_key: Optional[bytearray] = None
        self.last_activity: Optional[datetime] = None

    def __repr__(self) -> str:
        return (
            f'<VaultSession [unlocked:{self.unlocked}] '
            f'last_activity={self.last_activity!r}>'
        )

    def clear(self) -> None:
        if self.data_key is not None:
            # best effort: overwrite the buffer before dropping it
            for i in range(len(self.data_key)):
                self.data_key[i] = 0
        self.unlocked = False
        self.data_key = None
        self.last_activity = None


class SessionController:
    """Gatekeeper for the DEK with an inactivity timeout."""

    def __init__(
        self,
        timeout_minutes: int = 30,
        clock: Optional[Clock] = None
    ):
        self._session = Session()
        self._clock = clock or utcnow
        self.timeout_minutes = timeout_minutes

    def __repr__(self) -> str:
        return f'<SessionController timeout={self._timeout_minutes}m {self._session!r}>'

    # --- Properties ---

    @property
    def timeout_minutes(self) -> int:
        return self._timeout_minutes

    @timeout_minutes.setter
    def timeout_minutes(self, value: int) -> None:
        if value < 1:
            raise ValueError("Session timeout must be at least 1 minute")
        self._timeout_minutes = value

    @property
    def timeout(self) -> timedelta:
        return timedelta(minutes=self._timeout_minutes)

    @property
    def unlocked(self) -> bool:
        return self._session.unlocked

    @property
    def last_activity(self) -> Optional[datetime]:
        return self._session.last_activity

    def now(self) -> datetime:
        return self._clock()

    def is_expired(self) -> bool:
        """True when unlocked but idle for longer than the timeout."""
        last = self._session.last_activity
        if not self._session.unlocked or last is None:
            return False
        return self.now() - last > self.timeout

    def seconds_until_lock(self) -> int:
        last = self._session.last_activity
        if not self._session.unlocked or last is None:
            return 0
        remaining = self.timeout - (self.now() - last)
        return max(0, int(remaining.total_seconds()))

    # --- Lifecycle ---

    def unlock(self, data_key: bytes) -> None:
        self._session.clear()
        self._session.unlocked = True
        self._session.data_key = bytearray(data_key)
        self._session.last_activity = self.now()
        logger.debug("Session unlocked (timeout=%d min)", self._timeout_minutes)

    def lock(self) -> None:
        was_unlocked = self._session.unlocked
        self._session.clear()
        if was_unlocked:
            logger.debug("Session locked")

    def touch(self) -> None:
        """Record activity, locking first if the session has expired.

        Raises:
            VaultLockedError: If no session is open.
            SessionExpiredError: If the session idled past the timeout; the
                session is locked before this is raised.
        """
        if not self._session.unlocked:
            raise VaultLockedError("Vault is locked")
        if self.is_expired():
            self.lock()
            logger.info(
                "Session expired after %d minute(s) of inactivity",
                self._timeout_minutes,
            )
            raise SessionExpiredError("Session expired; unlock the vault again")
        self._session.last_activity = self.now()

    def data_key(self) -> bytes:
        """Touch the session and return a copy of the DEK for one operation."""
        self.touch()
        return bytes(self._session.data_key)
