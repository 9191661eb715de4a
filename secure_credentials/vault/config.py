"""
Vault Configuration — validated runtime settings and user preferences.

Runtime configuration can be read from environment variables:
    CREDENTIALS_CIPHER_BACKEND = aesgcm | chacha20
    CREDENTIALS_SESSION_TIMEOUT = <minutes>
    CREDENTIALS_STORE_PATH = <path to the vault file>
    CREDENTIALS_MAX_RECORDS = <integer>

Security Note:
    Nothing here is secret; settings are readable while the vault is locked.
"""
import os
import logging
from typing import Any, Optional
from pathlib import Path
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..exceptions import CorruptVaultError

logger = logging.getLogger("secure_credentials.vault")

SETTINGS = "settings"


def _env_int(name: str) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    cipher_backend: str = Field(default="aesgcm")
    session_timeout_minutes: int = Field(default=30, ge=1, le=1440)
    store_path: Optional[Path] = None
    max_credentials: int = Field(default=10_000, ge=1, le=1_000_000)

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Unset variables fall back to the field defaults.

        Returns:
            Populated VaultConfig instance.
        """
        values: dict[str, Any] = {}
        backend = os.environ.get("CREDENTIALS_CIPHER_BACKEND")
        if backend:
            values["cipher_backend"] = backend
        timeout = _env_int("CREDENTIALS_SESSION_TIMEOUT")
        if timeout is not None:
            values["session_timeout_minutes"] = timeout
        path = os.environ.get("CREDENTIALS_STORE_PATH")
        if path:
            values["store_path"] = Path(path).expanduser()
        limit = _env_int("CREDENTIALS_MAX_RECORDS")
        if limit is not None:
            values["max_credentials"] = limit
        config = cls(**values)
        logger.debug(
            "Loaded vault config: cipher=%s timeout=%d",
            config.cipher_backend, config.session_timeout_minutes,
        )
        return config


class Settings(BaseModel):
    """User preferences, stored unencrypted next to the vault."""

    model_config = ConfigDict(populate_by_name=True)

    auto_fill: bool = Field(default=True, alias="autoFill")
    auto_save: bool = Field(default=True, alias="autoSave")
    allow_http: bool = Field(default=False, alias="allowHttp")
    session_timeout_minutes: int = Field(
        default=30, ge=1, le=1440, alias="sessionTimeoutMinutes"
    )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def merge(self, changes: Mapping[str, Any]) -> "Settings":
        """Return new settings with ``changes`` applied over these."""
        data = self.to_document()
        for key, value in changes.items():
            field = type(self).model_fields.get(key)
            data[field.alias if field and field.alias else key] = value
        return type(self).model_validate(data)

    @classmethod
    def from_document(cls, data: Any) -> "Settings":
        """Load stored settings; missing values fall back to defaults.

        Raises:
            CorruptVaultError: If the stored value has the wrong shape.
        """
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise CorruptVaultError("Stored settings must be a mapping")
        try:
            return cls.model_validate(data)
        except ValidationError as err:
            raise CorruptVaultError("Stored settings are invalid") from err
