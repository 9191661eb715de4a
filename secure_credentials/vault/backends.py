"""
Key-value stores the vault persists into.

The vault treats the store as an opaque blob store: ``get`` and ``set`` are
each atomic per call, and the last successful ``set`` survives a restart.
Values must be JSON-compatible.
"""
import os
import copy
import asyncio
import logging
from typing import Any, Optional, Protocol, Union
from pathlib import Path
from collections.abc import Iterable, Mapping

import orjson

from ..exceptions import StoreError

logger = logging.getLogger("secure_credentials.vault")


class BlobStore(Protocol):
    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        ...

    async def set(self, values: Mapping[str, Any]) -> None:
        ...


class MemoryStore:
    """Dict-backed store for tests and throwaway vaults.

    ``fail_next_set`` makes the next write raise StoreError without
    changing anything, to simulate an interrupted write.
    """

    def __init__(self, data: Optional[Mapping[str, Any]] = None):
        self._data: dict[str, Any] = copy.deepcopy(dict(data or {}))
        self.fail_next_set = False
        self.writes = 0

    def __repr__(self) -> str:
        return f'<MemoryStore keys={sorted(self._data)!r}>'

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        return {
            key: copy.deepcopy(self._data[key])
            for key in keys if key in self._data
        }

    async def set(self, values: Mapping[str, Any]) -> None:
        if self.fail_next_set:
            self.fail_next_set = False
            raise StoreError("Simulated write failure")
        staged = {**self._data, **copy.deepcopy(dict(values))}
        self._data = staged
        self.writes += 1

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)


class FileStore:
    """Single JSON document on disk, replaced atomically on every write."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f'<FileStore path={str(self.path)!r}>'

    def _read(self) -> dict[str, Any]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return {}
        except OSError as err:
            raise StoreError(f"Cannot read vault file {self.path}: {err}") from err
        if not raw:
            return {}
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as err:
            raise StoreError(f"Vault file {self.path} is not valid JSON") from err
        if not isinstance(data, dict):
            raise StoreError(f"Vault file {self.path} must hold a JSON object")
        return data

    def _atomic_write(self, data: Mapping[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        payload = orjson.dumps(dict(data), option=orjson.OPT_INDENT_2)
        try:
            with open(tmp, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as err:
            tmp.unlink(missing_ok=True)
            raise StoreError(f"Cannot write vault file {self.path}: {err}") from err

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        keys = list(keys)
        data = await asyncio.to_thread(self._read)
        return {key: data[key] for key in keys if key in data}

    async def set(self, values: Mapping[str, Any]) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            data.update(values)
            await asyncio.to_thread(self._atomic_write, data)
        logger.debug("Wrote %d key(s) to %s", len(values), self.path)
