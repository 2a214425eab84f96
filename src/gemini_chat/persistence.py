"""
Durable storage for sessions and the last active session id.

Storage is a plain get/set/remove key-value medium; the adapter owns the
JSON shape and reports malformed data as CorruptDataError.
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol, Sequence

from pydantic import TypeAdapter, ValidationError

from gemini_chat.errors import CorruptDataError
from gemini_chat.models.session import Session

logger = logging.getLogger(__name__)

SESSIONS_KEY = "gemini_chat_histories_v2"
ACTIVE_ID_KEY = "gemini_active_chat_id_v2"

_sessions_adapter = TypeAdapter(list[Session])


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class FileStorage:
    """One file per key under `directory`, replaced atomically on write."""

    def __init__(self, directory: Path):
        self._dir = Path(directory)

    def _path(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp, self._path(key))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class PersistenceAdapter:
    def __init__(self, storage: KeyValueStorage, offload: bool = True):
        self._storage = storage
        # File-backed storage blocks; run it off the event loop.
        self._offload = offload

    async def _call(self, fn, *args):
        if self._offload:
            return await asyncio.to_thread(fn, *args)
        return fn(*args)

    async def _read(self, key: str) -> Optional[str]:
        try:
            return await self._call(self._storage.get, key)
        except UnicodeDecodeError as e:
            raise CorruptDataError(f"Stored data is not valid UTF-8: {e.reason}", key=key) from e

    async def load_sessions(self) -> list[Session]:
        raw = await self._read(SESSIONS_KEY)
        if raw is None:
            return []
        try:
            return _sessions_adapter.validate_json(raw)
        except ValidationError as e:
            raise CorruptDataError(f"Stored sessions are malformed: {e.error_count()} error(s)", key=SESSIONS_KEY) from e

    async def save_sessions(self, sessions: Sequence[Session]) -> None:
        if not sessions:
            await self._call(self._storage.remove, SESSIONS_KEY)
            await self._call(self._storage.remove, ACTIVE_ID_KEY)
            return
        payload = _sessions_adapter.dump_json(list(sessions)).decode("utf-8")
        await self._call(self._storage.set, SESSIONS_KEY, payload)

    async def load_active_id(self) -> Optional[str]:
        raw = await self._read(ACTIVE_ID_KEY)
        if raw is None:
            return None
        value = raw.strip()
        if not value or any(c.isspace() for c in value):
            raise CorruptDataError("Stored active session id is malformed", key=ACTIVE_ID_KEY)
        return value

    async def save_active_id(self, session_id: Optional[str]) -> None:
        if session_id is None:
            await self._call(self._storage.remove, ACTIVE_ID_KEY)
        else:
            await self._call(self._storage.set, ACTIVE_ID_KEY, session_id)

    async def reset(self) -> None:
        """Drop all stored chat data."""
        logger.warning("Resetting stored chat data")
        await self._call(self._storage.remove, SESSIONS_KEY)
        await self._call(self._storage.remove, ACTIVE_ID_KEY)
