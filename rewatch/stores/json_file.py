import asyncio
import copy
import fcntl
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional
from .base import Keys, StoreUnavailableError, as_key_list

logger = logging.getLogger(__name__)


class JsonFileStore:
    """Whole-map JSON file. Every mutation rewrites the file atomically under an exclusive lock."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._data: Optional[Dict[str, Any]] = None
        self._lock = asyncio.Lock()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            logger.info(f"No state file found at {self.path}, starting empty.")
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"State file {self.path} is corrupt: {e}. Starting empty.")
            return {}
        except OSError as e:
            raise StoreUnavailableError(f"Failed to read {self.path}: {e}") from e
        if not isinstance(data, dict):
            logger.error(f"State file {self.path} does not hold an object. Starting empty.")
            return {}
        return data

    def _save(self, data: Dict[str, Any]):
        tmp_path = self.path.with_suffix('.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                fcntl.flock(f, fcntl.LOCK_EX)
                try:
                    json.dump(data, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)
            # Atomic rename
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StoreUnavailableError(f"Failed to save state to {self.path}: {e}") from e

    async def _snapshot(self) -> Dict[str, Any]:
        if self._data is None:
            self._data = await asyncio.to_thread(self._load)
        return self._data

    async def get(self, keys: Optional[Keys] = None) -> Dict[str, Any]:
        async with self._lock:
            data = await self._snapshot()
            if keys is None:
                return copy.deepcopy(data)
            return {key: copy.deepcopy(data[key]) for key in as_key_list(keys) if key in data}

    async def set(self, items: Dict[str, Any]) -> None:
        async with self._lock:
            data = await self._snapshot()
            updated = {**data, **copy.deepcopy(items)}
            await asyncio.to_thread(self._save, updated)
            self._data = updated

    async def remove(self, keys: Keys) -> None:
        async with self._lock:
            data = await self._snapshot()
            doomed = [key for key in as_key_list(keys) if key in data]
            if not doomed:
                return
            updated = {key: value for key, value in data.items() if key not in doomed}
            await asyncio.to_thread(self._save, updated)
            self._data = updated
