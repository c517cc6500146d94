import logging
from typing import Any, Iterable, List
from .stores.base import RecordStore

logger = logging.getLogger(__name__)

TRACKED_CONTENT_KEY = "trackedContent"


def clean_index(raw: Any) -> List[str]:
    """Drop non-string entries and repeated keys, preserving first-seen order."""
    if not isinstance(raw, list):
        return []
    seen = set()
    keys = []
    for value in raw:
        if isinstance(value, str) and value not in seen:
            seen.add(value)
            keys.append(value)
    return keys


class KeyIndex:
    """Ordered list of live content keys, stored under ``trackedContent``.

    Every method performs its own read-modify-write round trip against the
    store; none of them is atomic with respect to other writers.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    async def load(self) -> List[str]:
        result = await self.store.get(TRACKED_CONTENT_KEY)
        return clean_index(result.get(TRACKED_CONTENT_KEY))

    async def save(self, keys: Iterable[str]):
        await self.store.set({TRACKED_CONTENT_KEY: clean_index(list(keys))})

    async def add(self, key: str) -> bool:
        keys = await self.load()
        if key in keys:
            return False
        keys.append(key)
        await self.save(keys)
        logger.debug(f"Added {key} to tracked content")
        return True

    async def discard(self, keys: Iterable[str]) -> List[str]:
        """Remove keys from the index; returns the ones that were present."""
        doomed = set(keys)
        if not doomed:
            return []
        current = await self.load()
        removed = [key for key in current if key in doomed]
        if removed:
            await self.save(key for key in current if key not in doomed)
        return removed
