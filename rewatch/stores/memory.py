import copy
from typing import Any, Dict, Optional
from .base import Keys, as_key_list


class InMemoryStore:
    """Process-local store. Values are deep-copied in and out so callers never share state."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def get(self, keys: Optional[Keys] = None) -> Dict[str, Any]:
        if keys is None:
            return copy.deepcopy(self.data)
        return {key: copy.deepcopy(self.data[key]) for key in as_key_list(keys) if key in self.data}

    async def set(self, items: Dict[str, Any]) -> None:
        self.data.update(copy.deepcopy(items))

    async def remove(self, keys: Keys) -> None:
        for key in as_key_list(keys):
            self.data.pop(key, None)
