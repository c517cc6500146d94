from datetime import datetime, timezone
from rewatch.stores.base import StoreUnavailableError
from rewatch.stores.memory import InMemoryStore

FIXED_NOW = datetime(2025, 10, 26, tzinfo=timezone.utc)

def fixed_clock():
    return FIXED_NOW

class FailingStore(InMemoryStore):
    """Raises on every call once ``failing`` is set."""
    def __init__(self, initial=None):
        super().__init__(initial)
        self.failing = False

    async def get(self, keys=None):
        if self.failing:
            raise StoreUnavailableError("store offline")
        return await super().get(keys)

    async def set(self, items):
        if self.failing:
            raise StoreUnavailableError("store offline")
        await super().set(items)

    async def remove(self, keys):
        if self.failing:
            raise StoreUnavailableError("store offline")
        await super().remove(keys)
