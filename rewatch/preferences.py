import logging
from typing import Any, Dict, Optional
from .models import UserSettings
from .stores.base import RecordStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "rewatch_settings"


class SettingsAccessor:
    """Read-through cache over the persisted user settings.

    ``load`` and ``refresh`` hit the store; ``current`` serves the cached
    value and only loads on first use.
    """

    def __init__(self, store: RecordStore, base_log_level: int = logging.INFO, defaults: Optional[UserSettings] = None):
        self.store = store
        self.defaults = defaults or UserSettings()
        self.base_log_level = base_log_level
        self._cached: Optional[UserSettings] = None

    async def load(self) -> UserSettings:
        result = await self.store.get(SETTINGS_KEY)
        raw = result.get(SETTINGS_KEY)
        stored = raw if isinstance(raw, dict) else {}
        loaded = UserSettings.model_validate({**self.defaults.to_store(), **stored})
        self._apply(loaded)
        return loaded

    async def refresh(self) -> UserSettings:
        return await self.load()

    async def current(self) -> UserSettings:
        if self._cached is None:
            return await self.load()
        return self._cached

    async def update(self, changes: Dict[str, Any]) -> UserSettings:
        base = await self.load()
        merged = {**base.to_store(), **(changes if isinstance(changes, dict) else {})}
        updated = UserSettings.model_validate(merged)
        await self.store.set({SETTINGS_KEY: updated.to_store()})
        logger.info(f"Settings updated: {updated.to_store()}")
        self._apply(updated)
        return updated

    def _apply(self, value: UserSettings):
        previous = self._cached
        self._cached = value
        if previous is not None and previous.debug_logging_enabled == value.debug_logging_enabled:
            return
        level = logging.DEBUG if value.debug_logging_enabled else self.base_log_level
        logging.getLogger("rewatch").setLevel(level)
