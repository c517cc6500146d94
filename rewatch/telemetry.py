import logging
from typing import Any, Dict, List, Optional
from .clock import Clock, to_epoch_ms, utc_now
from .models import TelemetryEntry
from .preferences import SettingsAccessor
from .retention import RetentionManager
from .stores.base import RecordStore

logger = logging.getLogger(__name__)

TELEMETRY_KEY = "rewatch_detector_status"


class TelemetryLog:
    """Bounded log of detector health, one live entry per (platform, detector)."""

    def __init__(
        self,
        store: RecordStore,
        preferences: SettingsAccessor,
        retention: RetentionManager,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.preferences = preferences
        self.retention = retention
        self.clock = clock or utc_now

    async def _load(self) -> List[Dict[str, Any]]:
        result = await self.store.get(TELEMETRY_KEY)
        raw = result.get(TELEMETRY_KEY)
        if not isinstance(raw, list):
            return []
        return [entry for entry in raw if isinstance(entry, dict)]

    async def _pruned(self) -> tuple:
        entries = await self._load()
        prefs = await self.preferences.current()
        kept = self.retention.prune_telemetry(entries, prefs.detector_telemetry_retention_hours)
        return entries, kept

    async def record(self, report: Any) -> TelemetryEntry:
        entry = report if isinstance(report, TelemetryEntry) else TelemetryEntry.model_validate(
            report if isinstance(report, dict) else {}
        )
        if entry.timestamp is None:
            entry = entry.model_copy(update={"timestamp": to_epoch_ms(self.clock())})

        _, kept = await self._pruned()
        identity = entry.identity
        kept = [
            existing for existing in kept
            if TelemetryEntry.model_validate(existing).identity != identity
        ]
        kept.append(entry.model_dump())
        if len(kept) > self.retention.max_telemetry_entries:
            kept = kept[-self.retention.max_telemetry_entries:]

        await self.store.set({TELEMETRY_KEY: kept})
        logger.debug(f"Detector status {entry.status} for {entry.platform}/{entry.detector}")
        return entry

    async def list(self) -> List[TelemetryEntry]:
        """Live entries, most recent first."""
        entries, kept = await self._pruned()
        if len(kept) != len(entries):
            await self.store.set({TELEMETRY_KEY: kept})
            logger.info(f"Pruned {len(entries) - len(kept)} detector status entries")
        parsed = [TelemetryEntry.model_validate(entry) for entry in kept]
        return sorted(parsed, key=lambda item: item.timestamp or 0, reverse=True)

    async def clear(self):
        await self.store.remove(TELEMETRY_KEY)
        logger.info("Cleared detector status log")
