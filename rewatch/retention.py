import logging
from typing import Any, Dict, List, Optional
from .clock import Clock, months_before, parse_iso, to_epoch_ms, utc_now
from .index import TRACKED_CONTENT_KEY, KeyIndex, clean_index
from .models import DEFAULT_TELEMETRY_RETENTION_HOURS, is_number
from .stores.base import RecordStore

logger = logging.getLogger(__name__)

MAX_TELEMETRY_ENTRIES = 200


def prune_telemetry(
    entries: List[Dict[str, Any]],
    retention_hours: Any,
    now_ms: float,
    max_entries: int = MAX_TELEMETRY_ENTRIES,
) -> List[Dict[str, Any]]:
    """Keep entries younger than the retention window, then the newest ``max_entries`` by position."""
    hours = max(1.0, float(retention_hours)) if is_number(retention_hours) else DEFAULT_TELEMETRY_RETENTION_HOURS
    cutoff = now_ms - hours * 3600 * 1000
    kept = [
        entry for entry in entries
        if isinstance(entry, dict) and is_number(entry.get("timestamp")) and entry["timestamp"] >= cutoff
    ]
    if len(kept) > max_entries:
        kept = kept[-max_entries:]
    return kept


class RetentionManager:
    def __init__(
        self,
        store: RecordStore,
        clock: Optional[Clock] = None,
        retention_months: int = 6,
        completion_threshold: float = 95.0,
        max_telemetry_entries: int = MAX_TELEMETRY_ENTRIES,
    ):
        self.store = store
        self.index = KeyIndex(store)
        self.clock = clock or utc_now
        self.retention_months = retention_months
        self.completion_threshold = completion_threshold
        self.max_telemetry_entries = max_telemetry_entries
        self.last_run: float = 0.0

    def _is_stale_and_complete(self, value: Any, cutoff) -> bool:
        if not isinstance(value, dict):
            return False
        last_watched = parse_iso(value.get("lastWatched"))
        if last_watched is None:
            return False
        percent = value.get("percentComplete")
        return last_watched < cutoff and is_number(percent) and percent >= self.completion_threshold

    async def prune_progress(self) -> List[str]:
        """Remove completed records not watched within the retention window.

        The index is rewritten without the removed keys and without any key
        that no longer has a stored value.
        """
        now = self.clock()
        cutoff = months_before(now, self.retention_months)
        entries = await self.store.get(None)
        tracked_raw = entries.pop(TRACKED_CONTENT_KEY, None)

        doomed = [key for key, value in entries.items() if self._is_stale_and_complete(value, cutoff)]
        if doomed:
            await self.store.remove(doomed)
            logger.info(f"Cleaned up {len(doomed)} old entries: {doomed}")

        if isinstance(tracked_raw, list):
            # Keys indexed after our snapshot was taken are left alone
            dangling = [key for key in clean_index(tracked_raw) if key not in entries]
            tracked = await self.index.load()
            live = [key for key in tracked if key not in doomed and key not in dangling]
            if live != tracked:
                await self.index.save(live)
                if dangling:
                    logger.info(f"Dropped {len(dangling)} dangling tracked keys: {dangling}")

        self.last_run = now.timestamp()
        return doomed

    def prune_telemetry(self, entries: List[Dict[str, Any]], retention_hours: Any) -> List[Dict[str, Any]]:
        return prune_telemetry(
            entries,
            retention_hours,
            to_epoch_ms(self.clock()),
            max_entries=self.max_telemetry_entries,
        )
