import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple
from .clock import Clock, parse_iso, to_iso, utc_now
from .identity import derive_content_key
from .index import KeyIndex
from .models import CONTENT_KEY_PREFIX, ContentType, ProgressObservation, ProgressRecord, clamp_percentage, is_number
from .retention import RetentionManager
from .stores.base import RecordStore
from .urls import urls_roughly_match

logger = logging.getLogger(__name__)

# Matches "E7", "e 12", "Episode 3"; kept deliberately loose
EPISODIC_TITLE = re.compile(r"\b(e|episode)\s*\d+", re.IGNORECASE | re.ASCII)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def looks_episodic(entry: Dict[str, Any]) -> bool:
    if entry.get("type") == ContentType.EPISODE.value:
        return True
    if is_number(entry.get("episodeNumber")) or is_number(entry.get("seasonNumber")):
        return True
    episode_name = entry.get("episodeName")
    if isinstance(episode_name, str) and episode_name.strip():
        return True
    for field in ("title", "originalTitle"):
        value = entry.get(field)
        if isinstance(value, str) and EPISODIC_TITLE.search(value):
            return True
    return False


class ProgressReconciler:
    """Maps observations onto stored records and keeps the key index consistent.

    The store offers no transactions, so each observation is applied as a
    sequence of round trips: write record, drop legacy keys, index the new
    key, drop same-series duplicates. A concurrent writer can interleave
    between steps; the worst outcome is a stale or dangling index entry
    that the next write or retention pass repairs.
    """

    def __init__(
        self,
        store: RecordStore,
        retention: Optional[RetentionManager] = None,
        clock: Optional[Clock] = None,
        completion_threshold: float = 95.0,
    ):
        self.store = store
        self.completion_threshold = completion_threshold
        self.index = KeyIndex(store)
        self.retention = retention
        self.clock = clock or utc_now
        self._background: Set[asyncio.Task] = set()

    async def record_observation(self, observation: Any) -> Tuple[str, ProgressRecord]:
        if not isinstance(observation, ProgressObservation):
            observation = ProgressObservation.model_validate(observation)

        content_key = derive_content_key(
            url=observation.url,
            title=observation.title,
            platform=observation.platform,
            content_type=observation.type,
            series_title=observation.series_title,
        )
        record = ProgressRecord.from_observation(observation, to_iso(self.clock()))
        if record.content_type == ContentType.EPISODE and not observation.is_declared_episode:
            logger.debug(f"Episode markers present, storing {content_key} as episode")

        await self.store.set({content_key: record.to_store()})
        logger.info(f"Saved progress {content_key}: {record.title!r} at {record.percent_complete:.1f}%")

        if observation.is_declared_episode:
            await self._migrate_legacy_keys(observation, content_key)

        await self.index.add(content_key)

        if observation.is_declared_episode and observation.series_title:
            await self._drop_series_duplicates(observation, content_key)

        self._schedule_retention()
        return content_key, record

    def legacy_keys(self, observation: ProgressObservation, content_key: str) -> List[str]:
        """Keys earlier derivations would have produced for the same content."""
        candidates = []
        original_title = (observation.original_title or "").strip()
        if original_title:
            for content_type in (ContentType.EPISODE, ContentType.MOVIE):
                candidates.append(derive_content_key(
                    url=observation.url,
                    title=original_title,
                    platform=observation.platform,
                    content_type=content_type.value,
                ))
        if observation.url:
            candidates.append(derive_content_key(
                url=observation.url,
                title="",
                platform=observation.platform,
                content_type=ContentType.MOVIE.value,
            ))
        unique = []
        for key in candidates:
            if key != content_key and key not in unique:
                unique.append(key)
        return unique

    async def _migrate_legacy_keys(self, observation: ProgressObservation, content_key: str):
        candidates = self.legacy_keys(observation, content_key)
        if not candidates:
            return
        try:
            existing = await self.store.get(candidates)
            stale = [key for key in candidates if key in existing]
            if not stale:
                return
            await self.store.remove(stale)
            await self.index.discard(stale)
            logger.info(f"Removed legacy content keys for {content_key}: {stale}")
        except Exception as e:
            logger.error(f"Legacy key cleanup failed for {content_key}: {e}", exc_info=True)

    async def _drop_series_duplicates(self, observation: ProgressObservation, content_key: str):
        series = observation.series_title.strip().lower()
        if not series:
            return
        platform = (observation.platform or "").lower()

        tracked = await self.index.load()
        others = [key for key in tracked if key != content_key]
        if not others:
            return
        entries = await self.store.get(others)

        duplicates = []
        for key in others:
            entry = entries.get(key)
            if not isinstance(entry, dict):
                continue
            entry_series = entry.get("seriesTitle")
            if not isinstance(entry_series, str):
                entry_series = entry.get("title")
            if not isinstance(entry_series, str):
                continue
            if entry_series.strip().lower() != series:
                continue
            entry_platform = entry.get("platform")
            entry_platform = entry_platform.lower() if isinstance(entry_platform, str) else ""
            if platform and entry_platform and entry_platform != platform:
                continue
            if looks_episodic(entry):
                duplicates.append(key)

        if duplicates:
            await self.store.remove(duplicates)
            await self.index.discard(duplicates)
            logger.info(f"Removed duplicate episode entries for series {observation.series_title!r}: {duplicates}")

    def _schedule_retention(self):
        if self.retention is None:
            return
        task = asyncio.get_running_loop().create_task(self._run_retention())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _run_retention(self):
        try:
            await self.retention.prune_progress()
        except Exception as e:
            logger.error(f"Cleanup skipped: {e}", exc_info=True)

    async def drain(self):
        """Wait for background retention passes started by earlier writes."""
        while self._background:
            await asyncio.gather(*list(self._background))

    async def lookup(self, url: Optional[str]) -> Optional[ProgressRecord]:
        if not url or not isinstance(url, str):
            return None

        fallback = None
        tracked = await self.index.load()
        if tracked:
            entries = await self.store.get(tracked)
            for key in tracked:
                record = ProgressRecord.from_store(entries.get(key))
                if record is None:
                    continue
                if urls_roughly_match(record.url, url):
                    return record
                if fallback is None and url in record.url:
                    fallback = record
        if fallback is not None:
            return fallback

        # Records written before the index existed, or dropped from it by a lost update
        everything = await self.store.get(None)
        for value in everything.values():
            record = ProgressRecord.from_store(value)
            if record is not None and urls_roughly_match(record.url, url):
                return record
        return None

    async def list_progress(self) -> List[Tuple[str, ProgressRecord]]:
        """Every stored record with its key, most recently watched first."""
        everything = await self.store.get(None)
        items = []
        for key, value in everything.items():
            if not key.startswith(CONTENT_KEY_PREFIX):
                continue
            record = ProgressRecord.from_store(value)
            if record is None:
                continue
            record.percent_complete = clamp_percentage(record.percent_complete)
            items.append((key, record))
        items.sort(key=lambda item: parse_iso(item[1].last_watched) or _EPOCH, reverse=True)
        return items

    async def delete_progress(self, key: str) -> bool:
        existing = await self.store.get(key)
        await self.store.remove(key)
        await self.index.discard([key])
        if key in existing:
            logger.info(f"Deleted progress {key}")
            return True
        return False

    async def clear_completed(self, threshold: Optional[float] = None) -> List[str]:
        if threshold is None:
            threshold = self.completion_threshold
        items = await self.list_progress()
        doomed = [key for key, record in items if record.percent_complete >= threshold]
        if doomed:
            await self.store.remove(doomed)
            await self.index.discard(doomed)
            logger.info(f"Cleared {len(doomed)} completed items")
        return doomed

    async def export_progress(self) -> str:
        items = await self.list_progress()
        return json.dumps([{"key": key, **record.to_store()} for key, record in items], indent=2)
