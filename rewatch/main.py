import asyncio
import logging
import signal
import sys
import uvicorn

from .config import Settings, settings
from .dispatch import MessageRouter
from .engine import ProgressReconciler
from .index import KeyIndex
from .models import UserSettings
from .preferences import SettingsAccessor
from .retention import RetentionManager
from .server import create_app
from .stores import InMemoryStore, JsonFileStore
from .telemetry import TELEMETRY_KEY, TelemetryLog

logger = logging.getLogger("rewatch.main")


def setup_logging(config: Settings) -> int:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    # Silence noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    return level


class ReWatchService:
    def __init__(self, config: Settings, store=None, clock=None, log_level: int = logging.INFO):
        self.config = config
        if store is None:
            store = JsonFileStore(config.STATE_PATH) if config.STORE_BACKEND == "json" else InMemoryStore()
        self.store = store
        self.running = True
        self.retention = RetentionManager(
            store,
            clock=clock,
            retention_months=config.PROGRESS_RETENTION_MONTHS,
            completion_threshold=config.PROGRESS_COMPLETION_THRESHOLD,
            max_telemetry_entries=config.TELEMETRY_MAX_ENTRIES,
        )
        self.preferences = SettingsAccessor(
            store,
            base_log_level=log_level,
            defaults=UserSettings(detector_telemetry_retention_hours=config.DEFAULT_TELEMETRY_RETENTION_HOURS),
        )
        self.telemetry = TelemetryLog(store, self.preferences, self.retention, clock=clock)
        self.reconciler = ProgressReconciler(
            store,
            retention=self.retention,
            clock=clock,
            completion_threshold=config.PROGRESS_COMPLETION_THRESHOLD,
        )
        self.router = MessageRouter(self.reconciler, self.telemetry, self.preferences)

    async def setup(self):
        prefs = await self.preferences.load()
        logger.info(f"Loaded settings: {prefs.to_store()}")

    async def snapshot(self) -> dict:
        tracked = await KeyIndex(self.store).load()
        raw = (await self.store.get(TELEMETRY_KEY)).get(TELEMETRY_KEY)
        return {
            "tracked_content": len(tracked),
            "detector_status_entries": len(raw) if isinstance(raw, list) else 0,
            "last_maintenance": self.retention.last_run,
        }

    async def maintenance_loop(self):
        """Periodic retention sweep; failures are logged and retried next interval."""
        interval = self.config.MAINTENANCE_INTERVAL_SECONDS
        logger.info(f"Maintenance loop started (every {interval}s)")
        while self.running:
            try:
                await self.preferences.refresh()
                removed = await self.retention.prune_progress()
                if removed:
                    logger.info(f"Maintenance removed {len(removed)} stale records")
                await self.telemetry.list()
            except Exception as e:
                logger.error(f"Error in maintenance loop: {e}", exc_info=True)

            await asyncio.sleep(interval)

    async def start(self):
        await self.setup()

        app = create_app(self, token=self.config.HTTP_SERVER_TOKEN)
        config = uvicorn.Config(
            app, host=self.config.HTTP_SERVER_HOST, port=self.config.HTTP_SERVER_PORT, log_level="warning"
        )
        tasks = [asyncio.create_task(uvicorn.Server(config).serve())]
        if self.config.MAINTENANCE_INTERVAL_SECONDS > 0:
            tasks.append(asyncio.create_task(self.maintenance_loop()))

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            pass
        finally:
            self.running = False
            await self.reconciler.drain()

def handle_sigterm(sig, frame):
    logger.info("Received SIGTERM, shutting down...")
    sys.exit(0)

def main():
    signal.signal(signal.SIGTERM, handle_sigterm)
    level = setup_logging(settings)
    service = ReWatchService(settings, log_level=level)
    try:
        asyncio.run(service.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")

if __name__ == "__main__":
    main()
