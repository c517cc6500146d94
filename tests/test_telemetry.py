import logging
import unittest
from datetime import timedelta
from rewatch.preferences import SETTINGS_KEY, SettingsAccessor
from rewatch.retention import RetentionManager
from rewatch.stores.base import StoreUnavailableError
from rewatch.stores.memory import InMemoryStore
from rewatch.telemetry import TELEMETRY_KEY, TelemetryLog
from tests.helpers import FIXED_NOW, FailingStore

NOW_MS = FIXED_NOW.timestamp() * 1000


class MovableClock:
    def __init__(self):
        self.now = FIXED_NOW

    def __call__(self):
        return self.now


class TestTelemetryLog(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.clock = MovableClock()
        self.store = InMemoryStore()
        self.preferences = SettingsAccessor(self.store)
        self.log = TelemetryLog(
            self.store, self.preferences, RetentionManager(self.store, clock=self.clock), clock=self.clock
        )

    async def test_record_cleans_fields_and_defaults(self):
        entry = await self.log.record({
            "platform": "  Netflix ", "detector": "", "status": "exploded", "url": None,
            "details": "not a map", "timestamp": float("inf"),
        })
        self.assertEqual(entry.platform, "Netflix")
        self.assertIsNone(entry.detector)
        self.assertEqual(entry.status, "detecting")
        self.assertEqual(entry.details, {})
        self.assertEqual(entry.timestamp, NOW_MS)
        self.assertEqual(self.store.data[TELEMETRY_KEY], [entry.model_dump()])

    async def test_oversized_timestamp_defaults_to_clock(self):
        entry = await self.log.record({"platform": "a", "detector": "main", "status": "attached", "timestamp": 10**400})
        self.assertEqual(entry.timestamp, NOW_MS)
        self.assertEqual(self.store.data[TELEMETRY_KEY][0]["timestamp"], NOW_MS)

    async def test_same_pair_is_replaced_case_insensitively(self):
        await self.log.record({"platform": "Netflix", "detector": "Main", "status": "detecting"})
        self.clock.now = FIXED_NOW + timedelta(seconds=5)
        await self.log.record({"platform": "NETFLIX", "detector": "main", "status": "attached"})

        stored = self.store.data[TELEMETRY_KEY]
        self.assertEqual(len(stored), 1)
        self.assertEqual(stored[0]["status"], "attached")
        self.assertEqual(stored[0]["platform"], "NETFLIX")

    async def test_missing_values_share_one_identity(self):
        await self.log.record({"status": "error"})
        await self.log.record({"platform": " ", "detector": None, "status": "no-video"})
        stored = self.store.data[TELEMETRY_KEY]
        self.assertEqual([entry["status"] for entry in stored], ["no-video"])

    async def test_caps_at_two_hundred_entries(self):
        for i in range(201):
            await self.log.record({"platform": "p", "detector": f"d{i}", "status": "detected", "timestamp": NOW_MS + i})
        stored = self.store.data[TELEMETRY_KEY]
        self.assertEqual(len(stored), 200)
        self.assertEqual(stored[0]["detector"], "d1")
        self.assertEqual(stored[-1]["detector"], "d200")

    async def test_list_sorts_newest_first_and_prunes(self):
        self.store.data[TELEMETRY_KEY] = [
            {"platform": "old", "status": "detected", "timestamp": NOW_MS - 48 * 3600 * 1000},
            {"platform": "a", "status": "detected", "timestamp": NOW_MS - 1000},
            {"platform": "b", "status": "error", "timestamp": NOW_MS},
        ]
        entries = await self.log.list()
        self.assertEqual([entry.platform for entry in entries], ["b", "a"])
        self.assertEqual(len(self.store.data[TELEMETRY_KEY]), 2)

    async def test_retention_follows_settings(self):
        await self.preferences.update({"detectorTelemetryRetentionHours": 1})
        await self.log.record({"platform": "a", "status": "detected", "timestamp": NOW_MS - 2 * 3600 * 1000})
        await self.log.record({"platform": "b", "status": "detected"})
        self.assertEqual([entry.platform for entry in await self.log.list()], ["b"])

    async def test_clear(self):
        await self.log.record({"platform": "a", "status": "detected"})
        await self.log.clear()
        self.assertNotIn(TELEMETRY_KEY, self.store.data)
        self.assertEqual(await self.log.list(), [])

    async def test_store_failure_propagates(self):
        store = FailingStore()
        log = TelemetryLog(store, SettingsAccessor(store), RetentionManager(store))
        store.failing = True
        with self.assertRaises(StoreUnavailableError):
            await log.record({"platform": "a", "status": "detected"})


class TestSettingsAccessor(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemoryStore()
        self.preferences = SettingsAccessor(self.store)

    def tearDown(self):
        logging.getLogger("rewatch").setLevel(logging.NOTSET)

    async def test_defaults(self):
        prefs = await self.preferences.current()
        self.assertEqual(prefs.to_store(), {
            "debugLoggingEnabled": False,
            "detectorTelemetryRetentionHours": 24,
            "detectorHeartbeatSeconds": 300,
        })

    async def test_invalid_values_fall_back(self):
        self.store.data[SETTINGS_KEY] = {
            "debugLoggingEnabled": "yes", "detectorTelemetryRetentionHours": 0, "detectorHeartbeatSeconds": "fast",
        }
        prefs = await self.preferences.load()
        self.assertFalse(prefs.debug_logging_enabled)
        self.assertEqual(prefs.detector_telemetry_retention_hours, 1)
        self.assertEqual(prefs.detector_heartbeat_seconds, 300)

    async def test_update_persists_and_toggles_debug_logging(self):
        prefs = await self.preferences.update({"debugLoggingEnabled": True})
        self.assertTrue(prefs.debug_logging_enabled)
        self.assertTrue(self.store.data[SETTINGS_KEY]["debugLoggingEnabled"])
        self.assertEqual(logging.getLogger("rewatch").level, logging.DEBUG)

        await self.preferences.update({"debugLoggingEnabled": False})
        self.assertEqual(logging.getLogger("rewatch").level, logging.INFO)

    async def test_refresh_picks_up_external_changes(self):
        await self.preferences.current()
        self.store.data[SETTINGS_KEY] = {"detectorTelemetryRetentionHours": 48}
        self.assertEqual((await self.preferences.current()).detector_telemetry_retention_hours, 24)
        self.assertEqual((await self.preferences.refresh()).detector_telemetry_retention_hours, 48)


if __name__ == '__main__':
    unittest.main()
