import unittest
from datetime import datetime, timezone
from rewatch.clock import months_before, parse_iso, to_iso
from rewatch.index import TRACKED_CONTENT_KEY
from rewatch.retention import RetentionManager, prune_telemetry
from rewatch.stores.memory import InMemoryStore
from tests.helpers import FIXED_NOW, fixed_clock

HOUR_MS = 3600 * 1000
NOW_MS = FIXED_NOW.timestamp() * 1000


class TestPruneProgress(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemoryStore({
            TRACKED_CONTENT_KEY: ["oldKey", "recentKey", "incompleteKey"],
            "oldKey": {"url": "https://service.example/old", "percentComplete": 100,
                       "lastWatched": "2025-03-01T00:00:00.000Z"},
            "recentKey": {"url": "https://service.example/recent", "percentComplete": 100,
                          "lastWatched": "2025-09-01T00:00:00.000Z"},
            "incompleteKey": {"url": "https://service.example/incomplete", "percentComplete": 40,
                              "lastWatched": "2025-01-01T00:00:00.000Z"},
        })
        self.retention = RetentionManager(self.store, clock=fixed_clock)

    async def test_removes_completed_items_older_than_six_months(self):
        removed = await self.retention.prune_progress()

        self.assertEqual(removed, ["oldKey"])
        self.assertNotIn("oldKey", self.store.data)
        self.assertIn("recentKey", self.store.data)
        self.assertIn("incompleteKey", self.store.data)
        self.assertEqual(self.store.data[TRACKED_CONTENT_KEY], ["recentKey", "incompleteKey"])
        self.assertEqual(self.retention.last_run, FIXED_NOW.timestamp())

    async def test_skips_unparseable_timestamps(self):
        self.store.data["brokenKey"] = {"url": "https://x", "percentComplete": 100, "lastWatched": "yesterday"}
        self.store.data["missingKey"] = {"url": "https://y", "percentComplete": 100}
        await self.retention.prune_progress()
        self.assertIn("brokenKey", self.store.data)
        self.assertIn("missingKey", self.store.data)

    async def test_drops_dangling_index_entries(self):
        self.store.data[TRACKED_CONTENT_KEY].append("ghostKey")
        await self.retention.prune_progress()
        self.assertEqual(self.store.data[TRACKED_CONTENT_KEY], ["recentKey", "incompleteKey"])

    async def test_threshold_is_configurable(self):
        retention = RetentionManager(self.store, clock=fixed_clock, completion_threshold=30)
        removed = await retention.prune_progress()
        self.assertEqual(sorted(removed), ["incompleteKey", "oldKey"])


class TestPruneTelemetry(unittest.TestCase):
    def test_drops_entries_outside_window(self):
        entries = [
            {"platform": "a", "timestamp": NOW_MS - 5 * HOUR_MS},
            {"platform": "b", "timestamp": NOW_MS - HOUR_MS},
            {"platform": "c", "timestamp": "bad"},
        ]
        kept = prune_telemetry(entries, 2, NOW_MS)
        self.assertEqual([entry["platform"] for entry in kept], ["b"])

    def test_retention_hours_floor_to_one(self):
        entries = [{"platform": "a", "timestamp": NOW_MS - 30 * 60 * 1000}]
        self.assertEqual(len(prune_telemetry(entries, 0, NOW_MS)), 1)
        self.assertEqual(len(prune_telemetry(entries, -12, NOW_MS)), 1)

    def test_fractional_retention_hours_are_kept(self):
        entries = [{"platform": "a", "timestamp": NOW_MS - 80 * 60 * 1000}]
        self.assertEqual(len(prune_telemetry(entries, 1.5, NOW_MS)), 1)
        stale = [{"platform": "b", "timestamp": NOW_MS - 30 * HOUR_MS}]
        self.assertEqual(prune_telemetry(stale, 10**400, NOW_MS), [])

    def test_caps_to_most_recent_entries(self):
        entries = [{"platform": str(i), "timestamp": NOW_MS} for i in range(250)]
        kept = prune_telemetry(entries, 24, NOW_MS)
        self.assertEqual(len(kept), 200)
        self.assertEqual(kept[0]["platform"], "50")
        self.assertEqual(kept[-1]["platform"], "249")

    def test_manager_uses_its_clock(self):
        retention = RetentionManager(InMemoryStore(), clock=fixed_clock, max_telemetry_entries=1)
        entries = [{"timestamp": NOW_MS - 1}, {"timestamp": NOW_MS}]
        self.assertEqual(retention.prune_telemetry(entries, 1), [{"timestamp": NOW_MS}])


class TestClock(unittest.TestCase):
    def test_months_before_clamps_day(self):
        self.assertEqual(
            months_before(datetime(2025, 8, 31, tzinfo=timezone.utc), 6),
            datetime(2025, 2, 28, tzinfo=timezone.utc),
        )
        self.assertEqual(
            months_before(datetime(2025, 3, 15, tzinfo=timezone.utc), 6),
            datetime(2024, 9, 15, tzinfo=timezone.utc),
        )

    def test_iso_round_trip(self):
        self.assertEqual(to_iso(FIXED_NOW), "2025-10-26T00:00:00.000Z")
        self.assertEqual(parse_iso("2025-10-26T00:00:00.000Z"), FIXED_NOW)
        self.assertIsNone(parse_iso("not a date"))
        self.assertIsNone(parse_iso(12345))


if __name__ == '__main__':
    unittest.main()
