import unittest
from datetime import datetime, timedelta, timezone

from crewsync.errors import INVALID_DUTY, NormalizationError
from crewsync.models import DutyRecord, SyncConfig
from crewsync.normalizer import (
    event_id,
    normalize,
    normalize_all,
    parse_roster_timestamp,
    slugify_title,
    to_civil_time,
    civil_zone,
)


class NormalizerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.sync_config = SyncConfig()

    def test_id_is_deterministic(self) -> None:
        duty = DutyRecord(name="JX101 NRT", start="2025-03-01T09:00", end="2025-03-01T13:00")
        first = normalize(duty, sync_config=self.sync_config)
        second = normalize(duty, sync_config=self.sync_config)
        self.assertEqual(first.id, second.id)
        self.assertEqual(first.id, "jx101nrt-20250301T090000@crewsync")

    def test_same_name_different_day_yields_different_ids(self) -> None:
        a = normalize(
            DutyRecord(name="SBY", start="2025-03-01T09:00", end="2025-03-01T17:00"),
            sync_config=self.sync_config,
        )
        b = normalize(
            DutyRecord(name="SBY", start="2025-03-02T09:00", end="2025-03-02T17:00"),
            sync_config=self.sync_config,
        )
        self.assertNotEqual(a.id, b.id)

    def test_different_name_same_start_yields_different_ids(self) -> None:
        a = normalize(
            DutyRecord(name="JX101 NRT", start="2025-03-01T09:00", end="2025-03-01T13:00"),
            sync_config=self.sync_config,
        )
        b = normalize(
            DutyRecord(name="JX800 KIX", start="2025-03-01T09:00", end="2025-03-01T13:00"),
            sync_config=self.sync_config,
        )
        self.assertNotEqual(a.id, b.id)

    def test_slug_keeps_slashes_and_digits(self) -> None:
        self.assertEqual(slugify_title("JX101/JX102 NRT"), "jx101/jx102nrt")
        self.assertEqual(slugify_title("Ground-School (A)"), "groundschoola")

    def test_naive_timestamps_are_civil_time_in_configured_zone(self) -> None:
        event = normalize(
            DutyRecord(name="JX101 NRT", start="2025-03-01T09:00", end="2025-03-01T13:00"),
            sync_config=self.sync_config,
        )
        self.assertEqual(event.start.hour, 9)
        self.assertEqual(event.start.utcoffset(), timedelta(hours=8))
        self.assertEqual(event.start.isoformat(), "2025-03-01T09:00:00+08:00")

    def test_aware_timestamps_are_converted_into_zone(self) -> None:
        zone = civil_zone("Asia/Taipei")
        converted = to_civil_time(datetime(2025, 3, 1, 1, 0, tzinfo=timezone.utc), zone)
        self.assertEqual(converted.hour, 9)
        self.assertEqual(converted.utcoffset(), timedelta(hours=8))

    def test_roster_format_is_parsed(self) -> None:
        self.assertEqual(parse_roster_timestamp("2025.Mar.01 0905L"), datetime(2025, 3, 1, 9, 5))
        self.assertEqual(parse_roster_timestamp("2025.DEC.31 2359"), datetime(2025, 12, 31, 23, 59))
        self.assertIsNone(parse_roster_timestamp("2025.Xyz.01 0900L"))
        self.assertIsNone(parse_roster_timestamp("not a date"))

        event = normalize(
            DutyRecord(name="JX101 NRT", start="2025.Mar.01 0900L", end="2025.Mar.01 1300L"),
            sync_config=self.sync_config,
        )
        self.assertEqual(event.id, "jx101nrt-20250301T090000@crewsync")

    def test_flight_duty_classification(self) -> None:
        flight = normalize(
            DutyRecord(name="JX101 NRT", start="2025-03-01T09:00", end="2025-03-01T13:00"),
            sync_config=self.sync_config,
        )
        ground = normalize(
            DutyRecord(name="SBY JX", start="2025-03-01T09:00", end="2025-03-01T13:00"),
            sync_config=self.sync_config,
        )
        self.assertTrue(flight.is_flight_duty)
        self.assertFalse(ground.is_flight_duty)

    def test_invalid_duties_raise(self) -> None:
        cases = [
            DutyRecord(name="   ", start="2025-03-01T09:00", end="2025-03-01T13:00"),
            DutyRecord(name="JX101", start="garbage", end="2025-03-01T13:00"),
            DutyRecord(name="JX101", start="2025-03-01T13:00", end="2025-03-01T13:00"),
            DutyRecord(name="JX101", start="2025-03-01T14:00", end="2025-03-01T13:00"),
            DutyRecord(name="JX101", start="", end="2025-03-01T13:00"),
        ]
        for duty in cases:
            with self.subTest(duty=duty):
                with self.assertRaises(NormalizationError) as ctx:
                    normalize(duty, sync_config=self.sync_config)
                self.assertEqual(ctx.exception.kind, INVALID_DUTY)

    def test_normalize_all_skips_invalid_and_duplicates(self) -> None:
        messages: list[str] = []
        duties = [
            DutyRecord(name="JX101 NRT", start="2025-03-01T09:00", end="2025-03-01T13:00"),
            DutyRecord(name="", start="2025-03-02T09:00", end="2025-03-02T13:00"),
            DutyRecord(name="JX101 NRT", start="2025-03-01T09:00", end="2025-03-01T14:00"),
            DutyRecord(name="SBY", start="2025-03-03T09:00", end="2025-03-03T17:00"),
        ]
        events = normalize_all(duties, sync_config=self.sync_config, log=messages.append)
        self.assertEqual([event.title for event in events], ["JX101 NRT", "SBY"])
        self.assertEqual(events[0].end.hour, 13)
        self.assertEqual(len(messages), 2)

    def test_impossible_roster_dates_are_skipped_as_invalid(self) -> None:
        self.assertIsNone(parse_roster_timestamp("2025.Feb.30 0900L"))
        self.assertIsNone(parse_roster_timestamp("2025.Mar.01 2400L"))
        with self.assertRaises(NormalizationError) as ctx:
            normalize(
                DutyRecord(name="JX101 NRT", start="2025.Feb.30 0900L", end="2025.Feb.30 1300L"),
                sync_config=self.sync_config,
            )
        self.assertEqual(ctx.exception.kind, INVALID_DUTY)

        messages: list[str] = []
        events = normalize_all(
            [
                DutyRecord(name="JX101 NRT", start="2025.Feb.30 0900L", end="2025.Feb.30 1300L"),
                DutyRecord(name="SBY", start="2025.Feb.28 0900L", end="2025.Feb.28 1700L"),
            ],
            sync_config=self.sync_config,
            log=messages.append,
        )
        self.assertEqual([event.title for event in events], ["SBY"])
        self.assertEqual(len(messages), 1)

    def test_custom_namespace_in_id(self) -> None:
        config = SyncConfig.from_dict({"namespace": "@MyRoster"})
        start = to_civil_time("2025-03-01T09:00", civil_zone(config.timezone))
        self.assertEqual(event_id("JX101", start, config.namespace), "jx101-20250301T090000@myroster")


if __name__ == "__main__":
    unittest.main()
