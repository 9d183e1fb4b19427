from __future__ import annotations

from datetime import timedelta
import unittest

from _support import FakeClock, build_memory_session_factory
from peopleflow.db import ZERO_OBJECT_ID, new_object_id
from peopleflow.errors import (
    ActivityNotFoundError,
    InvalidActivityDataError,
    InvalidActivityKindError,
    InvalidIdError,
)
from peopleflow.models import Activity, ActivityType
from peopleflow.schemas import ActivityRead
from peopleflow.services.activity_log import ActivityLog, parse_activity_type


class ActivityLogTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.log = ActivityLog(
            build_memory_session_factory(),
            retention_days=90,
            deadline_seconds=5,
            clock=self.clock,
        )
        self.user_id = new_object_id()
        self.employee_id = new_object_id()

    def test_log_persists_activity_with_clock_timestamp(self) -> None:
        activity = self.log.log(
            ActivityType.EMPLOYEE_ADDED,
            self.user_id,
            "Anna Admin",
            target_id=self.employee_id,
            target_type="employee",
            target_name="Max Mustermann",
            description="Employee created",
            metadata={"department": "Sales"},
        )

        stored = self.log.find_by_id(activity.id)
        self.assertEqual(stored.type, "employee_added")
        self.assertEqual(stored.timestamp, self.clock.now)
        self.assertEqual(stored.meta, {"department": "Sales"})
        self.assertEqual(ActivityRead.model_validate(stored).metadata, {"department": "Sales"})

    def test_parse_activity_type_accepts_values_and_rejects_unknown(self) -> None:
        self.assertIs(parse_activity_type("overtime_adjusted"), ActivityType.OVERTIME_ADJUSTED)
        with self.assertRaises(InvalidActivityKindError):
            parse_activity_type("coffee_break")

    def test_unknown_kind_is_rejected_before_write(self) -> None:
        with self.assertRaises(InvalidActivityKindError):
            self.log.log("coffee_break", self.user_id, "Anna Admin")
        self.assertEqual(self.log.store.count(), 0)

    def test_user_fields_are_required(self) -> None:
        with self.assertRaises(InvalidActivityDataError) as ctx:
            self.log.log(ActivityType.SYSTEM_SETTING_CHANGED, ZERO_OBJECT_ID, "Anna Admin")
        self.assertEqual(ctx.exception.field, "user_id")

        with self.assertRaises(InvalidActivityDataError) as ctx:
            self.log.log(ActivityType.SYSTEM_SETTING_CHANGED, self.user_id, "  ")
        self.assertEqual(ctx.exception.field, "user_name")

    def test_target_fields_required_for_targeted_kinds(self) -> None:
        with self.assertRaises(InvalidActivityDataError) as ctx:
            self.log.log(ActivityType.VACATION_APPROVED, self.user_id, "Anna Admin")
        self.assertEqual(ctx.exception.field, "target_id")

        with self.assertRaises(InvalidActivityDataError) as ctx:
            self.log.log(
                ActivityType.VACATION_APPROVED,
                self.user_id,
                "Anna Admin",
                target_id=self.employee_id,
                target_type="employee",
            )
        self.assertEqual(ctx.exception.field, "target_name")

    def test_untargeted_kind_may_omit_target(self) -> None:
        activity = self.log.log(ActivityType.SYSTEM_SETTING_CHANGED, self.user_id, "Anna Admin")
        self.assertIsNone(self.log.find_by_id(activity.id).target_id)

    def test_malformed_user_id_is_rejected(self) -> None:
        with self.assertRaises(InvalidIdError):
            self.log.log(ActivityType.SYSTEM_SETTING_CHANGED, "admin", "Anna Admin")

    def test_find_by_id_miss_raises_not_found(self) -> None:
        with self.assertRaises(ActivityNotFoundError):
            self.log.find_by_id(new_object_id())

    def test_queries_return_newest_first_with_limits(self) -> None:
        other_user = new_object_id()
        for index in range(3):
            self.log.log(
                ActivityType.EMPLOYEE_UPDATED,
                self.user_id,
                "Anna Admin",
                target_id=self.employee_id,
                target_type="employee",
                target_name="Max Mustermann",
                description=f"update {index}",
            )
            self.clock.advance(minutes=1)
        self.log.log(ActivityType.USER_ADDED, other_user, "Bernd Boss", description="user added")

        by_user = self.log.find_by_user(self.user_id, 2)
        by_target = self.log.find_by_target(self.employee_id)
        by_type = self.log.find_by_type("employee_updated")
        recent = self.log.find_recent(2)

        self.assertEqual([item.description for item in by_user], ["update 2", "update 1"])
        self.assertEqual(len(by_target), 3)
        self.assertEqual(by_type[0].description, "update 2")
        self.assertEqual([item.description for item in recent], ["user added", "update 2"])

    def test_non_positive_limit_uses_default(self) -> None:
        for _ in range(25):
            self.log.log(ActivityType.SYSTEM_SETTING_CHANGED, self.user_id, "Anna Admin")
            self.clock.advance(seconds=1)

        self.assertEqual(len(self.log.find_recent(0)), 20)
        self.assertEqual(len(self.log.find_by_user(self.user_id, -1)), 25)

    def test_find_by_date_range_pages_and_counts(self) -> None:
        start = self.clock.now
        for index in range(5):
            self.log.log(
                ActivityType.SYSTEM_SETTING_CHANGED,
                self.user_id,
                "Anna Admin",
                description=f"change {index}",
            )
            self.clock.advance(days=1)

        items, total = self.log.find_by_date_range(start, start + timedelta(days=3), skip=1, limit=2)

        self.assertEqual(total, 4)
        self.assertEqual([item.description for item in items], ["change 2", "change 1"])

    def test_find_by_date_range_rejects_inverted_range(self) -> None:
        with self.assertRaises(InvalidActivityDataError):
            self.log.find_by_date_range(self.clock.now, self.clock.now - timedelta(days=1))

    def test_retention_delete_and_stats(self) -> None:
        now = self.clock.now
        self.clock.now = now - timedelta(days=100)
        self.log.log(ActivityType.SYSTEM_SETTING_CHANGED, self.user_id, "Anna Admin", description="old")
        self.clock.now = now - timedelta(days=10)
        self.log.log(ActivityType.SYSTEM_SETTING_CHANGED, self.user_id, "Anna Admin", description="recent")
        self.clock.now = now

        deleted = self.log.delete_older_than(timedelta(days=90))
        week = self.log.stats(7)
        month = self.log.stats(30)

        self.assertEqual(deleted, 1)
        self.assertEqual(self.log.store.count(), 1)
        self.assertEqual(week.total_activities, 0)
        self.assertEqual(week.by_type, {})
        self.assertEqual(month.total_activities, 1)
        self.assertEqual(month.by_type, {"system_setting_changed": 1})
        self.assertEqual(month.start_date, now - timedelta(days=30))
        self.assertEqual(week.period_days, 7)

    def test_stats_rejects_non_positive_period(self) -> None:
        for days in (0, -5):
            with self.subTest(days=days):
                with self.assertRaises(InvalidActivityDataError) as ctx:
                    self.log.stats(days)
                self.assertEqual(ctx.exception.field, "days")

    def test_purge_expired_applies_ttl_index(self) -> None:
        names = self.log.ensure_indexes()
        self.assertIn("ix_activities_timestamp_ttl", names)

        now = self.clock.now
        self.clock.now = now - timedelta(days=91)
        self.log.log(ActivityType.SYSTEM_SETTING_CHANGED, self.user_id, "Anna Admin")
        self.clock.now = now
        self.log.log(ActivityType.SYSTEM_SETTING_CHANGED, self.user_id, "Anna Admin")

        self.assertEqual(self.log.purge_expired(), 1)
        self.assertEqual(self.log.store.count(), 1)


if __name__ == "__main__":
    unittest.main()
