from __future__ import annotations

from datetime import timedelta
import unittest
from unittest.mock import patch

from _support import FakeClock, build_memory_session_factory
from peopleflow.db import ZERO_OBJECT_ID, new_object_id
from peopleflow.errors import (
    AdjustmentNotFoundError,
    AlreadyProcessedError,
    InvalidAdjustmentError,
    InvalidIdError,
    InvalidStatusError,
    StoreError,
)
from peopleflow.models import ActivityType, OvertimeAdjustment
from peopleflow.schemas import Actor, OvertimeAdjustmentInput
from peopleflow.services.activity_log import ActivityLog
from peopleflow.services.overtime_adjustments import (
    OvertimeAdjustmentEngine,
    parse_target_status,
    validate_adjustment,
)


class OvertimeAdjustmentEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        session_factory = build_memory_session_factory()
        self.clock = FakeClock()
        self.activities = ActivityLog(session_factory, retention_days=90, deadline_seconds=5, clock=self.clock)
        self.engine = OvertimeAdjustmentEngine(
            session_factory,
            self.activities,
            deadline_seconds=5,
            clock=self.clock,
        )
        self.employee_id = new_object_id()
        self.requester_id = new_object_id()
        self.approver_id = new_object_id()

    def _payload(self, **overrides: object) -> OvertimeAdjustmentInput:
        values: dict[str, object] = {
            "employee_id": self.employee_id,
            "type": "manual",
            "hours": 5.0,
            "reason": "reviewed",
            "adjusted_by": self.requester_id,
            "adjuster_name": "Uwe Requester",
        }
        values.update(overrides)
        return OvertimeAdjustmentInput(**values)

    def _create(self, **overrides: object) -> str:
        adjustment_id = self.engine.create(self._payload(**overrides))
        self.clock.advance(minutes=1)
        return adjustment_id

    def test_approve_happy_path_logs_two_activities(self) -> None:
        adjustment_id = self._create()
        self.assertEqual(self.engine.find_by_id(adjustment_id).status, "pending")

        approved = self.engine.update_status(adjustment_id, "approved", self.approver_id, "Alice")

        self.assertEqual(approved.status, "approved")
        self.assertEqual(approved.approved_by, self.approver_id)
        self.assertEqual(approved.approver_name, "Alice")
        self.assertIsNotNone(approved.approved_at)

        trail = self.activities.find_by_target(self.employee_id)
        self.assertEqual(len(trail), 2)
        self.assertTrue(all(item.type == ActivityType.OVERTIME_ADJUSTED.value for item in trail))
        self.assertEqual(trail[0].user_id, self.approver_id)
        self.assertEqual(trail[0].meta["action"], "approved")  # type: ignore[index]
        self.assertEqual(trail[1].meta["action"], "requested")  # type: ignore[index]
        self.assertEqual(trail[1].target_name, self.employee_id)

    def test_created_adjustment_reads_back_unchanged(self) -> None:
        payload = self._payload(
            type="carryOver",
            hours=-2.5,
            reason="year end carry over",
            description="remaining hours from 2025",
        )
        adjustment_id = self.engine.create(payload)

        stored = self.engine.find_by_id(adjustment_id)

        self.assertEqual(stored.id, adjustment_id)
        self.assertEqual(stored.type, "carryOver")
        self.assertEqual(stored.hours, -2.5)
        self.assertEqual(stored.reason, "year end carry over")
        self.assertEqual(stored.description, "remaining hours from 2025")
        self.assertEqual(stored.employee_id, self.employee_id)
        self.assertEqual(stored.adjusted_by, self.requester_id)
        self.assertEqual(stored.adjuster_name, "Uwe Requester")
        self.assertEqual(stored.status, "pending")
        self.assertEqual(stored.created_at, self.clock.now)

    def test_double_approve_is_already_processed_and_leaves_record_unchanged(self) -> None:
        adjustment_id = self._create()
        self.engine.update_status(adjustment_id, "approved", self.approver_id, "Alice")
        before = self.engine.find_by_id(adjustment_id)

        with self.assertRaises(AlreadyProcessedError) as ctx:
            self.engine.update_status(adjustment_id, "approved", new_object_id(), "Bob")

        self.assertEqual(ctx.exception.current_status, "approved")
        after = self.engine.find_by_id(adjustment_id)
        self.assertEqual(after.approved_by, before.approved_by)
        self.assertEqual(after.approver_name, "Alice")
        self.assertEqual(after.updated_at, before.updated_at)
        self.assertEqual(len(self.activities.find_by_target(self.employee_id)), 2)

    def test_reject_after_approve_is_already_processed(self) -> None:
        adjustment_id = self._create()
        self.engine.update_status(adjustment_id, "rejected", self.approver_id, "Alice")

        with self.assertRaises(AlreadyProcessedError) as ctx:
            self.engine.update_status(adjustment_id, "approved", self.approver_id, "Alice")
        self.assertEqual(ctx.exception.current_status, "rejected")

    def test_bulk_partial_skips_processed_records(self) -> None:
        first = self._create(hours=2.0)
        second = self._create(hours=3.5)
        third = self._create(hours=-1.0)
        self.engine.update_status(second, "approved", self.approver_id, "Alice")

        updated = self.engine.bulk_update_status([first, second, third], "rejected", self.approver_id, "Alice")

        self.assertEqual(updated, 2)
        self.assertEqual(self.engine.find_by_id(first).status, "rejected")
        self.assertEqual(self.engine.find_by_id(second).status, "approved")
        self.assertEqual(self.engine.find_by_id(third).status, "rejected")

        summary = self.engine.summary(self.employee_id)
        self.assertEqual(summary.total_pending, 0)
        self.assertEqual(summary.total_approved, 1)
        self.assertEqual(summary.total_rejected, 2)
        self.assertAlmostEqual(summary.hours_approved, 3.5)
        self.assertAlmostEqual(summary.hours_rejected, 1.0)
        self.assertAlmostEqual(self.engine.total_approved_hours(self.employee_id), 3.5)
        # 3 requested + 1 approved + 2 rejected
        self.assertEqual(len(self.activities.find_by_target(self.employee_id)), 6)

    def test_bulk_dedupes_ids_and_ignores_missing(self) -> None:
        adjustment_id = self._create()

        updated = self.engine.bulk_update_status(
            [adjustment_id, adjustment_id.upper(), new_object_id()],
            "approved",
            self.approver_id,
            "Alice",
        )

        self.assertEqual(updated, 1)
        self.assertEqual(self.engine.bulk_update_status([adjustment_id], "approved", self.approver_id, "Alice"), 0)

    def test_bulk_rejects_invalid_input(self) -> None:
        with self.assertRaises(InvalidIdError):
            self.engine.bulk_update_status(["nope"], "approved", self.approver_id, "Alice")
        with self.assertRaises(InvalidStatusError):
            self.engine.bulk_update_status([new_object_id()], "pending", self.approver_id, "Alice")
        self.assertEqual(self.engine.bulk_update_status([], "approved", self.approver_id, "Alice"), 0)

    def test_update_status_errors(self) -> None:
        with self.assertRaises(AdjustmentNotFoundError):
            self.engine.update_status(new_object_id(), "approved", self.approver_id, "Alice")

        adjustment_id = self._create()
        with self.assertRaises(InvalidStatusError):
            self.engine.update_status(adjustment_id, "pending", self.approver_id, "Alice")
        with self.assertRaises(InvalidStatusError):
            self.engine.update_status(adjustment_id, "archived", self.approver_id, "Alice")
        with self.assertRaises(InvalidAdjustmentError):
            self.engine.update_status(adjustment_id, "approved", ZERO_OBJECT_ID, "Alice")
        with self.assertRaises(InvalidAdjustmentError):
            self.engine.update_status(adjustment_id, "approved", self.approver_id, " ")
        self.assertEqual(self.engine.find_by_id(adjustment_id).status, "pending")

    def test_parse_target_status(self) -> None:
        self.assertEqual(parse_target_status(" Approved ").value, "approved")
        with self.assertRaises(InvalidStatusError):
            parse_target_status("pending")

    def test_validation_rejects_bad_payloads(self) -> None:
        cases = [
            ({"type": "bonus"}, "type"),
            ({"hours": 0}, "hours"),
            ({"hours": 100.5}, "hours"),
            ({"hours": -101}, "hours"),
            ({"hours": float("nan")}, "hours"),
            ({"reason": "  "}, "reason"),
            ({"employee_id": ""}, "employee_id"),
            ({"employee_id": ZERO_OBJECT_ID}, "employee_id"),
            ({"adjusted_by": ""}, "adjusted_by"),
            ({"adjuster_name": ""}, "adjuster_name"),
        ]
        for overrides, field_name in cases:
            with self.subTest(overrides=overrides):
                with self.assertRaises(InvalidAdjustmentError) as ctx:
                    self.engine.create(self._payload(**overrides))
                self.assertEqual(ctx.exception.field, field_name)
        self.assertEqual(self.engine.store.count(), 0)

    def test_validation_accepts_boundaries_and_normalizes(self) -> None:
        validated = validate_adjustment(self._payload(hours=-100, reason="  carry  ", type="carryOver"))
        self.assertEqual(validated.hours, -100.0)
        self.assertEqual(validated.reason, "carry")
        self.assertEqual(validated.type, "carryOver")

    def test_create_rejects_non_pending_status(self) -> None:
        with self.assertRaises(InvalidStatusError):
            self.engine.create(self._payload(status="approved"))
        self.assertEqual(self.engine.store.count(), 0)

    def test_create_is_atomic_with_activity(self) -> None:
        with patch.object(ActivityLog, "log", side_effect=StoreError("activity write failed")):
            with self.assertRaises(StoreError):
                self.engine.create(self._payload())

        self.assertEqual(self.engine.store.count(), 0)

    def test_status_change_is_atomic_with_activity(self) -> None:
        adjustment_id = self._create()

        with patch.object(ActivityLog, "log", side_effect=StoreError("activity write failed")):
            with self.assertRaises(StoreError):
                self.engine.update_status(adjustment_id, "approved", self.approver_id, "Alice")

        record = self.engine.find_by_id(adjustment_id)
        self.assertEqual(record.status, "pending")
        self.assertIsNone(record.approved_by)

    def test_create_uses_employee_name_as_target_name(self) -> None:
        self.engine.create(self._payload(), employee_name="Erika Mustermann")
        trail = self.activities.find_by_target(self.employee_id)
        self.assertEqual(trail[0].target_name, "Erika Mustermann")

    def test_update_and_delete_only_while_pending(self) -> None:
        actor = Actor(id=self.requester_id, name="Uwe Requester")
        adjustment_id = self._create()

        updated = self.engine.update(adjustment_id, self._payload(hours=7.5, reason="recounted"), actor)
        self.assertEqual(updated.hours, 7.5)
        self.assertEqual(self.engine.find_by_id(adjustment_id).reason, "recounted")

        self.engine.delete(adjustment_id, actor)
        with self.assertRaises(AdjustmentNotFoundError):
            self.engine.find_by_id(adjustment_id)

        approved_id = self._create()
        self.engine.update_status(approved_id, "approved", self.approver_id, "Alice")
        with self.assertRaises(AlreadyProcessedError):
            self.engine.update(approved_id, self._payload(hours=1.0), actor)
        with self.assertRaises(AlreadyProcessedError):
            self.engine.delete(approved_id, actor)
        self.assertEqual(self.engine.find_by_id(approved_id).hours, 5.0)

    def test_find_pending_is_fifo_and_paged(self) -> None:
        ids = [self._create(hours=float(index + 1)) for index in range(4)]
        self.engine.update_status(ids[1], "approved", self.approver_id, "Alice")

        items, total = self.engine.find_pending(skip=1, limit=1)
        all_items, _ = self.engine.find_pending()

        self.assertEqual(total, 3)
        self.assertEqual([item.id for item in items], [ids[2]])
        self.assertEqual([item.id for item in all_items], [ids[0], ids[2], ids[3]])

    def test_find_by_employee_is_newest_first(self) -> None:
        other_employee = new_object_id()
        first = self._create()
        second = self._create()
        self._create(employee_id=other_employee)

        items, total = self.engine.find_by_employee(self.employee_id)

        self.assertEqual(total, 2)
        self.assertEqual([item.id for item in items], [second, first])
        with self.assertRaises(InvalidIdError):
            self.engine.find_by_employee("employee-1")

    def test_find_approved_and_date_range(self) -> None:
        start = self.clock.now
        first = self._create()
        self.clock.advance(days=2)
        second = self._create()
        self.engine.update_status(first, "approved", self.approver_id, "Alice")

        approved = self.engine.find_approved_by_employee(self.employee_id)
        in_range = self.engine.find_by_date_range(start, start + timedelta(days=1))
        pending_in_range = self.engine.find_by_date_range(start, self.clock.now, "pending")

        self.assertEqual([item.id for item in approved], [first])
        self.assertEqual([item.id for item in in_range], [first])
        self.assertEqual([item.id for item in pending_in_range], [second])
        with self.assertRaises(InvalidAdjustmentError):
            self.engine.find_by_date_range(start, start - timedelta(days=1))

    def test_summary_for_employee_without_adjustments(self) -> None:
        summary = self.engine.summary(self.employee_id)
        self.assertEqual(summary.total_pending + summary.total_approved + summary.total_rejected, 0)
        self.assertEqual(self.engine.total_approved_hours(self.employee_id), 0.0)

    def test_ensure_indexes_is_idempotent(self) -> None:
        first = self.engine.ensure_indexes()
        second = self.engine.ensure_indexes()
        self.assertEqual(first, second)
        self.assertIn("ix_overtime_adjustments_employee_id_status", first)

    def test_store_rows_keep_pending_guard(self) -> None:
        adjustment_id = self._create()
        self.engine.store.update_by_id(adjustment_id, {"status": "rejected"})

        with self.assertRaises(AlreadyProcessedError):
            self.engine.update_status(adjustment_id, "approved", self.approver_id, "Alice")
        self.assertEqual(self.engine.store.count(OvertimeAdjustment.status == "approved"), 0)


if __name__ == "__main__":
    unittest.main()
