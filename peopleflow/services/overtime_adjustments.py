"""Overtime adjustment approval workflow.

Status moves ``pending -> approved`` or ``pending -> rejected`` and never back.
Every transition runs as one transaction: the row is read ``FOR UPDATE``, the
write is guarded by ``status = 'pending'`` and the ``overtime_adjusted``
activity is written in the same transaction.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from peopleflow.db import is_zero_id, utc_now
from peopleflow.errors import (
    AdjustmentNotFoundError,
    AlreadyProcessedError,
    InvalidAdjustmentError,
    InvalidStatusError,
)
from peopleflow.models import ActivityType, AdjustmentStatus, AdjustmentType, OvertimeAdjustment
from peopleflow.schemas import Actor, AdjustmentSummary, OvertimeAdjustmentInput
from peopleflow.services.activity_log import ActivityLog
from peopleflow.services.store import DESCENDING, CollectionGateway, validate_object_id

logger = logging.getLogger("peopleflow.overtime")

MAX_ABS_HOURS = 100.0
DEFAULT_PAGE_LIMIT = 50
FINAL_STATUSES = (AdjustmentStatus.APPROVED, AdjustmentStatus.REJECTED)


def _require_id(value: str | None, field_name: str) -> str:
    if is_zero_id(value):
        raise InvalidAdjustmentError(f"{field_name} is required", field=field_name)
    return validate_object_id(value, field_name=field_name)


def parse_adjustment_status(value: AdjustmentStatus | str) -> AdjustmentStatus:
    if isinstance(value, AdjustmentStatus):
        return value
    try:
        return AdjustmentStatus(str(value or "").strip().lower())
    except ValueError as exc:
        raise InvalidStatusError(value) from exc


def parse_target_status(value: AdjustmentStatus | str) -> AdjustmentStatus:
    status = parse_adjustment_status(value)
    if status not in FINAL_STATUSES:
        raise InvalidStatusError(value)
    return status


def validate_adjustment(payload: OvertimeAdjustmentInput) -> OvertimeAdjustmentInput:
    """Return a normalized copy of ``payload`` or raise a validation error."""
    try:
        adjustment_type = AdjustmentType(str(payload.type or "").strip())
    except ValueError as exc:
        raise InvalidAdjustmentError(f"invalid adjustment type: {payload.type}", field="type") from exc

    employee_id = _require_id(payload.employee_id, "employee_id")

    hours = float(payload.hours)
    if not math.isfinite(hours) or hours == 0:
        raise InvalidAdjustmentError("hours must be a non-zero number", field="hours")
    if abs(hours) > MAX_ABS_HOURS:
        raise InvalidAdjustmentError(
            f"hours must be between -{MAX_ABS_HOURS:g} and {MAX_ABS_HOURS:g}",
            field="hours",
        )

    reason = (payload.reason or "").strip()
    if not reason:
        raise InvalidAdjustmentError("reason is required", field="reason")

    adjusted_by = _require_id(payload.adjusted_by, "adjusted_by")
    adjuster_name = (payload.adjuster_name or "").strip()
    if not adjuster_name:
        raise InvalidAdjustmentError("adjuster name is required", field="adjuster_name")

    status = None
    if payload.status:
        status = parse_adjustment_status(payload.status).value

    return payload.model_copy(
        update={
            "type": adjustment_type.value,
            "employee_id": employee_id,
            "hours": hours,
            "reason": reason,
            "description": payload.description or "",
            "adjusted_by": adjusted_by,
            "adjuster_name": adjuster_name,
            "status": status,
        }
    )


def _validate_actor(actor_id: str, actor_name: str, field_name: str) -> tuple[str, str]:
    normalized_id = _require_id(actor_id, field_name)
    name = (actor_name or "").strip()
    if not name:
        raise InvalidAdjustmentError(f"{field_name} name is required", field=field_name)
    return normalized_id, name


class OvertimeAdjustmentEngine:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        activity_log: ActivityLog,
        *,
        deadline_seconds: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store: CollectionGateway[OvertimeAdjustment] = CollectionGateway(
            session_factory,
            OvertimeAdjustment,
            deadline_seconds=deadline_seconds,
        )
        self._activities = activity_log
        self._clock = clock

    def ensure_indexes(self) -> list[str]:
        return [
            self.store.create_index(["employee_id"]),
            self.store.create_index(["status"]),
            self.store.create_index(["employee_id", "status"]),
            self.store.create_index([("created_at", DESCENDING)]),
            self.store.create_index(["approved_by"]),
        ]

    def _log_activity(
        self,
        session: Session,
        record: OvertimeAdjustment,
        *,
        actor_id: str,
        actor_name: str,
        action: str,
        employee_name: str | None = None,
    ) -> None:
        self._activities.log(
            ActivityType.OVERTIME_ADJUSTED,
            actor_id,
            actor_name,
            target_id=record.employee_id,
            target_type="employee",
            target_name=employee_name or record.employee_id,
            description=f"Overtime adjustment {action}: {record.hours:+g} h ({record.type})",
            metadata={
                "adjustment_id": record.id,
                "action": action,
                "status": record.status,
                "hours": record.hours,
            },
            db=session,
        )

    def _load_pending(self, session: Session, adjustment_id: str) -> OvertimeAdjustment:
        record = self.store.find_by_id(adjustment_id, for_update=True, db=session)
        if record is None:
            raise AdjustmentNotFoundError(adjustment_id)
        if record.status != AdjustmentStatus.PENDING.value:
            raise AlreadyProcessedError(record.id, record.status)
        return record

    # -- writes -----------------------------------------------------------

    def create(self, payload: OvertimeAdjustmentInput, *, employee_name: str | None = None) -> str:
        validated = validate_adjustment(payload)
        if validated.status not in (None, AdjustmentStatus.PENDING.value):
            raise InvalidStatusError(validated.status)

        now = self._clock()
        record = OvertimeAdjustment(
            employee_id=validated.employee_id,
            type=validated.type,
            hours=validated.hours,
            reason=validated.reason,
            description=validated.description,
            adjusted_by=validated.adjusted_by,
            adjuster_name=validated.adjuster_name,
            status=AdjustmentStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )

        def body(session: Session) -> str:
            adjustment_id = self.store.insert_one(record, db=session)
            self._log_activity(
                session,
                record,
                actor_id=record.adjusted_by,
                actor_name=record.adjuster_name,
                action="requested",
                employee_name=employee_name,
            )
            return adjustment_id

        adjustment_id = self.store.transaction(body, operation="create_adjustment")
        logger.info(
            "overtime_adjustment_created",
            extra={"adjustment_id": adjustment_id, "employee_id": record.employee_id, "hours": record.hours},
        )
        return adjustment_id

    def update_status(
        self,
        adjustment_id: str,
        target_status: AdjustmentStatus | str,
        approver_id: str,
        approver_name: str,
    ) -> OvertimeAdjustment:
        normalized_id = validate_object_id(adjustment_id)
        approver_id, approver_name = _validate_actor(approver_id, approver_name, "approved_by")

        def body(session: Session) -> OvertimeAdjustment:
            record = self._load_pending(session, normalized_id)
            status = parse_target_status(target_status)
            now = self._clock()
            result = self.store.update_many(
                OvertimeAdjustment.id == record.id,
                OvertimeAdjustment.status == AdjustmentStatus.PENDING.value,
                values={
                    "status": status.value,
                    "approved_by": approver_id,
                    "approver_name": approver_name,
                    "approved_at": now,
                    "updated_at": now,
                },
                db=session,
            )
            if result.modified_count == 0:
                session.refresh(record)
                raise AlreadyProcessedError(record.id, record.status)
            session.refresh(record)
            self._log_activity(
                session,
                record,
                actor_id=approver_id,
                actor_name=approver_name,
                action=status.value,
            )
            return record

        record = self.store.transaction(body, operation="update_adjustment_status")
        logger.info(
            "overtime_adjustment_status_changed",
            extra={"adjustment_id": record.id, "status": record.status, "approved_by": record.approved_by},
        )
        return record

    def update(self, adjustment_id: str, payload: OvertimeAdjustmentInput, actor: Actor) -> OvertimeAdjustment:
        normalized_id = validate_object_id(adjustment_id)
        actor_id, actor_name = _validate_actor(actor.id, actor.name, "actor")

        def body(session: Session) -> OvertimeAdjustment:
            record = self._load_pending(session, normalized_id)
            validated = validate_adjustment(payload)
            if validated.status not in (None, AdjustmentStatus.PENDING.value):
                raise InvalidStatusError(validated.status)
            self.store.update_by_id(
                record.id,
                {
                    "employee_id": validated.employee_id,
                    "type": validated.type,
                    "hours": validated.hours,
                    "reason": validated.reason,
                    "description": validated.description,
                    "adjusted_by": validated.adjusted_by,
                    "adjuster_name": validated.adjuster_name,
                    "updated_at": self._clock(),
                },
                db=session,
            )
            self._log_activity(session, record, actor_id=actor_id, actor_name=actor_name, action="updated")
            return record

        return self.store.transaction(body, operation="update_adjustment")

    def delete(self, adjustment_id: str, actor: Actor) -> None:
        normalized_id = validate_object_id(adjustment_id)
        actor_id, actor_name = _validate_actor(actor.id, actor.name, "actor")

        def body(session: Session) -> None:
            record = self._load_pending(session, normalized_id)
            self._log_activity(session, record, actor_id=actor_id, actor_name=actor_name, action="deleted")
            result = self.store.delete_many(
                OvertimeAdjustment.id == record.id,
                OvertimeAdjustment.status == AdjustmentStatus.PENDING.value,
                db=session,
            )
            if result.deleted_count == 0:
                raise AlreadyProcessedError(record.id, record.status)

        self.store.transaction(body, operation="delete_adjustment")
        logger.info("overtime_adjustment_deleted", extra={"adjustment_id": normalized_id, "actor_id": actor_id})

    def bulk_update_status(
        self,
        adjustment_ids: Sequence[str],
        target_status: AdjustmentStatus | str,
        approver_id: str,
        approver_name: str,
    ) -> int:
        """Transition every listed adjustment that is still pending.

        Ids that are missing or already processed are skipped. Returns the
        number of records actually transitioned.
        """
        normalized_ids = list(dict.fromkeys(validate_object_id(item) for item in adjustment_ids))
        if not normalized_ids:
            return 0
        status = parse_target_status(target_status)
        approver_id, approver_name = _validate_actor(approver_id, approver_name, "approved_by")

        def body(session: Session) -> int:
            pending = self.store.find_all(
                OvertimeAdjustment.id.in_(normalized_ids),
                OvertimeAdjustment.status == AdjustmentStatus.PENDING.value,
                order_by=(OvertimeAdjustment.created_at.asc(),),
                for_update=True,
                db=session,
            )
            if not pending:
                return 0
            now = self._clock()
            result = self.store.update_many(
                OvertimeAdjustment.id.in_([item.id for item in pending]),
                OvertimeAdjustment.status == AdjustmentStatus.PENDING.value,
                values={
                    "status": status.value,
                    "approved_by": approver_id,
                    "approver_name": approver_name,
                    "approved_at": now,
                    "updated_at": now,
                },
                db=session,
            )
            for record in pending:
                session.refresh(record)
                self._log_activity(
                    session,
                    record,
                    actor_id=approver_id,
                    actor_name=approver_name,
                    action=status.value,
                )
            return result.modified_count

        updated = self.store.transaction(body, operation="bulk_update_adjustment_status")
        logger.info(
            "overtime_adjustments_bulk_status_changed",
            extra={"status": status.value, "requested": len(normalized_ids), "updated": updated},
        )
        return updated

    # -- reads ------------------------------------------------------------

    def find_by_id(self, adjustment_id: str) -> OvertimeAdjustment:
        record = self.store.find_by_id(adjustment_id)
        if record is None:
            raise AdjustmentNotFoundError(adjustment_id)
        return record

    def _page(self, criteria: tuple, order_by: tuple, skip: int, limit: int | None) -> tuple[list[OvertimeAdjustment], int]:  # type: ignore[type-arg]
        page_limit = limit if limit and limit > 0 else DEFAULT_PAGE_LIMIT

        def body(session: Session) -> tuple[list[OvertimeAdjustment], int]:
            total = self.store.count(*criteria, db=session)
            items = self.store.find_all(
                *criteria,
                order_by=order_by,
                skip=max(0, skip),
                limit=page_limit,
                db=session,
            )
            return items, total

        return self.store.transaction(body, operation="find_page")

    def find_by_employee(
        self,
        employee_id: str,
        *,
        skip: int = 0,
        limit: int | None = DEFAULT_PAGE_LIMIT,
    ) -> tuple[list[OvertimeAdjustment], int]:
        normalized = validate_object_id(employee_id, field_name="employee_id")
        return self._page(
            (OvertimeAdjustment.employee_id == normalized,),
            (OvertimeAdjustment.created_at.desc(), OvertimeAdjustment.id.desc()),
            skip,
            limit,
        )

    def find_pending(self, *, skip: int = 0, limit: int | None = DEFAULT_PAGE_LIMIT) -> tuple[list[OvertimeAdjustment], int]:
        return self._page(
            (OvertimeAdjustment.status == AdjustmentStatus.PENDING.value,),
            (OvertimeAdjustment.created_at.asc(), OvertimeAdjustment.id.asc()),
            skip,
            limit,
        )

    def find_approved_by_employee(self, employee_id: str) -> list[OvertimeAdjustment]:
        normalized = validate_object_id(employee_id, field_name="employee_id")
        return self.store.find_all(
            OvertimeAdjustment.employee_id == normalized,
            OvertimeAdjustment.status == AdjustmentStatus.APPROVED.value,
            order_by=(OvertimeAdjustment.created_at.desc(), OvertimeAdjustment.id.desc()),
        )

    def find_by_date_range(
        self,
        start: datetime,
        end: datetime,
        status: AdjustmentStatus | str | None = None,
    ) -> list[OvertimeAdjustment]:
        if end < start:
            raise InvalidAdjustmentError("end must not be before start", field="end")
        criteria = [OvertimeAdjustment.created_at >= start, OvertimeAdjustment.created_at <= end]
        if status:
            criteria.append(OvertimeAdjustment.status == parse_adjustment_status(status).value)
        return self.store.find_all(
            *criteria,
            order_by=(OvertimeAdjustment.created_at.desc(), OvertimeAdjustment.id.desc()),
        )

    def summary(self, employee_id: str) -> AdjustmentSummary:
        normalized = validate_object_id(employee_id, field_name="employee_id")
        rows = self.store.aggregate(
            select(
                OvertimeAdjustment.status.label("status"),
                func.count().label("count"),
                func.coalesce(func.sum(OvertimeAdjustment.hours), 0.0).label("hours"),
            )
            .where(OvertimeAdjustment.employee_id == normalized)
            .group_by(OvertimeAdjustment.status)
        )
        summary = AdjustmentSummary(employee_id=normalized)
        for row in rows:
            status = str(row["status"])
            if status not in {item.value for item in AdjustmentStatus}:
                continue
            setattr(summary, f"total_{status}", int(row["count"]))
            setattr(summary, f"hours_{status}", float(row["hours"]))
        return summary

    def total_approved_hours(self, employee_id: str) -> float:
        return self.summary(employee_id).hours_approved
