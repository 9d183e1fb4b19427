from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from peopleflow.db import is_zero_id, utc_now
from peopleflow.errors import ActivityNotFoundError, InvalidActivityDataError, InvalidActivityKindError
from peopleflow.models import TARGET_REQUIRED_ACTIVITY_TYPES, Activity, ActivityType
from peopleflow.schemas import ActivityStats
from peopleflow.services.store import DESCENDING, CollectionGateway, validate_object_id
from peopleflow.settings import get_activity_retention_days

logger = logging.getLogger("peopleflow.activity")

DEFAULT_FIND_LIMIT = 50
DEFAULT_RECENT_LIMIT = 20


def parse_activity_type(value: ActivityType | str) -> ActivityType:
    if isinstance(value, ActivityType):
        return value
    try:
        return ActivityType(str(value or "").strip())
    except ValueError as exc:
        raise InvalidActivityKindError(value) from exc


def validate_activity(activity: Activity) -> ActivityType:
    activity_type = parse_activity_type(activity.type)

    if is_zero_id(activity.user_id):
        raise InvalidActivityDataError("user id is required", field="user_id")
    validate_object_id(activity.user_id, field_name="user_id")
    if not (activity.user_name or "").strip():
        raise InvalidActivityDataError("user name is required", field="user_name")

    if activity_type in TARGET_REQUIRED_ACTIVITY_TYPES:
        if is_zero_id(activity.target_id):
            raise InvalidActivityDataError(
                f"target id is required for {activity_type.value}",
                field="target_id",
            )
        if not (activity.target_type or "").strip():
            raise InvalidActivityDataError(
                f"target type is required for {activity_type.value}",
                field="target_type",
            )
        if not (activity.target_name or "").strip():
            raise InvalidActivityDataError(
                f"target name is required for {activity_type.value}",
                field="target_name",
            )
    if not is_zero_id(activity.target_id):
        validate_object_id(activity.target_id, field_name="target_id")

    return activity_type


def _normalize_limit(limit: int | None, default: int) -> int:
    if limit is None or limit <= 0:
        return default
    return limit


class ActivityLog:
    """Append-only audit trail of domain events."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        retention_days: int | None = None,
        deadline_seconds: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store: CollectionGateway[Activity] = CollectionGateway(
            session_factory,
            Activity,
            deadline_seconds=deadline_seconds,
        )
        self.retention = timedelta(days=retention_days or get_activity_retention_days())
        self._clock = clock

    def ensure_indexes(self) -> list[str]:
        return [
            self.store.create_index([("timestamp", DESCENDING)]),
            self.store.create_index(["user_id"]),
            self.store.create_index(["target_id"]),
            self.store.create_index(["type", ("timestamp", DESCENDING)]),
            self.store.create_index(["timestamp"], expire_after=self.retention),
        ]

    def create(self, activity: Activity, *, db: Session | None = None) -> str:
        activity_type = validate_activity(activity)
        activity.type = activity_type.value
        activity.user_id = activity.user_id.lower()
        if activity.target_id:
            activity.target_id = activity.target_id.lower()
        if activity.timestamp is None:
            activity.timestamp = self._clock()
        return self.store.insert_one(activity, db=db)

    def log(
        self,
        activity_type: ActivityType | str,
        user_id: str,
        user_name: str,
        target_id: str | None = None,
        target_type: str | None = None,
        target_name: str | None = None,
        description: str = "",
        *,
        metadata: dict[str, Any] | None = None,
        db: Session | None = None,
    ) -> Activity:
        activity = Activity(
            type=parse_activity_type(activity_type).value,
            user_id=user_id,
            user_name=user_name,
            target_id=target_id or None,
            target_type=target_type or None,
            target_name=target_name or None,
            description=description or "",
            timestamp=self._clock(),
            meta=dict(metadata) if metadata else None,
        )
        self.create(activity, db=db)
        return activity

    def find_by_id(self, activity_id: str) -> Activity:
        activity = self.store.find_by_id(activity_id)
        if activity is None:
            raise ActivityNotFoundError(f"activity not found: {activity_id}")
        return activity

    def find_by_user(self, user_id: str, limit: int | None = DEFAULT_FIND_LIMIT) -> list[Activity]:
        normalized = validate_object_id(user_id, field_name="user_id")
        return self.store.find_all(
            Activity.user_id == normalized,
            order_by=(Activity.timestamp.desc(),),
            limit=_normalize_limit(limit, DEFAULT_FIND_LIMIT),
        )

    def find_by_target(self, target_id: str, limit: int | None = DEFAULT_FIND_LIMIT) -> list[Activity]:
        normalized = validate_object_id(target_id, field_name="target_id")
        return self.store.find_all(
            Activity.target_id == normalized,
            order_by=(Activity.timestamp.desc(),),
            limit=_normalize_limit(limit, DEFAULT_FIND_LIMIT),
        )

    def find_by_type(self, activity_type: ActivityType | str, limit: int | None = DEFAULT_FIND_LIMIT) -> list[Activity]:
        parsed = parse_activity_type(activity_type)
        return self.store.find_all(
            Activity.type == parsed.value,
            order_by=(Activity.timestamp.desc(),),
            limit=_normalize_limit(limit, DEFAULT_FIND_LIMIT),
        )

    def find_recent(self, limit: int | None = DEFAULT_RECENT_LIMIT) -> list[Activity]:
        return self.store.find_all(
            order_by=(Activity.timestamp.desc(),),
            limit=_normalize_limit(limit, DEFAULT_RECENT_LIMIT),
        )

    def find_by_date_range(
        self,
        start: datetime,
        end: datetime,
        *,
        skip: int = 0,
        limit: int | None = DEFAULT_FIND_LIMIT,
    ) -> tuple[list[Activity], int]:
        if end < start:
            raise InvalidActivityDataError("end must not be before start", field="end")
        criteria = (Activity.timestamp >= start, Activity.timestamp <= end)

        def body(session: Session) -> tuple[list[Activity], int]:
            total = self.store.count(*criteria, db=session)
            items = self.store.find_all(
                *criteria,
                order_by=(Activity.timestamp.desc(),),
                skip=max(0, skip),
                limit=_normalize_limit(limit, DEFAULT_FIND_LIMIT),
                db=session,
            )
            return items, total

        return self.store.transaction(body, operation="find_by_date_range")

    def delete_older_than(self, age: timedelta) -> int:
        cutoff = self._clock() - age
        deleted = self.store.delete_many(Activity.timestamp < cutoff).deleted_count
        logger.info(
            "activities_deleted",
            extra={"cutoff": cutoff.isoformat(), "deleted_count": deleted},
        )
        return deleted

    def purge_expired(self) -> int:
        return self.store.purge_expired(now=self._clock())

    def stats(self, days: int = 30) -> ActivityStats:
        if days <= 0:
            raise InvalidActivityDataError("stats period must be at least one day", field="days")
        period_days = days
        start_date = self._clock() - timedelta(days=period_days)
        rows = self.store.aggregate(
            select(Activity.type.label("type"), func.count().label("count"))
            .where(Activity.timestamp >= start_date)
            .group_by(Activity.type)
        )
        by_type = {str(row["type"]): int(row["count"]) for row in rows}
        return ActivityStats(
            period_days=period_days,
            start_date=start_date,
            total_activities=sum(by_type.values()),
            by_type=by_type,
        )
