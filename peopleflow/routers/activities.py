from datetime import datetime

from fastapi import APIRouter, Depends, Query

from peopleflow.dependencies import get_activity_log
from peopleflow.schemas import ActivityPage, ActivityRead, ActivityStats
from peopleflow.services.activity_log import ActivityLog

router = APIRouter(tags=["activities"])


@router.get("/api/activities", response_model=ActivityPage)
def list_activities_in_range(
    start: datetime,
    end: datetime,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=500),
    activity_log: ActivityLog = Depends(get_activity_log),
) -> ActivityPage:
    items, total = activity_log.find_by_date_range(start, end, skip=skip, limit=limit)
    return ActivityPage(
        items=[ActivityRead.model_validate(item) for item in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/api/activities/recent", response_model=list[ActivityRead])
def list_recent_activities(
    limit: int = Query(default=20, ge=1, le=500),
    activity_log: ActivityLog = Depends(get_activity_log),
) -> list[ActivityRead]:
    return [ActivityRead.model_validate(item) for item in activity_log.find_recent(limit)]


@router.get("/api/activities/stats", response_model=ActivityStats)
def get_activity_stats(
    days: int = Query(default=30, ge=1, le=3650),
    activity_log: ActivityLog = Depends(get_activity_log),
) -> ActivityStats:
    return activity_log.stats(days)


@router.get("/api/activities/users/{user_id}", response_model=list[ActivityRead])
def list_user_activities(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    activity_log: ActivityLog = Depends(get_activity_log),
) -> list[ActivityRead]:
    return [ActivityRead.model_validate(item) for item in activity_log.find_by_user(user_id, limit)]


@router.get("/api/activities/targets/{target_id}", response_model=list[ActivityRead])
def list_target_activities(
    target_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    activity_log: ActivityLog = Depends(get_activity_log),
) -> list[ActivityRead]:
    return [ActivityRead.model_validate(item) for item in activity_log.find_by_target(target_id, limit)]


@router.get("/api/activities/types/{activity_type}", response_model=list[ActivityRead])
def list_activities_by_type(
    activity_type: str,
    limit: int = Query(default=50, ge=1, le=500),
    activity_log: ActivityLog = Depends(get_activity_log),
) -> list[ActivityRead]:
    return [ActivityRead.model_validate(item) for item in activity_log.find_by_type(activity_type, limit)]


@router.get("/api/activities/{activity_id}", response_model=ActivityRead)
def get_activity(
    activity_id: str,
    activity_log: ActivityLog = Depends(get_activity_log),
) -> ActivityRead:
    return ActivityRead.model_validate(activity_log.find_by_id(activity_id))
