from fastapi import APIRouter, Depends, Query, Request, Response, status

from peopleflow.dependencies import get_overtime_engine
from peopleflow.schemas import (
    Actor,
    AdjustmentSummary,
    BulkStatusUpdateRequest,
    BulkStatusUpdateResponse,
    OvertimeAdjustmentCreate,
    OvertimeAdjustmentInput,
    OvertimeAdjustmentPage,
    OvertimeAdjustmentRead,
    StatusUpdateRequest,
)
from peopleflow.security import require_actor
from peopleflow.services.overtime_adjustments import OvertimeAdjustmentEngine

router = APIRouter(tags=["overtime"])


def _to_input(payload: OvertimeAdjustmentCreate, actor: Actor) -> OvertimeAdjustmentInput:
    return OvertimeAdjustmentInput(
        **payload.model_dump(),
        adjusted_by=actor.id,
        adjuster_name=actor.name,
    )


@router.post(
    "/api/overtime/adjustments",
    response_model=OvertimeAdjustmentRead,
    status_code=status.HTTP_201_CREATED,
)
def create_adjustment(
    payload: OvertimeAdjustmentCreate,
    request: Request,
    employee_name: str | None = Query(default=None, max_length=255),
    actor: Actor = Depends(require_actor),
    engine: OvertimeAdjustmentEngine = Depends(get_overtime_engine),
) -> OvertimeAdjustmentRead:
    adjustment_id = engine.create(_to_input(payload, actor), employee_name=employee_name)
    request.state.employee_id = payload.employee_id
    return OvertimeAdjustmentRead.model_validate(engine.find_by_id(adjustment_id))


@router.get("/api/overtime/adjustments/pending", response_model=OvertimeAdjustmentPage)
def list_pending_adjustments(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=500),
    engine: OvertimeAdjustmentEngine = Depends(get_overtime_engine),
) -> OvertimeAdjustmentPage:
    items, total = engine.find_pending(skip=skip, limit=limit)
    return OvertimeAdjustmentPage(
        items=[OvertimeAdjustmentRead.model_validate(item) for item in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post("/api/overtime/adjustments/bulk-status", response_model=BulkStatusUpdateResponse)
def bulk_update_adjustment_status(
    payload: BulkStatusUpdateRequest,
    actor: Actor = Depends(require_actor),
    engine: OvertimeAdjustmentEngine = Depends(get_overtime_engine),
) -> BulkStatusUpdateResponse:
    updated = engine.bulk_update_status(payload.ids, payload.status, actor.id, actor.name)
    return BulkStatusUpdateResponse(
        status=payload.status,
        requested_count=len(payload.ids),
        updated_count=updated,
    )


@router.get("/api/overtime/adjustments/{adjustment_id}", response_model=OvertimeAdjustmentRead)
def get_adjustment(
    adjustment_id: str,
    engine: OvertimeAdjustmentEngine = Depends(get_overtime_engine),
) -> OvertimeAdjustmentRead:
    return OvertimeAdjustmentRead.model_validate(engine.find_by_id(adjustment_id))


@router.put("/api/overtime/adjustments/{adjustment_id}", response_model=OvertimeAdjustmentRead)
def update_adjustment(
    adjustment_id: str,
    payload: OvertimeAdjustmentCreate,
    actor: Actor = Depends(require_actor),
    engine: OvertimeAdjustmentEngine = Depends(get_overtime_engine),
) -> OvertimeAdjustmentRead:
    record = engine.update(adjustment_id, _to_input(payload, actor), actor)
    return OvertimeAdjustmentRead.model_validate(record)


@router.delete("/api/overtime/adjustments/{adjustment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_adjustment(
    adjustment_id: str,
    actor: Actor = Depends(require_actor),
    engine: OvertimeAdjustmentEngine = Depends(get_overtime_engine),
) -> Response:
    engine.delete(adjustment_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/api/overtime/adjustments/{adjustment_id}/status", response_model=OvertimeAdjustmentRead)
def update_adjustment_status(
    adjustment_id: str,
    payload: StatusUpdateRequest,
    actor: Actor = Depends(require_actor),
    engine: OvertimeAdjustmentEngine = Depends(get_overtime_engine),
) -> OvertimeAdjustmentRead:
    record = engine.update_status(adjustment_id, payload.status, actor.id, actor.name)
    return OvertimeAdjustmentRead.model_validate(record)


@router.get("/api/employees/{employee_id}/overtime-adjustments", response_model=OvertimeAdjustmentPage)
def list_employee_adjustments(
    employee_id: str,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=500),
    engine: OvertimeAdjustmentEngine = Depends(get_overtime_engine),
) -> OvertimeAdjustmentPage:
    items, total = engine.find_by_employee(employee_id, skip=skip, limit=limit)
    return OvertimeAdjustmentPage(
        items=[OvertimeAdjustmentRead.model_validate(item) for item in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/api/employees/{employee_id}/overtime-adjustments/summary", response_model=AdjustmentSummary)
def get_employee_adjustment_summary(
    employee_id: str,
    engine: OvertimeAdjustmentEngine = Depends(get_overtime_engine),
) -> AdjustmentSummary:
    return engine.summary(employee_id)
