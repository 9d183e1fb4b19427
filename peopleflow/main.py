import asyncio
from contextlib import suppress
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from peopleflow.db import get_engine
from peopleflow.dependencies import (
    get_activity_log,
    get_integration_store,
    get_overtime_engine,
    get_settings_store,
)
from peopleflow.errors import ApiError, error_response
from peopleflow.logging_utils import setup_json_logging
from peopleflow.routers import activities, integrations, overtime, settings as settings_router
from peopleflow.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from peopleflow.services.secret_codec import get_secret_codec
from peopleflow.settings import get_settings

settings = get_settings()
setup_json_logging(settings.log_level)
logger = logging.getLogger("peopleflow.request")
startup_logger = logging.getLogger("peopleflow.startup")
retention_logger = logging.getLogger("peopleflow.retention")


app = FastAPI(title=settings.app_name, version="0.1.0")


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "anonymous")
    request.state.actor_id = getattr(request.state, "actor_id", None)

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "anonymous"),
                "actor_id": getattr(request.state, "actor_id", None),
                "employee_id": getattr(request.state, "employee_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "api_error",
            extra={
                "request_id": getattr(request.state, "request_id", "unknown"),
                "path": request.url.path,
                "code": exc.code,
                "kind": exc.kind,
                "error_message": exc.message,
            },
        )
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        401: "ACTOR_REQUIRED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(overtime.router)
app.include_router(integrations.router)
app.include_router(settings_router.router)
app.include_router(activities.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


def initialize_stores() -> dict[str, Any]:
    """Create store indexes and repair the settings singleton."""
    get_secret_codec()
    indexes: list[str] = []
    indexes.extend(get_activity_log().ensure_indexes())
    indexes.extend(get_integration_store().ensure_indexes())
    indexes.extend(get_overtime_engine().ensure_indexes())
    settings_store = get_settings_store()
    indexes.extend(settings_store.ensure_indexes())
    removed = settings_store.ensure_single_document()
    return {"indexes": indexes, "duplicate_settings_removed": removed}


def run_retention_purge() -> int:
    return get_activity_log().purge_expired()


async def _retention_worker_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = max(60, int(settings.retention_worker_interval_seconds))
    while not stop_event.is_set():
        try:
            deleted = await asyncio.to_thread(run_retention_purge)
        except Exception:
            retention_logger.exception("retention_worker_tick_failed")
        else:
            if deleted:
                retention_logger.info("retention_worker_tick", extra={"deleted_activities": deleted})

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, get_engine())
    app.state.schema_guard_result = result
    if result.ok:
        startup_logger.info(
            "schema_guard_ok",
            extra=result.to_dict(),
        )
        return

    startup_logger.error(
        "schema_guard_failed",
        extra=result.to_dict(),
    )
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def run_store_initialization() -> None:
    summary = await asyncio.to_thread(initialize_stores)
    startup_logger.info("stores_initialized", extra=summary)


@app.on_event("startup")
async def start_retention_worker() -> None:
    if not settings.retention_worker_enabled:
        return
    if getattr(app.state, "retention_worker_task", None) is not None:
        return

    stop_event = asyncio.Event()
    task = asyncio.create_task(_retention_worker_loop(stop_event))
    app.state.retention_worker_stop_event = stop_event
    app.state.retention_worker_task = task
    retention_logger.info(
        "retention_worker_started",
        extra={
            "interval_seconds": max(60, int(settings.retention_worker_interval_seconds)),
            "retention_days": get_activity_log().retention.days,
        },
    )


@app.on_event("shutdown")
async def stop_retention_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "retention_worker_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "retention_worker_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.retention_worker_stop_event = None
    app.state.retention_worker_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    return {
        "status": "ok",
        "environment": settings.environment,
        "schema_guard": schema_guard_result.to_dict(),
        "retention_worker_running": getattr(app.state, "retention_worker_task", None) is not None,
    }
