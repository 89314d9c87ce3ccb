from collections.abc import Callable

from fastapi import APIRouter, Response, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.db.session import SessionLocal
from app.observability import log_event, metrics_store
from app.schemas.health import (
    DependencyStatus,
    HealthResponse,
    ReadinessDependency,
    ReadinessResponse,
)

router = APIRouter(tags=["health"])


@router.get("/health", summary="Liveness probe", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="ok", service=settings.app_name)


@router.get(
    "/ready",
    summary="Readiness probe",
    response_model=ReadinessResponse,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ReadinessResponse}},
)
def readiness(response: Response) -> ReadinessResponse:
    """Only the database gates readiness; a missing webhook token is reported, not fatal."""
    database_status = _safe_dependency_status(
        "database", lambda: _database_dependency_status(SessionLocal)
    )

    ready = database_status == "ok"
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessResponse(
        status="ok" if ready else "degraded",
        mode=settings.app_mode,
        webhook_configured=bool(settings.webhook_token.strip()),
        dependencies=[ReadinessDependency(name="database", status=database_status)],
    )


def _safe_dependency_status(
    dependency_name: str,
    checker: Callable[[], DependencyStatus],
) -> DependencyStatus:
    metrics_store.increment("readiness_dependency_checked_total")
    try:
        result = checker()
    except Exception as exc:
        metrics_store.increment("readiness_dependency_error_total")
        log_event(f"readiness_dependency_check_failed:{dependency_name}:{type(exc).__name__}")
        return "error"
    if result != "ok":
        metrics_store.increment("readiness_dependency_error_total")
    return result


def _database_dependency_status(session_factory: Callable[[], Session]) -> DependencyStatus:
    try:
        with session_factory() as db:
            db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return "error"
    return "ok"
