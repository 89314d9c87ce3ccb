from typing import Literal

from app.schemas.common import CamelModel

DependencyStatus = Literal["ok", "error"]


class HealthResponse(CamelModel):
    status: Literal["ok"]
    service: str


class ReadinessDependency(CamelModel):
    name: str
    status: DependencyStatus


class ReadinessResponse(CamelModel):
    status: Literal["ok", "degraded"]
    mode: str
    webhook_configured: bool
    dependencies: list[ReadinessDependency]
