"""Health check endpoints."""

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from deploy_portal import __version__
from deploy_portal.api.deps import ContainerDep

router = APIRouter()


class HealthChecks(BaseModel):
    """What the portal needs before it can deploy anything."""

    ledger: bool
    railway_token: bool
    encryption_key: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "degraded"]
    version: str
    environment: str
    timestamp: datetime
    checks: HealthChecks


@router.get("/health", response_model=HealthResponse)
async def health_check(container: ContainerDep, response: Response) -> HealthResponse:
    """Report whether the ledger is reachable and deploy credentials are configured.

    Answers 503 when any check fails. Credential values are never returned.
    """
    settings = container.settings
    checks = HealthChecks(
        ledger=await container.ledger.ping(),
        railway_token=bool(settings.railway_api_token),
        encryption_key=bool(settings.encryption_key),
    )
    healthy = all(checks.model_dump().values())
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if healthy else "degraded",
        version=__version__,
        environment=settings.app_env,
        timestamp=datetime.utcnow(),
        checks=checks,
    )
