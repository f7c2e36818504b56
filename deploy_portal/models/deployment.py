"""Deployment data models."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


class DeploymentStatus(str, Enum):
    """Status of one deployment attempt."""

    PENDING = "pending"
    BUILDING = "building"
    DEPLOYING = "deploying"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_DEPLOYMENT_STATUSES


TERMINAL_DEPLOYMENT_STATUSES = frozenset(
    {DeploymentStatus.SUCCESS, DeploymentStatus.FAILED, DeploymentStatus.CANCELLED}
)
ACTIVE_DEPLOYMENT_STATUSES = frozenset(
    {DeploymentStatus.PENDING, DeploymentStatus.BUILDING, DeploymentStatus.DEPLOYING}
)

# Allowed forward moves; terminal statuses have no successors
DEPLOYMENT_TRANSITIONS: dict[DeploymentStatus, frozenset[DeploymentStatus]] = {
    DeploymentStatus.PENDING: frozenset(
        {DeploymentStatus.BUILDING, DeploymentStatus.FAILED, DeploymentStatus.CANCELLED}
    ),
    DeploymentStatus.BUILDING: frozenset(
        {DeploymentStatus.DEPLOYING, DeploymentStatus.FAILED, DeploymentStatus.CANCELLED}
    ),
    DeploymentStatus.DEPLOYING: frozenset(
        {DeploymentStatus.SUCCESS, DeploymentStatus.FAILED, DeploymentStatus.CANCELLED}
    ),
    DeploymentStatus.SUCCESS: frozenset(),
    DeploymentStatus.FAILED: frozenset(),
    DeploymentStatus.CANCELLED: frozenset(),
}


class DeploymentType(str, Enum):
    """Why a deployment attempt was started."""

    INITIAL = "initial"
    UPDATE = "update"
    REDEPLOY = "redeploy"
    ROLLBACK = "rollback"


class Deployment(BaseModel):
    """Ledger entry for one deployment attempt."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    client_id: str
    status: DeploymentStatus = DeploymentStatus.PENDING
    deployment_type: DeploymentType = DeploymentType.UPDATE

    railway_deployment_id: str | None = None
    logs: str | None = None
    error_message: str | None = None

    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None
    deployed_by: str | None = None


class DeploymentResult(BaseModel):
    """Result of a deploy call."""

    success: bool
    client_id: str
    deployment_id: str | None = None

    project_id: str | None = None
    project_url: str | None = None
    service_url: str | None = None

    error: str | None = None
    error_code: str | None = None
    failed_step: str | None = None
