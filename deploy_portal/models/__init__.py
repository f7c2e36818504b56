"""Data models for the deploy portal."""

from deploy_portal.models.audit import AuditEntry
from deploy_portal.models.client import (
    BrandingSettings,
    Client,
    ClientConfig,
    ClientCreate,
    ClientRecord,
    ClientResponse,
    ClientStatus,
    ClientUpdate,
    FeatureFlags,
    LendProCredentials,
    LendProInput,
    LendProSettings,
    LendProUpdate,
    RailwayHandles,
    VisualizerSettings,
)
from deploy_portal.models.deployment import (
    Deployment,
    DeploymentResult,
    DeploymentStatus,
    DeploymentType,
)
from deploy_portal.models.remote import (
    EnvironmentVariable,
    RemoteDeployment,
    RemoteDeploymentStatus,
    RemoteProject,
    RemoteService,
    SourceReference,
)

__all__ = [
    # Client models
    "Client",
    "ClientConfig",
    "ClientCreate",
    "ClientRecord",
    "ClientResponse",
    "ClientStatus",
    "ClientUpdate",
    "BrandingSettings",
    "FeatureFlags",
    "VisualizerSettings",
    "LendProCredentials",
    "LendProInput",
    "LendProSettings",
    "LendProUpdate",
    "RailwayHandles",
    # Deployment models
    "Deployment",
    "DeploymentResult",
    "DeploymentStatus",
    "DeploymentType",
    # Remote payloads
    "EnvironmentVariable",
    "RemoteDeployment",
    "RemoteDeploymentStatus",
    "RemoteProject",
    "RemoteService",
    "SourceReference",
    # Audit
    "AuditEntry",
]
