"""Core functionality for the deploy portal."""

from deploy_portal.core.exceptions import (
    ClientNotFoundError,
    ConfigurationError,
    ConflictError,
    DeploymentFailedError,
    DeploymentNotFoundError,
    DeploymentTimeoutError,
    IntegrityError,
    InvalidTransitionError,
    PortalError,
    RemoteApiError,
    ValidationError,
)

__all__ = [
    "PortalError",
    "ConfigurationError",
    "ValidationError",
    "ClientNotFoundError",
    "ConflictError",
    "InvalidTransitionError",
    "RemoteApiError",
    "DeploymentFailedError",
    "DeploymentNotFoundError",
    "DeploymentTimeoutError",
    "IntegrityError",
]
