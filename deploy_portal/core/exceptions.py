"""Custom exceptions for the deploy portal."""

from typing import Any


class PortalError(Exception):
    """Base exception for the deploy portal."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(PortalError):
    """Required startup configuration is missing or invalid."""

    pass


class ValidationError(PortalError):
    """Input failed validation before any remote call was made."""

    pass


class ClientNotFoundError(PortalError):
    """Client not found."""

    def __init__(self, client_id: str):
        super().__init__(
            f"Client not found: {client_id}",
            {"client_id": client_id},
        )
        self.client_id = client_id


class ConflictError(PortalError):
    """The client is busy: a deployment is in flight or it is being deleted."""

    def __init__(
        self,
        client_id: str,
        deployment_id: str | None = None,
        message: str | None = None,
    ):
        details = {"client_id": client_id}
        if deployment_id:
            details["deployment_id"] = deployment_id
        super().__init__(
            message or f"Client {client_id} already has a deployment in progress",
            details,
        )
        self.client_id = client_id
        self.deployment_id = deployment_id


class DeploymentNotFoundError(PortalError):
    """A deployment row disappeared while its attempt was running."""

    def __init__(self, deployment_id: str):
        super().__init__(
            f"Deployment not found: {deployment_id}",
            {"deployment_id": deployment_id},
        )
        self.deployment_id = deployment_id


class InvalidTransitionError(PortalError):
    """Ledger refused a deployment status change."""

    def __init__(self, deployment_id: str, current: str, requested: str):
        super().__init__(
            f"Deployment {deployment_id} cannot move from '{current}' to '{requested}'",
            {"deployment_id": deployment_id, "current": current, "requested": requested},
        )


class RemoteApiError(PortalError):
    """Any failure talking to the remote platform."""

    def __init__(
        self,
        message: str,
        diagnostic: str | None = None,
        status_code: int | None = None,
    ):
        details: dict[str, Any] = {}
        if diagnostic:
            details["diagnostic"] = diagnostic
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(f"Railway API error: {message}", details)
        self.diagnostic = diagnostic
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        """Whether the platform reported the target as missing."""
        if self.status_code == 404:
            return True
        text = f"{self.message} {self.diagnostic or ''}".lower()
        return "not found" in text


class DeploymentFailedError(PortalError):
    """The remote platform reported a terminal failure status."""

    def __init__(self, deployment_id: str, status: str):
        super().__init__(
            f"Deployment failed with status: {status}",
            {"deployment_id": deployment_id, "status": status},
        )
        self.status = status


class DeploymentTimeoutError(PortalError):
    """Polling gave up before the remote build reached a terminal status."""

    def __init__(self, deployment_id: str, timeout_seconds: float, last_status: str | None):
        super().__init__(
            f"Deployment timed out after {timeout_seconds:g}s"
            + (f" (last status: {last_status})" if last_status else ""),
            {"deployment_id": deployment_id, "last_status": last_status},
        )
        self.last_status = last_status


class IntegrityError(PortalError):
    """An encrypted secret failed authentication on decryption."""

    def __init__(self, message: str = "Stored secret failed integrity check"):
        super().__init__(message)
