"""Dependency injection for API endpoints."""

from typing import Annotated

from fastapi import Depends, Request

from deploy_portal.core.container import ServiceContainer
from deploy_portal.core.events import EventBus
from deploy_portal.core.orchestrator import DeploymentOrchestrator
from deploy_portal.models.client import ClientRecord
from deploy_portal.services.clients import ClientService


async def get_container(request: Request) -> ServiceContainer:
    """Get the container built at startup."""
    return request.app.state.container


async def get_clients(
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> ClientService:
    return container.clients


async def get_orchestrator(
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> DeploymentOrchestrator:
    return container.orchestrator


async def get_events(
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> EventBus:
    return container.events


async def get_client_by_id(
    client_id: str,
    clients: Annotated[ClientService, Depends(get_clients)],
) -> ClientRecord:
    """Get a client by ID; unknown IDs surface as 404 via the error handler."""
    return await clients.get_client(client_id)


# Type aliases for cleaner signatures
ClientsDep = Annotated[ClientService, Depends(get_clients)]
OrchestratorDep = Annotated[DeploymentOrchestrator, Depends(get_orchestrator)]
EventsDep = Annotated[EventBus, Depends(get_events)]
ClientRecordDep = Annotated[ClientRecord, Depends(get_client_by_id)]
ContainerDep = Annotated[ServiceContainer, Depends(get_container)]
