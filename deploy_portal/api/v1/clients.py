"""Client management and deployment endpoints."""

import asyncio
import json
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Query, Response, status
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from deploy_portal.api.deps import (
    ClientRecordDep,
    ClientsDep,
    EventsDep,
    OrchestratorDep,
)
from deploy_portal.core.events import TERMINAL_EVENT_TYPES, Event
from deploy_portal.core.exceptions import (
    ClientNotFoundError,
    ConflictError,
    PortalError,
    ValidationError,
)
from deploy_portal.core.orchestrator import DeploymentClaim, DeploymentOrchestrator
from deploy_portal.models.client import (
    BrandingSettings,
    ClientCreate,
    ClientResponse,
    ClientStatus,
    ClientUpdate,
    FeatureFlags,
    LendProUpdate,
    VisualizerSettings,
)
from deploy_portal.models.deployment import Deployment, DeploymentResult, DeploymentType
from deploy_portal.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


class ClientListResponse(BaseModel):
    """Response for listing clients."""

    clients: list[ClientResponse]
    total: int


class DeployRequest(BaseModel):
    """Optional body for a deploy call."""

    deployment_type: DeploymentType | None = None
    deployed_by: str | None = None


class DeployAccepted(BaseModel):
    """Response for a deploy started in the background."""

    client_id: str
    status: ClientStatus = ClientStatus.DEPLOYING
    events_url: str


class DeploymentListResponse(BaseModel):
    client_id: str
    deployments: list[Deployment]


async def run_deploy_background(
    orchestrator: DeploymentOrchestrator, claim: DeploymentClaim
) -> None:
    """Background task to run a claimed deployment."""
    # The orchestrator records failures itself
    result = await orchestrator.run(claim)
    logger.info(
        "api.deploy.finished",
        client_id=result.client_id,
        deployment_id=result.deployment_id,
        success=result.success,
        error_code=result.error_code,
    )


def _raise_for_rejection(result: DeploymentResult) -> None:
    """Surface a deploy that never started as the matching HTTP error."""
    if result.deployment_id is not None:
        return
    if result.error_code == ConflictError.__name__:
        raise ConflictError(result.client_id, message=result.error)
    if result.error_code == ClientNotFoundError.__name__:
        raise ClientNotFoundError(result.client_id)
    if result.error_code == ValidationError.__name__:
        raise ValidationError(result.error or "Invalid deployment request")


@router.post(
    "",
    response_model=ClientResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new client",
)
async def create_client(data: ClientCreate, clients: ClientsDep) -> ClientResponse:
    """Store a client; the LendPro password is encrypted before it is saved."""
    record = await clients.create_client(data)
    return ClientResponse.from_record(record)


@router.get("", response_model=ClientListResponse, summary="List all clients")
async def list_clients(clients: ClientsDep) -> ClientListResponse:
    records = await clients.list_clients()
    return ClientListResponse(
        clients=[ClientResponse.from_record(r) for r in records],
        total=len(records),
    )


@router.get("/{client_id}", response_model=ClientResponse, summary="Get client details")
async def get_client(record: ClientRecordDep) -> ClientResponse:
    return ClientResponse.from_record(record)


@router.patch("/{client_id}", response_model=ClientResponse, summary="Update a client")
async def update_client(
    client_id: str, data: ClientUpdate, clients: ClientsDep
) -> ClientResponse:
    record = await clients.update_client(client_id, data)
    return ClientResponse.from_record(record)


@router.put(
    "/{client_id}/lendpro",
    response_model=ClientResponse,
    summary="Update LendPro credentials",
)
async def update_lendpro(
    client_id: str, data: LendProUpdate, clients: ClientsDep
) -> ClientResponse:
    record = await clients.update_lendpro(client_id, data)
    return ClientResponse.from_record(record)


@router.put("/{client_id}/branding", response_model=ClientResponse)
async def update_branding(
    client_id: str, data: BrandingSettings, clients: ClientsDep
) -> ClientResponse:
    record = await clients.update_branding(client_id, data)
    return ClientResponse.from_record(record)


@router.put("/{client_id}/features", response_model=ClientResponse)
async def update_features(
    client_id: str, data: FeatureFlags, clients: ClientsDep
) -> ClientResponse:
    record = await clients.update_features(client_id, data)
    return ClientResponse.from_record(record)


@router.put("/{client_id}/visualizer", response_model=ClientResponse)
async def update_visualizer(
    client_id: str, data: VisualizerSettings, clients: ClientsDep
) -> ClientResponse:
    record = await clients.update_visualizer(client_id, data)
    return ClientResponse.from_record(record)


@router.post(
    "/{client_id}/deploy",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=DeployAccepted | DeploymentResult,
    summary="Deploy a client",
    description="Returns immediately while the deployment continues in background, "
    "unless wait=true.",
)
async def deploy_client(
    record: ClientRecordDep,
    orchestrator: OrchestratorDep,
    background_tasks: BackgroundTasks,
    response: Response,
    data: DeployRequest | None = None,
    wait: Annotated[bool, Query()] = False,
) -> DeployAccepted | DeploymentResult:
    """Start a deployment for a client."""
    client_id = record.client.id
    data = data or DeployRequest()

    if wait:
        result = await orchestrator.deploy(client_id, data.deployment_type, data.deployed_by)
        _raise_for_rejection(result)
        response.status_code = status.HTTP_200_OK
        return result

    # Rejections raise here, before the 202
    claim = await orchestrator.claim(client_id, data.deployment_type, data.deployed_by)
    background_tasks.add_task(run_deploy_background, orchestrator, claim)
    return DeployAccepted(client_id=client_id, events_url=f"/v1/clients/{client_id}/events")


@router.delete(
    "/{client_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a client and its Railway project",
)
async def delete_client(client_id: str, orchestrator: OrchestratorDep) -> Response:
    result = await orchestrator.delete_client(client_id)
    if not result.success:
        if result.error_code == ClientNotFoundError.__name__:
            raise ClientNotFoundError(client_id)
        if result.error_code == ConflictError.__name__:
            raise ConflictError(client_id, message=result.error)
        raise PortalError(result.error or "Client deletion failed")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{client_id}/deployments",
    response_model=DeploymentListResponse,
    summary="Deployment history",
)
async def list_deployments(
    client_id: str,
    clients: ClientsDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> DeploymentListResponse:
    deployments = await clients.deployment_history(client_id, limit=limit)
    return DeploymentListResponse(client_id=client_id, deployments=deployments)


@router.get("/{client_id}/events", summary="Stream deployment events (SSE)")
async def stream_client_events(record: ClientRecordDep, events: EventsDep) -> EventSourceResponse:
    """Stream deployment progress for a client using Server-Sent Events."""
    client_id = record.client.id

    async def event_generator():
        queue = events.subscribe(client_id)

        try:
            yield {
                "event": "connected",
                "data": json.dumps(
                    {"client_id": client_id, "status": record.client.status.value}
                ),
            }

            while True:
                try:
                    event: Event = await asyncio.wait_for(queue.get(), timeout=30.0)
                    yield {
                        "event": event.event_type,
                        "data": event.to_json(),
                    }

                    if event.event_type in TERMINAL_EVENT_TYPES:
                        break

                except asyncio.TimeoutError:
                    yield {"event": "keepalive", "data": "{}"}

        finally:
            events.unsubscribe(client_id, queue)

    return EventSourceResponse(event_generator())
