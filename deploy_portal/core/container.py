"""Wiring of the long-lived collaborators shared by the API and the CLI."""

from dataclasses import dataclass

from deploy_portal.config import Settings, get_settings
from deploy_portal.core.events import EventBus
from deploy_portal.core.exceptions import ConfigurationError
from deploy_portal.core.ledger import Ledger
from deploy_portal.core.orchestrator import (
    Clock,
    DeploymentOrchestrator,
    OrchestratorOptions,
    Sleep,
)
from deploy_portal.services.clients import ClientService
from deploy_portal.services.railway import RailwayClient
from deploy_portal.services.secrets import SecretsCodec
from deploy_portal.utils.logging import get_logger

logger = get_logger("container")


@dataclass
class ServiceContainer:
    """Everything a request handler or CLI command needs."""

    settings: Settings
    ledger: Ledger
    railway: RailwayClient
    codec: SecretsCodec
    events: EventBus
    orchestrator: DeploymentOrchestrator
    clients: ClientService

    async def aclose(self) -> None:
        await self.railway.aclose()


def build_container(
    settings: Settings | None = None,
    *,
    railway: RailwayClient | None = None,
    ledger: Ledger | None = None,
    codec: SecretsCodec | None = None,
    sleep: Sleep | None = None,
    clock: Clock | None = None,
) -> ServiceContainer:
    """Build the container from settings.

    Any collaborator can be passed in ready-made, which is how tests swap in
    fakes.

    Raises:
        ConfigurationError: the Railway token or master key is missing or
            malformed.
    """
    settings = settings or get_settings()

    if railway is None:
        if not settings.railway_api_token:
            raise ConfigurationError("RAILWAY_API_TOKEN is not set")
        railway = RailwayClient(
            api_token=settings.railway_api_token,
            api_url=settings.railway_api_url,
            team_id=settings.railway_team_id,
            timeout=settings.railway_request_timeout,
        )

    codec = codec or SecretsCodec.from_encoded_key(settings.encryption_key)
    ledger = ledger or Ledger(settings.ledger_db_path)
    events = EventBus()

    extra = {}
    if sleep is not None:
        extra["sleep"] = sleep
    if clock is not None:
        extra["clock"] = clock

    orchestrator = DeploymentOrchestrator(
        ledger=ledger,
        remote=railway,
        codec=codec,
        options=OrchestratorOptions.from_settings(settings),
        events=events,
        **extra,
    )

    logger.debug("container.built", ledger=str(ledger.db_path))
    return ServiceContainer(
        settings=settings,
        ledger=ledger,
        railway=railway,
        codec=codec,
        events=events,
        orchestrator=orchestrator,
        clients=ClientService(ledger, codec),
    )
