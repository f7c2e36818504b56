"""Pytest configuration and fixtures."""

from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr

from deploy_portal.config import Settings
from deploy_portal.core.container import ServiceContainer, build_container
from deploy_portal.core.events import EventBus
from deploy_portal.core.ledger import Ledger
from deploy_portal.core.orchestrator import DeploymentOrchestrator, OrchestratorOptions
from deploy_portal.main import create_app
from deploy_portal.models.client import (
    BrandingSettings,
    ClientConfig,
    ClientCreate,
    FeatureFlags,
    LendProCredentials,
    LendProInput,
    VisualizerSettings,
)
from deploy_portal.models.remote import (
    EnvironmentVariable,
    RemoteDeployment,
    RemoteDeploymentStatus,
    RemoteProject,
    RemoteService,
    SourceReference,
)
from deploy_portal.services.clients import ClientService
from deploy_portal.services.secrets import SecretsCodec

TEST_MASTER_KEY = bytes(range(32))


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeRailway:
    """In-memory stand-in for RailwayClient.

    ``statuses`` is consumed one entry per poll; the last entry repeats.
    ``failures`` maps a method name to the exception it should raise.
    """

    def __init__(
        self,
        statuses: list[str] | None = None,
        domain: str | None = "storefront-production.up.railway.app",
    ):
        self.statuses = list(statuses or ["BUILDING", "DEPLOYING", "SUCCESS"])
        self.domain = domain
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple] = []
        self.variables: dict[str, list[EnvironmentVariable]] = {}
        self.custom_domains: list[tuple[str, str]] = []
        self.deleted_projects: list[str] = []
        self.polls = 0
        self.closed = False
        self._deployments = 0

    @property
    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.failures:
            raise self.failures[name]

    async def create_project(self, name: str) -> RemoteProject:
        self._record("create_project", name)
        return RemoteProject(project_id="proj-1", project_name=name, environment_id="env-1")

    async def create_database_service(self, project_id: str, name: str = "mysql") -> RemoteService:
        self._record("create_database_service", project_id, name)
        return RemoteService(service_id="svc-db", service_name=name)

    async def create_service(
        self, project_id: str, name: str, source: SourceReference | None = None
    ) -> RemoteService:
        self._record("create_service", project_id, name, source)
        return RemoteService(service_id="svc-web", service_name=name)

    async def set_environment_variables(
        self, project_id: str, service_id: str, variables: list[EnvironmentVariable]
    ) -> None:
        self._record("set_environment_variables", project_id, service_id)
        self.variables[service_id] = list(variables)

    async def trigger_deployment(self, project_id: str, service_id: str) -> RemoteDeployment:
        self._record("trigger_deployment", project_id, service_id)
        self._deployments += 1
        return RemoteDeployment(deployment_id=f"rdep-{self._deployments}", status="QUEUED")

    async def get_deployment_status(self, deployment_id: str) -> RemoteDeploymentStatus:
        self._record("get_deployment_status", deployment_id)
        self.polls += 1
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return RemoteDeploymentStatus(status=status)

    async def get_service_domain(self, service_id: str) -> str | None:
        self._record("get_service_domain", service_id)
        return self.domain

    async def add_custom_domain(self, service_id: str, domain: str) -> None:
        self._record("add_custom_domain", service_id, domain)
        self.custom_domains.append((service_id, domain))

    async def delete_project(self, project_id: str) -> None:
        self._record("delete_project", project_id)
        self.deleted_projects.append(project_id)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def railway() -> FakeRailway:
    return FakeRailway()


@pytest.fixture
def codec() -> SecretsCodec:
    """Codec with a fixed key and few KDF rounds to keep tests fast."""
    return SecretsCodec(TEST_MASTER_KEY, iterations=1_000)


@pytest.fixture
def ledger(tmp_path: Path) -> Ledger:
    return Ledger(tmp_path / "ledger.db")


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def options() -> OrchestratorOptions:
    return OrchestratorOptions(
        source=SourceReference(repo="acme/storefront", branch="main"),
        poll_interval_seconds=5.0,
        timeout_seconds=300.0,
        database_settle_seconds=5.0,
    )


@pytest.fixture
def orchestrator(
    ledger: Ledger,
    railway: FakeRailway,
    codec: SecretsCodec,
    options: OrchestratorOptions,
    events: EventBus,
    clock: FakeClock,
) -> DeploymentOrchestrator:
    """Orchestrator wired to the fake platform and fake clock."""
    return DeploymentOrchestrator(
        ledger=ledger,
        remote=railway,
        codec=codec,
        options=options,
        events=events,
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.fixture
def client_service(ledger: Ledger, codec: SecretsCodec) -> ClientService:
    return ClientService(ledger, codec)


@pytest.fixture
def client_create() -> ClientCreate:
    """Operator input for a typical client."""
    return ClientCreate(
        name="Acme Furniture",
        domain="shop.acme.test",
        lendpro=LendProInput(
            username="acme-user",
            password=SecretStr("s3cret-pass"),
            store_id="store-42",
            sales_id="sales-7",
            sales_name="Jane Rep",
        ),
        branding=BrandingSettings(primary_color="#112233", company_name="Acme"),
        features=FeatureFlags(),
        visualizer=VisualizerSettings(enabled=True, embed_code="<div id='viz'></div>"),
    )


@pytest.fixture
def client_config() -> ClientConfig:
    """Deployment input with only the required fields."""
    return ClientConfig(
        id="client-1",
        name="Acme Furniture",
        lendpro=LendProCredentials(
            username="acme-user",
            password=SecretStr("s3cret-pass"),
            store_id="store-42",
            sales_id="sales-7",
            sales_name="Jane Rep",
        ),
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        railway_api_token="test-token",
        encryption_key=TEST_MASTER_KEY.hex(),
        ledger_db_path=str(tmp_path / "ledger.db"),
    )


@pytest.fixture
def container(
    settings: Settings,
    ledger: Ledger,
    railway: FakeRailway,
    codec: SecretsCodec,
    clock: FakeClock,
) -> ServiceContainer:
    return build_container(
        settings,
        railway=railway,
        ledger=ledger,
        codec=codec,
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.fixture
async def client(container: ServiceContainer) -> AsyncClient:
    """Create an async test client backed by the fake container."""
    app = create_app(container)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
