"""Deployment Orchestrator.

Turns a client's stored configuration into a running Railway service and
reconciles the outcome back into the ledger.

Per attempt the ledger row moves through::

    pending -> building -> deploying -> success | failed
    pending -> failed        (before any remote call)

Full provisioning steps:
1. create_project   - Railway project named after the client
2. create_database  - MySQL service, then a short settle delay
3. create_service   - web service built from the shared source reference
4. set_variables    - environment built from the client config
5. trigger_build
6. wait_for_build   - constant-interval polling, bounded by a timeout
7. resolve_domain / add_custom_domain (the latter is best-effort)
"""

import asyncio
import re
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from deploy_portal.config import Settings
from deploy_portal.core.environment import (
    DATABASE_SERVICE_NAME,
    DEFAULT_OAUTH_SERVER_URL,
    DEFAULT_PORT,
    build_environment_variables,
)
from deploy_portal.core.events import EventBus
from deploy_portal.core.exceptions import (
    ClientNotFoundError,
    ConflictError,
    DeploymentFailedError,
    DeploymentNotFoundError,
    DeploymentTimeoutError,
    PortalError,
    RemoteApiError,
    ValidationError,
)
from deploy_portal.core.ledger import Ledger
from deploy_portal.models.client import (
    ClientConfig,
    ClientRecord,
    ClientStatus,
    LendProCredentials,
    RailwayHandles,
)
from deploy_portal.models.deployment import (
    Deployment,
    DeploymentResult,
    DeploymentStatus,
    DeploymentType,
)
from deploy_portal.models.remote import (
    EnvironmentVariable,
    RemoteDeploymentStatus,
    SourceReference,
)
from deploy_portal.services.railway import RailwayClient
from deploy_portal.services.secrets import SecretsCodec
from deploy_portal.utils.logging import get_logger

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]

# Railway status vocabulary, compared case-insensitively
SUCCESS_STATUSES = frozenset({"SUCCESS", "ACTIVE"})
FAILURE_STATUSES = frozenset({"FAILED", "CRASHED"})
IN_PROGRESS_STATUSES = frozenset(
    {"QUEUED", "WAITING", "INITIALIZING", "BUILDING", "DEPLOYING"}
)

APPLICATION_SERVICE_NAME = "web"


class DeploymentStep(str, Enum):
    """Named stages of a deployment attempt."""

    PREPARE = "prepare"
    CREATE_PROJECT = "create_project"
    CREATE_DATABASE = "create_database"
    CREATE_SERVICE = "create_service"
    SET_VARIABLES = "set_variables"
    TRIGGER_BUILD = "trigger_build"
    WAIT_FOR_BUILD = "wait_for_build"
    RESOLVE_DOMAIN = "resolve_domain"
    ADD_CUSTOM_DOMAIN = "add_custom_domain"
    DELETE_PROJECT = "delete_project"


def project_slug(name: str) -> str:
    """Lowercase, hyphen-separated, ``[a-z0-9-]`` only."""
    slug = re.sub(r"\s+", "-", name.strip().lower())
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-")


def project_name_for(client_name: str, prefix: str = "") -> str:
    """Remote project name for a client.

    Raises:
        ValidationError: the name yields an empty slug.
    """
    slug = project_slug(client_name)
    if not slug:
        raise ValidationError(
            f"Client name '{client_name}' does not produce a valid project name",
            {"client_name": client_name},
        )
    return f"{prefix}-{slug}" if prefix else slug


def _as_url(domain: str | None) -> str | None:
    if not domain:
        return None
    return domain if "://" in domain else f"https://{domain}"


@dataclass
class OrchestratorOptions:
    """Knobs shared by every deployment."""

    source: SourceReference
    project_name_prefix: str = "lendpro"
    project_url_template: str = "https://railway.app/project/{project_id}"
    poll_interval_seconds: float = 5.0
    timeout_seconds: float = 300.0
    database_settle_seconds: float = 5.0
    tenant_port: int = DEFAULT_PORT
    oauth_server_url: str = DEFAULT_OAUTH_SERVER_URL

    @classmethod
    def from_settings(cls, settings: Settings) -> "OrchestratorOptions":
        return cls(
            source=SourceReference(repo=settings.source_repo, branch=settings.source_branch),
            project_name_prefix=settings.project_name_prefix,
            project_url_template=settings.project_url_template,
            poll_interval_seconds=settings.deploy_poll_interval_seconds,
            timeout_seconds=settings.deploy_timeout_seconds,
            database_settle_seconds=settings.database_settle_seconds,
            tenant_port=settings.tenant_port,
            oauth_server_url=settings.oauth_server_url,
        )


class ClientDeletionResult(BaseModel):
    """Result of a delete call."""

    success: bool
    client_id: str
    remote_deleted: bool = False
    error: str | None = None
    error_code: str | None = None


@dataclass
class DeploymentClaim:
    """A ledger attempt opened by :meth:`DeploymentOrchestrator.claim`."""

    record: ClientRecord
    deployment: Deployment


@dataclass
class _Attempt:
    client_id: str
    deployment_id: str
    deployment_type: DeploymentType
    step: DeploymentStep | None = None
    project_id: str | None = None


class DeploymentOrchestrator:
    """Runs deploy/redeploy/delete workflows for one client at a time.

    Holds no state between calls: everything durable lives in the ledger.
    Different clients can deploy concurrently; a second deploy for a client
    with an attempt in flight is rejected by the ledger's conditional
    insert.
    """

    def __init__(
        self,
        ledger: Ledger,
        remote: RailwayClient,
        codec: SecretsCodec,
        options: OrchestratorOptions,
        events: EventBus | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ):
        self.ledger = ledger
        self.remote = remote
        self.codec = codec
        self.options = options
        self.events = events or EventBus()
        self._sleep = sleep
        self._clock = clock
        self.logger = get_logger("orchestrator")

    # ------------------------------------------------------------------
    # Public operations

    def build_environment_variables(self, config: ClientConfig) -> list[EnvironmentVariable]:
        """Environment for a client's application service."""
        return build_environment_variables(
            config,
            database_service=DATABASE_SERVICE_NAME,
            port=self.options.tenant_port,
            oauth_server_url=self.options.oauth_server_url,
        )

    async def claim(
        self,
        client_id: str,
        deployment_type: DeploymentType | None = None,
        deployed_by: str | None = None,
    ) -> DeploymentClaim:
        """Open a ``pending`` ledger attempt for a client without running it.

        Raises:
            ClientNotFoundError: the client does not exist.
            ConflictError: an attempt is in flight or the client is being
                deleted.
            ValidationError: the requested deployment type is not supported.
        """
        record = await self.ledger.get_client_with_config(client_id)
        if record is None:
            raise ClientNotFoundError(client_id)

        deployment_type = self._resolve_type(record, deployment_type)
        deployment = await self.ledger.create_deployment_record(
            client_id, deployment_type, deployed_by=deployed_by
        )
        self.logger.info(
            "orchestrator.deploy.claimed",
            client_id=client_id,
            deployment_id=deployment.id,
            deployment_type=deployment_type.value,
        )
        return DeploymentClaim(record=record, deployment=deployment)

    async def deploy(
        self,
        client_id: str,
        deployment_type: DeploymentType | None = None,
        deployed_by: str | None = None,
    ) -> DeploymentResult:
        """Provision or re-provision a client.

        Never raises: every failure is reported in the returned result and,
        once an attempt exists, recorded on its ledger row.
        """
        try:
            claim = await self.claim(client_id, deployment_type, deployed_by)
        except (ConflictError, ClientNotFoundError, ValidationError) as e:
            self.logger.warning(
                "orchestrator.deploy.rejected",
                client_id=client_id,
                error_code=type(e).__name__,
                error=e.message,
            )
            return self._rejected(client_id, e)

        return await self.run(claim)

    async def run(self, claim: DeploymentClaim) -> DeploymentResult:
        """Drive a claimed attempt to a terminal status. Never raises."""
        record = claim.record
        deployment = claim.deployment
        client_id = deployment.client_id
        deployment_type = deployment.deployment_type
        attempt = _Attempt(
            client_id=client_id,
            deployment_id=deployment.id,
            deployment_type=deployment_type,
        )
        self.logger.info(
            "orchestrator.deploy.started",
            client_id=client_id,
            deployment_id=deployment.id,
            deployment_type=deployment_type.value,
        )

        try:
            await self.ledger.update_client_status(client_id, ClientStatus.DEPLOYING)

            await self._step(attempt, DeploymentStep.PREPARE)
            config = await self._load_config(record)
            project_name = None
            if deployment_type == DeploymentType.INITIAL:
                project_name = project_name_for(config.name, self.options.project_name_prefix)

            await self._advance(attempt, DeploymentStatus.BUILDING)

            if deployment_type == DeploymentType.INITIAL:
                handles = await self._provision(attempt, config, project_name)
            else:
                handles = await self._redeploy(attempt, config, record)

            activated = await self.ledger.update_client_status(
                client_id,
                ClientStatus.ACTIVE,
                handles=handles,
                last_deployed_at=datetime.utcnow(),
            )
            if not activated:
                raise ClientNotFoundError(client_id)
            await self._advance(attempt, DeploymentStatus.SUCCESS)
        except Exception as e:
            return await self._fail(attempt, e)

        result = DeploymentResult(
            success=True,
            client_id=client_id,
            deployment_id=deployment.id,
            project_id=handles.project_id,
            project_url=handles.project_url,
            service_url=handles.service_url,
        )
        await self._audit(
            "deploy_client",
            "deployment",
            deployment.id,
            {
                "client_id": client_id,
                "deployment_type": deployment_type.value,
                "project_id": result.project_id,
                "service_url": result.service_url,
            },
        )
        await self.events.publish_deployment_complete(
            client_id, deployment.id, result.service_url
        )
        self.logger.info(
            "orchestrator.deploy.completed",
            client_id=client_id,
            deployment_id=deployment.id,
            project_id=result.project_id,
            service_url=result.service_url,
        )
        return result

    async def delete_client(
        self, client_id: str, deleted_by: str | None = None
    ) -> ClientDeletionResult:
        """Tear down the remote project (best-effort), then the local rows.

        The client is first claimed in the ledger, so no deploy can start
        while the delete runs and a delete never starts under a running
        deploy. Remote failures are logged and ignored; local cleanup always
        runs.
        """
        try:
            client = await self.ledger.claim_client_for_deletion(client_id)
        except (ClientNotFoundError, ConflictError) as e:
            self.logger.warning(
                "orchestrator.delete.rejected",
                client_id=client_id,
                error_code=type(e).__name__,
                error=e.message,
            )
            return ClientDeletionResult(
                success=False,
                client_id=client_id,
                error=e.message,
                error_code=type(e).__name__,
            )

        remote_deleted = False
        if client.railway_project_id:
            try:
                await self.remote.delete_project(client.railway_project_id)
                remote_deleted = True
            except RemoteApiError as e:
                if e.is_not_found:
                    self.logger.info(
                        "orchestrator.delete.remote_already_gone",
                        client_id=client_id,
                        project_id=client.railway_project_id,
                    )
                    remote_deleted = True
                else:
                    self.logger.error(
                        "orchestrator.delete.remote_failed",
                        client_id=client_id,
                        project_id=client.railway_project_id,
                        error=e.message,
                        diagnostic=e.diagnostic,
                    )

        try:
            await self.ledger.delete_client_and_related(client_id)
        except Exception as e:
            self.logger.exception("orchestrator.delete.local_failed", client_id=client_id)
            await self._release_deletion_claim(client_id, client.status)
            return ClientDeletionResult(
                success=False,
                client_id=client_id,
                remote_deleted=remote_deleted,
                error=str(e),
                error_code=type(e).__name__,
            )

        await self._audit(
            "delete_client",
            "client",
            client_id,
            {
                "name": client.name,
                "project_id": client.railway_project_id,
                "remote_deleted": remote_deleted,
                "deleted_by": deleted_by,
            },
        )
        self.logger.info(
            "orchestrator.delete.completed",
            client_id=client_id,
            remote_deleted=remote_deleted,
        )
        return ClientDeletionResult(
            success=True, client_id=client_id, remote_deleted=remote_deleted
        )

    async def wait_for_deployment(self, deployment_id: str) -> RemoteDeploymentStatus:
        """Poll the remote build at a constant interval until it finishes.

        Raises:
            DeploymentFailedError: Railway reported a failure status.
            DeploymentTimeoutError: no terminal status within the timeout.
        """
        interval = self.options.poll_interval_seconds
        timeout = self.options.timeout_seconds
        started = self._clock()
        last_status: str | None = None

        while self._clock() - started < timeout:
            observed = await self.remote.get_deployment_status(deployment_id)
            status = observed.status.upper()

            if observed.status != last_status:
                self.logger.info(
                    "orchestrator.build.status",
                    railway_deployment_id=deployment_id,
                    status=observed.status,
                )
            last_status = observed.status

            if status in SUCCESS_STATUSES:
                return observed
            if status in FAILURE_STATUSES:
                raise DeploymentFailedError(deployment_id, observed.status)
            if status not in IN_PROGRESS_STATUSES:
                self.logger.warning(
                    "orchestrator.build.unknown_status",
                    railway_deployment_id=deployment_id,
                    status=observed.status,
                )

            await self._sleep(interval)

        raise DeploymentTimeoutError(deployment_id, timeout, last_status)

    # ------------------------------------------------------------------
    # Workflows

    async def _provision(
        self, attempt: _Attempt, config: ClientConfig, project_name: str
    ) -> RailwayHandles:
        await self._step(attempt, DeploymentStep.CREATE_PROJECT, project_name=project_name)
        project = await self.remote.create_project(project_name)
        attempt.project_id = project.project_id

        await self._step(
            attempt, DeploymentStep.CREATE_DATABASE, project_id=project.project_id
        )
        database = await self.remote.create_database_service(
            project.project_id, DATABASE_SERVICE_NAME
        )
        if self.options.database_settle_seconds > 0:
            await self._sleep(self.options.database_settle_seconds)

        await self._step(
            attempt,
            DeploymentStep.CREATE_SERVICE,
            database_service_id=database.service_id,
            repo=self.options.source.repo,
            branch=self.options.source.branch,
        )
        service = await self.remote.create_service(
            project.project_id, APPLICATION_SERVICE_NAME, self.options.source
        )

        await self._build_and_wait(attempt, config, project.project_id, service.service_id)

        service_url = await self._resolve_service_url(attempt, service.service_id)
        await self._bind_custom_domain(attempt, config, service.service_id)

        return RailwayHandles(
            project_id=project.project_id,
            project_url=self.options.project_url_template.format(
                project_id=project.project_id
            ),
            environment_id=project.environment_id,
            service_id=service.service_id,
            service_url=service_url,
        )

    async def _redeploy(
        self, attempt: _Attempt, config: ClientConfig, record: ClientRecord
    ) -> RailwayHandles:
        client = record.client
        project_id = client.railway_project_id
        service_id = client.railway_service_id
        attempt.project_id = project_id

        await self._build_and_wait(attempt, config, project_id, service_id)
        service_url = await self._resolve_service_url(attempt, service_id)

        return RailwayHandles(
            project_id=project_id,
            project_url=client.railway_project_url
            or self.options.project_url_template.format(project_id=project_id),
            service_id=service_id,
            service_url=service_url or client.service_url,
        )

    async def _build_and_wait(
        self,
        attempt: _Attempt,
        config: ClientConfig,
        project_id: str,
        service_id: str,
    ) -> RemoteDeploymentStatus:
        variables = self.build_environment_variables(config)
        await self._step(
            attempt,
            DeploymentStep.SET_VARIABLES,
            service_id=service_id,
            keys=[v.key for v in variables],
        )
        await self.remote.set_environment_variables(project_id, service_id, variables)

        await self._step(attempt, DeploymentStep.TRIGGER_BUILD, service_id=service_id)
        remote_deployment = await self.remote.trigger_deployment(project_id, service_id)
        await self._advance(
            attempt,
            DeploymentStatus.DEPLOYING,
            railway_deployment_id=remote_deployment.deployment_id,
        )

        await self._step(
            attempt,
            DeploymentStep.WAIT_FOR_BUILD,
            railway_deployment_id=remote_deployment.deployment_id,
        )
        return await self.wait_for_deployment(remote_deployment.deployment_id)

    async def _resolve_service_url(self, attempt: _Attempt, service_id: str) -> str | None:
        await self._step(attempt, DeploymentStep.RESOLVE_DOMAIN, service_id=service_id)
        domain = await self.remote.get_service_domain(service_id)
        if not domain:
            self.logger.warning(
                "orchestrator.domain.not_assigned",
                client_id=attempt.client_id,
                service_id=service_id,
            )
        return _as_url(domain)

    async def _bind_custom_domain(
        self, attempt: _Attempt, config: ClientConfig, service_id: str
    ) -> None:
        if not config.domain:
            return
        await self._step(attempt, DeploymentStep.ADD_CUSTOM_DOMAIN, domain=config.domain)
        try:
            await self.remote.add_custom_domain(service_id, config.domain)
        except RemoteApiError as e:
            self.logger.warning(
                "orchestrator.domain.custom_failed",
                client_id=attempt.client_id,
                domain=config.domain,
                error=e.message,
            )
            await self.ledger.append_deployment_log(
                attempt.deployment_id,
                f"{datetime.utcnow().isoformat()} custom domain {config.domain} not added: {e.message}",
            )

    # ------------------------------------------------------------------
    # Helpers

    def _resolve_type(
        self, record: ClientRecord, requested: DeploymentType | None
    ) -> DeploymentType:
        if requested == DeploymentType.ROLLBACK:
            raise ValidationError("Rollback deployments are not supported")
        if not record.client.is_provisioned:
            return DeploymentType.INITIAL
        if requested in (None, DeploymentType.INITIAL):
            return DeploymentType.REDEPLOY
        return requested

    async def _load_config(self, record: ClientRecord) -> ClientConfig:
        """Assemble the in-memory config, decrypting the stored password."""
        lendpro = record.lendpro
        return ClientConfig(
            id=record.client.id,
            name=record.client.name,
            domain=record.client.domain,
            lendpro=LendProCredentials(
                api_url=lendpro.api_url,
                username=lendpro.username,
                password=await self.codec.decrypt_async(lendpro.password_encrypted),
                store_id=lendpro.store_id,
                sales_id=lendpro.sales_id,
                sales_name=lendpro.sales_name,
            ),
            branding=record.branding,
            features=record.features,
            visualizer=record.visualizer,
        )

    async def _step(self, attempt: _Attempt, step: DeploymentStep, **data: Any) -> None:
        """Announce a step on the log, the event bus and the ledger row."""
        attempt.step = step
        self.logger.info(
            "orchestrator.step",
            client_id=attempt.client_id,
            deployment_id=attempt.deployment_id,
            step=step.value,
            **data,
        )
        await self.events.publish_step(
            attempt.client_id, attempt.deployment_id, step.value, **data
        )
        await self.ledger.append_deployment_log(
            attempt.deployment_id, f"{datetime.utcnow().isoformat()} {step.value}"
        )

    async def _fail(self, attempt: _Attempt, error: Exception) -> DeploymentResult:
        """Record a failed attempt and build the caller's result."""
        message = error.message if isinstance(error, PortalError) else (
            str(error) or type(error).__name__
        )
        step = attempt.step.value if attempt.step else None
        self.logger.error(
            "orchestrator.deploy.failed",
            client_id=attempt.client_id,
            deployment_id=attempt.deployment_id,
            step=step,
            error_code=type(error).__name__,
            error=message,
            exc_info=not isinstance(error, PortalError),
        )

        try:
            await self.ledger.update_client_status(attempt.client_id, ClientStatus.FAILED)
        except Exception:
            self.logger.exception(
                "orchestrator.deploy.client_status_write_failed",
                client_id=attempt.client_id,
            )
        try:
            await self.ledger.update_deployment_record(
                attempt.deployment_id,
                status=DeploymentStatus.FAILED,
                error_message=message,
            )
        except Exception:
            self.logger.exception(
                "orchestrator.deploy.ledger_write_failed",
                deployment_id=attempt.deployment_id,
            )

        await self._audit(
            "deploy_client_failed",
            "deployment",
            attempt.deployment_id,
            {
                "client_id": attempt.client_id,
                "deployment_type": attempt.deployment_type.value,
                "step": step,
                "error": message,
                "project_id": attempt.project_id,
            },
        )
        await self.events.publish_deployment_failed(
            attempt.client_id, attempt.deployment_id, message, step
        )
        return DeploymentResult(
            success=False,
            client_id=attempt.client_id,
            deployment_id=attempt.deployment_id,
            project_id=attempt.project_id,
            error=message,
            error_code=type(error).__name__,
            failed_step=step,
        )

    async def _advance(
        self,
        attempt: _Attempt,
        status: DeploymentStatus,
        railway_deployment_id: str | None = None,
    ) -> None:
        updated = await self.ledger.update_deployment_record(
            attempt.deployment_id,
            status=status,
            railway_deployment_id=railway_deployment_id,
        )
        if updated is None:
            raise DeploymentNotFoundError(attempt.deployment_id)

    async def _release_deletion_claim(self, client_id: str, status: ClientStatus) -> None:
        try:
            await self.ledger.update_client_status(client_id, status)
        except Exception:
            self.logger.exception("orchestrator.delete.release_failed", client_id=client_id)

    def _rejected(self, client_id: str, error: PortalError) -> DeploymentResult:
        return DeploymentResult(
            success=False,
            client_id=client_id,
            error=error.message,
            error_code=type(error).__name__,
        )

    async def _audit(
        self,
        action: str,
        resource_type: str,
        resource_id: str | None,
        details: dict[str, Any],
    ) -> None:
        try:
            await self.ledger.append_audit_entry(action, resource_type, resource_id, details)
        except Exception:
            self.logger.exception("orchestrator.audit_failed", action=action)
