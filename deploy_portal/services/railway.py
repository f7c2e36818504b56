"""Railway API client.

Thin async wrapper over Railway's GraphQL API for the provisioning calls the
orchestrator needs. Every failure (transport, non-2xx, GraphQL errors,
unexpected payload shape) surfaces as :class:`RemoteApiError`.
"""

import json
import secrets
import string
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from deploy_portal.core.exceptions import RemoteApiError
from deploy_portal.models.remote import (
    EnvironmentVariable,
    RemoteDeployment,
    RemoteDeploymentStatus,
    RemoteProject,
    RemoteService,
    SourceReference,
)
from deploy_portal.utils.logging import get_logger

DEFAULT_API_URL = "https://backboard.railway.app/graphql/v2"

DATABASE_IMAGE = "mysql:8.0"
DATABASE_NAME = "lendpro"
PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*"

ModelT = TypeVar("ModelT", bound=BaseModel)

CREATE_PROJECT = """
mutation CreateProject($name: String!, $teamId: String) {
  projectCreate(input: { name: $name, teamId: $teamId }) {
    id
    name
    environments { edges { node { id name } } }
  }
}
"""

CREATE_SERVICE = """
mutation CreateService($projectId: String!, $name: String!, $source: ServiceSourceInput) {
  serviceCreate(input: { projectId: $projectId, name: $name, source: $source }) {
    id
    name
  }
}
"""

UPSERT_VARIABLES = """
mutation SetVariables($projectId: String!, $serviceId: String!, $variables: [VariableInput!]!) {
  variableCollectionUpsert(input: {
    projectId: $projectId,
    serviceId: $serviceId,
    variables: $variables
  }) {
    id
  }
}
"""

TRIGGER_DEPLOY = """
mutation TriggerDeploy($serviceId: String!) {
  serviceInstanceRedeploy(serviceId: $serviceId) {
    id
    status
  }
}
"""

GET_DEPLOYMENT = """
query GetDeployment($id: String!) {
  deployment(id: $id) {
    id
    status
    url
  }
}
"""

DELETE_PROJECT = """
mutation DeleteProject($id: String!) {
  projectDelete(id: $id)
}
"""

GET_SERVICE_DOMAINS = """
query GetService($id: String!) {
  service(id: $id) {
    id
    domains { serviceDomains }
  }
}
"""

ADD_CUSTOM_DOMAIN = """
mutation AddDomain($serviceId: String!, $domain: String!) {
  customDomainCreate(input: { serviceId: $serviceId, domain: $domain }) {
    id
  }
}
"""


def generate_password(length: int = 32) -> str:
    """Generate a strong random password for a database service."""
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


class RailwayClient:
    """Client for the Railway GraphQL API.

    The client owns an ``httpx.AsyncClient`` unless one is passed in, and is
    meant to live for the whole process.
    """

    def __init__(
        self,
        api_token: str,
        api_url: str = DEFAULT_API_URL,
        team_id: str | None = None,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url
        self.team_id = team_id
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_token}",
        }
        self.logger = get_logger("railway")

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> "RailwayClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _query(
        self, query: str, variables: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Execute a GraphQL operation and return its ``data`` object."""
        try:
            response = await self._http.post(
                self.api_url,
                json={"query": query, "variables": variables or {}},
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            self.logger.error("railway.query.transport_failed", error=str(e))
            raise RemoteApiError(
                f"request failed: {type(e).__name__}", diagnostic=str(e)
            ) from e

        if response.status_code >= 400:
            self.logger.error(
                "railway.query.http_error",
                status_code=response.status_code,
            )
            raise RemoteApiError(
                f"HTTP {response.status_code}",
                diagnostic=response.text[:2000],
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise RemoteApiError(
                "malformed response body", diagnostic=response.text[:2000]
            ) from e

        if not isinstance(payload, dict):
            raise RemoteApiError("malformed response body", diagnostic=str(payload)[:2000])

        if payload.get("errors"):
            diagnostic = json.dumps(payload["errors"])
            self.logger.error("railway.query.graphql_errors", errors=diagnostic[:500])
            raise RemoteApiError(diagnostic, diagnostic=diagnostic)

        data = payload.get("data")
        if not isinstance(data, dict):
            raise RemoteApiError("response has no data", diagnostic=json.dumps(payload)[:2000])
        return data

    @staticmethod
    def _field(data: dict[str, Any], *path: str) -> Any:
        """Walk ``path`` through a response, raising on unexpected shapes.

        Every hop must be an object and the value at the end must not be
        null.
        """
        node: Any = data
        for key in path:
            if not isinstance(node, dict) or node.get(key) is None:
                raise RemoteApiError(
                    f"unexpected response shape at '{'.'.join(path)}'",
                    diagnostic=json.dumps(data, default=str)[:2000],
                )
            node = node[key]
        return node

    @staticmethod
    def _build(model: type[ModelT], source: Any, **fields: Any) -> ModelT:
        """Validate a response payload into ``model``."""
        try:
            return model(**fields)
        except PydanticValidationError as e:
            raise RemoteApiError(
                f"malformed {model.__name__} payload",
                diagnostic=json.dumps(source, default=str)[:2000],
            ) from e

    @staticmethod
    def _first_environment_id(project: dict[str, Any]) -> str | None:
        environments = project.get("environments")
        if not isinstance(environments, dict):
            return None
        edges = environments.get("edges")
        if not isinstance(edges, list) or not edges or not isinstance(edges[0], dict):
            return None
        node = edges[0].get("node")
        return node.get("id") if isinstance(node, dict) else None

    async def create_project(self, name: str) -> RemoteProject:
        """Create a new Railway project."""
        data = await self._query(CREATE_PROJECT, {"name": name, "teamId": self.team_id})
        project = self._field(data, "projectCreate")
        remote = self._build(
            RemoteProject,
            data,
            project_id=self._field(project, "id"),
            project_name=self._field(project, "name"),
            environment_id=self._first_environment_id(project),
        )

        self.logger.info("railway.project.created", project_id=remote.project_id, name=name)
        return remote

    async def create_service(
        self,
        project_id: str,
        name: str,
        source: SourceReference | None = None,
    ) -> RemoteService:
        """Create a service, optionally built from a repository branch."""
        data = await self._query(
            CREATE_SERVICE,
            {
                "projectId": project_id,
                "name": name,
                "source": source.model_dump() if source else None,
            },
        )
        service = self._field(data, "serviceCreate")
        return self._build(
            RemoteService,
            data,
            service_id=self._field(service, "id"),
            service_name=self._field(service, "name"),
        )

    async def create_database_service(
        self, project_id: str, name: str = "mysql"
    ) -> RemoteService:
        """Create a MySQL service seeded with a generated root password.

        The password is written straight into the service's variables and is
        never returned; dependants reference it through Railway's variable
        interpolation.
        """
        data = await self._query(
            CREATE_SERVICE,
            {
                "projectId": project_id,
                "name": name,
                "source": {"image": DATABASE_IMAGE},
            },
        )
        service = self._build(
            RemoteService,
            data,
            service_id=self._field(data, "serviceCreate", "id"),
            service_name=self._field(data, "serviceCreate", "name"),
        )

        await self.set_environment_variables(
            project_id,
            service.service_id,
            [
                EnvironmentVariable(key="MYSQL_ROOT_PASSWORD", value=generate_password()),
                EnvironmentVariable(key="MYSQL_DATABASE", value=DATABASE_NAME),
            ],
        )
        return service

    async def set_environment_variables(
        self,
        project_id: str,
        service_id: str,
        variables: list[EnvironmentVariable],
    ) -> None:
        """Upsert variables on a service; unlisted keys are left untouched."""
        await self._query(
            UPSERT_VARIABLES,
            {
                "projectId": project_id,
                "serviceId": service_id,
                "variables": [{"name": v.key, "value": v.value} for v in variables],
            },
        )
        self.logger.debug(
            "railway.variables.upserted",
            service_id=service_id,
            keys=[v.key for v in variables],
        )

    async def trigger_deployment(self, project_id: str, service_id: str) -> RemoteDeployment:
        """Start a build of the service; returns before the build finishes."""
        data = await self._query(TRIGGER_DEPLOY, {"serviceId": service_id})
        deployment = self._field(data, "serviceInstanceRedeploy")
        return self._build(
            RemoteDeployment,
            data,
            deployment_id=self._field(deployment, "id"),
            status=self._field(deployment, "status"),
        )

    async def get_deployment_status(self, deployment_id: str) -> RemoteDeploymentStatus:
        data = await self._query(GET_DEPLOYMENT, {"id": deployment_id})
        deployment = self._field(data, "deployment")
        return self._build(
            RemoteDeploymentStatus,
            data,
            status=self._field(deployment, "status"),
            url=deployment.get("url"),
        )

    async def get_service_domain(self, service_id: str) -> str | None:
        """Return the first auto-assigned domain, or None if none exists yet."""
        data = await self._query(GET_SERVICE_DOMAINS, {"id": service_id})
        node = self._field(data, "service", "domains")
        domains = (node.get("serviceDomains") or []) if isinstance(node, dict) else None
        if not isinstance(domains, list):
            raise RemoteApiError(
                "unexpected response shape at 'service.domains.serviceDomains'",
                diagnostic=json.dumps(data, default=str)[:2000],
            )
        if not domains:
            return None
        first = domains[0]
        if isinstance(first, dict):
            first = first.get("domain")
        if first is not None and not isinstance(first, str):
            raise RemoteApiError(
                "malformed service domain", diagnostic=json.dumps(data, default=str)[:2000]
            )
        return first or None

    async def add_custom_domain(self, service_id: str, domain: str) -> None:
        await self._query(ADD_CUSTOM_DOMAIN, {"serviceId": service_id, "domain": domain})

    async def delete_project(self, project_id: str) -> None:
        """Delete a project and every service under it."""
        await self._query(DELETE_PROJECT, {"id": project_id})
        self.logger.info("railway.project.deleted", project_id=project_id)
