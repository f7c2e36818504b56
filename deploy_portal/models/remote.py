"""Payloads exchanged with the Railway API."""

from pydantic import BaseModel


class SourceReference(BaseModel):
    """Repository and branch a service is built from."""

    repo: str
    branch: str = "main"


class EnvironmentVariable(BaseModel):
    """A single service variable."""

    key: str
    value: str


class RemoteProject(BaseModel):
    project_id: str
    project_name: str
    environment_id: str | None = None


class RemoteService(BaseModel):
    service_id: str
    service_name: str


class RemoteDeployment(BaseModel):
    deployment_id: str
    status: str


class RemoteDeploymentStatus(BaseModel):
    status: str
    url: str | None = None
