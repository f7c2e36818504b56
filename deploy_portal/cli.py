#!/usr/bin/env python
"""
CLI management commands for the deploy portal.
"""

import asyncio
import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, Awaitable, TypeVar

import click
from pydantic import ValidationError as ModelValidationError

from deploy_portal.config import get_settings
from deploy_portal.core.container import ServiceContainer, build_container
from deploy_portal.core.exceptions import PortalError
from deploy_portal.models.client import ClientCreate
from deploy_portal.models.deployment import DeploymentResult, DeploymentType
from deploy_portal.services.secrets import generate_master_key
from deploy_portal.utils.logging import configure_logging

T = TypeVar("T")

ContainerFactory = Callable[[], ServiceContainer]


def _run(ctx: click.Context, work: Callable[[ServiceContainer], Awaitable[T]]) -> T:
    """Build the container, run one coroutine against it and close it."""
    factory: ContainerFactory = ctx.obj["container_factory"]

    async def _main() -> T:
        container = factory()
        try:
            return await work(container)
        finally:
            await container.aclose()

    try:
        return asyncio.run(_main())
    except PortalError as e:
        raise click.ClickException(e.message) from e


def _echo_result(result: DeploymentResult) -> None:
    if result.success:
        click.echo(f"Deployed {result.client_id}")
        click.echo(f"  project: {result.project_url or result.project_id}")
        click.echo(f"  url:     {result.service_url or '(no domain yet)'}")
    else:
        step = f" at step {result.failed_step}" if result.failed_step else ""
        click.echo(f"Deployment of {result.client_id} failed{step}: {result.error}", err=True)


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Deploy portal CLI."""
    ctx.ensure_object(dict)
    ctx.obj.setdefault("container_factory", build_container)
    configure_logging()


@cli.command()
@click.option("--host", default=None, help="Bind address (defaults to API_HOST)")
@click.option("--port", default=None, type=int, help="Port (defaults to API_PORT)")
def serve(host: str | None, port: int | None) -> None:
    """Run the HTTP API."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "deploy_portal.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=settings.is_development,
    )


@cli.command()
def generate_key() -> None:
    """Generate a master encryption key (ENCRYPTION_KEY)."""
    click.echo(generate_master_key())


@cli.command()
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--deploy", "deploy_after", is_flag=True, help="Deploy right after importing")
@click.pass_context
def import_config(ctx: click.Context, config_file: Path, deploy_after: bool) -> None:
    """Import a client from a JSON configuration file."""
    try:
        data = ClientCreate.model_validate(json.loads(config_file.read_text(encoding="utf-8")))
    except json.JSONDecodeError as e:
        raise click.ClickException(f"{config_file} is not valid JSON: {e}") from e
    except ModelValidationError as e:
        raise click.ClickException(f"Invalid client configuration:\n{e}") from e

    async def _import(container: ServiceContainer) -> DeploymentResult | None:
        record = await container.clients.create_client(data, created_by="cli")
        click.echo(f"Imported client {record.client.name} ({record.client.id})")
        if not deploy_after:
            return None
        return await container.orchestrator.deploy(record.client.id, deployed_by="cli")

    result = _run(ctx, _import)
    if result is not None:
        _echo_result(result)
        if not result.success:
            sys.exit(1)


@cli.command()
@click.argument("client_id")
@click.option(
    "--type",
    "deployment_type",
    type=click.Choice([DeploymentType.UPDATE.value, DeploymentType.REDEPLOY.value]),
    default=None,
    help="Force a deployment type for an already provisioned client",
)
@click.pass_context
def deploy(ctx: click.Context, client_id: str, deployment_type: str | None) -> None:
    """Deploy (or redeploy) a client."""
    requested = DeploymentType(deployment_type) if deployment_type else None
    result = _run(
        ctx,
        lambda container: container.orchestrator.deploy(
            client_id, requested, deployed_by="cli"
        ),
    )
    _echo_result(result)
    if not result.success:
        sys.exit(1)


@cli.command()
@click.argument("client_id")
@click.confirmation_option(prompt="Delete this client and its Railway project?")
@click.pass_context
def delete(ctx: click.Context, client_id: str) -> None:
    """Delete a client and its Railway project."""
    result = _run(
        ctx,
        lambda container: container.orchestrator.delete_client(client_id, deleted_by="cli"),
    )
    if not result.success:
        raise click.ClickException(result.error or "Deletion failed")
    suffix = "" if result.remote_deleted else " (Railway project was not removed)"
    click.echo(f"Deleted client {client_id}{suffix}")


@cli.command(name="list")
@click.pass_context
def list_clients(ctx: click.Context) -> None:
    """List clients."""

    async def _list(container: ServiceContainer) -> list[Any]:
        return await container.ledger.list_clients()

    clients = _run(ctx, _list)
    if not clients:
        click.echo("No clients.")
        return
    for client in clients:
        click.echo(
            f"{client.id}  {client.status.value:<9}  {client.name}"
            f"  {client.service_url or '-'}"
        )


@cli.command()
@click.argument("client_id")
@click.option("--limit", default=10, show_default=True, type=click.IntRange(1, 100))
@click.pass_context
def history(ctx: click.Context, client_id: str, limit: int) -> None:
    """Show a client's deployment history."""
    deployments = _run(
        ctx, lambda container: container.clients.deployment_history(client_id, limit)
    )
    if not deployments:
        click.echo("No deployments.")
        return
    for deployment in deployments:
        completed = deployment.completed_at.isoformat() if deployment.completed_at else "-"
        line = (
            f"{deployment.started_at.isoformat()}  {deployment.status.value:<9}"
            f"  {deployment.deployment_type.value:<8}  completed={completed}"
        )
        if deployment.error_message:
            line += f"  error={deployment.error_message}"
        click.echo(line)


if __name__ == "__main__":
    cli()
