"""Unit tests for the SQLite ledger."""

from datetime import timedelta

import pytest

from deploy_portal.core.exceptions import (
    ClientNotFoundError,
    ConflictError,
    InvalidTransitionError,
)
from deploy_portal.core.ledger import INTERRUPTED_MESSAGE, Ledger
from deploy_portal.models.client import (
    BrandingSettings,
    Client,
    ClientStatus,
    FeatureFlags,
    LendProSettings,
    RailwayHandles,
)
from deploy_portal.models.deployment import DeploymentStatus, DeploymentType


@pytest.fixture
async def stored_client(ledger: Ledger) -> Client:
    client = Client(name="Acme", domain="shop.acme.test")
    await ledger.create_client(
        client,
        LendProSettings(
            username="u",
            password_encrypted="token",
            store_id="s",
            sales_id="sa",
            sales_name="n",
        ),
        branding=BrandingSettings(company_name="Acme"),
        features=FeatureFlags(cart_only=True),
    )
    return client


class TestClients:
    """Tests for client rows."""

    @pytest.mark.asyncio
    async def test_create_and_get_with_config(self, ledger: Ledger, stored_client: Client):
        record = await ledger.get_client_with_config(stored_client.id)

        assert record is not None
        assert record.client.name == "Acme"
        assert record.client.status == ClientStatus.INACTIVE
        assert record.lendpro.password_encrypted == "token"
        assert record.branding.company_name == "Acme"
        assert record.features.cart_only is True
        assert record.visualizer is None

    @pytest.mark.asyncio
    async def test_get_missing_client(self, ledger: Ledger):
        assert await ledger.get_client("nope") is None
        assert await ledger.get_client_with_config("nope") is None

    @pytest.mark.asyncio
    async def test_list_clients_newest_first(self, ledger: Ledger, stored_client: Client):
        newer = Client(
            name="Bedding Co",
            created_at=stored_client.created_at + timedelta(minutes=1),
        )
        await ledger.create_client(
            newer,
            LendProSettings(
                username="u2",
                password_encrypted="token2",
                store_id="s2",
                sales_id="sa2",
                sales_name="n2",
            ),
        )

        clients = await ledger.list_clients()

        assert [c.name for c in clients] == ["Bedding Co", "Acme"]

    @pytest.mark.asyncio
    async def test_update_status_with_handles(self, ledger: Ledger, stored_client: Client):
        await ledger.update_client_status(
            stored_client.id,
            ClientStatus.ACTIVE,
            handles=RailwayHandles(project_id="p", service_id="s", service_url="https://x"),
        )
        client = await ledger.get_client(stored_client.id)

        assert client.status == ClientStatus.ACTIVE
        assert client.railway_project_id == "p"
        assert client.railway_service_id == "s"
        assert client.service_url == "https://x"
        assert client.is_provisioned

    @pytest.mark.asyncio
    async def test_update_lendpro_and_settings(self, ledger: Ledger, stored_client: Client):
        await ledger.update_lendpro(stored_client.id, username="new-user", password_encrypted="t2")
        await ledger.update_branding(stored_client.id, None)

        record = await ledger.get_client_with_config(stored_client.id)
        assert record.lendpro.username == "new-user"
        assert record.lendpro.password_encrypted == "t2"
        assert record.branding is None

    @pytest.mark.asyncio
    async def test_delete_client_and_related(self, ledger: Ledger, stored_client: Client):
        await ledger.create_deployment_record(stored_client.id, DeploymentType.INITIAL)

        assert await ledger.delete_client_and_related(stored_client.id) is True
        assert await ledger.get_client(stored_client.id) is None
        assert await ledger.list_deployments(stored_client.id) == []
        assert await ledger.delete_client_and_related(stored_client.id) is False


class TestDeployments:
    """Tests for the deployment state machine."""

    @pytest.mark.asyncio
    async def test_create_record_is_pending(self, ledger: Ledger, stored_client: Client):
        deployment = await ledger.create_deployment_record(
            stored_client.id, DeploymentType.INITIAL, deployed_by="ops"
        )
        stored = await ledger.get_deployment(deployment.id)

        assert stored.status == DeploymentStatus.PENDING
        assert stored.deployment_type == DeploymentType.INITIAL
        assert stored.deployed_by == "ops"
        assert stored.completed_at is None

    @pytest.mark.asyncio
    async def test_happy_path_stamps_completed_at(self, ledger: Ledger, stored_client: Client):
        deployment = await ledger.create_deployment_record(stored_client.id, DeploymentType.INITIAL)

        building = await ledger.update_deployment_record(
            deployment.id, status=DeploymentStatus.BUILDING
        )
        assert building.completed_at is None
        deploying = await ledger.update_deployment_record(
            deployment.id, status=DeploymentStatus.DEPLOYING, railway_deployment_id="rd-1"
        )
        assert deploying.railway_deployment_id == "rd-1"
        assert deploying.completed_at is None

        done = await ledger.update_deployment_record(deployment.id, status=DeploymentStatus.SUCCESS)
        assert done.status == DeploymentStatus.SUCCESS
        assert done.completed_at is not None

    @pytest.mark.asyncio
    async def test_pending_can_fail(self, ledger: Ledger, stored_client: Client):
        deployment = await ledger.create_deployment_record(stored_client.id, DeploymentType.INITIAL)
        failed = await ledger.update_deployment_record(
            deployment.id, status=DeploymentStatus.FAILED, error_message="boom"
        )
        assert failed.error_message == "boom"
        assert failed.completed_at is not None

    @pytest.mark.asyncio
    async def test_skipping_states_is_rejected(self, ledger: Ledger, stored_client: Client):
        deployment = await ledger.create_deployment_record(stored_client.id, DeploymentType.INITIAL)
        with pytest.raises(InvalidTransitionError):
            await ledger.update_deployment_record(deployment.id, status=DeploymentStatus.SUCCESS)

    @pytest.mark.asyncio
    async def test_terminal_rows_are_immutable(self, ledger: Ledger, stored_client: Client):
        deployment = await ledger.create_deployment_record(stored_client.id, DeploymentType.INITIAL)
        await ledger.update_deployment_record(deployment.id, status=DeploymentStatus.FAILED)

        with pytest.raises(InvalidTransitionError):
            await ledger.update_deployment_record(deployment.id, status=DeploymentStatus.BUILDING)
        with pytest.raises(InvalidTransitionError):
            await ledger.update_deployment_record(deployment.id, error_message="later")

    @pytest.mark.asyncio
    async def test_missing_row_returns_none(self, ledger: Ledger):
        assert await ledger.update_deployment_record("gone", status=DeploymentStatus.FAILED) is None

    @pytest.mark.asyncio
    async def test_second_in_flight_record_conflicts(self, ledger: Ledger, stored_client: Client):
        first = await ledger.create_deployment_record(stored_client.id, DeploymentType.INITIAL)

        with pytest.raises(ConflictError) as exc_info:
            await ledger.create_deployment_record(stored_client.id, DeploymentType.REDEPLOY)

        assert exc_info.value.deployment_id == first.id
        deployments = await ledger.list_deployments(stored_client.id)
        assert [d.id for d in deployments] == [first.id]
        assert deployments[0].status == DeploymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_new_record_after_terminal(self, ledger: Ledger, stored_client: Client):
        first = await ledger.create_deployment_record(stored_client.id, DeploymentType.INITIAL)
        await ledger.update_deployment_record(first.id, status=DeploymentStatus.FAILED)

        second = await ledger.create_deployment_record(stored_client.id, DeploymentType.INITIAL)
        assert second.id != first.id
        assert (await ledger.get_active_deployment(stored_client.id)).id == second.id

    @pytest.mark.asyncio
    async def test_record_for_unknown_client(self, ledger: Ledger):
        with pytest.raises(ClientNotFoundError):
            await ledger.create_deployment_record("nope", DeploymentType.INITIAL)

    @pytest.mark.asyncio
    async def test_append_log(self, ledger: Ledger, stored_client: Client):
        deployment = await ledger.create_deployment_record(stored_client.id, DeploymentType.INITIAL)
        await ledger.append_deployment_log(deployment.id, "one")
        await ledger.append_deployment_log(deployment.id, "two")

        stored = await ledger.get_deployment(deployment.id)
        assert stored.logs == "one\ntwo"

    @pytest.mark.asyncio
    async def test_recover_interrupted(self, ledger: Ledger, stored_client: Client):
        deployment = await ledger.create_deployment_record(stored_client.id, DeploymentType.INITIAL)
        await ledger.update_deployment_record(deployment.id, status=DeploymentStatus.BUILDING)
        await ledger.update_client_status(stored_client.id, ClientStatus.DEPLOYING)

        assert await ledger.recover_interrupted_deployments() == 1

        stored = await ledger.get_deployment(deployment.id)
        assert stored.status == DeploymentStatus.FAILED
        assert stored.error_message == INTERRUPTED_MESSAGE
        assert stored.completed_at is not None
        assert (await ledger.get_client(stored_client.id)).status == ClientStatus.FAILED
        assert await ledger.recover_interrupted_deployments() == 0


class TestDeletionClaim:
    """Tests for claim_client_for_deletion."""

    @pytest.mark.asyncio
    async def test_claim_marks_client_deleting(self, ledger: Ledger, stored_client: Client):
        before = await ledger.claim_client_for_deletion(stored_client.id)

        assert before.status == ClientStatus.INACTIVE
        assert (await ledger.get_client(stored_client.id)).status == ClientStatus.DELETING

    @pytest.mark.asyncio
    async def test_claim_blocks_new_deployments(self, ledger: Ledger, stored_client: Client):
        await ledger.claim_client_for_deletion(stored_client.id)

        with pytest.raises(ConflictError) as exc_info:
            await ledger.create_deployment_record(stored_client.id, DeploymentType.REDEPLOY)

        assert "being deleted" in exc_info.value.message
        assert await ledger.list_deployments(stored_client.id) == []

    @pytest.mark.asyncio
    async def test_in_flight_deployment_blocks_claim(
        self, ledger: Ledger, stored_client: Client
    ):
        deployment = await ledger.create_deployment_record(
            stored_client.id, DeploymentType.INITIAL
        )

        with pytest.raises(ConflictError) as exc_info:
            await ledger.claim_client_for_deletion(stored_client.id)

        assert exc_info.value.deployment_id == deployment.id
        assert (await ledger.get_client(stored_client.id)).status == ClientStatus.INACTIVE

    @pytest.mark.asyncio
    async def test_claim_is_exclusive(self, ledger: Ledger, stored_client: Client):
        await ledger.claim_client_for_deletion(stored_client.id)

        with pytest.raises(ConflictError):
            await ledger.claim_client_for_deletion(stored_client.id)

    @pytest.mark.asyncio
    async def test_claim_unknown_client(self, ledger: Ledger):
        with pytest.raises(ClientNotFoundError):
            await ledger.claim_client_for_deletion("nope")

    @pytest.mark.asyncio
    async def test_recovery_releases_stale_claim(self, ledger: Ledger, stored_client: Client):
        await ledger.claim_client_for_deletion(stored_client.id)

        await ledger.recover_interrupted_deployments()

        assert (await ledger.get_client(stored_client.id)).status == ClientStatus.FAILED
        await ledger.create_deployment_record(stored_client.id, DeploymentType.REDEPLOY)


class TestAuditLog:
    """Tests for audit entries."""

    @pytest.mark.asyncio
    async def test_append_and_list(self, ledger: Ledger):
        await ledger.append_audit_entry("create_client", "client", "c1", {"name": "Acme"})
        await ledger.append_audit_entry("delete_client", "client", "c1")

        entries = await ledger.list_audit_entries()

        assert [e.action for e in entries] == ["delete_client", "create_client"]
        assert entries[1].details == {"name": "Acme"}
        assert entries[0].id is not None

    @pytest.mark.asyncio
    async def test_limit(self, ledger: Ledger):
        for i in range(5):
            await ledger.append_audit_entry("a", "client", str(i))
        assert len(await ledger.list_audit_entries(limit=2)) == 2
