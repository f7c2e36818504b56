"""Unit tests for build status polling and project naming."""

import pytest

from deploy_portal.core.exceptions import (
    DeploymentFailedError,
    DeploymentTimeoutError,
    ValidationError,
)
from deploy_portal.core.orchestrator import (
    DeploymentOrchestrator,
    project_name_for,
    project_slug,
)


class TestWaitForDeployment:
    """Tests for wait_for_deployment."""

    @pytest.mark.asyncio
    async def test_success_after_progress(self, orchestrator: DeploymentOrchestrator, railway, clock):
        railway.statuses = ["QUEUED", "BUILDING", "DEPLOYING", "SUCCESS"]

        status = await orchestrator.wait_for_deployment("rd-1")

        assert status.status == "SUCCESS"
        assert railway.polls == 4
        assert clock.sleeps == [5.0, 5.0, 5.0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", ["success", "Active", "ACTIVE"])
    async def test_success_statuses_are_case_insensitive(
        self, orchestrator: DeploymentOrchestrator, railway, terminal: str
    ):
        railway.statuses = [terminal]
        assert (await orchestrator.wait_for_deployment("rd-1")).status == terminal

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", ["FAILED", "crashed"])
    async def test_failure_statuses(
        self, orchestrator: DeploymentOrchestrator, railway, terminal: str
    ):
        railway.statuses = ["BUILDING", terminal]

        with pytest.raises(DeploymentFailedError) as exc_info:
            await orchestrator.wait_for_deployment("rd-1")

        assert exc_info.value.status == terminal
        assert terminal in exc_info.value.message

    @pytest.mark.asyncio
    async def test_timeout_bounds_poll_count(
        self, orchestrator: DeploymentOrchestrator, railway, clock
    ):
        """300s at a 5s interval never polls more than 60 times."""
        railway.statuses = ["BUILDING"]

        with pytest.raises(DeploymentTimeoutError) as exc_info:
            await orchestrator.wait_for_deployment("rd-1")

        assert railway.polls == 60
        assert clock.now >= 300
        assert exc_info.value.last_status == "BUILDING"
        assert "timed out" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unknown_status_keeps_polling(
        self, orchestrator: DeploymentOrchestrator, railway
    ):
        railway.statuses = ["SOMETHING_NEW", "SUCCESS"]

        status = await orchestrator.wait_for_deployment("rd-1")

        assert status.status == "SUCCESS"
        assert railway.polls == 2


class TestProjectNaming:
    """Tests for project slugs."""

    @pytest.mark.parametrize(
        "name,slug",
        [
            ("Acme Furniture", "acme-furniture"),
            ("  Bob's   Beds & More!  ", "bobs-beds-more"),
            ("ALL--CAPS", "all-caps"),
            ("-leading and trailing-", "leading-and-trailing"),
        ],
    )
    def test_slug(self, name: str, slug: str):
        assert project_slug(name) == slug

    def test_prefixed_name(self):
        assert project_name_for("Acme", "lendpro") == "lendpro-acme"
        assert project_name_for("Acme", "") == "acme"

    def test_empty_slug_rejected(self):
        with pytest.raises(ValidationError):
            project_name_for("!!!", "lendpro")
