"""Unit tests for environment variable construction."""

from pydantic import SecretStr

from deploy_portal.core.environment import build_environment_variables, database_url_reference
from deploy_portal.models.client import (
    BrandingSettings,
    ClientConfig,
    FeatureFlags,
    LendProCredentials,
    VisualizerSettings,
)


def as_dict(config: ClientConfig) -> dict[str, str]:
    return {v.key: v.value for v in build_environment_variables(config)}


class TestBuildEnvironmentVariables:
    """Tests for build_environment_variables."""

    def test_required_variables(self, client_config: ClientConfig):
        """A config with no optional sections yields only the base variables."""
        env = as_dict(client_config)

        assert env["NODE_ENV"] == "production"
        assert env["PORT"] == "3000"
        assert env["LENDPRO_API_URL"] == "https://apisg.mylendpro.com"
        assert env["LENDPRO_USERNAME"] == "acme-user"
        assert env["LENDPRO_PASSWORD"] == "s3cret-pass"
        assert env["LENDPRO_STORE_ID"] == "store-42"
        assert env["LENDPRO_SALES_ID"] == "sales-7"
        assert env["LENDPRO_SALES_NAME"] == "Jane Rep"
        assert env["DATABASE_URL"] == "${{mysql.MYSQL_URL}}"
        assert "OAUTH_SERVER_URL" in env

        assert "CART_ONLY_MODE" not in env
        assert not any(key.startswith("VISUALIZER_") for key in env)
        assert not any(key.startswith("VITE_") for key in env)

    def test_cart_only_and_branding(self, client_config: ClientConfig):
        """cart_only adds CART_ONLY_MODE; only non-empty branding values appear."""
        config = client_config.model_copy(
            update={
                "features": FeatureFlags(cart_only=True),
                "branding": BrandingSettings(primary_color="#FF0000"),
            }
        )
        env = as_dict(config)

        assert env["CART_ONLY_MODE"] == "true"
        assert env["VITE_PRIMARY_COLOR"] == "#FF0000"
        assert "VITE_SECONDARY_COLOR" not in env
        assert "VITE_COMPANY_NAME" not in env
        assert "VITE_LOGO_URL" not in env

    def test_feature_flags_without_cart_only(self, client_config: ClientConfig):
        config = client_config.model_copy(update={"features": FeatureFlags()})
        assert "CART_ONLY_MODE" not in as_dict(config)

    def test_visualizer(self, client_config: ClientConfig):
        config = client_config.model_copy(
            update={
                "visualizer": VisualizerSettings(
                    enabled=False, embed_code="<script></script>", autosync_api_key="ak-1"
                )
            }
        )
        env = as_dict(config)

        assert env["VISUALIZER_ENABLED"] == "false"
        assert env["VISUALIZER_EMBED_CODE"] == "<script></script>"
        assert env["AUTOSYNC_API_KEY"] == "ak-1"

    def test_visualizer_without_optional_fields(self, client_config: ClientConfig):
        config = client_config.model_copy(update={"visualizer": VisualizerSettings()})
        env = as_dict(config)

        assert env["VISUALIZER_ENABLED"] == "true"
        assert "VISUALIZER_EMBED_CODE" not in env
        assert "AUTOSYNC_API_KEY" not in env

    def test_deterministic(self, client_config: ClientConfig):
        """Same config, same list in the same order."""
        first = build_environment_variables(client_config)
        second = build_environment_variables(client_config)
        assert first == second

    def test_port_and_oauth_overrides(self, client_config: ClientConfig):
        env = {
            v.key: v.value
            for v in build_environment_variables(
                client_config, port=8080, oauth_server_url="https://auth.example.test"
            )
        }
        assert env["PORT"] == "8080"
        assert env["OAUTH_SERVER_URL"] == "https://auth.example.test"

    def test_custom_api_url(self):
        config = ClientConfig(
            id="c",
            name="Custom",
            lendpro=LendProCredentials(
                api_url="https://sandbox.lendpro.test",
                username="u",
                password=SecretStr("p"),
                store_id="s",
                sales_id="sa",
                sales_name="n",
            ),
        )
        assert as_dict(config)["LENDPRO_API_URL"] == "https://sandbox.lendpro.test"


def test_database_url_reference_uses_service_name():
    assert database_url_reference("db") == "${{db.MYSQL_URL}}"


def test_minimal_config_has_each_key_once():
    """Minimal config: one entry per key and no optional sections."""
    config = ClientConfig(
        id="acme",
        name="Acme",
        domain="acme.test",
        lendpro=LendProCredentials(
            username="u", password=SecretStr("p"), store_id="S1", sales_id="X1", sales_name="Jane"
        ),
    )
    variables = build_environment_variables(config)
    keys = [v.key for v in variables]

    assert len(keys) == len(set(keys))
    for key in (
        "NODE_ENV",
        "LENDPRO_USERNAME",
        "LENDPRO_STORE_ID",
        "LENDPRO_SALES_ID",
        "LENDPRO_SALES_NAME",
    ):
        assert keys.count(key) == 1
    assert not any(
        key.startswith(("VITE_", "VISUALIZER_")) or key in ("CART_ONLY_MODE", "AUTOSYNC_API_KEY")
        for key in keys
    )
