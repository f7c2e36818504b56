"""Environment variables for a tenant's application service."""

from deploy_portal.models.client import ClientConfig
from deploy_portal.models.remote import EnvironmentVariable

DATABASE_SERVICE_NAME = "mysql"
DEFAULT_PORT = 3000
DEFAULT_OAUTH_SERVER_URL = "http://localhost:3000"


def database_url_reference(database_service: str = DATABASE_SERVICE_NAME) -> str:
    """Railway interpolation pointing at the database service's connection URL."""
    return "${{" + database_service + ".MYSQL_URL}}"


def build_environment_variables(
    config: ClientConfig,
    database_service: str = DATABASE_SERVICE_NAME,
    port: int = DEFAULT_PORT,
    oauth_server_url: str = DEFAULT_OAUTH_SERVER_URL,
) -> list[EnvironmentVariable]:
    """Map a client configuration to the service's variable list.

    Pure: the same config always yields the same list in the same order.
    The returned list is the only place the LendPro password exists in
    plaintext; it must not be persisted or logged.
    """
    lendpro = config.lendpro
    pairs: list[tuple[str, str]] = [
        # Application
        ("NODE_ENV", "production"),
        ("PORT", str(port)),
        # LendPro
        ("LENDPRO_API_URL", lendpro.api_url),
        ("LENDPRO_USERNAME", lendpro.username),
        ("LENDPRO_PASSWORD", lendpro.password.get_secret_value()),
        ("LENDPRO_STORE_ID", lendpro.store_id),
        ("LENDPRO_SALES_ID", lendpro.sales_id),
        ("LENDPRO_SALES_NAME", lendpro.sales_name),
        # Database, resolved by Railway at runtime
        ("DATABASE_URL", database_url_reference(database_service)),
        # OAuth
        ("OAUTH_SERVER_URL", oauth_server_url),
    ]

    if config.visualizer:
        visualizer = config.visualizer
        pairs.append(("VISUALIZER_ENABLED", "true" if visualizer.enabled else "false"))
        if visualizer.embed_code:
            pairs.append(("VISUALIZER_EMBED_CODE", visualizer.embed_code))
        if visualizer.autosync_api_key:
            pairs.append(("AUTOSYNC_API_KEY", visualizer.autosync_api_key))

    if config.features and config.features.cart_only:
        pairs.append(("CART_ONLY_MODE", "true"))

    if config.branding:
        branding = config.branding
        for key, value in (
            ("VITE_PRIMARY_COLOR", branding.primary_color),
            ("VITE_SECONDARY_COLOR", branding.secondary_color),
            ("VITE_COMPANY_NAME", branding.company_name),
            ("VITE_LOGO_URL", branding.logo_url),
        ):
            if value:
                pairs.append((key, value))

    return [EnvironmentVariable(key=key, value=value) for key, value in pairs]
