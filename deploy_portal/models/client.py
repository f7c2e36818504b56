"""Client-related data models."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, SecretStr

DEFAULT_LENDPRO_API_URL = "https://apisg.mylendpro.com"

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


class ClientStatus(str, Enum):
    """Operational status of a client instance."""

    INACTIVE = "inactive"
    DEPLOYING = "deploying"
    ACTIVE = "active"
    FAILED = "failed"
    DELETING = "deleting"


class BrandingSettings(BaseModel):
    """Optional storefront branding."""

    logo_url: str | None = None
    favicon_url: str | None = None
    primary_color: str | None = Field(default=None, pattern=HEX_COLOR_PATTERN)
    secondary_color: str | None = Field(default=None, pattern=HEX_COLOR_PATTERN)
    company_name: str | None = None


class FeatureFlags(BaseModel):
    """Storefront feature toggles."""

    pre_approval: bool = True
    cart_financing: bool = True
    order_tracking: bool = True
    customer_accounts: bool = True
    product_comparison: bool = True
    cart_only: bool = False  # cart-only mode disables the other storefront features


class VisualizerSettings(BaseModel):
    """Embedded product visualizer settings."""

    enabled: bool = True
    embed_code: str | None = None
    autosync_api_key: str | None = None


class LendProSettings(BaseModel):
    """Stored LendPro integration settings.

    ``password_encrypted`` holds the codec token; the plaintext is never
    persisted.
    """

    api_url: str = DEFAULT_LENDPRO_API_URL
    username: str
    password_encrypted: str
    store_id: str
    sales_id: str
    sales_name: str


class LendProCredentials(BaseModel):
    """LendPro credentials with the password in plaintext (in memory only)."""

    model_config = ConfigDict(frozen=True)

    api_url: str = DEFAULT_LENDPRO_API_URL
    username: str = Field(..., min_length=1)
    password: SecretStr
    store_id: str = Field(..., min_length=1)
    sales_id: str = Field(..., min_length=1)
    sales_name: str = Field(..., min_length=1)


class RailwayHandles(BaseModel):
    """Remote platform identifiers recorded after a successful deployment."""

    project_id: str | None = None
    project_url: str | None = None
    environment_id: str | None = None
    service_id: str | None = None
    service_url: str | None = None


class Client(BaseModel):
    """A tenant tracked by the portal."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    domain: str | None = None
    status: ClientStatus = ClientStatus.INACTIVE

    # Railway handles
    railway_project_id: str | None = None
    railway_project_url: str | None = None
    railway_environment_id: str | None = None
    railway_service_id: str | None = None
    service_url: str | None = None

    # Timestamps
    last_deployed_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    created_by: str | None = None

    @property
    def is_provisioned(self) -> bool:
        """Whether the remote project and application service already exist."""
        return bool(self.railway_project_id and self.railway_service_id)


class ClientRecord(BaseModel):
    """A client row joined with its stored settings."""

    client: Client
    lendpro: LendProSettings
    branding: BrandingSettings | None = None
    features: FeatureFlags | None = None
    visualizer: VisualizerSettings | None = None


class ClientConfig(BaseModel):
    """Immutable deployment input for one client."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = Field(..., min_length=1)
    domain: str | None = None
    lendpro: LendProCredentials
    branding: BrandingSettings | None = None
    features: FeatureFlags | None = None
    visualizer: VisualizerSettings | None = None


class LendProInput(BaseModel):
    """LendPro credentials as submitted by an operator."""

    api_url: str = DEFAULT_LENDPRO_API_URL
    username: str = Field(..., min_length=1)
    password: SecretStr
    store_id: str = Field(..., min_length=1)
    sales_id: str = Field(..., min_length=1)
    sales_name: str = Field(..., min_length=1)


class ClientCreate(BaseModel):
    """Request model for creating a new client."""

    name: str = Field(..., min_length=1, max_length=255)
    domain: str | None = Field(default=None, max_length=255)
    lendpro: LendProInput
    branding: BrandingSettings | None = None
    features: FeatureFlags | None = None
    visualizer: VisualizerSettings | None = None


class ClientUpdate(BaseModel):
    """Request model for renaming a client or changing its domain."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    domain: str | None = Field(default=None, max_length=255)


class LendProUpdate(BaseModel):
    """Partial LendPro update; a new password is re-encrypted."""

    api_url: str | None = None
    username: str | None = None
    password: SecretStr | None = None
    store_id: str | None = None
    sales_id: str | None = None
    sales_name: str | None = None


class ClientResponse(BaseModel):
    """API response model for a client."""

    client_id: str
    name: str
    domain: str | None = None
    status: ClientStatus
    railway: RailwayHandles
    last_deployed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    # Configuration without secrets
    lendpro_username: str | None = None
    lendpro_store_id: str | None = None
    password_set: bool = False
    branding: BrandingSettings | None = None
    features: FeatureFlags | None = None
    visualizer: VisualizerSettings | None = None

    @classmethod
    def from_record(cls, record: ClientRecord) -> "ClientResponse":
        """Create response from a stored client record."""
        client = record.client
        return cls(
            client_id=client.id,
            name=client.name,
            domain=client.domain,
            status=client.status,
            railway=RailwayHandles(
                project_id=client.railway_project_id,
                project_url=client.railway_project_url,
                environment_id=client.railway_environment_id,
                service_id=client.railway_service_id,
                service_url=client.service_url,
            ),
            last_deployed_at=client.last_deployed_at,
            created_at=client.created_at,
            updated_at=client.updated_at,
            lendpro_username=record.lendpro.username,
            lendpro_store_id=record.lendpro.store_id,
            password_set=bool(record.lendpro.password_encrypted),
            branding=record.branding,
            features=record.features,
            visualizer=record.visualizer,
        )
