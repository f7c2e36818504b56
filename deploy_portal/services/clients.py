"""Client management on top of the ledger.

Everything that accepts a LendPro password encrypts it here, before it
reaches the ledger.
"""

from typing import Any

from deploy_portal.core.exceptions import ClientNotFoundError
from deploy_portal.core.ledger import Ledger
from deploy_portal.models.audit import AuditEntry
from deploy_portal.models.client import (
    BrandingSettings,
    Client,
    ClientCreate,
    ClientRecord,
    ClientUpdate,
    FeatureFlags,
    LendProSettings,
    LendProUpdate,
    VisualizerSettings,
)
from deploy_portal.models.deployment import Deployment
from deploy_portal.services.secrets import SecretsCodec
from deploy_portal.utils.logging import get_logger

logger = get_logger("clients")


class ClientService:
    """CRUD for clients and their stored configuration."""

    def __init__(self, ledger: Ledger, codec: SecretsCodec):
        self.ledger = ledger
        self.codec = codec

    async def create_client(
        self, data: ClientCreate, created_by: str | None = None
    ) -> ClientRecord:
        """Store a new client with its password encrypted."""
        client = Client(name=data.name, domain=data.domain, created_by=created_by)
        lendpro = LendProSettings(
            api_url=data.lendpro.api_url,
            username=data.lendpro.username,
            password_encrypted=await self.codec.encrypt_async(
                data.lendpro.password.get_secret_value()
            ),
            store_id=data.lendpro.store_id,
            sales_id=data.lendpro.sales_id,
            sales_name=data.lendpro.sales_name,
        )
        record = await self.ledger.create_client(
            client,
            lendpro,
            branding=data.branding,
            features=data.features,
            visualizer=data.visualizer,
        )
        await self._audit(
            "create_client", client.id, {"name": client.name, "created_by": created_by}
        )
        return record

    async def get_client(self, client_id: str) -> ClientRecord:
        """Get a client with its settings.

        Raises:
            ClientNotFoundError: no such client.
        """
        record = await self.ledger.get_client_with_config(client_id)
        if record is None:
            raise ClientNotFoundError(client_id)
        return record

    async def list_clients(self) -> list[ClientRecord]:
        records = []
        for client in await self.ledger.list_clients():
            record = await self.ledger.get_client_with_config(client.id)
            if record is not None:
                records.append(record)
        return records

    async def update_client(self, client_id: str, data: ClientUpdate) -> ClientRecord:
        await self.get_client(client_id)
        await self.ledger.update_client(client_id, name=data.name, domain=data.domain)
        await self._audit("update_client", client_id, data.model_dump(exclude_none=True))
        return await self.get_client(client_id)

    async def update_lendpro(self, client_id: str, data: LendProUpdate) -> ClientRecord:
        """Partial LendPro update; a new password replaces the stored token."""
        await self.get_client(client_id)
        changes = data.model_dump(exclude={"password"}, exclude_none=True)
        if data.password is not None:
            changes["password_encrypted"] = await self.codec.encrypt_async(
                data.password.get_secret_value()
            )
        await self.ledger.update_lendpro(client_id, **changes)
        fields = sorted(name for name in changes if name != "password_encrypted")
        await self._audit(
            "update_lendpro",
            client_id,
            {"fields": fields, "password_updated": data.password is not None},
        )
        return await self.get_client(client_id)

    async def update_branding(
        self, client_id: str, branding: BrandingSettings
    ) -> ClientRecord:
        await self.get_client(client_id)
        await self.ledger.update_branding(client_id, branding)
        await self._audit("update_branding", client_id, branding.model_dump(exclude_none=True))
        return await self.get_client(client_id)

    async def update_features(self, client_id: str, features: FeatureFlags) -> ClientRecord:
        await self.get_client(client_id)
        await self.ledger.update_features(client_id, features)
        await self._audit("update_features", client_id, features.model_dump())
        return await self.get_client(client_id)

    async def update_visualizer(
        self, client_id: str, visualizer: VisualizerSettings
    ) -> ClientRecord:
        await self.get_client(client_id)
        await self.ledger.update_visualizer(client_id, visualizer)
        await self._audit(
            "update_visualizer",
            client_id,
            {"enabled": visualizer.enabled, "embed_code_set": bool(visualizer.embed_code)},
        )
        return await self.get_client(client_id)

    async def deployment_history(self, client_id: str, limit: int = 10) -> list[Deployment]:
        await self.get_client(client_id)
        return await self.ledger.list_deployments(client_id, limit=limit)

    async def audit_log(self, limit: int = 100) -> list[AuditEntry]:
        return await self.ledger.list_audit_entries(limit=limit)

    async def _audit(self, action: str, client_id: str, details: dict[str, Any]) -> None:
        await self.ledger.append_audit_entry(action, "client", client_id, details)
        logger.info(f"clients.{action}", client_id=client_id)
