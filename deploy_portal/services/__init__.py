"""Services for the deploy portal."""

from deploy_portal.services.railway import RailwayClient
from deploy_portal.services.secrets import SecretsCodec

__all__ = [
    "RailwayClient",
    "SecretsCodec",
]
