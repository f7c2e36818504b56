"""Main router for API v1."""

from fastapi import APIRouter

from deploy_portal.api.v1 import audit, clients, health

router = APIRouter(prefix="/v1")

router.include_router(health.router, tags=["health"])
router.include_router(clients.router, prefix="/clients", tags=["clients"])
router.include_router(audit.router, prefix="/audit", tags=["audit"])
