"""Audit log endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel

from deploy_portal.api.deps import ClientsDep
from deploy_portal.models.audit import AuditEntry

router = APIRouter()


class AuditLogResponse(BaseModel):
    entries: list[AuditEntry]


@router.get("", response_model=AuditLogResponse, summary="Recent audit entries")
async def list_audit_entries(
    clients: ClientsDep,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> AuditLogResponse:
    return AuditLogResponse(entries=await clients.audit_log(limit=limit))
